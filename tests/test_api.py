"""
Integration tests for the REST API endpoints.

The app is built around a container wired with the in-memory store and
bus plus the fake user service from ``conftest``; one test swaps in the
SQL store on in-memory SQLite.  ``ASGITransport`` does not run lifespan
events, so the acceptance processor stays stopped unless a test starts it.
"""

from __future__ import annotations

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.config import Settings
from src.container import build_container
from src.domain.errors import UpstreamUnavailable
from src.infrastructure.repositories import SqlTripStore

ACCEPTED_TOPIC = "trip_created"
CREATED_TOPIC = "trip_create_wait_driver"

TRIP_BODY = {
    "userId": "u1",
    "origin": "Airport T1",
    "destination": "Central Station",
    "latitude": "19.0896",
    "longitude": "72.8656",
}


def _settings() -> Settings:
    return Settings(trip_store_backend="memory", event_bus_backend="memory")


@pytest.fixture
def container(store, bus, gateway):
    return build_container(_settings(), store=store, bus=bus, gateway=gateway)


@pytest_asyncio.fixture
async def client(container):
    app = create_app(_settings(), container=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _create(client: AsyncClient) -> str:
    resp = await client.post("/api/v1/trips", json=TRIP_BODY)
    assert resp.status_code == 202
    return resp.json()["tripId"]


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "processor_running": False}


@pytest.mark.asyncio
async def test_create_trip_returns_202(client: AsyncClient, bus):
    resp = await client.post("/api/v1/trips", json=TRIP_BODY)

    assert resp.status_code == 202
    data = resp.json()
    assert data["tripId"] == "t1"
    assert data["message"] == "Waiting for driver to accept the trip"
    [event] = bus.messages(CREATED_TOPIC)
    assert json.loads(event.payload)["tripId"] == "t1"


@pytest.mark.asyncio
async def test_create_trip_without_coordinates(client: AsyncClient):
    body = {k: v for k, v in TRIP_BODY.items() if k not in ("latitude", "longitude")}
    resp = await client.post("/api/v1/trips", json=body)
    assert resp.status_code == 202


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"origin": "A", "destination": "B"},
        {**TRIP_BODY, "origin": ""},
        {**TRIP_BODY, "destination": "   "},
    ],
)
async def test_create_trip_rejects_bad_body(client: AsyncClient, bus, body):
    resp = await client.post("/api/v1/trips", json=body)
    assert resp.status_code == 422
    assert bus.messages(CREATED_TOPIC) == []


@pytest.mark.asyncio
async def test_get_status(client: AsyncClient):
    trip_id = await _create(client)

    resp = await client.get(f"/api/v1/trips/{trip_id}/status")

    assert resp.status_code == 200
    assert resp.json() == {"tripId": trip_id, "status": "PENDING"}


@pytest.mark.asyncio
async def test_unknown_trip_is_404(client: AsyncClient):
    resp = await client.get("/api/v1/trips/nope/status")

    assert resp.status_code == 404
    assert resp.json() == {
        "detail": "Trip not found with id: nope",
        "error_type": "NOT_FOUND",
    }


@pytest.mark.asyncio
async def test_get_details_forwards_authorization(client: AsyncClient, gateway):
    trip_id = await _create(client)

    resp = await client.get(
        f"/api/v1/trips/{trip_id}", headers={"Authorization": "Bearer abc"}
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "id": trip_id,
        "origin": "Airport T1",
        "destination": "Central Station",
        "status": "PENDING",
        "userName": "name-u1",
        "driverName": "",
    }
    assert gateway.calls == [("u1", None, "Bearer abc")]


@pytest.mark.asyncio
async def test_get_details_user_service_down(client: AsyncClient, gateway):
    trip_id = await _create(client)
    gateway.error = UpstreamUnavailable("User service returned 500")

    resp = await client.get(f"/api/v1/trips/{trip_id}")

    assert resp.status_code == 503
    assert resp.json()["error_type"] == "UPSTREAM_UNAVAILABLE"


@pytest.mark.asyncio
async def test_update_status(client: AsyncClient):
    trip_id = await _create(client)

    resp = await client.put(f"/api/v1/trips/{trip_id}/status", params={"status": "CANCELLED"})

    assert resp.status_code == 200
    assert resp.json() == {
        "tripId": trip_id,
        "message": "Trip status updated to CANCELLED",
    }


@pytest.mark.asyncio
async def test_update_status_invalid_transition(client: AsyncClient):
    trip_id = await _create(client)

    resp = await client.put(f"/api/v1/trips/{trip_id}/status", params={"status": "COMPLETED"})

    assert resp.status_code == 409
    assert resp.json()["error_type"] == "INVALID_TRANSITION"


@pytest.mark.asyncio
async def test_update_status_unknown_value(client: AsyncClient):
    trip_id = await _create(client)

    resp = await client.put(f"/api/v1/trips/{trip_id}/status", params={"status": "FLYING"})

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_acceptance_flow_and_failures_endpoint(
    client: AsyncClient, container, bus, eventually
):
    trip_id = await _create(client)
    await bus.publish(
        ACCEPTED_TOPIC, json.dumps({"tripId": trip_id, "driverId": "d7"}), key=trip_id
    )
    await bus.publish(ACCEPTED_TOPIC, "not an event")

    await container.start()
    try:
        await eventually(lambda: len(bus.acked) == 2)
        health = await client.get("/api/v1/admin/health")
        assert health.json()["processor_running"] is True
    finally:
        await container.processor.stop()

    details = (await client.get(f"/api/v1/trips/{trip_id}")).json()
    assert details["status"] == "ACCEPTED"
    assert details["driverName"] == "name-d7"

    failures = (await client.get("/api/v1/admin/failures")).json()
    assert len(failures) == 1
    assert failures[0]["errorType"] == "MALFORMED_EVENT"
    assert failures[0]["originalPayload"] == "not an event"


@pytest.mark.asyncio
async def test_sql_backed_round_trip(session_factory, bus, gateway):
    container = build_container(
        _settings(), store=SqlTripStore(session_factory), bus=bus, gateway=gateway
    )
    app = create_app(_settings(), container=container)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        trip_id = await _create(ac)
        resp = await ac.put(f"/api/v1/trips/{trip_id}/status", params={"status": "CANCELLED"})
        assert resp.status_code == 200

        status = await ac.get(f"/api/v1/trips/{trip_id}/status")

    assert status.json()["status"] == "CANCELLED"
    assert len(trip_id) == 32
