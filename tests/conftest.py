"""
Shared test fixtures.

Everything runs in-process: trips live in ``InMemoryTripStore`` (or an
in-memory SQLite database via aiosqlite for the SQL store tests), events
go through ``InMemoryEventBus`` and the user service is a fake, so tests
run without Docker / PostgreSQL / Redis.
"""

import asyncio
import itertools
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.container import create_schema
from src.infrastructure.database import build_engine, build_session_factory
from src.infrastructure.event_bus import InMemoryEventBus
from src.infrastructure.observability import BusLogPublisher, FailureRecorder
from src.infrastructure.repositories import InMemoryTripStore
from src.infrastructure.user_gateway import UserDriverNames
from src.services.trip_lifecycle import TripLifecycleManager
from src.workers.acceptance import AcceptanceEventProcessor

CREATED_TOPIC = "trip_create_wait_driver"
ACCEPTED_TOPIC = "trip_created"
LOGS_TOPIC = "trip_service_logs"
DLQ_TOPIC = "trip_created.dlq"

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class FakeUserGateway:
    """Answers with ``name-<id>``; can be told to fail or stall."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Optional[str], Optional[str]]] = []
        self.error: Optional[Exception] = None
        self.delay = 0.0

    async def resolve_names(self, user_id, driver_id, authorization=None):
        self.calls.append((user_id, driver_id, authorization))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return UserDriverNames(
            user_name=f"name-{user_id}",
            driver_name=f"name-{driver_id}" if driver_id else "",
        )


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture
def store() -> InMemoryTripStore:
    counter = itertools.count(1)
    return InMemoryTripStore(id_factory=lambda: f"t{next(counter)}")


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def gateway() -> FakeUserGateway:
    return FakeUserGateway()


@pytest.fixture
def recorder(bus) -> FailureRecorder:
    return FailureRecorder(bus, DLQ_TOPIC, history_size=50)


@pytest.fixture
def manager(store, bus, gateway) -> TripLifecycleManager:
    return TripLifecycleManager(
        store,
        bus,
        gateway,
        created_topic=CREATED_TOPIC,
        log_publisher=BusLogPublisher(bus, LOGS_TOPIC, "trip-service"),
        gateway_timeout=0.2,
    )


@pytest.fixture
def processor(manager, bus, recorder) -> AcceptanceEventProcessor:
    return AcceptanceEventProcessor(
        manager,
        bus,
        recorder,
        topic=ACCEPTED_TOPIC,
        group="trip-service-group",
        consumer="test-consumer",
        lanes=4,
        drain_timeout=1.0,
        retry_delay=0.01,
    )


@pytest.fixture
def eventually():
    """Poll an (a)synchronous predicate until it holds or time runs out."""

    async def _wait(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            result = predicate()
            if asyncio.iscoroutine(result):
                result = await result
            if result:
                return
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _wait


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh in-memory SQLite schema per test."""
    engine = build_engine(TEST_DB_URL)
    await create_schema(engine)
    yield build_session_factory(engine)
    await engine.dispose()
