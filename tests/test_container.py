"""Wiring of the service container from settings."""

from __future__ import annotations

import pytest

from src.config import Settings
from src.container import build_container
from src.infrastructure.event_bus import InMemoryEventBus, RedisStreamEventBus
from src.infrastructure.repositories import InMemoryTripStore, SqlTripStore
from src.infrastructure.user_gateway import HttpUserInfoGateway


@pytest.mark.asyncio
async def test_memory_backends():
    container = build_container(
        Settings(trip_store_backend="memory", event_bus_backend="memory")
    )
    try:
        assert isinstance(container.store, InMemoryTripStore)
        assert isinstance(container.bus, InMemoryEventBus)
        assert isinstance(container.gateway, HttpUserInfoGateway)
        assert container.processor.topic == "trip_created"
        assert container.recorder.dead_letter_topic == "trip_created.dlq"
    finally:
        await container.close()


@pytest.mark.asyncio
async def test_production_backends_are_built_lazily():
    # Neither the engine nor the Redis pool connects until first use
    container = build_container(
        Settings(
            database_url="sqlite+aiosqlite:///:memory:",
            redis_url="redis://localhost:6399/0",
        )
    )
    try:
        assert isinstance(container.store, SqlTripStore)
        assert isinstance(container.bus, RedisStreamEventBus)
    finally:
        await container.close()


@pytest.mark.asyncio
async def test_dead_letter_can_be_disabled():
    container = build_container(
        Settings(
            trip_store_backend="memory",
            event_bus_backend="memory",
            dead_letter_enabled=False,
        )
    )
    try:
        assert container.recorder.dead_letter_topic is None
    finally:
        await container.close()


@pytest.mark.asyncio
async def test_explicit_collaborators_win(store, bus, gateway):
    container = build_container(
        Settings(trip_store_backend="sql", event_bus_backend="redis"),
        store=store,
        bus=bus,
        gateway=gateway,
    )

    assert container.store is store
    assert container.bus is bus
    assert container.gateway is gateway
    await container.close()
