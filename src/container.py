"""
Service container.

Builds every collaborator exactly once at process start and tears them
down in reverse order at shutdown.  Backends are chosen by settings:

* ``trip_store_backend``  -- ``sql`` (SQLAlchemy) or ``memory``
* ``event_bus_backend``   -- ``redis`` (Redis Streams) or ``memory``
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from src.config import Settings
from src.infrastructure.database import Base, build_engine, build_session_factory
from src.infrastructure.event_bus import EventBus, InMemoryEventBus, RedisStreamEventBus
from src.infrastructure.observability import BusLogPublisher, FailureRecorder
from src.infrastructure.redis_client import build_redis
from src.infrastructure.repositories import InMemoryTripStore, SqlTripStore, TripStore
from src.infrastructure.user_gateway import HttpUserInfoGateway, UserInfoGateway
from src.services.trip_lifecycle import TripLifecycleManager
from src.workers.acceptance import AcceptanceEventProcessor

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    store: TripStore
    bus: EventBus
    gateway: UserInfoGateway
    recorder: FailureRecorder
    manager: TripLifecycleManager
    processor: AcceptanceEventProcessor
    _resources: list[Any] = field(default_factory=list)

    async def start(self) -> None:
        await self.processor.start()

    async def close(self) -> None:
        await self.processor.stop()
        for resource in reversed(self._resources):
            await resource.close()
        self._resources.clear()


def build_container(
    settings: Settings,
    *,
    store: Optional[TripStore] = None,
    bus: Optional[EventBus] = None,
    gateway: Optional[UserInfoGateway] = None,
) -> ServiceContainer:
    """Wire the service; explicit collaborators override the settings."""
    resources: list[Any] = []

    if store is None:
        if settings.trip_store_backend == "memory":
            store = InMemoryTripStore()
        else:
            engine = build_engine(settings.database_url)
            store = SqlTripStore(build_session_factory(engine))
            resources.append(_EngineResource(engine))

    if bus is None:
        if settings.event_bus_backend == "memory":
            bus = InMemoryEventBus()
        else:
            bus = RedisStreamEventBus(
                build_redis(settings.redis_url),
                block_ms=settings.stream_block_ms,
                maxlen=settings.stream_maxlen,
                claim_idle_ms=settings.stream_claim_idle_ms,
            )
        resources.append(bus)

    if gateway is None:
        gateway = HttpUserInfoGateway(
            settings.user_service_url,
            timeout=settings.user_service_timeout_seconds,
        )
        resources.append(gateway)

    recorder = FailureRecorder(
        bus,
        settings.dead_letter_topic if settings.dead_letter_enabled else None,
        history_size=settings.failure_history_size,
    )
    log_publisher = BusLogPublisher(
        bus,
        settings.logs_topic,
        settings.service_name,
        timeout=settings.log_publish_timeout_seconds,
    )
    manager = TripLifecycleManager(
        store,
        bus,
        gateway,
        created_topic=settings.trip_created_topic,
        log_publisher=log_publisher,
        strict_transitions=settings.strict_status_transitions,
        max_update_retries=settings.max_update_retries,
        gateway_timeout=settings.user_service_timeout_seconds,
    )
    processor = AcceptanceEventProcessor(
        manager,
        bus,
        recorder,
        topic=settings.trip_accepted_topic,
        group=settings.consumer_group,
        consumer=settings.consumer_name,
        lanes=settings.processor_lanes,
        handle_attempts=settings.processor_handle_attempts,
        retry_delay=settings.processor_retry_delay_seconds,
    )
    logger.info(
        "Container built (store=%s, bus=%s, strict_transitions=%s)",
        type(store).__name__,
        type(bus).__name__,
        settings.strict_status_transitions,
    )
    return ServiceContainer(
        store=store,
        bus=bus,
        gateway=gateway,
        recorder=recorder,
        manager=manager,
        processor=processor,
        _resources=resources,
    )


class _EngineResource:
    def __init__(self, engine):
        self.engine = engine

    async def close(self) -> None:
        await self.engine.dispose()


async def create_schema(engine) -> None:
    """Create tables directly; production deployments use Alembic."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
