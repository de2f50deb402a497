"""
Trip Lifecycle Manager
======================

Owns the trip state machine and is the only component that writes trips.

Operations
----------
* ``create``         -- persist a PENDING trip, then publish ``CreateTripEvent``
* ``get_status``     -- current status of a trip
* ``get_details``    -- trip enriched with rider/driver display names
* ``update_status``  -- explicit status change requested by a client
* ``accept``         -- driver acceptance delivered by the event bus

Concurrency safety
------------------
``update_status`` and ``accept`` share one read-modify-write path
(``apply``).  Inside a process, a per-trip ``KeyedLock`` queues writers to
the same trip; across processes the store's version compare-and-swap
rejects a stale write, and the cycle is retried on fresh state.  Writers
to different trips never wait on each other.  The log record for a write
is emitted after the trip lock is released.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from src.domain.entities import (
    Acceptance,
    StatusChange,
    Trip,
    TripChange,
    apply_change,
)
from src.domain.enums import TripStatus
from src.domain.errors import (
    ConcurrentUpdate,
    InvalidRequest,
    StaleTripVersion,
    UpstreamUnavailable,
)
from src.domain.events import AcceptTripEvent, CreateTripEvent
from src.infrastructure.event_bus import EventBus
from src.infrastructure.locks import KeyedLock
from src.infrastructure.observability import BusLogPublisher
from src.infrastructure.repositories import TripStore
from src.infrastructure.user_gateway import UserInfoGateway

logger = logging.getLogger(__name__)

WAITING_FOR_DRIVER = "Waiting for driver to accept the trip"


@dataclass(frozen=True)
class NewTrip:
    user_id: str
    origin: str
    destination: str
    latitude: Optional[str] = None
    longitude: Optional[str] = None


@dataclass(frozen=True)
class TripDetails:
    id: str
    origin: str
    destination: str
    status: TripStatus
    user_name: str
    driver_name: str


class TripLifecycleManager:
    def __init__(
        self,
        store: TripStore,
        bus: EventBus,
        gateway: UserInfoGateway,
        *,
        created_topic: str,
        log_publisher: Optional[BusLogPublisher] = None,
        strict_transitions: bool = True,
        max_update_retries: int = 5,
        gateway_timeout: float = 3.0,
    ):
        self.store = store
        self.bus = bus
        self.gateway = gateway
        self.created_topic = created_topic
        self.log_publisher = log_publisher
        self.strict_transitions = strict_transitions
        self.max_update_retries = max_update_retries
        self.gateway_timeout = gateway_timeout
        self._locks = KeyedLock()

    # ── Commands ──────────────────────────────────────────────────────

    async def create(self, request: NewTrip) -> tuple[str, str]:
        """Persist a new trip and announce it.  Returns (trip_id, message)."""
        missing = [
            name
            for name in ("user_id", "origin", "destination")
            if not (getattr(request, name) or "").strip()
        ]
        if missing:
            raise InvalidRequest(f"Missing required fields: {', '.join(missing)}")

        trip = await self.store.upsert(
            Trip(
                user_id=request.user_id,
                origin=request.origin,
                destination=request.destination,
                latitude=request.latitude,
                longitude=request.longitude,
                status=TripStatus.PENDING,
            )
        )
        if not trip.id:
            raise UpstreamUnavailable("Trip store did not assign an id")

        # Only announce trips that are known to exist
        event = CreateTripEvent(
            trip_id=trip.id,
            user_id=trip.user_id,
            origin=trip.origin,
            destination=trip.destination,
            latitude=request.latitude,
            longitude=request.longitude,
        )
        try:
            await self.bus.publish(self.created_topic, event.to_json(), key=trip.id)
        except Exception as exc:
            logger.exception("Publishing creation of trip %s failed", trip.id)
            raise UpstreamUnavailable(
                f"Trip {trip.id} was stored but could not be announced"
            ) from exc

        logger.info("Trip %s created for user %s", trip.id, trip.user_id)
        await self._emit(f"Trip {trip.id} created, waiting for a driver")
        return trip.id, WAITING_FOR_DRIVER

    async def update_status(self, trip_id: str, status: TripStatus) -> str:
        await self.apply(trip_id, StatusChange(status))
        return f"Trip status updated to {status.value}"

    async def accept(self, event: AcceptTripEvent) -> Trip:
        return await self.apply(event.trip_id, Acceptance(event.driver_id))

    async def apply(self, trip_id: str, change: TripChange) -> Trip:
        """Read, transition and conditionally write one trip."""
        async with self._locks.hold(trip_id):
            saved, previous = await self._write(trip_id, change)

        if previous is not None:
            await self._emit(
                f"Trip {trip_id} moved from {previous.value} to {saved.status.value}"
            )
        return saved

    async def _write(
        self, trip_id: str, change: TripChange
    ) -> tuple[Trip, Optional[TripStatus]]:
        """Returns the trip and its previous status, or None when unchanged."""
        for attempt in range(1, self.max_update_retries + 1):
            trip = await self.store.get(trip_id)
            previous = trip.status
            if not apply_change(trip, change, strict=self.strict_transitions):
                logger.debug("Trip %s unchanged by %r", trip_id, change)
                return trip, None
            try:
                saved = await self.store.upsert(trip)
            except StaleTripVersion:
                logger.info(
                    "Trip %s changed underneath us (attempt %d/%d), retrying",
                    trip_id,
                    attempt,
                    self.max_update_retries,
                )
                continue

            logger.info(
                "Trip %s: %s -> %s", trip_id, previous.value, saved.status.value
            )
            return saved, previous

        raise ConcurrentUpdate(
            f"Trip {trip_id} kept changing; gave up after "
            f"{self.max_update_retries} attempts"
        )

    # ── Queries ───────────────────────────────────────────────────────

    async def get_trip(self, trip_id: str) -> Trip:
        return await self.store.get(trip_id)

    async def get_status(self, trip_id: str) -> TripStatus:
        trip = await self.store.get(trip_id)
        return trip.status

    async def get_details(
        self, trip_id: str, authorization: Optional[str] = None
    ) -> TripDetails:
        trip = await self.store.get(trip_id)
        try:
            names = await asyncio.wait_for(
                self.gateway.resolve_names(trip.user_id, trip.driver_id, authorization),
                timeout=self.gateway_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise UpstreamUnavailable(
                f"User service did not answer within {self.gateway_timeout}s"
            ) from exc

        return TripDetails(
            id=trip.id or trip_id,
            origin=trip.origin,
            destination=trip.destination,
            status=trip.status,
            user_name=names.user_name,
            driver_name=names.driver_name,
        )

    # ── Internals ─────────────────────────────────────────────────────

    async def _emit(self, message: str) -> None:
        if self.log_publisher is not None:
            await self.log_publisher.emit(message)
