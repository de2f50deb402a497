"""
Repository Pattern -- abstracts trip persistence so domain logic stays
storage-agnostic.

``TripStore`` is the keyed-store contract the lifecycle manager consumes:

* ``get(trip_id)``  -- returns a detached ``Trip`` or raises ``TripNotFound``
* ``upsert(trip)``  -- assigns an id when absent, otherwise overwrites the
  stored row *only if* its version still equals ``trip.version``
  (compare-and-swap).  A lost race raises ``StaleTripVersion``.

Two implementations: ``SqlTripStore`` (one short transaction per call) and
``InMemoryTripStore`` for tests and single-process runs.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import TripModel
from src.domain.entities import Trip
from src.domain.errors import StaleTripVersion, TripNotFound


def new_trip_id() -> str:
    return uuid.uuid4().hex


class TripStore(Protocol):
    async def get(self, trip_id: str) -> Trip: ...

    async def upsert(self, trip: Trip) -> Trip: ...


class SqlTripStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, trip_id: str) -> Trip:
        async with self.session_factory() as session:
            model = await session.get(TripModel, trip_id)
            if model is None:
                raise TripNotFound(trip_id)
            return _to_entity(model)

    async def upsert(self, trip: Trip) -> Trip:
        async with self.session_factory() as session:
            async with session.begin():
                if trip.id is None:
                    model = await self._insert(session, trip, new_trip_id())
                else:
                    model = await self._compare_and_swap(session, trip)
            return _to_entity(model)

    async def _insert(
        self, session: AsyncSession, trip: Trip, trip_id: str
    ) -> TripModel:
        model = TripModel(
            id=trip_id,
            user_id=trip.user_id,
            driver_id=trip.driver_id,
            origin=trip.origin,
            destination=trip.destination,
            latitude=trip.latitude,
            longitude=trip.longitude,
            status=trip.status,
            version=1,
        )
        session.add(model)
        await session.flush()
        await session.refresh(model)
        return model

    async def _compare_and_swap(
        self, session: AsyncSession, trip: Trip
    ) -> TripModel:
        result = await session.execute(
            update(TripModel)
            .where(TripModel.id == trip.id, TripModel.version == trip.version)
            .values(
                driver_id=trip.driver_id,
                status=trip.status,
                version=TripModel.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
        )
        if result.rowcount == 0:
            current = await session.scalar(
                select(TripModel.version).where(TripModel.id == trip.id)
            )
            if current is not None:
                raise StaleTripVersion(trip.id, trip.version, current)
            # Unknown id supplied by the caller: store it as a new row
            return await self._insert(session, trip, trip.id)

        model = await session.get(TripModel, trip.id, populate_existing=True)
        if model is None:
            raise TripNotFound(trip.id)
        return model


class InMemoryTripStore:
    """Dict-backed store.  Every value crossing the boundary is a copy."""

    def __init__(self, id_factory: Callable[[], str] = new_trip_id) -> None:
        self.id_factory = id_factory
        self._trips: dict[str, Trip] = {}

    def __len__(self) -> int:
        return len(self._trips)

    async def get(self, trip_id: str) -> Trip:
        trip = self._trips.get(trip_id)
        if trip is None:
            raise TripNotFound(trip_id)
        return replace(trip)

    async def upsert(self, trip: Trip) -> Trip:
        now = datetime.now(timezone.utc)
        if trip.id is None:
            stored = replace(
                trip, id=self.id_factory(), version=1, created_at=now, updated_at=now
            )
        else:
            existing: Optional[Trip] = self._trips.get(trip.id)
            if existing is None:
                stored = replace(trip, version=1, created_at=now, updated_at=now)
            elif existing.version != trip.version:
                raise StaleTripVersion(trip.id, trip.version, existing.version)
            else:
                stored = replace(trip, version=existing.version + 1, updated_at=now)
        self._trips[stored.id] = stored
        return replace(stored)


def _to_entity(model: TripModel) -> Trip:
    return Trip(
        id=model.id,
        user_id=model.user_id,
        origin=model.origin,
        destination=model.destination,
        latitude=model.latitude,
        longitude=model.longitude,
        driver_id=model.driver_id,
        status=model.status,
        version=model.version,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )
