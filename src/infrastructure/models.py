"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``trips`` -- one row per trip, mutated in place across its lifecycle

Indexes
-------
* **B-Tree** on ``status``, ``user_id`` and ``driver_id`` for operational
  look-ups.

``version`` backs the optimistic compare-and-swap in ``SqlTripStore``.
"""

from sqlalchemy import Column, DateTime, Enum, Index, Integer, String, func

from .database import Base
from src.domain.enums import TripStatus


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(64), nullable=False)
    driver_id = Column(String(64), nullable=True)
    origin = Column(String(255), nullable=False)
    destination = Column(String(255), nullable=False)
    latitude = Column(String(32), nullable=True)
    longitude = Column(String(32), nullable=True)
    status = Column(
        Enum(TripStatus, name="tripstatus"),
        default=TripStatus.PENDING,
        nullable=False,
    )
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_trips_status", "status"),
        Index("idx_trips_user", "user_id"),
        Index("idx_trips_driver", "driver_id"),
    )
