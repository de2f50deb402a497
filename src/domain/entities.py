"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Trip``: enforces valid lifecycle transitions
  (PENDING -> ACCEPTED -> COMPLETED | CANCELLED).
- ``apply_change`` is the single transition function shared by the
  synchronous status-update path and the asynchronous acceptance path.
  It is pure: it mutates the trip in memory and reports whether anything
  changed, leaving persistence to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from .enums import TRIP_TRANSITIONS, TripStatus
from .errors import ConflictingAcceptance, InvalidTransition


# ── Changes ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Acceptance:
    """A driver claimed the trip."""

    driver_id: str


@dataclass(frozen=True)
class StatusChange:
    """An explicit status update requested through the API."""

    status: TripStatus


TripChange = Union[Acceptance, StatusChange]


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Trip:
    id: Optional[str] = None
    user_id: str = ""
    origin: str = ""
    destination: str = ""
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    driver_id: Optional[str] = None
    status: TripStatus = TripStatus.PENDING
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def accept(self, driver_id: str) -> bool:
        """Assign *driver_id*.  Returns False for an idempotent redelivery."""
        # An override may have left ACCEPTED without a driver; that is still open
        if self.status == TripStatus.PENDING or (
            self.status == TripStatus.ACCEPTED and self.driver_id is None
        ):
            self.driver_id = driver_id
            self.status = TripStatus.ACCEPTED
            return True

        if self.status == TripStatus.CANCELLED or self.driver_id is None:
            raise InvalidTransition(
                f"Cannot accept trip {self.id} in status {self.status.value}"
            )

        # ACCEPTED or COMPLETED: first acceptance wins
        if self.driver_id == driver_id:
            return False
        raise ConflictingAcceptance(self.id or "", self.driver_id, driver_id)

    def transition_to(self, new_status: TripStatus, strict: bool = True) -> bool:
        """Move to *new_status*.  Returns False when already there.

        With ``strict=False`` the status is overwritten without consulting
        the graph, which is how administrative overrides behave.  ACCEPTED
        stays reserved for driver acceptance under both policies, and an
        override back to PENDING releases the driver.
        """
        if new_status == self.status:
            return False
        if new_status == TripStatus.ACCEPTED:
            raise InvalidTransition(
                "ACCEPTED can only be reached through a driver acceptance"
            )
        if not strict:
            self.status = new_status
            if new_status == TripStatus.PENDING:
                self.driver_id = None
            return True

        allowed = TRIP_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        return True


def apply_change(trip: Trip, change: TripChange, strict: bool = True) -> bool:
    """Apply *change* to *trip*; acceptance is always guarded."""
    if isinstance(change, Acceptance):
        return trip.accept(change.driver_id)
    return trip.transition_to(change.status, strict=strict)
