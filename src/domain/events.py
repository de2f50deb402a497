"""
Wire-level event payloads.

Both events travel as flat camelCase JSON objects.  Decoding failures are
normalised to ``MalformedEvent`` so the consumer has a single error to
handle regardless of whether the bytes, the JSON or the shape was wrong.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import MalformedEvent


class CreateTripEvent(BaseModel):
    """Published once per created trip, after the trip is persisted."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    trip_id: str = Field(alias="tripId")
    user_id: str = Field(alias="userId")
    origin: str
    destination: str
    latitude: Optional[str] = None
    longitude: Optional[str] = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class AcceptTripEvent(BaseModel):
    """Emitted by the driver side when a driver claims a trip."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    trip_id: str = Field(alias="tripId", min_length=1)
    driver_id: str = Field(alias="driverId", min_length=1)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def decode(cls, raw: str | bytes) -> AcceptTripEvent:
        try:
            return cls.model_validate_json(raw)
        except (ValidationError, UnicodeDecodeError) as exc:
            raise MalformedEvent(f"Undecodable acceptance event: {exc}") from exc
