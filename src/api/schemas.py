"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ── Requests ──────────────────────────────────────────────────────────


class TripCreateRequest(_CamelModel):
    user_id: str = Field(..., alias="userId", min_length=1, max_length=64)
    origin: str = Field(..., min_length=1, max_length=255)
    destination: str = Field(..., min_length=1, max_length=255)
    latitude: Optional[str] = Field(None, max_length=32)
    longitude: Optional[str] = Field(None, max_length=32)


# ── Responses ─────────────────────────────────────────────────────────


class TripCreatedResponse(_CamelModel):
    trip_id: str = Field(..., alias="tripId")
    message: str


class TripStatusResponse(_CamelModel):
    trip_id: str = Field(..., alias="tripId")
    status: str


class TripStatusUpdatedResponse(_CamelModel):
    trip_id: str = Field(..., alias="tripId")
    message: str


class TripDetailsResponse(_CamelModel):
    id: str
    origin: str
    destination: str
    status: str
    user_name: str = Field(..., alias="userName")
    driver_name: str = Field("", alias="driverName")


class FailureRecordResponse(_CamelModel):
    error_type: str = Field(..., alias="errorType")
    error_message: str = Field(..., alias="errorMessage")
    original_payload: str = Field(..., alias="originalPayload")
    topic: str
    message_id: str = Field(..., alias="messageId")
    recorded_at: str = Field(..., alias="recordedAt")


class HealthResponse(BaseModel):
    status: str = "ok"
    processor_running: bool = False


class ErrorResponse(BaseModel):
    detail: str
    error_type: str
