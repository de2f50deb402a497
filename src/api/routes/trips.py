"""
Trip endpoints
==============

POST /api/v1/trips                    -- create a trip (returns 202 Accepted)
GET  /api/v1/trips/{trip_id}/status   -- current status
GET  /api/v1/trips/{trip_id}          -- trip with rider / driver names
PUT  /api/v1/trips/{trip_id}/status   -- explicit status change (?status=...)

Domain errors propagate to the handler registered in ``src.api.app``.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from src.api.dependencies import get_trip_manager
from src.api.middleware import limiter
from src.api.schemas import (
    ErrorResponse,
    TripCreatedResponse,
    TripCreateRequest,
    TripDetailsResponse,
    TripStatusResponse,
    TripStatusUpdatedResponse,
)
from src.domain.enums import TripStatus
from src.services.trip_lifecycle import NewTrip, TripLifecycleManager

router = APIRouter(prefix="/trips", tags=["trips"])

_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Trip not found"}}


@router.post(
    "",
    status_code=202,
    response_model=TripCreatedResponse,
    summary="Create a trip",
    responses={
        202: {"description": "Trip stored; driver acceptance is async."},
        503: {"model": ErrorResponse},
    },
)
@limiter.limit("100/minute")
async def create_trip(
    request: Request,
    body: TripCreateRequest,
    manager: TripLifecycleManager = Depends(get_trip_manager),
):
    trip_id, message = await manager.create(
        NewTrip(
            user_id=body.user_id,
            origin=body.origin,
            destination=body.destination,
            latitude=body.latitude,
            longitude=body.longitude,
        )
    )
    return TripCreatedResponse(trip_id=trip_id, message=message)


@router.get(
    "/{trip_id}/status",
    response_model=TripStatusResponse,
    summary="Get trip status",
    responses=_NOT_FOUND,
)
@limiter.limit("100/minute")
async def get_trip_status(
    request: Request,
    trip_id: str,
    manager: TripLifecycleManager = Depends(get_trip_manager),
):
    status = await manager.get_status(trip_id)
    return TripStatusResponse(trip_id=trip_id, status=status.value)


@router.get(
    "/{trip_id}",
    response_model=TripDetailsResponse,
    summary="Get trip details with rider and driver names",
    responses={**_NOT_FOUND, 503: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def get_trip_details(
    request: Request,
    trip_id: str,
    authorization: Optional[str] = Header(None),
    manager: TripLifecycleManager = Depends(get_trip_manager),
):
    details = await manager.get_details(trip_id, authorization=authorization)
    return TripDetailsResponse(
        id=details.id,
        origin=details.origin,
        destination=details.destination,
        status=details.status.value,
        user_name=details.user_name,
        driver_name=details.driver_name,
    )


@router.put(
    "/{trip_id}/status",
    response_model=TripStatusUpdatedResponse,
    summary="Update trip status",
    description=(
        "With strict transitions enabled only forward moves along "
        "PENDING -> ACCEPTED -> COMPLETED (or -> CANCELLED) are allowed.  "
        "ACCEPTED is always reserved for driver acceptance events."
    ),
    responses={**_NOT_FOUND, 409: {"model": ErrorResponse}},
)
@limiter.limit("100/minute")
async def update_trip_status(
    request: Request,
    trip_id: str,
    status: TripStatus = Query(...),
    manager: TripLifecycleManager = Depends(get_trip_manager),
):
    message = await manager.update_status(trip_id, status)
    return TripStatusUpdatedResponse(trip_id=trip_id, message=message)
