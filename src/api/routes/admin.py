"""
Admin / observability endpoints
===============================

GET /api/v1/admin/failures -- recent inbound events that failed processing
GET /api/v1/admin/health   -- simple health check
"""

from fastapi import APIRouter, Depends, Query, Request

from src.api.dependencies import get_container, get_failure_recorder
from src.api.middleware import limiter
from src.api.schemas import FailureRecordResponse, HealthResponse
from src.container import ServiceContainer
from src.infrastructure.observability import FailureRecorder

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/failures",
    response_model=list[FailureRecordResponse],
    summary="List recent event-processing failures, newest first",
)
@limiter.limit("100/minute")
async def get_failures(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    recorder: FailureRecorder = Depends(get_failure_recorder),
):
    return [
        FailureRecordResponse(
            error_type=r.error_type,
            error_message=r.error_message,
            original_payload=r.original_payload,
            topic=r.topic,
            message_id=r.message_id,
            recorded_at=r.recorded_at,
        )
        for r in recorder.recent(limit)
    ]


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(container: ServiceContainer = Depends(get_container)):
    return HealthResponse(processor_running=container.processor.running)
