"""FastAPI dependency injection helpers."""

from fastapi import Request

from src.container import ServiceContainer
from src.infrastructure.observability import FailureRecorder
from src.services.trip_lifecycle import TripLifecycleManager


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_trip_manager(request: Request) -> TripLifecycleManager:
    """The lifecycle manager built once at startup."""
    return get_container(request).manager


def get_failure_recorder(request: Request) -> FailureRecorder:
    return get_container(request).recorder
