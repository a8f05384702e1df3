"""Service providers for the HTTP layer and the mapping of domain errors to HTTP errors."""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import HTTPException, status

from ..exceptions import (
    ConfigurationError,
    DuplicateActiveAssignmentError,
    InsufficientStopsError,
    InvalidStatusTransitionError,
    NoActiveAssignmentError,
    OutletInUseError,
    RecordNotFoundError,
    RoutePlanningError,
    RoutingProviderUnavailableError,
    StopSetMismatchError,
    UniqueConstraintError,
)
from ..persistence import get_record_store
from ..services.assignments.scheduler import AssignmentScheduler
from ..services.routes.service import RouteService
from ..services.routing.optimizer import RouteOptimizer
from ..services.routing.providers import build_provider

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[RoutePlanningError], int], ...] = (
    (RecordNotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientStopsError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RoutingProviderUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (DuplicateActiveAssignmentError, status.HTTP_409_CONFLICT),
    (NoActiveAssignmentError, status.HTTP_409_CONFLICT),
    (StopSetMismatchError, status.HTTP_409_CONFLICT),
    (OutletInUseError, status.HTTP_409_CONFLICT),
    (UniqueConstraintError, status.HTTP_409_CONFLICT),
    (InvalidStatusTransitionError, status.HTTP_409_CONFLICT),
)


def to_http_exception(exc: RoutePlanningError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    if status_code >= 500:
        logger.error(f"Request failed: {exc.message}")
    return HTTPException(status_code=status_code, detail=exc.message)


@lru_cache()
def _build_optimizer() -> RouteOptimizer:
    return RouteOptimizer(build_provider())


def get_optimizer() -> RouteOptimizer:
    try:
        return _build_optimizer()
    except ConfigurationError as exc:
        raise to_http_exception(exc) from exc


@lru_cache()
def get_route_service() -> RouteService:
    return RouteService(get_record_store(), get_optimizer())


@lru_cache()
def get_scheduler() -> AssignmentScheduler:
    return AssignmentScheduler(get_record_store(), get_route_service())
