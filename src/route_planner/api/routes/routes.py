"""Route endpoints."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ...exceptions import RoutePlanningError
from ...models.domain import OptimizationType, RouteStatus
from ...schemas.routing import (
    AddStopRequest,
    CreateRouteRequest,
    OptimizationSummary,
    OptimizePreviewRequest,
    OptimizeRouteRequest,
    OptimizeRouteResponse,
    RouteModel,
    RouteStatusRequest,
)
from ...services.outputs.routing_formatter import optimized_route_to_csv
from ...services.routes.service import RouteService
from ...services.routing.optimizer import RouteOptimizer
from ..dependencies import get_optimizer, get_route_service, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/routes", tags=["routes"])


@router.post("", response_model=RouteModel, status_code=status.HTTP_201_CREATED)
def create_route(payload: CreateRouteRequest, service: RouteService = Depends(get_route_service)) -> RouteModel:
    try:
        route = service.create_route(
            payload.organization_id,
            payload.name,
            payload.outlet_ids,
            created_by=payload.created_by,
            description=payload.description,
            route_date=payload.route_date,
            optimization_type=payload.optimization_type,
            start_location=payload.start_location.to_domain() if payload.start_location else None,
            end_location=payload.end_location.to_domain() if payload.end_location else None,
        )
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc
    return RouteModel.from_domain(route)


@router.get("", response_model=List[RouteModel], status_code=status.HTTP_200_OK)
def list_routes(
    organization_id: str = Query(..., description="Organization scope"),
    route_status: Optional[RouteStatus] = Query(default=None, alias="status"),
    service: RouteService = Depends(get_route_service),
) -> List[RouteModel]:
    return [RouteModel.from_domain(route) for route in service.list_routes(organization_id, route_status)]


@router.post("/optimize-preview", response_model=OptimizationSummary, status_code=status.HTTP_200_OK)
def optimize_preview(
    payload: OptimizePreviewRequest, optimizer: RouteOptimizer = Depends(get_optimizer)
) -> OptimizationSummary:
    """Order an ad-hoc stop list without touching stored routes."""
    try:
        result = optimizer.optimize(
            [stop.to_domain() for stop in payload.stops],
            start=payload.start.to_domain() if payload.start else None,
            end=payload.end.to_domain() if payload.end else None,
            settings=payload.to_settings(OptimizationType.BALANCED),
            timeout=payload.timeout_seconds,
        )
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc
    return OptimizationSummary.from_domain(result)


@router.get("/{route_id}", response_model=RouteModel, status_code=status.HTTP_200_OK)
def get_route(
    route_id: str,
    organization_id: str = Query(...),
    service: RouteService = Depends(get_route_service),
) -> RouteModel:
    try:
        return RouteModel.from_domain(service.get_route(organization_id, route_id))
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/{route_id}", status_code=status.HTTP_200_OK)
def delete_route(
    route_id: str,
    organization_id: str = Query(...),
    service: RouteService = Depends(get_route_service),
) -> dict:
    try:
        service.delete_route(organization_id, route_id)
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc
    return {"success": True, "message": f"Route {route_id} deleted"}


def _run_optimization(route_id: str, payload: OptimizeRouteRequest, service: RouteService):
    settings = None
    if not payload.use_organization_settings:
        route = service.get_route(payload.organization_id, route_id)
        settings = payload.to_settings(route.optimization_type)
    return service.optimize_route(payload.organization_id, route_id, settings, timeout=payload.timeout_seconds)


@router.post("/{route_id}/optimize", response_model=OptimizeRouteResponse, status_code=status.HTTP_200_OK)
def optimize_route(
    route_id: str,
    payload: OptimizeRouteRequest,
    service: RouteService = Depends(get_route_service),
) -> OptimizeRouteResponse:
    try:
        route, result = _run_optimization(route_id, payload, service)
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:
        logger.exception(f"Error optimizing route {route_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to optimize route: {str(exc)}",
        ) from exc
    return OptimizeRouteResponse(
        route=RouteModel.from_domain(route),
        optimization=OptimizationSummary.from_domain(result),
    )


@router.post("/{route_id}/optimize.csv", status_code=status.HTTP_200_OK)
def optimize_route_csv(
    route_id: str,
    payload: OptimizeRouteRequest,
    service: RouteService = Depends(get_route_service),
) -> Response:
    """Optimize the route and return the stop manifest as CSV."""
    try:
        _, result = _run_optimization(route_id, payload, service)
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc
    return Response(content=optimized_route_to_csv(result, route_id), media_type="text/csv")


@router.post("/{route_id}/stops", response_model=RouteModel, status_code=status.HTTP_201_CREATED)
def add_stop(
    route_id: str,
    payload: AddStopRequest,
    service: RouteService = Depends(get_route_service),
) -> RouteModel:
    try:
        route = service.add_stop(
            payload.organization_id,
            route_id,
            payload.outlet_id,
            estimated_duration=payload.estimated_duration,
            priority=payload.priority,
            notes=payload.notes,
        )
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc
    return RouteModel.from_domain(route)


@router.delete("/{route_id}/stops/{stop_id}", response_model=RouteModel, status_code=status.HTTP_200_OK)
def remove_stop(
    route_id: str,
    stop_id: str,
    organization_id: str = Query(...),
    service: RouteService = Depends(get_route_service),
) -> RouteModel:
    try:
        return RouteModel.from_domain(service.remove_stop(organization_id, route_id, stop_id))
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc


@router.patch("/{route_id}/status", response_model=RouteModel, status_code=status.HTTP_200_OK)
def update_route_status(
    route_id: str,
    payload: RouteStatusRequest,
    service: RouteService = Depends(get_route_service),
) -> RouteModel:
    try:
        return RouteModel.from_domain(service.update_status(payload.organization_id, route_id, payload.status))
    except RoutePlanningError as exc:
        raise to_http_exception(exc) from exc
