"""Route aggregate orchestration: creation, optimization write-back and totals."""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Sequence

from ...config import settings as app_settings
from ...exceptions import (
    InvalidStatusTransitionError,
    OutletInUseError,
    RecordNotFoundError,
    RouteValidationError,
    StopSetMismatchError,
)
from ...models.domain import (
    Anchor,
    GeoStop,
    LocationRef,
    OptimizationType,
    Outlet,
    Route,
    RouteStatus,
    RouteStop,
)
from ...persistence.base import (
    OPTIMIZATION_SETTINGS,
    OUTLETS,
    ROUTE_ASSIGNMENTS,
    ROUTE_STOPS,
    ROUTES,
    RecordStore,
)
from ..outputs.routing_formatter import optimized_route_to_snapshot
from ..routing.models import OptimizationSettings, OptimizedRoute
from ..routing.optimizer import RouteOptimizer
from .reorder import StopReorderer, is_reordering

logger = logging.getLogger(__name__)

ROUTE_TRANSITIONS: dict[RouteStatus, frozenset[RouteStatus]] = {
    RouteStatus.DRAFT: frozenset({RouteStatus.ACTIVE, RouteStatus.ARCHIVED}),
    RouteStatus.ACTIVE: frozenset({RouteStatus.COMPLETED, RouteStatus.ARCHIVED}),
    RouteStatus.COMPLETED: frozenset({RouteStatus.ARCHIVED}),
    RouteStatus.ARCHIVED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class RouteService:
    """Owns the Route aggregate and keeps its stops and totals consistent."""

    def __init__(
        self,
        store: RecordStore | None = None,
        optimizer: RouteOptimizer | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        if store is None:
            from ...persistence import get_record_store

            store = get_record_store()
        if optimizer is None:
            from ..routing.providers import build_provider

            optimizer = RouteOptimizer(build_provider())
        self.store = store
        self.optimizer = optimizer
        self.clock = clock or _utcnow
        self.id_factory = id_factory or _new_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def organization_settings(self, organization_id: str) -> dict:
        rows = self.store.select(OPTIMIZATION_SETTINGS, organization_id)
        return rows[0] if rows else {}

    def _load_stops(self, organization_id: str, route_id: str) -> list[RouteStop]:
        rows = self.store.select(ROUTE_STOPS, organization_id, {"route_id": route_id}, order_by="stop_order")
        return [RouteStop.from_record(row) for row in rows]

    def _load_outlets(self, organization_id: str, outlet_ids: Sequence[str]) -> dict[str, Outlet]:
        if not outlet_ids:
            return {}
        rows = self.store.select(OUTLETS, organization_id, {"id": list(outlet_ids)})
        outlets = {row["id"]: Outlet.from_record(row) for row in rows}
        for outlet_id in outlet_ids:
            if outlet_id not in outlets:
                raise RecordNotFoundError(OUTLETS, outlet_id)
        return outlets

    def get_route(self, organization_id: str, route_id: str) -> Route:
        rows = self.store.select(ROUTES, organization_id, {"id": route_id})
        if not rows:
            raise RecordNotFoundError(ROUTES, route_id)
        route = Route.from_record(rows[0], self._load_stops(organization_id, route_id))
        if is_reordering(route.stops):
            logger.warning(f"Route {route_id} is being reordered; stop order is not final")
        return route

    def is_reordering(self, organization_id: str, route_id: str) -> bool:
        return is_reordering(self._load_stops(organization_id, route_id))

    def list_routes(self, organization_id: str, status: RouteStatus | None = None) -> list[Route]:
        filters = {"status": status.value} if status else None
        rows = self.store.select(ROUTES, organization_id, filters, order_by="created_at")
        return [Route.from_record(row, self._load_stops(organization_id, row["id"])) for row in rows]

    # ------------------------------------------------------------------
    # Creation and membership
    # ------------------------------------------------------------------
    def _default_stop_duration(self, organization_id: str) -> float:
        configured = self.organization_settings(organization_id).get("default_stop_duration")
        if configured is not None:
            return float(configured)
        return float(app_settings.default_stop_duration_minutes)

    def _validate_location(self, organization_id: str, location: LocationRef | None) -> None:
        if location is not None and location.outlet_id:
            self._load_outlets(organization_id, [location.outlet_id])

    def create_route(
        self,
        organization_id: str,
        name: str,
        outlet_ids: Sequence[str],
        *,
        created_by: str | None = None,
        description: str | None = None,
        route_date: date | None = None,
        optimization_type: OptimizationType = OptimizationType.BALANCED,
        start_location: LocationRef | None = None,
        end_location: LocationRef | None = None,
    ) -> Route:
        if not name or not name.strip():
            raise RouteValidationError("Route name is required.")
        if not outlet_ids:
            raise RouteValidationError("Route needs at least one outlet.")
        if len(set(outlet_ids)) != len(outlet_ids):
            raise RouteValidationError("An outlet can appear only once on a route.")

        self._load_outlets(organization_id, list(outlet_ids))
        self._validate_location(organization_id, start_location)
        self._validate_location(organization_id, end_location)

        now = self.clock()
        route = Route(
            id=self.id_factory(),
            organization_id=organization_id,
            name=name.strip(),
            created_by=created_by,
            description=description,
            status=RouteStatus.DRAFT,
            optimization_type=optimization_type,
            route_date=route_date,
            start_location=start_location,
            end_location=end_location,
            created_at=now,
            updated_at=now,
        )
        self.store.insert(ROUTES, organization_id, [route.to_record()])

        duration = self._default_stop_duration(organization_id)
        stops = [
            RouteStop(
                id=self.id_factory(),
                route_id=route.id,
                outlet_id=outlet_id,
                stop_order=position,
                estimated_duration=duration,
            )
            for position, outlet_id in enumerate(outlet_ids, start=1)
        ]
        self.store.insert(ROUTE_STOPS, organization_id, [stop.to_record() for stop in stops])
        logger.info(f"Created route {route.id} '{route.name}' with {len(stops)} stops")
        return self.recompute_totals(organization_id, route.id)

    def add_stop(
        self,
        organization_id: str,
        route_id: str,
        outlet_id: str,
        *,
        estimated_duration: float | None = None,
        priority: int = 0,
        notes: str | None = None,
    ) -> Route:
        route = self.get_route(organization_id, route_id)
        self._load_outlets(organization_id, [outlet_id])
        if any(stop.outlet_id == outlet_id for stop in route.stops):
            raise RouteValidationError(f"Outlet {outlet_id} is already on route {route_id}.")

        stop = RouteStop(
            id=self.id_factory(),
            route_id=route_id,
            outlet_id=outlet_id,
            stop_order=max((item.stop_order for item in route.stops), default=0) + 1,
            estimated_duration=(
                estimated_duration if estimated_duration is not None else self._default_stop_duration(organization_id)
            ),
            priority=priority,
            notes=notes,
        )
        self.store.insert(ROUTE_STOPS, organization_id, [stop.to_record()])
        self._invalidate_snapshot(organization_id, route_id)
        return self.recompute_totals(organization_id, route_id)

    def remove_stop(self, organization_id: str, route_id: str, stop_id: str) -> Route:
        stops = self._load_stops(organization_id, route_id)
        if not any(stop.id == stop_id for stop in stops):
            raise RecordNotFoundError(ROUTE_STOPS, stop_id)

        self.store.delete(ROUTE_STOPS, organization_id, {"id": stop_id})
        remaining = [stop for stop in stops if stop.id != stop_id]
        final_orders = {stop.id: position for position, stop in enumerate(remaining, start=1)}
        StopReorderer(self.store, organization_id, route_id).apply(remaining, final_orders)
        self._invalidate_snapshot(organization_id, route_id)
        return self.recompute_totals(organization_id, route_id)

    def _invalidate_snapshot(self, organization_id: str, route_id: str) -> None:
        self.store.update(
            ROUTES,
            organization_id,
            route_id,
            {"optimized_route_data": None, "updated_at": self.clock().isoformat()},
        )

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------
    def _resolve_anchor(self, organization_id: str, location: LocationRef | None) -> Optional[Anchor]:
        if location is None:
            return None
        if location.outlet_id:
            outlet = self._load_outlets(organization_id, [location.outlet_id])[location.outlet_id]
            if outlet.has_coordinates:
                return Anchor(outlet.latitude, outlet.longitude, label=outlet.name)
            logger.warning(f"Anchor outlet {outlet.id} has no coordinates; ignoring it")
            return None
        if location.latitude is not None and location.longitude is not None:
            return Anchor(location.latitude, location.longitude, label=location.address)
        logger.warning(f"Free-text location '{location.address}' is not geocoded; ignoring it as an anchor")
        return None

    def optimize_route(
        self,
        organization_id: str,
        route_id: str,
        settings: OptimizationSettings | None = None,
        *,
        timeout: float | None = None,
    ) -> tuple[Route, OptimizedRoute]:
        """Optimize the route's current stops and persist the new order.

        Provider failures propagate before anything is written.
        """
        route = self.get_route(organization_id, route_id)
        if settings is None:
            settings = OptimizationSettings.from_overrides(
                route.optimization_type, self.organization_settings(organization_id)
            )

        outlets = self._load_outlets(organization_id, [stop.outlet_id for stop in route.stops])
        geo_stops = [
            GeoStop(
                id=stop.outlet_id,
                latitude=outlets[stop.outlet_id].latitude,
                longitude=outlets[stop.outlet_id].longitude,
                service_duration_min=stop.estimated_duration,
                priority=stop.priority,
                name=outlets[stop.outlet_id].name,
            )
            for stop in route.stops
        ]
        optimized = self.optimizer.optimize(
            geo_stops,
            start=self._resolve_anchor(organization_id, route.start_location),
            end=self._resolve_anchor(organization_id, route.end_location),
            settings=settings,
            timeout=timeout,
        )
        return self.reorder_after_optimization(organization_id, route, optimized), optimized

    def _day_start(self, organization_id: str, route: Route) -> datetime:
        now = self.clock()
        day = route.route_date or now.date()
        hours = self.organization_settings(organization_id).get("working_hours_start") or app_settings.working_hours_start
        hour, minute = (int(part) for part in str(hours).split(":")[:2])
        return datetime.combine(day, time(hour, minute), tzinfo=now.tzinfo)

    def reorder_after_optimization(self, organization_id: str, route: Route, optimized: OptimizedRoute) -> Route:
        stops = self._load_stops(organization_id, route.id)
        by_outlet = {stop.outlet_id: stop for stop in stops}
        current_ids = set(by_outlet)
        optimized_ids = optimized.stop_ids
        if set(optimized_ids) != current_ids or len(optimized_ids) != len(stops):
            raise StopSetMismatchError(
                route.id,
                missing=current_ids - set(optimized_ids),
                unexpected=set(optimized_ids) - current_ids,
            )

        day_start = self._day_start(organization_id, route)
        final_orders: dict[str, int] = {}
        changes: dict[str, dict] = {}
        for item in optimized.stops:
            stop = by_outlet[item.stop.id]
            final_orders[stop.id] = item.sequence
            changes[stop.id] = {
                "distance_from_previous": round(item.distance_from_previous_km, 3),
                "travel_time_from_previous": round(item.travel_time_from_previous_min, 2),
                "estimated_arrival_time": (day_start + timedelta(minutes=item.arrival_offset_min)).isoformat(),
                "estimated_departure_time": (day_start + timedelta(minutes=item.departure_offset_min)).isoformat(),
            }
        StopReorderer(self.store, organization_id, route.id).apply(stops, final_orders, changes)

        now = self.clock()
        self.store.update(
            ROUTES,
            organization_id,
            route.id,
            {
                "optimized_route_data": optimized_route_to_snapshot(optimized, now, self.optimizer.provider_name),
                "optimization_type": optimized.optimization_type.value,
                "last_optimized_at": now.isoformat(),
                "updated_at": now.isoformat(),
            },
        )
        logger.info(f"Stored optimized order for route {route.id}: {len(stops)} stops")
        return self.recompute_totals(organization_id, route.id)

    # ------------------------------------------------------------------
    # Totals and lifecycle
    # ------------------------------------------------------------------
    def recompute_totals(self, organization_id: str, route_id: str) -> Route:
        rows = self.store.select(ROUTES, organization_id, {"id": route_id})
        if not rows:
            raise RecordNotFoundError(ROUTES, route_id)
        stops = self._load_stops(organization_id, route_id)
        snapshot = rows[0].get("optimized_route_data")
        if snapshot:
            distance = float(snapshot.get("total_distance") or 0.0)
            duration = float(snapshot.get("total_duration") or 0.0) + float(
                snapshot.get("total_service_duration") or 0.0
            )
        else:
            distance = 0.0
            duration = sum(stop.estimated_duration for stop in stops)
        self.store.update(
            ROUTES,
            organization_id,
            route_id,
            {
                "total_stops": len(stops),
                "total_estimated_distance": round(distance, 2),
                "total_estimated_duration": round(duration, 1),
            },
        )
        return self.get_route(organization_id, route_id)

    def update_status(self, organization_id: str, route_id: str, status: RouteStatus) -> Route:
        route = self.get_route(organization_id, route_id)
        if route.status is status:
            return route
        if status not in ROUTE_TRANSITIONS[route.status]:
            raise InvalidStatusTransitionError("route", route.status.value, status.value)
        self.store.update(
            ROUTES, organization_id, route_id, {"status": status.value, "updated_at": self.clock().isoformat()}
        )
        logger.info(f"Route {route_id} moved from {route.status.value} to {status.value}")
        return self.get_route(organization_id, route_id)

    def delete_route(self, organization_id: str, route_id: str) -> None:
        self.get_route(organization_id, route_id)
        assignments = self.store.delete(ROUTE_ASSIGNMENTS, organization_id, {"route_id": route_id})
        stops = self.store.delete(ROUTE_STOPS, organization_id, {"route_id": route_id})
        self.store.delete(ROUTES, organization_id, {"id": route_id})
        logger.info(f"Deleted route {route_id} with {stops} stops and {assignments} assignments")

    def delete_outlet(self, organization_id: str, outlet_id: str) -> None:
        self._load_outlets(organization_id, [outlet_id])
        references = self.store.select(ROUTE_STOPS, organization_id, {"outlet_id": outlet_id})
        if references:
            raise OutletInUseError(outlet_id, [row["route_id"] for row in references])
        self.store.delete(OUTLETS, organization_id, {"id": outlet_id})
