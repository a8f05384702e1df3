"""Multi-stop route optimizer.

Orders a set of geocoded stops into a single open route using travel
matrices from a routing provider. Construction is nearest neighbour with a
reproducible tie-break (near-equal cost, then higher priority, then smaller
stop id), followed by 2-opt segment reversal. The result is deterministic
for a given stop set and settings regardless of input order.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from ...config import settings as app_settings
from ...exceptions import InsufficientStopsError, RouteValidationError
from ...models.domain import Anchor, GeoStop, OptimizationType
from .models import OptimizationSettings, OptimizedRoute, OptimizedStop
from .providers import (
    GeometryProvider,
    HaversineProvider,
    RoutingProvider,
    call_with_timeout,
    matrices_from_table,
)

logger = logging.getLogger(__name__)


def path_cost(
    cost: np.ndarray,
    order: Sequence[int],
    start_index: int | None = None,
    end_index: int | None = None,
) -> float:
    """Sum of the cost matrix along start -> order -> end."""
    nodes = ([start_index] if start_index is not None else []) + list(order)
    if end_index is not None:
        nodes.append(end_index)
    return float(sum(cost[a][b] for a, b in zip(nodes, nodes[1:])))


class RouteOptimizer:
    def __init__(
        self,
        provider: RoutingProvider | None = None,
        *,
        epsilon: float | None = None,
        priority_window: float | None = None,
        max_two_opt_passes: int | None = None,
        solver_backend: str | None = None,
        fuel_consumption_l_per_100km: float | None = None,
        fuel_price_per_liter: float | None = None,
        labor_rate_per_hour: float | None = None,
    ) -> None:
        self.provider = provider or HaversineProvider()
        self.epsilon = epsilon if epsilon is not None else app_settings.tie_epsilon
        self.priority_window = (
            priority_window if priority_window is not None else app_settings.balanced_priority_window
        )
        self.max_two_opt_passes = (
            max_two_opt_passes if max_two_opt_passes is not None else app_settings.max_two_opt_passes
        )
        self.solver_backend = solver_backend or app_settings.solver_backend
        self.fuel_consumption = (
            fuel_consumption_l_per_100km
            if fuel_consumption_l_per_100km is not None
            else app_settings.fuel_consumption_l_per_100km
        )
        self.fuel_price = fuel_price_per_liter if fuel_price_per_liter is not None else app_settings.fuel_price_per_liter
        self.labor_rate = labor_rate_per_hour if labor_rate_per_hour is not None else app_settings.labor_rate_per_hour

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "name", type(self.provider).__name__)

    def optimize(
        self,
        stops: Sequence[GeoStop],
        start: Anchor | None = None,
        end: Anchor | None = None,
        settings: OptimizationSettings | None = None,
        *,
        timeout: float | None = None,
    ) -> OptimizedRoute:
        settings = settings or OptimizationSettings()
        ids = [stop.id for stop in stops]
        if len(set(ids)) != len(ids):
            raise RouteValidationError("Stop ids must be unique within one optimization request.")

        routed = sorted((stop for stop in stops if stop.has_coordinates), key=lambda stop: stop.id)
        unrouted = sorted((stop for stop in stops if not stop.has_coordinates), key=lambda stop: stop.id)
        if len(routed) < 2:
            raise InsufficientStopsError(len(routed), len(stops))

        coordinates: list[tuple[float, float]] = []
        start_index = end_index = None
        if start is not None:
            start_index = 0
            coordinates.append((start.latitude, start.longitude))
        offset = len(coordinates)
        coordinates.extend((stop.latitude, stop.longitude) for stop in routed)
        if end is not None:
            end_index = len(coordinates)
            coordinates.append((end.latitude, end.longitude))

        if settings.prefer_main_roads:
            logger.debug("prefer_main_roads is advisory and not forwarded to the provider")
        table = call_with_timeout(
            self.provider.table,
            coordinates,
            avoid_tolls=settings.avoid_tolls,
            avoid_highways=settings.avoid_highways,
            timeout=timeout if timeout is not None else settings.provider_timeout_seconds,
            provider_name=self.provider_name,
        )
        distance_km, duration_min = matrices_from_table(table, len(coordinates), self.provider_name)
        cost = self._cost_matrix(settings, distance_km, duration_min)

        stop_at = {offset + k: stop for k, stop in enumerate(routed)}
        window = self.priority_window if settings.optimization_type is OptimizationType.BALANCED else 0.0
        order = self._construct(cost, stop_at, start_index, end_index, window)
        order = self._two_opt(cost, order, start_index, end_index, window)

        if self.solver_backend == "ortools":
            from .sequence_solver import refine_sequence

            refined = refine_sequence(cost, order, start_index, end_index)
            if path_cost(cost, refined, start_index, end_index) < path_cost(cost, order, start_index, end_index) - self.epsilon:
                logger.info("OR-Tools refinement improved the heuristic order")
                order = refined

        polyline = None
        if settings.include_geometry and isinstance(self.provider, GeometryProvider):
            path = ([start_index] if start_index is not None else []) + order
            if end_index is not None:
                path.append(end_index)
            geometry = call_with_timeout(
                self.provider.route,
                [coordinates[node] for node in path],
                timeout=timeout if timeout is not None else settings.provider_timeout_seconds,
                provider_name=self.provider_name,
            )
            polyline = (geometry.get("routes") or [{}])[0].get("geometry")

        result = self._build_result(
            settings, order, stop_at, unrouted, distance_km, duration_min, start_index, end_index, polyline
        )
        logger.info(
            f"Optimized {len(routed)} stops ({settings.optimization_type.value}): "
            f"{result.total_distance:.2f} km, {result.total_duration:.1f} min travel"
        )
        return result

    def _cost_matrix(
        self, settings: OptimizationSettings, distance_km: np.ndarray, duration_min: np.ndarray
    ) -> np.ndarray:
        kind = settings.optimization_type
        if kind is OptimizationType.CUSTOM:
            return duration_min if settings.custom_objective == "time" else distance_km
        if kind is OptimizationType.DISTANCE:
            return distance_km
        if kind is OptimizationType.TIME:
            return duration_min
        max_distance = float(distance_km.max()) or 1.0
        max_duration = float(duration_min.max()) or 1.0
        return (
            settings.distance_weight * distance_km / max_distance
            + settings.time_weight * duration_min / max_duration
        )

    def _pick(self, candidates: list[int], costs: dict[int, float], stop_at: dict[int, GeoStop], window: float) -> int:
        best = min(costs[node] for node in candidates)
        tolerance = max(self.epsilon, window * abs(best))
        tied = [node for node in candidates if costs[node] <= best + tolerance]
        return min(tied, key=lambda node: (-stop_at[node].priority, stop_at[node].id))

    def _walk(self, cost: np.ndarray, first: int, stop_at: dict[int, GeoStop], window: float) -> list[int]:
        order = [first]
        remaining = [node for node in stop_at if node != first]
        while remaining:
            current = order[-1]
            nxt = self._pick(remaining, {node: float(cost[current][node]) for node in remaining}, stop_at, window)
            order.append(nxt)
            remaining.remove(nxt)
        return order

    def _construct(
        self,
        cost: np.ndarray,
        stop_at: dict[int, GeoStop],
        start_index: int | None,
        end_index: int | None,
        window: float,
    ) -> list[int]:
        if start_index is not None:
            first = self._pick(
                list(stop_at), {node: float(cost[start_index][node]) for node in stop_at}, stop_at, window
            )
            return self._walk(cost, first, stop_at, window)

        # Open route without a fixed start: try every stop as the first one.
        best_order: list[int] | None = None
        best_cost = float("inf")
        for first in sorted(stop_at, key=lambda node: (-stop_at[node].priority, stop_at[node].id)):
            order = self._walk(cost, first, stop_at, window)
            total = path_cost(cost, order, None, end_index)
            if total < best_cost - self.epsilon:
                best_order, best_cost = order, total
        return best_order

    def _two_opt(
        self,
        cost: np.ndarray,
        order: list[int],
        start_index: int | None,
        end_index: int | None,
        window: float,
    ) -> list[int]:
        current = path_cost(cost, order, start_index, end_index)
        for _ in range(self.max_two_opt_passes):
            improved = False
            threshold = max(self.epsilon, window * current)
            for i in range(len(order) - 1):
                for j in range(i + 1, len(order)):
                    candidate = order[:i] + order[i : j + 1][::-1] + order[j + 1 :]
                    candidate_cost = path_cost(cost, candidate, start_index, end_index)
                    if candidate_cost < current - threshold:
                        order, current, improved = candidate, candidate_cost, True
                        break
                if improved:
                    break
            if not improved:
                break
        return order

    def _build_result(
        self,
        settings: OptimizationSettings,
        order: list[int],
        stop_at: dict[int, GeoStop],
        unrouted: list[GeoStop],
        distance_km: np.ndarray,
        duration_min: np.ndarray,
        start_index: int | None,
        end_index: int | None,
        polyline: str | None,
    ) -> OptimizedRoute:
        items: list[OptimizedStop] = []
        leg_distances: list[float] = []
        leg_durations: list[float] = []
        cumulative_distance = 0.0
        clock = 0.0
        previous = start_index
        for sequence, node in enumerate(order, start=1):
            stop = stop_at[node]
            leg_distance = float(distance_km[previous][node]) if previous is not None else 0.0
            leg_duration = float(duration_min[previous][node]) if previous is not None else 0.0
            if previous is not None:
                leg_distances.append(leg_distance)
                leg_durations.append(leg_duration)
            cumulative_distance += leg_distance
            arrival = clock + leg_duration
            clock = arrival + stop.service_duration_min
            items.append(
                OptimizedStop(
                    stop=stop,
                    sequence=sequence,
                    distance_from_previous_km=leg_distance,
                    travel_time_from_previous_min=leg_duration,
                    cumulative_distance_km=cumulative_distance,
                    arrival_offset_min=arrival,
                    departure_offset_min=clock,
                )
            )
            previous = node

        if end_index is not None:
            leg_distances.append(float(distance_km[previous][end_index]))
            leg_durations.append(float(duration_min[previous][end_index]))

        for stop in unrouted:
            items.append(
                OptimizedStop(
                    stop=stop,
                    sequence=len(items) + 1,
                    distance_from_previous_km=0.0,
                    travel_time_from_previous_min=0.0,
                    cumulative_distance_km=cumulative_distance,
                    arrival_offset_min=clock,
                    departure_offset_min=clock + stop.service_duration_min,
                    routed=False,
                )
            )
            clock += stop.service_duration_min

        total_distance = sum(leg_distances)
        total_duration = sum(leg_durations)
        total_service = sum(item.stop.service_duration_min for item in items)
        fuel = round(total_distance / 100.0 * self.fuel_consumption, 2)
        cost = round(fuel * self.fuel_price + total_duration / 60.0 * self.labor_rate, 2)

        warnings: list[str] = []
        if unrouted:
            warnings.append(
                f"{len(unrouted)} stop(s) without coordinates were appended unoptimized: "
                + ", ".join(stop.id for stop in unrouted)
            )
        if settings.max_route_distance is not None and total_distance > settings.max_route_distance:
            warnings.append(
                f"Route distance {total_distance:.2f} km exceeds the {settings.max_route_distance:g} km limit"
            )
        if settings.max_route_duration is not None and total_duration + total_service > settings.max_route_duration:
            warnings.append(
                f"Route duration {total_duration + total_service:.1f} min exceeds the "
                f"{settings.max_route_duration:g} min limit"
            )
        for warning in warnings:
            logger.warning(warning)

        return OptimizedRoute(
            stops=items,
            total_distance=total_distance,
            total_duration=total_duration,
            total_service_duration=total_service,
            estimated_fuel=fuel,
            estimated_cost=cost,
            optimization_type=settings.optimization_type,
            leg_distances=leg_distances,
            leg_durations=leg_durations,
            polyline=polyline,
            warnings=warnings,
            unrouted_stop_ids=[stop.id for stop in unrouted],
        )
