"""Routing value types shared by the optimizer and the route service."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional

from ...config import settings as app_settings
from ...models.domain import GeoStop, OptimizationType


@dataclass(slots=True)
class OptimizationSettings:
    optimization_type: OptimizationType = OptimizationType.BALANCED
    avoid_tolls: bool = False
    avoid_highways: bool = False
    prefer_main_roads: bool = True
    travel_mode: Literal["driving"] = "driving"
    max_route_distance: Optional[float] = None  # km
    max_route_duration: Optional[float] = None  # minutes
    custom_objective: Literal["distance", "time"] = "distance"
    distance_weight: float = field(default_factory=lambda: app_settings.balanced_distance_weight)
    time_weight: float = field(default_factory=lambda: app_settings.balanced_time_weight)
    include_geometry: bool = False
    provider_timeout_seconds: float = field(default_factory=lambda: app_settings.provider_timeout_seconds)

    @classmethod
    def from_overrides(cls, optimization_type: OptimizationType, overrides: dict | None = None) -> "OptimizationSettings":
        """Build settings from an organization's stored preferences (original column names)."""
        overrides = overrides or {}
        return cls(
            optimization_type=optimization_type,
            avoid_tolls=bool(overrides.get("avoid_tolls", False)),
            avoid_highways=bool(overrides.get("avoid_highways", False)),
            prefer_main_roads=bool(overrides.get("prefer_main_roads", True)),
            max_route_distance=overrides.get("max_daily_distance"),
            max_route_duration=overrides.get("max_route_duration"),
        )


@dataclass(slots=True)
class OrderingResult:
    """Provider-level view of an optimized ordering: stop ids plus leg metrics."""

    order: List[str]
    leg_distances: List[float]  # km, one per consecutive pair incl. anchor legs
    leg_durations: List[float]  # minutes
    polyline: Optional[str] = None


@dataclass(slots=True)
class OptimizedStop:
    stop: GeoStop
    sequence: int
    distance_from_previous_km: float
    travel_time_from_previous_min: float
    cumulative_distance_km: float
    arrival_offset_min: float
    departure_offset_min: float
    routed: bool = True


@dataclass(slots=True)
class OptimizedRoute:
    stops: List[OptimizedStop]
    total_distance: float  # km, legs only
    total_duration: float  # minutes of travel, legs only
    total_service_duration: float
    estimated_fuel: float
    estimated_cost: float
    optimization_type: OptimizationType
    leg_distances: List[float] = field(default_factory=list)
    leg_durations: List[float] = field(default_factory=list)
    polyline: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    unrouted_stop_ids: List[str] = field(default_factory=list)

    @property
    def stop_ids(self) -> List[str]:
        return [item.stop.id for item in self.stops]

    @property
    def total_elapsed_duration(self) -> float:
        return self.total_duration + self.total_service_duration

    def to_ordering(self) -> OrderingResult:
        return OrderingResult(
            order=self.stop_ids,
            leg_distances=list(self.leg_distances),
            leg_durations=list(self.leg_durations),
            polyline=self.polyline,
        )
