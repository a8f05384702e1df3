"""Route request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.domain import (
    Anchor,
    GeoStop,
    LocationRef,
    OptimizationType,
    Route,
    RouteStatus,
    StopStatus,
)
from ..services.routing.models import OptimizationSettings, OptimizedRoute


class LocationModel(BaseModel):
    """Start or end of a route: an outlet reference or a free-text address."""

    outlet_id: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)

    @model_validator(mode="after")
    def _require_reference(self) -> "LocationModel":
        if not self.outlet_id and not self.address and (self.latitude is None or self.longitude is None):
            raise ValueError("Location needs an outlet_id, an address or coordinates.")
        return self

    def to_domain(self) -> LocationRef:
        return LocationRef(
            outlet_id=self.outlet_id, address=self.address, latitude=self.latitude, longitude=self.longitude
        )


class CreateRouteRequest(BaseModel):
    organization_id: str
    name: str = Field(..., min_length=1)
    outlet_ids: List[str] = Field(..., min_length=1)
    created_by: Optional[str] = None
    description: Optional[str] = None
    route_date: Optional[date] = None
    optimization_type: OptimizationType = OptimizationType.BALANCED
    start_location: Optional[LocationModel] = None
    end_location: Optional[LocationModel] = None


class OptimizationOptions(BaseModel):
    optimization_type: Optional[OptimizationType] = Field(
        default=None, description="Defaults to the route's stored optimization type."
    )
    avoid_tolls: bool = False
    avoid_highways: bool = False
    prefer_main_roads: bool = True
    max_route_distance: Optional[float] = Field(None, gt=0, description="Soft cap in km.")
    max_route_duration: Optional[float] = Field(None, gt=0, description="Soft cap in minutes.")
    custom_objective: Literal["distance", "time"] = "distance"
    include_geometry: bool = False
    timeout_seconds: Optional[float] = Field(None, gt=0)

    def to_settings(self, fallback_type: OptimizationType) -> OptimizationSettings:
        return OptimizationSettings(
            optimization_type=self.optimization_type or fallback_type,
            avoid_tolls=self.avoid_tolls,
            avoid_highways=self.avoid_highways,
            prefer_main_roads=self.prefer_main_roads,
            max_route_distance=self.max_route_distance,
            max_route_duration=self.max_route_duration,
            custom_objective=self.custom_objective,
            include_geometry=self.include_geometry,
        )


class OptimizeRouteRequest(OptimizationOptions):
    organization_id: str
    use_organization_settings: bool = Field(
        default=False,
        description="Ignore the options above and use the organization's stored optimization settings.",
    )


class GeoStopModel(BaseModel):
    id: str
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    service_duration_min: float = Field(0.0, ge=0)
    priority: int = 0
    name: Optional[str] = None

    def to_domain(self) -> GeoStop:
        return GeoStop(
            id=self.id,
            latitude=self.latitude,
            longitude=self.longitude,
            service_duration_min=self.service_duration_min,
            priority=self.priority,
            name=self.name,
        )


class AnchorModel(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    label: Optional[str] = None

    def to_domain(self) -> Anchor:
        return Anchor(self.latitude, self.longitude, self.label)


class OptimizePreviewRequest(OptimizationOptions):
    stops: List[GeoStopModel]
    start: Optional[AnchorModel] = None
    end: Optional[AnchorModel] = None


class AddStopRequest(BaseModel):
    organization_id: str
    outlet_id: str
    estimated_duration: Optional[float] = Field(None, ge=0)
    priority: int = 0
    notes: Optional[str] = None


class RouteStatusRequest(BaseModel):
    organization_id: str
    status: RouteStatus


class RouteStopModel(BaseModel):
    id: str
    outlet_id: str
    stop_order: int
    estimated_duration: float
    status: StopStatus
    priority: int = 0
    estimated_arrival_time: Optional[datetime] = None
    estimated_departure_time: Optional[datetime] = None
    distance_from_previous: Optional[float] = None
    travel_time_from_previous: Optional[float] = None
    notes: Optional[str] = None


class RouteModel(BaseModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    created_by: Optional[str] = None
    status: RouteStatus
    optimization_type: OptimizationType
    route_date: Optional[date] = None
    start_location: Optional[dict] = None
    end_location: Optional[dict] = None
    total_estimated_duration: float
    total_estimated_distance: float
    total_stops: int
    optimized_route_data: Optional[dict] = None
    last_optimized_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    stops: List[RouteStopModel]

    @classmethod
    def from_domain(cls, route: Route) -> "RouteModel":
        return cls(**route.to_record(), stops=[RouteStopModel(**stop.to_record()) for stop in route.stops])


class OptimizedStopModel(BaseModel):
    id: str
    name: Optional[str] = None
    sequence: int
    distance_from_previous_km: float
    travel_time_from_previous_min: float
    arrival_offset_min: float
    routed: bool


class OptimizationSummary(BaseModel):
    optimization_type: OptimizationType
    order: List[str]
    total_distance: float
    total_duration: float
    total_service_duration: float
    estimated_fuel: float
    estimated_cost: float
    leg_distances: List[float]
    leg_durations: List[float]
    polyline: Optional[str] = None
    warnings: List[str]
    unrouted_stop_ids: List[str]
    stops: List[OptimizedStopModel]

    @classmethod
    def from_domain(cls, result: OptimizedRoute) -> "OptimizationSummary":
        ordering = result.to_ordering()
        return cls(
            optimization_type=result.optimization_type,
            order=ordering.order,
            total_distance=round(result.total_distance, 2),
            total_duration=round(result.total_duration, 1),
            total_service_duration=round(result.total_service_duration, 1),
            estimated_fuel=result.estimated_fuel,
            estimated_cost=result.estimated_cost,
            leg_distances=[round(value, 3) for value in ordering.leg_distances],
            leg_durations=[round(value, 2) for value in ordering.leg_durations],
            polyline=ordering.polyline,
            warnings=result.warnings,
            unrouted_stop_ids=result.unrouted_stop_ids,
            stops=[
                OptimizedStopModel(
                    id=item.stop.id,
                    name=item.stop.name,
                    sequence=item.sequence,
                    distance_from_previous_km=round(item.distance_from_previous_km, 3),
                    travel_time_from_previous_min=round(item.travel_time_from_previous_min, 2),
                    arrival_offset_min=round(item.arrival_offset_min, 2),
                    routed=item.routed,
                )
                for item in result.stops
            ],
        )


class OptimizeRouteResponse(BaseModel):
    route: RouteModel
    optimization: OptimizationSummary
