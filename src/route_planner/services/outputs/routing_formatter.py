"""Serializers for optimization outputs."""

from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import Optional

from ..geospatial import centroid, path_length_km
from ..routing.models import OptimizedRoute
from ..routing.osrm_client import decode_polyline


def optimized_route_to_snapshot(
    result: OptimizedRoute,
    optimized_at: Optional[datetime] = None,
    provider: Optional[str] = None,
) -> dict:
    """JSON-safe snapshot stored on the route as ``optimized_route_data``."""
    routed = [item for item in result.stops if item.routed]
    points = [(item.stop.latitude, item.stop.longitude) for item in routed]
    center = centroid(points)
    path = decode_polyline(result.polyline) if result.polyline else []
    return {
        "optimization_type": result.optimization_type.value,
        "provider": provider,
        "optimized_at": optimized_at.isoformat() if optimized_at else None,
        "order": result.stop_ids,
        "total_distance": round(result.total_distance, 2),
        "total_duration": round(result.total_duration, 1),
        "total_service_duration": round(result.total_service_duration, 1),
        "estimated_fuel": result.estimated_fuel,
        "estimated_cost": result.estimated_cost,
        "leg_distances": [round(value, 3) for value in result.leg_distances],
        "leg_durations": [round(value, 2) for value in result.leg_durations],
        "map_center": {"latitude": round(center[0], 6), "longitude": round(center[1], 6)},
        "polyline": result.polyline,
        "geometry_length_km": round(path_length_km(path), 2) if path else None,
        "warnings": list(result.warnings),
        "unrouted_stop_ids": list(result.unrouted_stop_ids),
        "stops": [
            {
                "outlet_id": item.stop.id,
                "name": item.stop.name,
                "sequence": item.sequence,
                "latitude": item.stop.latitude,
                "longitude": item.stop.longitude,
                "distance_from_previous": round(item.distance_from_previous_km, 3),
                "travel_time_from_previous": round(item.travel_time_from_previous_min, 2),
                "cumulative_distance": round(item.cumulative_distance_km, 3),
                "arrival_offset_min": round(item.arrival_offset_min, 2),
                "departure_offset_min": round(item.departure_offset_min, 2),
                "routed": item.routed,
            }
            for item in result.stops
        ],
    }


def optimized_route_to_csv(result: OptimizedRoute, route_id: str | None = None) -> str:
    buffer = io.StringIO()
    fieldnames = [
        "route_id",
        "sequence",
        "outlet_id",
        "name",
        "arrival_offset_min",
        "distance_from_prev_km",
        "travel_time_from_prev_min",
        "total_distance_km",
        "total_duration_min",
    ]
    writer = csv.DictWriter(buffer, fieldnames=fieldnames)
    writer.writeheader()
    for item in result.stops:
        writer.writerow(
            {
                "route_id": route_id or "",
                "sequence": item.sequence,
                "outlet_id": item.stop.id,
                "name": item.stop.name or "",
                "arrival_offset_min": round(item.arrival_offset_min, 2),
                "distance_from_prev_km": round(item.distance_from_previous_km, 3),
                "travel_time_from_prev_min": round(item.travel_time_from_previous_min, 2),
                "total_distance_km": round(result.total_distance, 2),
                "total_duration_min": round(result.total_duration, 1),
            }
        )
    return buffer.getvalue()
