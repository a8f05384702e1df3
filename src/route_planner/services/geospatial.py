"""Geospatial helper functions."""

from __future__ import annotations

import math
from typing import Sequence

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def path_length_km(coordinates: Sequence[tuple[float, float]]) -> float:
    """Great-circle length of a polyline given as (lat, lon) pairs."""

    return sum(
        haversine_km(a[0], a[1], b[0], b[1])
        for a, b in zip(coordinates, coordinates[1:])
    )


def centroid(coordinates: Sequence[tuple[float, float]]) -> tuple[float, float]:
    if not coordinates:
        return (0.0, 0.0)
    lat = sum(point[0] for point in coordinates) / len(coordinates)
    lon = sum(point[1] for point in coordinates) / len(coordinates)
    return (lat, lon)
