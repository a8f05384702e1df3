"""Routing provider contract, the haversine provider and the timeout wrapper."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Protocol, Sequence, runtime_checkable

import numpy as np

from ...config import settings
from ...exceptions import RoutingProviderUnavailableError
from ..geospatial import haversine_km

logger = logging.getLogger(__name__)


@runtime_checkable
class RoutingProvider(Protocol):
    """Returns travel matrices in metres and seconds for (lat, lon) coordinates."""

    name: str

    def table(
        self,
        coordinates: Sequence[tuple[float, float]],
        *,
        avoid_tolls: bool = False,
        avoid_highways: bool = False,
    ) -> dict: ...


@runtime_checkable
class GeometryProvider(Protocol):
    def route(self, coordinates: Sequence[tuple[float, float]]) -> dict: ...


class HaversineProvider:
    """Synthetic provider: great-circle distance scaled to road distance at a fixed speed.

    Routing preferences are accepted and ignored.
    """

    name = "haversine"

    def __init__(self, average_speed_kmh: float | None = None, road_distance_factor: float | None = None) -> None:
        self.average_speed_kmh = average_speed_kmh or settings.average_speed_kmh
        self.road_distance_factor = road_distance_factor or settings.road_distance_factor

    def table(
        self,
        coordinates: Sequence[tuple[float, float]],
        *,
        avoid_tolls: bool = False,
        avoid_highways: bool = False,
    ) -> dict:
        n = len(coordinates)
        distances = [[0.0] * n for _ in range(n)]
        durations = [[0.0] * n for _ in range(n)]
        for i, (lat1, lon1) in enumerate(coordinates):
            for j, (lat2, lon2) in enumerate(coordinates):
                if i == j:
                    continue
                km = haversine_km(lat1, lon1, lat2, lon2) * self.road_distance_factor
                distances[i][j] = km * 1000.0
                durations[i][j] = km / self.average_speed_kmh * 3600.0
        return {"distances": distances, "durations": durations}


def call_with_timeout(
    func: Callable[..., Any],
    *args: Any,
    timeout: float | None,
    provider_name: str,
    **kwargs: Any,
) -> Any:
    """Run a provider call on a worker thread; every failure becomes RoutingProviderUnavailableError."""
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as exc:
        logger.warning(f"Routing provider '{provider_name}' timed out after {timeout}s")
        raise RoutingProviderUnavailableError(
            f"Routing provider '{provider_name}' did not answer within {timeout}s", provider=provider_name
        ) from exc
    except RoutingProviderUnavailableError:
        raise
    except Exception as exc:
        logger.warning(f"Routing provider '{provider_name}' failed: {exc}")
        raise RoutingProviderUnavailableError(
            f"Routing provider '{provider_name}' failed: {exc}", provider=provider_name
        ) from exc
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


def matrices_from_table(table: dict, size: int, provider_name: str) -> tuple[np.ndarray, np.ndarray]:
    """Convert a provider table into (distance km, duration min) arrays, rejecting gaps."""
    distances = table.get("distances")
    durations = table.get("durations")
    if distances is None or durations is None:
        raise RoutingProviderUnavailableError(
            f"Routing provider '{provider_name}' returned no distance/duration matrix", provider=provider_name
        )
    if len(distances) != size or len(durations) != size or any(
        len(row) != size for row in (*distances, *durations)
    ):
        raise RoutingProviderUnavailableError(
            f"Routing provider '{provider_name}' returned a matrix of the wrong size (expected {size}x{size})",
            provider=provider_name,
        )
    for i in range(size):
        for j in range(size):
            if i != j and (distances[i][j] is None or durations[i][j] is None):
                raise RoutingProviderUnavailableError(
                    f"Routing provider '{provider_name}' has no route between points {i} and {j}",
                    provider=provider_name,
                )
    distance_km = np.array(
        [[0.0 if value is None else float(value) for value in row] for row in distances]
    ) / 1000.0
    duration_min = np.array(
        [[0.0 if value is None else float(value) for value in row] for row in durations]
    ) / 60.0
    np.fill_diagonal(distance_km, 0.0)
    np.fill_diagonal(duration_min, 0.0)
    return distance_km, duration_min


def build_provider(name: str | None = None) -> RoutingProvider:
    """Provider selected by configuration."""
    name = name or settings.routing_provider
    if name == "osrm":
        from .osrm_client import OSRMClient

        return OSRMClient()
    return HaversineProvider()
