"""HTTP client for interacting with OSRM services."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

import httpx

from ...config import settings
from ...exceptions import ConfigurationError

# OSRM table URLs grow with the coordinate count; chunk above this size.
DEFAULT_MAX_COORDINATES_PER_REQUEST = 80
DEFAULT_MAX_PARALLEL_REQUESTS = 8

logger = logging.getLogger(__name__)


class OSRMClient:
    """Routing provider backed by an OSRM server (table + route services)."""

    name = "osrm"

    def __init__(
        self,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        max_coordinates_per_request: int = DEFAULT_MAX_COORDINATES_PER_REQUEST,
        max_parallel_requests: int = DEFAULT_MAX_PARALLEL_REQUESTS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.osrm_base_url or "").rstrip("/")
        if not self.base_url:
            raise ConfigurationError("OSRM base URL is not configured.", setting="osrm_base_url")
        self.profile = profile or settings.osrm_profile
        self.timeout = timeout if timeout is not None else settings.osrm_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.osrm_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.osrm_backoff_seconds
        self.max_coordinates_per_request = max_coordinates_per_request
        self.max_parallel_requests = max_parallel_requests
        self._transport = transport

    def _get_client(self) -> httpx.Client:
        # One client per call; chunk requests run on worker threads.
        return httpx.Client(
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            transport=self._transport,
        )

    def _get_json(self, url: str, params: dict) -> dict:
        """GET with retries; network errors surface as ConnectionError after the last attempt."""
        attempt = 0
        with self._get_client() as client:
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    if data.get("code", "Ok") != "Ok":
                        raise ValueError(f"OSRM request failed: {data.get('message', data.get('code'))}")
                    return data
                except httpx.HTTPStatusError as exc:
                    if exc.response.status_code == 414:
                        raise ValueError(
                            "OSRM request URL too large; reduce max_coordinates_per_request "
                            f"(current: {self.max_coordinates_per_request})"
                        ) from exc
                    if exc.response.status_code < 500:
                        raise
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    time.sleep(self.backoff_seconds * attempt)
                except (httpx.TimeoutException, httpx.NetworkError) as exc:
                    attempt += 1
                    if attempt > self.max_retries:
                        raise ConnectionError(
                            f"Failed to reach OSRM service at {self.base_url} after {attempt} attempts: {exc}"
                        ) from exc
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"OSRM request failed, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries}): {exc}")
                    time.sleep(wait_time)

    @staticmethod
    def _exclude_param(avoid_tolls: bool, avoid_highways: bool) -> str | None:
        classes = []
        if avoid_tolls:
            classes.append("toll")
        if avoid_highways:
            classes.append("motorway")
        return ",".join(classes) or None

    def _table_single_request(
        self,
        coordinates: Sequence[tuple[float, float]],
        sources: Sequence[int] | None = None,
        destinations: Sequence[int] | None = None,
        exclude: str | None = None,
    ) -> dict:
        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        params = {"annotations": "duration,distance"}
        if sources is not None:
            params["sources"] = ";".join(str(i) for i in sources)
        if destinations is not None:
            params["destinations"] = ";".join(str(i) for i in destinations)
        if exclude:
            params["exclude"] = exclude
        data = self._get_json(f"{self.base_url}/table/v1/{self.profile}/{coordinate_str}", params)
        if "durations" not in data or "distances" not in data:
            raise ValueError("OSRM response missing durations/distances.")
        return data

    def table(
        self,
        coordinates: Sequence[tuple[float, float]],
        *,
        avoid_tolls: bool = False,
        avoid_highways: bool = False,
    ) -> dict:
        """Distance (m) / duration (s) matrices for (lat, lon) coordinates, chunked when large."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM table.")
        exclude = self._exclude_param(avoid_tolls, avoid_highways)

        if len(coordinates) <= self.max_coordinates_per_request:
            return self._table_single_request(coordinates, exclude=exclude)

        size = self.max_coordinates_per_request
        ranges = [(start, min(start + size, len(coordinates))) for start in range(0, len(coordinates), size)]
        n = len(coordinates)
        durations: list[list[float | None]] = [[None] * n for _ in range(n)]
        distances: list[list[float | None]] = [[None] * n for _ in range(n)]
        logger.info(f"Chunking OSRM table request: {n} coordinates into {len(ranges) ** 2} requests")

        def fetch(src: tuple[int, int], dst: tuple[int, int]) -> tuple[tuple[int, int], tuple[int, int], dict]:
            chunk = list(coordinates[src[0]:src[1]]) + list(coordinates[dst[0]:dst[1]])
            src_count = src[1] - src[0]
            result = self._table_single_request(
                chunk,
                sources=range(src_count),
                destinations=range(src_count, len(chunk)),
                exclude=exclude,
            )
            return src, dst, result

        started = time.time()
        with ThreadPoolExecutor(max_workers=self.max_parallel_requests) as executor:
            futures = [executor.submit(fetch, src, dst) for src in ranges for dst in ranges]
            # Any failed chunk fails the whole table; partial matrices are never returned.
            for future in futures:
                (src_start, _), (dst_start, _), result = future.result()
                for i, row in enumerate(result["durations"]):
                    for j, value in enumerate(row):
                        durations[src_start + i][dst_start + j] = value
                for i, row in enumerate(result["distances"]):
                    for j, value in enumerate(row):
                        distances[src_start + i][dst_start + j] = value

        logger.info(f"Completed chunked OSRM table request in {time.time() - started:.2f}s")
        return {"durations": durations, "distances": distances}

    def route(self, coordinates: Sequence[tuple[float, float]]) -> dict:
        """Street-following geometry for waypoints in the given order (polyline encoded)."""
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for OSRM route.")
        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        params = {"overview": "full", "geometries": "polyline", "steps": "false"}
        return self._get_json(f"{self.base_url}/route/v1/{self.profile}/{coordinate_str}", params)


def decode_polyline(polyline: str) -> list[tuple[float, float]]:
    """Decode a Google encoded polyline (precision 5) into (lat, lon) pairs."""
    coordinates = []
    index = 0
    lat = 0
    lon = 0

    def next_value() -> int:
        nonlocal index
        shift = 0
        result = 0
        while True:
            b = ord(polyline[index]) - 63
            index += 1
            result |= (b & 0x1F) << shift
            shift += 5
            if b < 0x20:
                break
        return ~(result >> 1) if (result & 1) else (result >> 1)

    while index < len(polyline):
        lat += next_value()
        lon += next_value()
        coordinates.append((lat / 1e5, lon / 1e5))
    return coordinates


def check_health(base_url: str | None = None) -> bool:
    """Check OSRM with a minimal two-point table request."""
    base = base_url or settings.osrm_base_url
    if not base:
        return False
    test_coords = "13.388860,52.517037;13.385983,52.496891"
    try:
        response = httpx.get(
            f"{base.rstrip('/')}/table/v1/{settings.osrm_profile}/{test_coords}",
            params={"annotations": "duration"},
            timeout=5.0,
        )
        response.raise_for_status()
        return isinstance(response.json().get("durations"), list)
    except (httpx.HTTPError, ValueError):
        return False
