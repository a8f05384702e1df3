"""Two-phase rewrite of a route's stop order.

Stop order is unique per route at rest, so a permutation cannot be written
row by row. Every stop is first parked on a distinct negative placeholder,
then each one is moved to its final positive position. A reader that sees a
non-positive order knows a reorder is in progress.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from ...models.domain import RouteStop
from ...persistence.base import ROUTE_STOPS, RecordStore

logger = logging.getLogger(__name__)


def is_reordering(stops: Iterable[RouteStop]) -> bool:
    """True when any stop still holds a placeholder order."""
    return any(stop.stop_order <= 0 for stop in stops)


class StopReorderer:
    def __init__(self, store: RecordStore, organization_id: str, route_id: str) -> None:
        self.store = store
        self.organization_id = organization_id
        self.route_id = route_id

    def apply(
        self,
        stops: list[RouteStop],
        final_orders: Mapping[str, int],
        changes: Mapping[str, dict[str, Any]] | None = None,
    ) -> list[dict[str, Any]]:
        """Move every stop to ``final_orders[stop.id]`` and apply per-stop ``changes``.

        ``final_orders`` must cover the given stops and form 1..N.
        """
        changes = changes or {}
        if sorted(final_orders) != sorted(stop.id for stop in stops):
            raise ValueError("Final orders must name exactly the route's stops")
        if sorted(final_orders.values()) != list(range(1, len(stops) + 1)):
            raise ValueError("Final orders must be the dense sequence 1..N")

        if not changes and all(stop.stop_order == final_orders[stop.id] for stop in stops):
            return [stop.to_record() for stop in stops]

        logger.debug(f"Reordering {len(stops)} stops on route {self.route_id}")
        # Placeholders sit below every current value, including leftovers of an interrupted run.
        floor = min([0, *(stop.stop_order for stop in stops)])
        for index, stop in enumerate(sorted(stops, key=lambda item: item.stop_order), start=1):
            self.store.update(ROUTE_STOPS, self.organization_id, stop.id, {"stop_order": floor - index})

        written = []
        for stop in stops:
            update = {**changes.get(stop.id, {}), "stop_order": final_orders[stop.id]}
            written.append(self.store.update(ROUTE_STOPS, self.organization_id, stop.id, update))
        return sorted(written, key=lambda record: record["stop_order"])
