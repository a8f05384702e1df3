"""Record store contract shared by the in-memory and Supabase backends."""

from __future__ import annotations

from typing import Any, Protocol

OUTLETS = "outlets"
ROUTES = "routes"
ROUTE_STOPS = "route_stops"
ROUTE_ASSIGNMENTS = "route_assignments"
OPTIMIZATION_SETTINGS = "route_optimization_settings"

TABLES = (OUTLETS, ROUTES, ROUTE_STOPS, ROUTE_ASSIGNMENTS, OPTIMIZATION_SETTINGS)

# Filters map column -> value. A list/tuple/set/frozenset value means "column IN values".
Filters = dict[str, Any]


def is_multi_value(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


class RecordStore(Protocol):
    """Durable storage scoped by organization on every call.

    Errors raised by an implementation propagate to callers unchanged.
    """

    def insert(self, table: str, organization_id: str, records: list[dict[str, Any]]) -> list[dict[str, Any]]: ...

    def select(
        self,
        table: str,
        organization_id: str,
        filters: Filters | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]: ...

    def update(self, table: str, organization_id: str, record_id: str, changes: dict[str, Any]) -> dict[str, Any]: ...

    def delete(self, table: str, organization_id: str, filters: Filters) -> int: ...
