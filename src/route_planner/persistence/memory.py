"""In-process record store used for local runs and tests."""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from typing import Any

from ..exceptions import RecordNotFoundError, UniqueConstraintError
from .base import ROUTE_STOPS, TABLES, Filters, is_multi_value

logger = logging.getLogger(__name__)

# (table, columns) pairs enforced like database unique indexes.
UNIQUE_CONSTRAINTS: dict[str, tuple[tuple[str, ...], ...]] = {
    ROUTE_STOPS: (("route_id", "stop_order"),),
}


def _matches(record: dict[str, Any], filters: Filters) -> bool:
    for column, expected in filters.items():
        actual = record.get(column)
        if is_multi_value(expected):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class InMemoryRecordStore:
    def __init__(self) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {table: {} for table in TABLES}
        self._lock = threading.RLock()

    def _table(self, table: str) -> dict[str, dict[str, Any]]:
        if table not in self._tables:
            raise KeyError(f"Unknown table: {table}")
        return self._tables[table]

    def _check_unique(self, table: str, candidate: dict[str, Any]) -> None:
        for columns in UNIQUE_CONSTRAINTS.get(table, ()):
            values = tuple(candidate.get(column) for column in columns)
            for existing in self._tables[table].values():
                if existing["id"] == candidate["id"]:
                    continue
                if existing.get("organization_id") != candidate.get("organization_id"):
                    continue
                if tuple(existing.get(column) for column in columns) == values:
                    raise UniqueConstraintError(table, columns, values)

    def insert(self, table: str, organization_id: str, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._table(table)
            inserted = []
            for record in records:
                row = copy.deepcopy(record)
                row.setdefault("id", str(uuid.uuid4()))
                row["organization_id"] = organization_id
                if row["id"] in rows:
                    raise UniqueConstraintError(table, ("id",), (row["id"],))
                self._check_unique(table, row)
                rows[row["id"]] = row
                inserted.append(copy.deepcopy(row))
            return inserted

    def select(
        self,
        table: str,
        organization_id: str,
        filters: Filters | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        scope = {"organization_id": organization_id, **(filters or {})}
        with self._lock:
            rows = [copy.deepcopy(row) for row in self._table(table).values() if _matches(row, scope)]
        if order_by:
            rows.sort(key=lambda row: (row.get(order_by) is None, row.get(order_by)))
        return rows

    def update(self, table: str, organization_id: str, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            rows = self._table(table)
            current = rows.get(record_id)
            if current is None or current.get("organization_id") != organization_id:
                raise RecordNotFoundError(table, record_id)
            candidate = {**current, **copy.deepcopy(changes), "id": record_id, "organization_id": organization_id}
            self._check_unique(table, candidate)
            rows[record_id] = candidate
            return copy.deepcopy(candidate)

    def delete(self, table: str, organization_id: str, filters: Filters) -> int:
        scope = {"organization_id": organization_id, **filters}
        with self._lock:
            rows = self._table(table)
            doomed = [record_id for record_id, row in rows.items() if _matches(row, scope)]
            for record_id in doomed:
                del rows[record_id]
        if doomed:
            logger.debug(f"Deleted {len(doomed)} row(s) from {table}")
        return len(doomed)
