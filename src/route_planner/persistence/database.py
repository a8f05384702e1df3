"""Supabase-backed record store."""

from __future__ import annotations

import logging
from typing import Any

from supabase import Client

from ..exceptions import ConfigurationError, RecordNotFoundError
from .base import Filters, is_multi_value

logger = logging.getLogger(__name__)


class SupabaseRecordStore:
    """Record store over Supabase tables.

    Every query is filtered by ``organization_id``; row level security on the
    project is expected to enforce the same scope. PostgREST errors propagate.
    """

    def __init__(self, client: Client | None) -> None:
        if client is None:
            raise ConfigurationError("Supabase client is not configured", setting="supabase_url")
        self.client = client

    @staticmethod
    def _apply_filters(query: Any, filters: Filters) -> Any:
        for column, value in filters.items():
            if is_multi_value(value):
                query = query.in_(column, list(value))
            elif value is None:
                query = query.is_(column, "null")
            else:
                query = query.eq(column, value)
        return query

    def insert(self, table: str, organization_id: str, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not records:
            return []
        payload = [{**record, "organization_id": organization_id} for record in records]
        response = self.client.table(table).insert(payload).execute()
        logger.debug(f"Inserted {len(response.data or [])} row(s) into {table}")
        return list(response.data or [])

    def select(
        self,
        table: str,
        organization_id: str,
        filters: Filters | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        query = self.client.table(table).select("*").eq("organization_id", organization_id)
        query = self._apply_filters(query, filters or {})
        if order_by:
            query = query.order(order_by)
        response = query.execute()
        return list(response.data or [])

    def update(self, table: str, organization_id: str, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        response = (
            self.client.table(table)
            .update(changes)
            .eq("id", record_id)
            .eq("organization_id", organization_id)
            .execute()
        )
        if not response.data:
            raise RecordNotFoundError(table, record_id)
        return response.data[0]

    def delete(self, table: str, organization_id: str, filters: Filters) -> int:
        query = self.client.table(table).delete().eq("organization_id", organization_id)
        response = self._apply_filters(query, filters).execute()
        return len(response.data or [])
