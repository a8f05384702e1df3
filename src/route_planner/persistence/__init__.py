"""Record store backends."""

from functools import lru_cache

from ..db.supabase import get_supabase_client
from .base import RecordStore
from .database import SupabaseRecordStore
from .memory import InMemoryRecordStore


@lru_cache()
def get_record_store() -> RecordStore:
    """Supabase when credentials are configured, otherwise a process-local store."""
    client = get_supabase_client()
    if client is None:
        return InMemoryRecordStore()
    return SupabaseRecordStore(client)


__all__ = ["RecordStore", "InMemoryRecordStore", "SupabaseRecordStore", "get_record_store"]
