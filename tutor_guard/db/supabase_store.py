"""Supabase-backed memory and profile stores.

Tables:
    conversation_memory: one row per MemoryRecord, primary key ``id``
    personalization_profiles: one row per owner, primary key ``owner_id``

The supabase client is synchronous, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
from contextlib import AbstractAsyncContextManager
from typing import Any

from supabase import Client

from tutor_guard.core.logging import get_logger
from tutor_guard.core.schemas_memory import MemoryFilter, MemoryPriority, MemoryRecord, utcnow
from tutor_guard.core.schemas_personalization import PersonalizationProfile
from tutor_guard.db.memory_store import OwnerLocks, expired_copy

logger = get_logger(__name__)

MEMORY_TABLE = "conversation_memory"
PROFILE_TABLE = "personalization_profiles"


def record_to_row(record: MemoryRecord) -> dict[str, Any]:
    row = record.model_dump(mode="json")
    row["tags"] = sorted(record.tags)
    return row


def row_to_record(row: dict[str, Any]) -> MemoryRecord:
    return MemoryRecord.model_validate(row)


class SupabaseMemoryStore:
    """MemoryStore on top of the ``conversation_memory`` table.

    ``owner_lock`` is process-local; upserts are atomic on the primary key.
    """

    def __init__(self, client: Client):
        self._client = client
        self._locks = OwnerLocks()

    def owner_lock(self, owner_id: str) -> AbstractAsyncContextManager[None]:
        return self._locks.hold(owner_id)

    def _query_sync(self, owner_id: str, filter: MemoryFilter) -> list[MemoryRecord]:
        q = self._client.table(MEMORY_TABLE).select("*").eq("owner_id", owner_id)
        if filter.memory_types:
            q = q.in_("memory_type", [t.value for t in filter.memory_types])
        if filter.conversation_id:
            q = q.eq("conversation_id", filter.conversation_id)
        if filter.min_priority:
            allowed = [p.value for p in MemoryPriority if p.rank >= filter.min_priority.rank]
            q = q.in_("priority", allowed)
        q = q.order("created_at", desc=True)
        if filter.limit:
            q = q.limit(filter.limit)
        result = q.execute()

        now = utcnow()
        records = [row_to_record(row) for row in result.data or []]
        # Expiry and tag overlap are re-checked locally
        return [r for r in records if filter.matches(r, now)]

    async def query(self, owner_id: str, filter: MemoryFilter | None = None) -> list[MemoryRecord]:
        return await asyncio.to_thread(self._query_sync, owner_id, filter or MemoryFilter())

    def _upsert_sync(self, record: MemoryRecord) -> str:
        self._client.table(MEMORY_TABLE).upsert(record_to_row(record), on_conflict="id").execute()
        return record.id

    async def upsert(self, record: MemoryRecord) -> str:
        memory_id = await asyncio.to_thread(self._upsert_sync, record)
        logger.debug(f"Upserted memory {memory_id}", extra={"owner_id": record.owner_id})
        return memory_id

    def _expire_sync(self, ids: list[str]) -> int:
        if not ids:
            return 0
        result = self._client.table(MEMORY_TABLE).select("*").in_("id", ids).execute()
        now = utcnow()
        count = 0
        for row in result.data or []:
            record = row_to_record(row)
            if record.is_expired(now):
                continue
            self._upsert_sync(expired_copy(record, now))
            count += 1
        return count

    async def expire(self, ids: list[str]) -> int:
        return await asyncio.to_thread(self._expire_sync, ids)


class SupabaseProfileStore:
    """ProfileStore on top of the ``personalization_profiles`` table."""

    def __init__(self, client: Client):
        self._client = client

    def _get_sync(self, owner_id: str) -> PersonalizationProfile | None:
        result = (
            self._client.table(PROFILE_TABLE)
            .select("*")
            .eq("owner_id", owner_id)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        return PersonalizationProfile.model_validate(result.data[0])

    async def get_profile(self, owner_id: str) -> PersonalizationProfile | None:
        return await asyncio.to_thread(self._get_sync, owner_id)

    def _save_sync(self, profile: PersonalizationProfile) -> None:
        self._client.table(PROFILE_TABLE).upsert(
            profile.model_dump(mode="json"), on_conflict="owner_id"
        ).execute()

    async def save_profile(self, profile: PersonalizationProfile) -> None:
        await asyncio.to_thread(self._save_sync, profile)
