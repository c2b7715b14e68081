"""Memory and profile store contracts plus in-process implementations.

The pipeline only talks to the ``MemoryStore``/``ProfileStore`` protocols.
Records handed out by ``query`` are copies, so readers can never mutate
stored state.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Protocol, runtime_checkable

from tutor_guard.core.logging import get_logger
from tutor_guard.core.schemas_memory import MemoryFilter, MemoryRecord, MemoryRetention, utcnow
from tutor_guard.core.schemas_personalization import PersonalizationProfile

logger = get_logger(__name__)


@runtime_checkable
class MemoryStore(Protocol):
    """Durable store of past interaction records."""

    async def query(self, owner_id: str, filter: MemoryFilter | None = None) -> list[MemoryRecord]:
        ...

    async def upsert(self, record: MemoryRecord) -> str:
        ...

    async def expire(self, ids: list[str]) -> int:
        ...

    def owner_lock(self, owner_id: str) -> AbstractAsyncContextManager[None]:
        ...


@runtime_checkable
class ProfileStore(Protocol):
    """Store of one PersonalizationProfile per owner."""

    async def get_profile(self, owner_id: str) -> PersonalizationProfile | None:
        ...

    async def save_profile(self, profile: PersonalizationProfile) -> None:
        ...


class OwnerLocks:
    """Asyncio locks keyed by owner id.

    A lock exists only while someone holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, owner_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(owner_id, asyncio.Lock())
        self._users[owner_id] = self._users.get(owner_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[owner_id] -= 1
            if not self._users[owner_id]:
                del self._users[owner_id]
                del self._locks[owner_id]


def expired_copy(record: MemoryRecord, now: datetime) -> MemoryRecord:
    """Return a copy of ``record`` that is expired as of ``now``.

    Permanent records cannot carry an expiry, so they are demoted to
    long-term retention first.
    """
    retention = record.retention
    if retention == MemoryRetention.PERMANENT:
        retention = MemoryRetention.LONG_TERM
    return record.model_copy(update={"retention": retention, "expires_at": now})


class InMemoryMemoryStore:
    """Process-local memory store with owner-scoped atomic upsert.

    ``owner_lock`` serializes multi-step updates for one owner; single
    writes take a separate internal lock, so callers may upsert while
    holding ``owner_lock``.
    """

    def __init__(self, records: list[MemoryRecord] | None = None):
        self._records: dict[str, dict[str, MemoryRecord]] = defaultdict(dict)
        self._owners_by_id: dict[str, str] = {}
        self._locks = OwnerLocks()
        self._write_locks = OwnerLocks()
        for record in records or []:
            self._put(record)

    def _put(self, record: MemoryRecord) -> None:
        self._records[record.owner_id][record.id] = record.model_copy(deep=True)
        self._owners_by_id[record.id] = record.owner_id

    def owner_lock(self, owner_id: str) -> AbstractAsyncContextManager[None]:
        return self._locks.hold(owner_id)

    async def query(self, owner_id: str, filter: MemoryFilter | None = None) -> list[MemoryRecord]:
        filter = filter or MemoryFilter()
        now = utcnow()
        matches = [
            r.model_copy(deep=True)
            for r in self._records.get(owner_id, {}).values()
            if filter.matches(r, now)
        ]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        if filter.limit:
            matches = matches[: filter.limit]
        return matches

    async def upsert(self, record: MemoryRecord) -> str:
        async with self._write_locks.hold(record.owner_id):
            existing_owner = self._owners_by_id.get(record.id)
            if existing_owner and existing_owner != record.owner_id:
                raise ValueError(f"Memory {record.id} belongs to another owner")
            self._put(record)
        logger.debug(
            f"Upserted memory {record.id}",
            extra={"owner_id": record.owner_id, "memory_type": record.memory_type.value},
        )
        return record.id

    async def expire(self, ids: list[str]) -> int:
        now = utcnow()
        count = 0
        for memory_id in ids:
            owner_id = self._owners_by_id.get(memory_id)
            if owner_id is None:
                continue
            async with self._write_locks.hold(owner_id):
                record = self._records[owner_id].get(memory_id)
                if record is None or record.is_expired(now):
                    continue
                self._records[owner_id][memory_id] = expired_copy(record, now)
                count += 1
        return count

    async def get(self, memory_id: str) -> MemoryRecord | None:
        owner_id = self._owners_by_id.get(memory_id)
        if owner_id is None:
            return None
        record = self._records[owner_id].get(memory_id)
        return record.model_copy(deep=True) if record else None


class InMemoryProfileStore:
    """Process-local profile store."""

    def __init__(self) -> None:
        self._profiles: dict[str, PersonalizationProfile] = {}

    async def get_profile(self, owner_id: str) -> PersonalizationProfile | None:
        profile = self._profiles.get(owner_id)
        return profile.model_copy(deep=True) if profile else None

    async def save_profile(self, profile: PersonalizationProfile) -> None:
        self._profiles[profile.owner_id] = profile.model_copy(deep=True)
