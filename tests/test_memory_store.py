"""Tests for memory records, the in-process stores and explicit storage."""

import asyncio
from datetime import timedelta

import pytest
from pydantic import ValidationError

from tutor_guard.core.memory_storage import (
    build_memory,
    compute_quality_score,
    compute_relevance_score,
    store_memory,
)
from tutor_guard.core.schemas_memory import (
    MemoryFilter,
    MemoryPriority,
    MemoryRecord,
    MemoryRetention,
    MemoryType,
    utcnow,
)
from tutor_guard.core.schemas_personalization import PersonalizationProfile
from tutor_guard.db.memory_store import InMemoryMemoryStore, InMemoryProfileStore, OwnerLocks


async def _hold_once(locks: OwnerLocks, owner_id: str) -> None:
    async with locks.hold(owner_id):
        pass


# ============================================================================
# Record invariants
# ============================================================================


class TestMemoryRecordExpiry:
    @pytest.mark.parametrize(
        "retention,lifetime",
        [
            (MemoryRetention.SESSION, timedelta(hours=24)),
            (MemoryRetention.SHORT_TERM, timedelta(days=7)),
            (MemoryRetention.LONG_TERM, timedelta(days=30)),
        ],
    )
    def test_non_permanent_gets_expiry(self, retention, lifetime):
        record = MemoryRecord(owner_id="u1", content="x", retention=retention)
        assert record.expires_at == record.created_at + lifetime

    def test_permanent_never_expires(self):
        record = MemoryRecord(owner_id="u1", content="x", retention=MemoryRetention.PERMANENT)
        assert record.expires_at is None
        assert not record.is_expired()

    def test_permanent_with_expiry_rejected(self):
        with pytest.raises(ValidationError):
            MemoryRecord(
                owner_id="u1",
                content="x",
                retention=MemoryRetention.PERMANENT,
                expires_at=utcnow(),
            )

    def test_scores_bounded(self):
        with pytest.raises(ValidationError):
            MemoryRecord(owner_id="u1", content="x", quality_score=1.5)


# ============================================================================
# In-process store
# ============================================================================


class TestInMemoryMemoryStore:
    @pytest.mark.asyncio
    async def test_upsert_and_query(self, memory_store):
        record = MemoryRecord(owner_id="u1", content="My name is Asha")
        assert await memory_store.upsert(record) == record.id
        results = await memory_store.query("u1")
        assert [r.content for r in results] == ["My name is Asha"]

    @pytest.mark.asyncio
    async def test_owner_isolation(self, memory_store):
        await memory_store.upsert(MemoryRecord(owner_id="u1", content="one"))
        await memory_store.upsert(MemoryRecord(owner_id="u2", content="two"))
        assert [r.content for r in await memory_store.query("u2")] == ["two"]

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent_per_id(self, memory_store):
        record = MemoryRecord(id="m1", owner_id="u1", content="first")
        await memory_store.upsert(record)
        await memory_store.upsert(record.model_copy(update={"content": "second"}))
        results = await memory_store.query("u1")
        assert len(results) == 1
        assert results[0].content == "second"

    @pytest.mark.asyncio
    async def test_cross_owner_id_collision_rejected(self, memory_store):
        await memory_store.upsert(MemoryRecord(id="m1", owner_id="u1", content="x"))
        with pytest.raises(ValueError):
            await memory_store.upsert(MemoryRecord(id="m1", owner_id="u2", content="y"))

    @pytest.mark.asyncio
    async def test_expired_records_excluded(self, memory_store):
        old = MemoryRecord(
            owner_id="u1",
            content="stale",
            retention=MemoryRetention.SESSION,
            created_at=utcnow() - timedelta(days=2),
        )
        await memory_store.upsert(old)
        assert await memory_store.query("u1") == []
        assert len(await memory_store.query("u1", MemoryFilter(include_expired=True))) == 1

    @pytest.mark.asyncio
    async def test_expire(self, memory_store):
        live = MemoryRecord(owner_id="u1", content="live", retention=MemoryRetention.PERMANENT)
        await memory_store.upsert(live)
        assert await memory_store.expire([live.id, "missing"]) == 1
        assert await memory_store.query("u1") == []
        # Already expired
        assert await memory_store.expire([live.id]) == 0

    @pytest.mark.asyncio
    async def test_filter(self, memory_store):
        await memory_store.upsert(
            MemoryRecord(owner_id="u1", content="low", priority=MemoryPriority.LOW)
        )
        await memory_store.upsert(
            MemoryRecord(
                owner_id="u1",
                content="fix",
                priority=MemoryPriority.HIGH,
                memory_type=MemoryType.CORRECTION,
                tags={"correction"},
            )
        )
        high = await memory_store.query("u1", MemoryFilter(min_priority=MemoryPriority.MEDIUM))
        assert [r.content for r in high] == ["fix"]
        tagged = await memory_store.query("u1", MemoryFilter(tags=["correction"]))
        assert [r.content for r in tagged] == ["fix"]
        typed = await memory_store.query("u1", MemoryFilter(memory_types=[MemoryType.USER_QUERY]))
        assert [r.content for r in typed] == ["low"]

    @pytest.mark.asyncio
    async def test_owner_locks_released_when_idle(self):
        locks = OwnerLocks()
        async with locks.hold("u1"):
            waiter = asyncio.create_task(_hold_once(locks, "u1"))
            await asyncio.sleep(0)
            assert len(locks) == 1
        await waiter

        async with locks.hold("u2"):
            assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_query_returns_copies(self, memory_store):
        await memory_store.upsert(MemoryRecord(owner_id="u1", content="original"))
        result = (await memory_store.query("u1"))[0]
        result.content = "mutated"
        assert (await memory_store.query("u1"))[0].content == "original"


class TestInMemoryProfileStore:
    @pytest.mark.asyncio
    async def test_roundtrip_copy(self):
        store = InMemoryProfileStore()
        assert await store.get_profile("u1") is None
        profile = PersonalizationProfile(owner_id="u1")
        await store.save_profile(profile)
        loaded = await store.get_profile("u1")
        loaded.topic_proficiency["algebra"] = 0.1
        assert (await store.get_profile("u1")).topic_proficiency == {}


# ============================================================================
# Explicit storage
# ============================================================================


class TestScoring:
    def test_quality_score(self):
        assert compute_quality_score("short") == 0.5
        full = compute_quality_score(
            "a substantive question", response="answer", confidence=0.9, topic="algebra", processing_ms=100
        )
        assert full == pytest.approx(1.0)

    def test_relevance_score_by_type_and_priority(self):
        low = compute_relevance_score("x", MemoryType.AI_RESPONSE, MemoryPriority.LOW)
        high = compute_relevance_score("x", MemoryType.CORRECTION, MemoryPriority.HIGH)
        assert low == pytest.approx(0.3 + 0.1 + 0.2 + 0.15)
        assert high == pytest.approx(1.0)

    def test_build_memory_tags_topic(self):
        record = build_memory("u1", "quadratic formula", topic="algebra", tags={"exam"})
        assert record.tags == {"exam", "topic:algebra"}
        assert record.expires_at is not None


class TestStoreMemory:
    @pytest.mark.asyncio
    async def test_store_and_retrieve(self):
        store = InMemoryMemoryStore()
        record = await store_memory(
            store, "u1", "My name is Asha", priority=MemoryPriority.HIGH, memory_id="fixed-id"
        )
        assert record.id == "fixed-id"
        assert (await store.get("fixed-id")).content == "My name is Asha"
