"""Tests for the background personalization worker."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from tutor_guard.core.schemas_personalization import (
    CompletedInteraction,
    FeedbackRecord,
    FeedbackType,
)
from tutor_guard.services.feedback_worker import FeedbackWorker


def _engine() -> MagicMock:
    engine = MagicMock()
    engine.record_interaction = AsyncMock()
    engine.apply_feedback = AsyncMock()
    return engine


def _feedback() -> FeedbackRecord:
    return FeedbackRecord(
        owner_id="student-1", interaction_id="int-1", type=FeedbackType.EXPLICIT, rating=4
    )


def _interaction() -> CompletedInteraction:
    return CompletedInteraction(interaction_id="int-1", owner_id="student-1", message="hi")


@pytest.mark.asyncio
async def test_messages_processed_off_request_path():
    engine = _engine()
    worker = FeedbackWorker(engine)
    try:
        assert worker.submit_interaction(_interaction())
        assert worker.submit_feedback(_feedback())
        await worker.drain(timeout=1.0)

        engine.record_interaction.assert_awaited_once()
        engine.apply_feedback.assert_awaited_once()
        assert worker.stats["processed_count"] == 2
    finally:
        await worker.stop()


@pytest.mark.asyncio
async def test_failed_message_is_retried():
    engine = _engine()
    engine.apply_feedback.side_effect = [RuntimeError("db down"), None]
    worker = FeedbackWorker(engine, retry_delay=0)
    try:
        worker.submit_feedback(_feedback())
        await worker.drain(timeout=1.0)

        assert engine.apply_feedback.await_count == 2
        assert worker.stats["error_count"] == 1
        assert worker.stats["processed_count"] == 1
    finally:
        await worker.stop()


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    engine = _engine()
    engine.apply_feedback.side_effect = RuntimeError("db down")
    worker = FeedbackWorker(engine, max_attempts=3, retry_delay=0)
    try:
        worker.submit_feedback(_feedback())
        await worker.drain(timeout=1.0)

        assert engine.apply_feedback.await_count == 3
        assert worker.stats["dropped_count"] == 1
        assert worker.stats["processed_count"] == 0
    finally:
        await worker.stop()


@pytest.mark.asyncio
async def test_full_queue_drops_without_blocking():
    worker = FeedbackWorker(_engine(), queue_size=1)
    try:
        assert worker.submit_feedback(_feedback())
        assert not worker.submit_feedback(_feedback())
        assert worker.stats["dropped_count"] == 1
    finally:
        await worker.stop()


@pytest.mark.asyncio
async def test_stop():
    worker = FeedbackWorker(_engine())
    worker.start()
    assert worker.running
    await worker.stop()
    assert not worker.running
