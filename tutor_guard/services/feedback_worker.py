"""Background worker for personalization updates.

Completed interactions and feedback records are handed over as messages on
an asyncio queue and processed off the request path.

Delivery is at-least-once: a message whose handler raises is re-enqueued
until it has been attempted ``max_attempts`` times, then dropped with an
error log. Handlers must therefore be idempotent per message id.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

from tutor_guard.core.errors import PersonalizationUpdateFailure
from tutor_guard.core.logging import get_logger
from tutor_guard.core.personalization import PersonalizationEngine
from tutor_guard.core.schemas_personalization import CompletedInteraction, FeedbackRecord

logger = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 1_000
MAX_ATTEMPTS = 3
RETRY_DELAY = 0.5  # seconds, multiplied by the attempt number


@dataclass
class InteractionMessage:
    interaction: CompletedInteraction
    attempts: int = 0

    @property
    def message_id(self) -> str:
        return f"interaction:{self.interaction.interaction_id}"


@dataclass
class FeedbackMessage:
    feedback: FeedbackRecord
    attempts: int = 0

    @property
    def message_id(self) -> str:
        return f"feedback:{self.feedback.id}"


WorkerMessage = InteractionMessage | FeedbackMessage


class FeedbackWorker:
    """Consumes personalization messages on a background task.

    Args:
        engine: Personalization engine the messages are applied to
        queue_size: Max pending messages; submit() drops when full
        max_attempts: Delivery attempts per message
        retry_delay: Base delay before a failed message is re-enqueued
    """

    def __init__(
        self,
        engine: PersonalizationEngine,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY,
    ):
        self.engine = engine
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._queue: asyncio.Queue[WorkerMessage] = asyncio.Queue(maxsize=queue_size)
        self._task: asyncio.Task | None = None
        self._retry_tasks: set[asyncio.Task] = set()
        self._processed_count = 0
        self._error_count = 0
        self._dropped_count = 0
        self._start_time: float | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stats(self) -> dict[str, Any]:
        """Get worker statistics."""
        uptime = time.time() - self._start_time if self._start_time else 0
        return {
            "running": self.running,
            "pending": self._queue.qsize(),
            "processed_count": self._processed_count,
            "error_count": self._error_count,
            "dropped_count": self._dropped_count,
            "uptime_seconds": round(uptime, 1),
        }

    def start(self) -> None:
        """Start the consumer task on the running loop (no-op if already running)."""
        if self.running:
            return
        self._start_time = time.time()
        self._task = asyncio.create_task(self._run(), name="feedback-worker")
        logger.info("Feedback worker started")

    def submit(self, message: WorkerMessage) -> bool:
        """Enqueue a message without blocking. Returns False when it had to be dropped."""
        if not self.running:
            self.start()
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self._dropped_count += 1
            logger.error(
                f"PersonalizationUpdateFailure: queue full, dropped {message.message_id}"
            )
            return False
        return True

    def submit_interaction(self, interaction: CompletedInteraction) -> bool:
        return self.submit(InteractionMessage(interaction=interaction))

    def submit_feedback(self, feedback: FeedbackRecord) -> bool:
        return self.submit(FeedbackMessage(feedback=feedback))

    async def handle(self, message: WorkerMessage) -> None:
        """Apply one message to the engine."""
        try:
            if isinstance(message, InteractionMessage):
                await self.engine.record_interaction(message.interaction)
            else:
                await self.engine.apply_feedback(message.feedback)
        except Exception as e:
            raise PersonalizationUpdateFailure(f"{message.message_id}: {e}") from e

    async def _requeue_later(self, message: WorkerMessage) -> None:
        await asyncio.sleep(self.retry_delay * message.attempts)
        await self._queue.put(message)

    async def _process(self, message: WorkerMessage) -> None:
        message.attempts += 1
        try:
            await self.handle(message)
        except PersonalizationUpdateFailure as e:
            self._error_count += 1
            if message.attempts < self.max_attempts:
                logger.warning(
                    f"PersonalizationUpdateFailure (attempt {message.attempts}/{self.max_attempts}): {e}"
                )
                task = asyncio.create_task(self._requeue_later(message))
                self._retry_tasks.add(task)
                task.add_done_callback(self._retry_tasks.discard)
            else:
                self._dropped_count += 1
                logger.error(
                    f"PersonalizationUpdateFailure: giving up on {message.message_id} "
                    f"after {message.attempts} attempts: {e}"
                )
        else:
            self._processed_count += 1

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self._process(message)
            finally:
                self._queue.task_done()

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until every submitted message (including retries) has settled."""

        async def _wait() -> None:
            while True:
                await self._queue.join()
                if not self._retry_tasks:
                    return
                await asyncio.gather(*list(self._retry_tasks))

        await asyncio.wait_for(_wait(), timeout=timeout)

    async def stop(self) -> None:
        """Cancel the consumer and any pending retries."""
        tasks = [t for t in [self._task, *self._retry_tasks] if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._retry_tasks.clear()
        logger.info("Feedback worker stopped")
