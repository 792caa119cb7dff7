"""Batched asynchronous writer for the context log."""

import asyncio
from collections import deque
from pathlib import Path

from loopwright.context.repository import (
    ContextRepository,
    JsonlContextRepository,
    RestoredContext,
    encode_checkpoint,
    encode_message,
    encode_usage,
)
from loopwright.exceptions import PersistenceError
from loopwright.llm import Message
from loopwright.logging import get_logger

log = get_logger(__name__)


class AsyncBatchContextRepository(ContextRepository):
    """Queue serialized records and write them in batches.

    Messages are flushed once ``batch_size`` records are pending or when the
    periodic flusher fires; token-count and checkpoint markers flush at once.
    Only one flush runs at a time, and a revert drains the queue before it
    rotates the log. Reads (restore / revert replay) go through the plain
    JSONL repository.
    """

    def __init__(
        self,
        file_backend: Path | str,
        batch_size: int = 10,
        flush_interval_seconds: float = 5.0,
    ):
        super().__init__(file_backend)
        self.batch_size = max(1, batch_size)
        self.flush_interval_seconds = flush_interval_seconds
        self._sync = JsonlContextRepository(self.file_backend)
        self._queue: deque[str] = deque()
        self._lock = asyncio.Lock()
        self._flushing = False
        self._flush_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def flushing(self) -> bool:
        return self._flushing

    def _ensure_periodic_flush(self) -> None:
        if self._closed or self.flush_interval_seconds <= 0:
            return
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.create_task(self._periodic_flush())
            log.debug(
                "Started periodic flush",
                interval=self.flush_interval_seconds,
                batch_size=self.batch_size,
            )

    async def _periodic_flush(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval_seconds)
            try:
                await self.flush()
            except PersistenceError as e:
                log.error("Periodic flush failed", path=str(self.file_backend), error=str(e))

    async def _enqueue(self, lines: list[str], flush_now: bool = False) -> None:
        if self._closed:
            raise PersistenceError(f"Repository for {self.file_backend} is closed")
        self._queue.extend(lines)
        self._ensure_periodic_flush()
        if flush_now or len(self._queue) >= self.batch_size:
            await self.flush()

    async def flush(self) -> None:
        """Write every queued record; a failed batch goes back to the queue head."""
        async with self._lock:
            if not self._queue:
                return
            self._flushing = True
            batch: list[str] = []
            while self._queue:
                batch.append(self._queue.popleft())
            try:
                await self._sync.write_lines(batch)
                log.debug("Flushed context records", count=len(batch))
            except PersistenceError:
                self._queue.extendleft(reversed(batch))
                raise
            finally:
                self._flushing = False

    async def restore(self) -> RestoredContext:
        await self.flush()
        return await self._sync.restore()

    async def append_messages(self, messages: list[Message]) -> None:
        await self._enqueue([encode_message(message) for message in messages])

    async def update_token_count(self, token_count: int) -> None:
        await self._enqueue([encode_usage(token_count)], flush_now=True)

    async def save_checkpoint(self, checkpoint_id: int) -> None:
        await self._enqueue([encode_checkpoint(checkpoint_id)], flush_now=True)

    async def revert_to_checkpoint(self, checkpoint_id: int) -> RestoredContext:
        await self.flush()
        async with self._lock:
            return await self._sync.revert_to_checkpoint(checkpoint_id)

    async def close(self) -> None:
        """Stop the periodic flusher and drain the queue."""
        log.info("Closing batched context repository", pending=len(self._queue))
        self._closed = True
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
        self._flush_task = None
        await self.flush()
