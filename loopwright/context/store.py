"""In-memory conversation context backed by an append-only log."""

from pathlib import Path
from typing import Iterable

from loopwright.config import ContextConfig
from loopwright.context.batch import AsyncBatchContextRepository
from loopwright.context.repository import ContextRepository, JsonlContextRepository
from loopwright.exceptions import CheckpointNotFoundError
from loopwright.llm import Message
from loopwright.logging import get_logger

log = get_logger(__name__)


def checkpoint_marker(checkpoint_id: int) -> str:
    return f"<system>CHECKPOINT {checkpoint_id}</system>"


class Context:
    """Ordered message history, token count and checkpoint counter.

    Every mutation is written to the repository before the in-memory state
    changes, so the history always equals what a replay of the log would
    produce. A context is mutated only by the loop that owns it.
    """

    def __init__(self, repository: ContextRepository):
        self.repository = repository
        self._history: list[Message] = []
        self._token_count = 0
        self._next_checkpoint_id = 0

    @property
    def file_backend(self) -> Path:
        return self.repository.file_backend

    @property
    def history(self) -> tuple[Message, ...]:
        return tuple(self._history)

    @property
    def token_count(self) -> int:
        return self._token_count

    @property
    def n_checkpoints(self) -> int:
        return self._next_checkpoint_id

    async def restore(self) -> bool:
        """Load state from the log. Returns False when there was nothing to load."""
        if self._history:
            raise RuntimeError("Context must be empty before restore")
        if not self.file_backend.exists() or self.file_backend.stat().st_size == 0:
            log.debug("No context log to restore", path=str(self.file_backend))
            return False

        restored = await self.repository.restore()
        self._history = list(restored.messages)
        self._token_count = restored.token_count
        self._next_checkpoint_id = restored.next_checkpoint_id
        return True

    async def append_message(self, message: Message | Iterable[Message]) -> None:
        messages = [message] if isinstance(message, Message) else list(message)
        if not messages:
            return
        await self.repository.append_messages(messages)
        self._history.extend(messages)

    async def update_token_count(self, token_count: int) -> None:
        await self.repository.update_token_count(token_count)
        self._token_count = token_count

    async def checkpoint(self, add_user_message: bool = False) -> int:
        """Create the next checkpoint and return its id."""
        checkpoint_id = self._next_checkpoint_id
        await self.repository.save_checkpoint(checkpoint_id)
        self._next_checkpoint_id += 1
        log.debug("Checkpoint created", checkpoint=checkpoint_id)

        if add_user_message:
            await self.append_message(Message.user(checkpoint_marker(checkpoint_id)))
        return checkpoint_id

    async def revert_to(self, checkpoint_id: int) -> None:
        """Drop everything from ``checkpoint_id`` onward.

        The previous log is kept as a rotated backup. Checkpoint ids are never
        handed out twice in one session, so the next id is at least
        ``checkpoint_id + 1``.
        """
        if checkpoint_id < 0 or checkpoint_id >= self._next_checkpoint_id:
            raise CheckpointNotFoundError(checkpoint_id)

        restored = await self.repository.revert_to_checkpoint(checkpoint_id)
        self._history = list(restored.messages)
        self._token_count = restored.token_count
        self._next_checkpoint_id = max(restored.next_checkpoint_id, checkpoint_id + 1)
        log.info(
            "Context reverted",
            checkpoint=checkpoint_id,
            messages=len(self._history),
            next_checkpoint=self._next_checkpoint_id,
        )

    async def flush(self) -> None:
        await self.repository.flush()

    async def close(self) -> None:
        await self.repository.close()


def create_repository(path: Path | str, config: ContextConfig | None = None) -> ContextRepository:
    """Build the repository selected by the context configuration."""
    config = config or ContextConfig()
    if config.backend == "async_batch":
        return AsyncBatchContextRepository(
            path,
            batch_size=config.batch_size,
            flush_interval_seconds=config.flush_interval_seconds,
        )
    return JsonlContextRepository(path)


def create_context(path: Path | str, config: ContextConfig | None = None) -> Context:
    return Context(create_repository(path, config))
