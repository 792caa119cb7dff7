"""Append-only JSONL persistence for conversation context.

Every line of the log is one JSON object:

- an ordinary message (``Message.to_dict()``)
- a token-count marker ``{"role": "_usage", "token_count": 1000}``
- a checkpoint marker ``{"role": "_checkpoint", "id": 1}``

Reverting rotates the active log to ``<name>.<n>`` (first unused n >= 1)
before writing a fresh, truncated log.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from loopwright.exceptions import PersistenceError
from loopwright.llm import Message
from loopwright.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

USAGE_ROLE = "_usage"
CHECKPOINT_ROLE = "_checkpoint"
MAX_ROTATIONS = 1000


@dataclass
class RestoredContext:
    """State reconstructed by replaying a log."""

    messages: list[Message] = field(default_factory=list)
    token_count: int = 0
    next_checkpoint_id: int = 0


def encode_message(message: Message) -> str:
    return json.dumps(message.to_dict(), ensure_ascii=False)


def encode_usage(token_count: int) -> str:
    return json.dumps({"role": USAGE_ROLE, "token_count": token_count})


def encode_checkpoint(checkpoint_id: int) -> str:
    return json.dumps({"role": CHECKPOINT_ROLE, "id": checkpoint_id})


def replay(
    lines: Iterable[str],
    stop_at_checkpoint: int | None = None,
    keep: Callable[[str], None] | None = None,
) -> RestoredContext:
    """Rebuild context from log lines.

    Stops before the first checkpoint marker whose id is at least
    ``stop_at_checkpoint``.
    Each consumed non-blank line is passed to ``keep`` (used to rewrite the
    truncated log during a revert).
    """
    restored = RestoredContext()
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        try:
            record: dict[str, Any] = json.loads(line)
            role = record["role"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise PersistenceError(f"Corrupted context record: {line[:200]}") from e

        if role == CHECKPOINT_ROLE and stop_at_checkpoint is not None and int(record["id"]) >= stop_at_checkpoint:
            break

        if keep is not None:
            keep(line)

        if role == USAGE_ROLE:
            restored.token_count = int(record["token_count"])
        elif role == CHECKPOINT_ROLE:
            restored.next_checkpoint_id = int(record["id"]) + 1
        else:
            restored.messages.append(Message.from_dict(record))
    return restored


async def run_blocking(func: Callable[[], T]) -> T:
    """Run blocking file I/O off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func)


class ContextRepository(ABC):
    """Durability backend for a conversation context."""

    def __init__(self, file_backend: Path | str):
        self.file_backend = Path(file_backend)

    @abstractmethod
    async def restore(self) -> RestoredContext:
        """Replay the whole log."""

    @abstractmethod
    async def append_messages(self, messages: list[Message]) -> None:
        """Persist ordinary messages in order."""

    @abstractmethod
    async def update_token_count(self, token_count: int) -> None:
        """Persist a token-count marker."""

    @abstractmethod
    async def save_checkpoint(self, checkpoint_id: int) -> None:
        """Persist a checkpoint marker."""

    @abstractmethod
    async def revert_to_checkpoint(self, checkpoint_id: int) -> RestoredContext:
        """Rotate the log and keep only the records before ``checkpoint_id``."""

    async def flush(self) -> None:
        """Make every accepted record durable. No-op for unbuffered writers."""
        return None

    async def close(self) -> None:
        await self.flush()


class JsonlContextRepository(ContextRepository):
    """Synchronous writer: every call appends straight to the log file."""

    def _read_lines(self) -> list[str]:
        if not self.file_backend.exists():
            return []
        return self.file_backend.read_text(encoding="utf-8").splitlines()

    def _append_lines(self, lines: list[str]) -> None:
        if not lines:
            return
        try:
            self.file_backend.parent.mkdir(parents=True, exist_ok=True)
            with open(self.file_backend, "a", encoding="utf-8") as f:
                for line in lines:
                    f.write(line)
                    f.write("\n")
        except OSError as e:
            log.error("Failed to persist context records", path=str(self.file_backend), error=str(e))
            raise PersistenceError(f"Failed to persist context records: {e}") from e

    async def write_lines(self, lines: list[str]) -> None:
        """Append already-serialized records."""
        await run_blocking(lambda: self._append_lines(lines))

    async def restore(self) -> RestoredContext:
        log.debug("Restoring context", path=str(self.file_backend))
        try:
            lines = await run_blocking(self._read_lines)
        except OSError as e:
            raise PersistenceError(f"Failed to read context log: {e}") from e
        restored = replay(lines)
        log.info(
            "Restored context",
            messages=len(restored.messages),
            tokens=restored.token_count,
            checkpoints=restored.next_checkpoint_id,
        )
        return restored

    async def append_messages(self, messages: list[Message]) -> None:
        await self.write_lines([encode_message(message) for message in messages])

    async def update_token_count(self, token_count: int) -> None:
        await self.write_lines([encode_usage(token_count)])

    async def save_checkpoint(self, checkpoint_id: int) -> None:
        await self.write_lines([encode_checkpoint(checkpoint_id)])

    def next_rotation_path(self) -> Path:
        """First unused ``<name>.<n>`` sibling of the active log."""
        for index in range(1, MAX_ROTATIONS):
            candidate = self.file_backend.with_name(f"{self.file_backend.name}.{index}")
            if not candidate.exists():
                return candidate
        raise PersistenceError(f"No available rotation path for {self.file_backend}")

    def _revert(self, checkpoint_id: int) -> RestoredContext:
        rotated = self.next_rotation_path()
        self.file_backend.replace(rotated)
        log.debug("Rotated context log", path=str(rotated))

        with open(rotated, encoding="utf-8") as source, open(self.file_backend, "w", encoding="utf-8") as target:
            restored = replay(
                source,
                stop_at_checkpoint=checkpoint_id,
                keep=lambda line: target.write(line + "\n"),
            )
        return restored

    async def revert_to_checkpoint(self, checkpoint_id: int) -> RestoredContext:
        log.debug("Reverting context log", checkpoint=checkpoint_id)
        try:
            restored = await run_blocking(lambda: self._revert(checkpoint_id))
        except OSError as e:
            log.error("Failed to revert context log", checkpoint=checkpoint_id, error=str(e))
            raise PersistenceError(f"Failed to revert to checkpoint {checkpoint_id}: {e}") from e
        log.info(
            "Reverted context log",
            checkpoint=checkpoint_id,
            messages=len(restored.messages),
            tokens=restored.token_count,
        )
        return restored
