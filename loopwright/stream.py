"""Rebuild one assistant turn from a streamed model response."""

import uuid
from dataclasses import dataclass, field
from typing import AsyncIterable, Callable

from loopwright.llm import ChunkType, StreamChunk, ToolCall, Usage
from loopwright.logging import get_logger, preview

log = get_logger(__name__)

PLACEHOLDER_PREFIX = "temp_"


def new_placeholder_id() -> str:
    """Locally unique id for a call whose real id has not arrived yet."""
    return f"{PLACEHOLDER_PREFIX}{uuid.uuid4().hex}"


def is_placeholder_id(call_id: str | None) -> bool:
    return bool(call_id) and call_id.startswith(PLACEHOLDER_PREFIX)


@dataclass
class AssistantTurn:
    """Text, tool calls and usage of one completed model response."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage | None = None


@dataclass
class _PendingCall:
    id: str | None
    name: str | None = None
    arguments: list[str] = field(default_factory=list)

    def to_tool_call(self) -> ToolCall:
        return ToolCall(id=self.id, name=self.name, arguments="".join(self.arguments))


class StreamAccumulator:
    """Fold a chunk stream into an :class:`AssistantTurn`.

    Content deltas are echoed through ``on_content`` as they arrive. Tool-call
    deltas build calls one at a time; a chunk with a different id finalizes
    the call in progress. Argument fragments that arrive before any id get a
    placeholder id that the first real id replaces.
    """

    def __init__(
        self,
        on_content: Callable[[str], None] | None = None,
        id_factory: Callable[[], str] = new_placeholder_id,
    ):
        self._on_content = on_content
        self._id_factory = id_factory
        self._text: list[str] = []
        self._calls: list[ToolCall] = []
        self._current: _PendingCall | None = None
        self._usage: Usage | None = None
        self._finalized = False

    def feed(self, chunk: StreamChunk) -> None:
        if self._finalized:
            raise RuntimeError("Accumulator already finalized")

        if chunk.type == ChunkType.CONTENT:
            if chunk.content_delta:
                self._text.append(chunk.content_delta)
                if self._on_content is not None:
                    self._on_content(chunk.content_delta)
        elif chunk.type == ChunkType.TOOL_CALL:
            self._feed_tool_call(chunk)
        elif chunk.type == ChunkType.DONE:
            if chunk.usage is not None:
                self._usage = chunk.usage

    def _feed_tool_call(self, chunk: StreamChunk) -> None:
        call_id = chunk.tool_call_id
        current = self._current

        if call_id:
            if current is not None and is_placeholder_id(current.id) and not is_placeholder_id(call_id):
                log.debug("Rebinding placeholder tool call id", placeholder=current.id, tool_call_id=call_id)
                current.id = call_id
            elif current is None or current.id != call_id:
                self._finish_current()
                current = self._current = _PendingCall(id=call_id)
        elif current is None:
            if chunk.function_name is None and chunk.arguments_delta is None:
                return
            current = self._current = _PendingCall(id=self._id_factory())
            log.debug("Started tool call with placeholder id", tool_call_id=current.id)

        if chunk.function_name and current.name is None:
            current.name = chunk.function_name
        if chunk.arguments_delta is not None:
            current.arguments.append(chunk.arguments_delta)

    def _finish_current(self) -> None:
        if self._current is None:
            return
        call = self._current.to_tool_call()
        if not call.id or not call.name:
            log.error(
                "Malformed tool call in stream",
                tool_call_id=call.id,
                tool=call.name,
                arguments=preview(call.arguments),
            )
        self._calls.append(call)
        self._current = None

    def finalize(self) -> AssistantTurn:
        """Close any call in progress and return the assembled turn."""
        if not self._finalized:
            self._finish_current()
            self._finalized = True
        return AssistantTurn(
            content="".join(self._text),
            tool_calls=list(self._calls),
            usage=self._usage,
        )

    async def consume(self, stream: AsyncIterable[StreamChunk]) -> AssistantTurn:
        async for chunk in stream:
            self.feed(chunk)
        return self.finalize()
