"""Conversation types and the model-provider interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Iterable

from loopwright.logging import get_logger

log = get_logger(__name__)


class Role(str, Enum):
    """Message author."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ContentPart:
    """One ordered piece of message content."""

    text: str
    type: str = "text"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "text": self.text}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContentPart":
        return cls(text=str(data.get("text", "")), type=str(data.get("type", "text")))


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    ``arguments`` is the raw argument text exactly as streamed; parsing is
    deferred to the tool registry.
    """

    id: str | None
    name: str | None
    arguments: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        function = data.get("function") or {}
        return cls(
            id=data.get("id"),
            name=function.get("name"),
            arguments=function.get("arguments"),
        )


@dataclass(frozen=True)
class Message:
    """A single turn unit in the conversation; never mutated once appended."""

    role: Role
    content: tuple[ContentPart, ...] = ()
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None

    @classmethod
    def user(cls, text: str | Iterable[ContentPart]) -> "Message":
        return cls(role=Role.USER, content=_as_parts(text))

    @classmethod
    def assistant(
        cls,
        text: str | Iterable[ContentPart] = "",
        tool_calls: Iterable[ToolCall] | None = None,
    ) -> "Message":
        return cls(
            role=Role.ASSISTANT,
            content=_as_parts(text),
            tool_calls=tuple(tool_calls or ()),
        )

    @classmethod
    def tool(cls, tool_call_id: str, text: str) -> "Message":
        return cls(role=Role.TOOL, content=_as_parts(text), tool_call_id=tool_call_id)

    @property
    def text(self) -> str:
        """Concatenated text of all non-empty text parts."""
        return "\n".join(part.text for part in self.content if part.type == "text" and part.text)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "role": self.role.value,
            "content": [part.to_dict() for part in self.content],
        }
        if self.tool_calls:
            data["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        raw_content = data.get("content") or []
        if isinstance(raw_content, str):
            content = _as_parts(raw_content)
        else:
            content = tuple(ContentPart.from_dict(part) for part in raw_content)
        return cls(
            role=Role(data["role"]),
            content=content,
            tool_calls=tuple(ToolCall.from_dict(call) for call in data.get("tool_calls") or []),
            tool_call_id=data.get("tool_call_id"),
        )


def _as_parts(text: str | Iterable[ContentPart] | None) -> tuple[ContentPart, ...]:
    if text is None:
        return ()
    if isinstance(text, str):
        return (ContentPart(text=text),) if text else ()
    return tuple(text)


@dataclass
class Usage:
    """Token accounting reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChunkType(str, Enum):
    CONTENT = "content"
    TOOL_CALL = "tool_call"
    DONE = "done"


@dataclass
class StreamChunk:
    """One incremental piece of a streamed model response."""

    type: ChunkType
    content_delta: str | None = None
    tool_call_id: str | None = None
    function_name: str | None = None
    arguments_delta: str | None = None
    usage: Usage | None = None

    @classmethod
    def content(cls, delta: str) -> "StreamChunk":
        return cls(type=ChunkType.CONTENT, content_delta=delta)

    @classmethod
    def tool_call(
        cls,
        tool_call_id: str | None = None,
        function_name: str | None = None,
        arguments_delta: str | None = None,
    ) -> "StreamChunk":
        return cls(
            type=ChunkType.TOOL_CALL,
            tool_call_id=tool_call_id,
            function_name=function_name,
            arguments_delta=arguments_delta,
        )

    @classmethod
    def done(cls, usage: Usage | None = None) -> "StreamChunk":
        return cls(type=ChunkType.DONE, usage=usage)


@dataclass
class LLMResponse:
    """Non-streaming response from the LLM."""

    message: Message
    usage: Usage | None = None
    model: str = ""


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    model: str = ""
    max_context_size: int = 128000

    @abstractmethod
    def generate_stream(
        self,
        system_prompt: str,
        history: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream one assistant turn as content, tool-call and done chunks."""

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        history: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Produce one complete assistant turn."""

    def count_tokens(self, text: str) -> int:
        """Rough estimate: ~1 token per 4 characters for English."""
        return len(text) // 4

    async def close(self) -> None:
        return None


def create_provider(
    provider: str = "openai",
    model: str = "gpt-4o-mini",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float = 0.2,
    max_context_size: int = 128000,
    timeout: float = 120.0,
) -> LLMProvider:
    """Create an LLM provider.

    Args:
        provider: Provider name (openai, ollama, or any OpenAI-compatible gateway)
        model: Model name
        api_key: Optional API key
        base_url: Optional base URL
        temperature: Default temperature
        max_context_size: Model context window in tokens
        timeout: Request timeout in seconds

    Returns:
        Configured LLMProvider instance
    """
    from loopwright.llm.openai_compatible import OLLAMA_BASE_URL, OpenAICompatibleProvider

    name = (provider or "").strip().lower()
    if name == "ollama":
        base_url = base_url or OLLAMA_BASE_URL
    elif name not in {"openai", "openai_compatible", "deepseek", "moonshot", "qwen"}:
        raise ValueError(f"Provider '{provider}' not supported. Use an OpenAI-compatible provider.")

    log.debug("Creating provider", provider=name, model=model, base_url=base_url)
    return OpenAICompatibleProvider(
        model=model,
        base_url=base_url or "https://api.openai.com/v1",
        api_key=api_key,
        temperature=temperature,
        max_context_size=max_context_size,
        timeout=timeout,
    )

