"""OpenAI-compatible chat completions provider - direct HTTP calls via httpx."""

import json
from typing import Any, AsyncIterator

import httpx

from loopwright.exceptions import LLMAPIError, LLMError
from loopwright.llm import (
    LLMProvider,
    LLMResponse,
    Message,
    Role,
    StreamChunk,
    ToolCall,
    Usage,
)
from loopwright.logging import get_logger

log = get_logger(__name__)


OLLAMA_BASE_URL = "http://127.0.0.1:11434/v1"


class OpenAICompatibleProvider(LLMProvider):
    """Provider for any endpoint speaking the OpenAI chat completions protocol."""

    def __init__(
        self,
        model: str,
        base_url: str,
        api_key: str | None = None,
        temperature: float = 0.2,
        max_context_size: int = 128000,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.temperature = temperature
        self.max_context_size = max_context_size
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _convert_messages(system_prompt: str, history: list[Message]) -> list[dict[str, Any]]:
        """Convert conversation history to chat completions format."""
        result: list[dict[str, Any]] = []
        if system_prompt:
            result.append({"role": "system", "content": system_prompt})

        for msg in history:
            entry: dict[str, Any] = {"role": msg.role.value, "content": msg.text}
            if msg.role == Role.ASSISTANT and msg.tool_calls:
                entry["tool_calls"] = [call.to_dict() for call in msg.tool_calls]
                if not msg.text:
                    entry["content"] = None
            if msg.role == Role.TOOL:
                entry["tool_call_id"] = msg.tool_call_id
            result.append(entry)
        return result

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.get("name"),
                    "description": tool.get("description", ""),
                    "parameters": tool.get("parameters") or {"type": "object", "properties": {}},
                },
            }
            for tool in tools or []
            if tool.get("name")
        ]

    def _body(
        self,
        system_prompt: str,
        history: list[Message],
        tools: list[dict[str, Any]] | None,
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": self._convert_messages(system_prompt, history),
            "temperature": self.temperature,
            "stream": stream,
        }
        converted = self._convert_tools(tools)
        if converted:
            body["tools"] = converted
        if stream:
            body["stream_options"] = {"include_usage": True}
        return body

    @staticmethod
    def _parse_usage(data: dict[str, Any] | None) -> Usage | None:
        if not data:
            return None
        prompt = int(data.get("prompt_tokens", 0) or 0)
        completion = int(data.get("completion_tokens", 0) or 0)
        return Usage(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(data.get("total_tokens", prompt + completion) or 0),
        )

    async def generate(
        self,
        system_prompt: str,
        history: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        """Generate a complete response."""
        url = f"{self.base_url}/chat/completions"
        body = self._body(system_prompt, history, tools, stream=False)

        try:
            log.debug("Calling chat completions", model=self.model, msg_count=len(body["messages"]))
            response = await self.client.post(url, json=body, headers=self._headers())
            if not response.is_success:
                raise LLMAPIError(
                    f"API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )
            data = response.json()
        except httpx.HTTPError as e:
            raise LLMAPIError(f"HTTP error: {e}") from e
        except json.JSONDecodeError as e:
            raise LLMError(f"Response decode error: {e}") from e

        choices = data.get("choices") or [{}]
        raw = choices[0].get("message") or {}
        tool_calls = [
            ToolCall(
                id=tc.get("id"),
                name=(tc.get("function") or {}).get("name"),
                arguments=(tc.get("function") or {}).get("arguments"),
            )
            for tc in raw.get("tool_calls") or []
        ]
        return LLMResponse(
            message=Message.assistant(raw.get("content") or "", tool_calls),
            usage=self._parse_usage(data.get("usage")),
            model=str(data.get("model", self.model)),
        )

    async def generate_stream(
        self,
        system_prompt: str,
        history: list[Message],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response as content / tool-call / done chunks."""
        url = f"{self.base_url}/chat/completions"
        body = self._body(system_prompt, history, tools, stream=True)

        usage: Usage | None = None
        try:
            async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    payload = line[len("data:"):].strip()
                    if payload == "[DONE]":
                        break
                    try:
                        chunk = json.loads(payload)
                    except json.JSONDecodeError:
                        log.warning("Skipping undecodable stream line", line=payload[:200])
                        continue

                    usage = self._parse_usage(chunk.get("usage")) or usage
                    for choice in chunk.get("choices") or []:
                        delta = choice.get("delta") or {}
                        if delta.get("content"):
                            yield StreamChunk.content(delta["content"])
                        for tc in delta.get("tool_calls") or []:
                            function = tc.get("function") or {}
                            yield StreamChunk.tool_call(
                                tool_call_id=tc.get("id") or None,
                                function_name=function.get("name") or None,
                                arguments_delta=function.get("arguments") or None,
                            )
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Streaming error: {e}") from e

        yield StreamChunk.done(usage)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
