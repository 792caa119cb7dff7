import json

import httpx
import pytest

from loopwright.exceptions import LLMAPIError
from loopwright.llm import Message, ToolCall, create_provider
from loopwright.llm.openai_compatible import OLLAMA_BASE_URL, OpenAICompatibleProvider
from loopwright.stream import StreamAccumulator


def _sse(*events: dict) -> bytes:
    lines = [f"data: {json.dumps(event)}" for event in events]
    lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode("utf-8")


def test_create_provider_supports_ollama() -> None:
    provider = create_provider(provider="ollama", model="llama3.2")

    assert isinstance(provider, OpenAICompatibleProvider)
    assert provider.base_url == OLLAMA_BASE_URL
    assert provider.model == "llama3.2"


def test_create_provider_rejects_unknown_provider() -> None:
    with pytest.raises(ValueError, match="not supported"):
        create_provider(provider="carrier-pigeon")


def test_history_is_converted_to_chat_format() -> None:
    history = [
        Message.user("list files"),
        Message.assistant("", [ToolCall(id="c1", name="Glob", arguments='{"pattern":"*"}')]),
        Message.tool("c1", "a.txt"),
    ]

    converted = OpenAICompatibleProvider._convert_messages("system text", history)

    assert converted[0] == {"role": "system", "content": "system text"}
    assert converted[2]["content"] is None
    assert converted[2]["tool_calls"][0]["function"]["arguments"] == '{"pattern":"*"}'
    assert converted[3] == {"role": "tool", "content": "a.txt", "tool_call_id": "c1"}


@pytest.mark.asyncio
async def test_stream_yields_content_tool_calls_and_usage() -> None:
    seen_bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_bodies.append(json.loads(request.content))
        body = _sse(
            {"choices": [{"delta": {"content": "Looking"}}]},
            {"choices": [{"delta": {"tool_calls": [{"id": "c1", "function": {"name": "Glob", "arguments": '{"pat'}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"function": {"arguments": 'tern":"*"}'}}]}}]},
            {"choices": [], "usage": {"prompt_tokens": 30, "completion_tokens": 12, "total_tokens": 42}},
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = OpenAICompatibleProvider(model="m", base_url="http://llm.test/v1", client=client)

    turn = await StreamAccumulator().consume(
        provider.generate_stream("sys", [Message.user("hi")], [{"name": "Glob", "parameters": {}}])
    )
    await provider.close()

    assert turn.content == "Looking"
    assert turn.tool_calls == [ToolCall(id="c1", name="Glob", arguments='{"pattern":"*"}')]
    assert turn.usage is not None and turn.usage.total_tokens == 42
    assert seen_bodies[0]["stream"] is True
    assert seen_bodies[0]["tools"][0]["function"]["name"] == "Glob"


@pytest.mark.asyncio
async def test_stream_raises_api_error_on_http_failure() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")))
    provider = OpenAICompatibleProvider(model="m", base_url="http://llm.test/v1", client=client)

    with pytest.raises(LLMAPIError) as exc_info:
        async for _ in provider.generate_stream("sys", [Message.user("hi")]):
            pass
    await provider.close()

    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_generate_parses_complete_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "model": "m",
                "choices": [{"message": {"content": "summary text"}}],
                "usage": {"prompt_tokens": 5, "completion_tokens": 3},
            },
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = OpenAICompatibleProvider(model="m", base_url="http://llm.test/v1", client=client)

    response = await provider.generate("sys", [Message.user("summarize")])
    await provider.close()

    assert response.message.text == "summary text"
    assert response.usage is not None and response.usage.total_tokens == 8
