import pytest

from loopwright.compaction import SimpleCompaction
from loopwright.llm import LLMProvider, LLMResponse, Message, Role, Usage


class SummaryProvider(LLMProvider):
    def __init__(self, summary: str = "the summary", error: Exception | None = None):
        self.summary = summary
        self.error = error
        self.prompts: list[str] = []

    async def generate_stream(self, system_prompt, history, tools=None):
        if False:
            yield None

    async def generate(self, system_prompt, history, tools=None) -> LLMResponse:
        self.prompts.append(history[0].text)
        if self.error is not None:
            raise self.error
        return LLMResponse(message=Message.assistant(self.summary), usage=Usage(prompt_tokens=10, completion_tokens=5))


def _conversation(turns: int) -> list[Message]:
    messages: list[Message] = []
    for i in range(turns):
        messages.append(Message.user(f"question {i}"))
        messages.append(Message.assistant(f"answer {i}"))
    return messages


@pytest.mark.asyncio
async def test_compaction_summarizes_all_but_last_messages() -> None:
    provider = SummaryProvider()
    history = _conversation(5)

    result = await SimpleCompaction(preserved_messages=2).compact(history, provider)

    assert len(result) == 3
    assert result[0].role == Role.ASSISTANT
    assert result[0].content[0].text.startswith("Previous context has been compacted")
    assert result[0].content[1].text == "the summary"
    assert result[1:] == history[-2:]
    assert "question 0" in provider.prompts[0]
    assert "answer 4" not in provider.prompts[0]


@pytest.mark.asyncio
async def test_tool_messages_do_not_count_as_preserved() -> None:
    provider = SummaryProvider()
    history = [
        Message.user("old"),
        Message.user("do it"),
        Message.assistant("calling"),
        Message.tool("c1", "tool output"),
    ]

    result = await SimpleCompaction(preserved_messages=2).compact(history, provider)

    assert result[1:] == history[1:]


@pytest.mark.asyncio
async def test_short_history_is_returned_unchanged() -> None:
    provider = SummaryProvider()
    history = [Message.user("only one")]

    result = await SimpleCompaction(preserved_messages=2).compact(history, provider)

    assert result == history
    assert provider.prompts == []


@pytest.mark.asyncio
async def test_nothing_before_preserved_window_skips_model_call() -> None:
    provider = SummaryProvider()
    history = _conversation(1)

    result = await SimpleCompaction(preserved_messages=2).compact(history, provider)

    assert result == history
    assert provider.prompts == []


@pytest.mark.asyncio
async def test_model_failure_keeps_original_history() -> None:
    provider = SummaryProvider(error=RuntimeError("overloaded"))
    history = _conversation(4)

    result = await SimpleCompaction(preserved_messages=2).compact(history, provider)

    assert result == history
