from pathlib import Path
from typing import Any

import pytest

from loopwright.agentspec import Agent
from loopwright.compaction import SimpleCompaction
from loopwright.config import LoopConfig
from loopwright.context import Context, JsonlContextRepository
from loopwright.exceptions import MaxStepsReachedError, PersistenceError
from loopwright.executor import MODEL_ERROR_PREFIX, AgentExecutor, LoopState, StopReason
from loopwright.llm import LLMProvider, LLMResponse, Message, Role, StreamChunk, Usage
from loopwright.tools.glob import GlobTool
from loopwright.tools.registry import ToolRegistry
from loopwright.wire import (
    CheckpointCreated,
    CompactionBegin,
    CompactionEnd,
    ContentPartEvent,
    StepBegin,
    StepInterrupted,
    Wire,
    WireEvent,
)


class ScriptedProvider(LLMProvider):
    """Replays one scripted turn per model call; the last turn repeats."""

    def __init__(self, turns: list[Any], summary: str = "summary of earlier work", max_context_size: int = 128000):
        self.turns = turns
        self.summary = summary
        self.max_context_size = max_context_size
        self.histories: list[list[Message]] = []
        self.tool_schemas: list[Any] = []
        self.generate_calls = 0

    async def generate_stream(self, system_prompt, history, tools=None):
        self.histories.append(list(history))
        self.tool_schemas.append(tools)
        turn = self.turns[min(len(self.histories) - 1, len(self.turns) - 1)]
        if isinstance(turn, Exception):
            raise turn
        for chunk in turn:
            yield chunk

    async def generate(self, system_prompt, history, tools=None) -> LLMResponse:
        self.generate_calls += 1
        return LLMResponse(message=Message.assistant(self.summary))


class FailingUsageRepository(JsonlContextRepository):
    async def update_token_count(self, token_count: int) -> None:
        raise PersistenceError("disk full")


def _text_turn(text: str, tokens: int = 10) -> list[StreamChunk]:
    return [StreamChunk.content(text), StreamChunk.done(Usage(total_tokens=tokens))]


def _glob_turn(call_id: str = "call_1") -> list[StreamChunk]:
    return [
        StreamChunk.content("Let me look."),
        StreamChunk.tool_call(tool_call_id=call_id, function_name="Glob", arguments_delta='{"pattern":'),
        StreamChunk.tool_call(arguments_delta='"*"}'),
        StreamChunk.done(Usage(total_tokens=20)),
    ]


def _executor(
    tmp_path: Path,
    provider: LLMProvider,
    loop_config: LoopConfig | None = None,
    context: Context | None = None,
) -> tuple[AgentExecutor, list[WireEvent]]:
    work_dir = tmp_path / "work"
    work_dir.mkdir(exist_ok=True)
    (work_dir / "a.txt").write_text("a", encoding="utf-8")

    registry = ToolRegistry(work_dir=work_dir)
    registry.register(GlobTool())
    wire = Wire()
    events: list[WireEvent] = []
    wire.subscribe(events.append)
    executor = AgentExecutor(
        Agent(name="tester", system_prompt="You are a test agent.", tools=["Glob"]),
        provider,
        context or Context(JsonlContextRepository(tmp_path / "history.jsonl")),
        wire,
        registry,
        SimpleCompaction(preserved_messages=2),
        loop_config=loop_config,
    )
    return executor, events


@pytest.mark.asyncio
async def test_fresh_session_tool_round_trip(tmp_path: Path):
    provider = ScriptedProvider([_glob_turn(), _text_turn("There is one file: a.txt")])
    executor, events = _executor(tmp_path, provider)

    reason = await executor.execute("list files")

    history = executor.context.history
    assert reason == StopReason.NO_TOOL_CALLS
    assert executor.state == LoopState.DONE
    assert [message.role for message in history] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
    assert history[0].text == "list files"
    assert history[1].tool_calls[0].name == "Glob"
    assert history[1].tool_calls[0].arguments == '{"pattern":"*"}'
    assert history[2].tool_call_id == "call_1"
    assert "a.txt" in history[2].text
    assert history[3].text == "There is one file: a.txt"
    assert executor.context.token_count == 10
    assert provider.tool_schemas[0][0]["name"] == "Glob"

    assert [type(event) for event in events] == [
        StepBegin,
        CheckpointCreated,
        ContentPartEvent,
        StepBegin,
        CheckpointCreated,
        ContentPartEvent,
    ]
    assert [event.checkpoint_id for event in events if isinstance(event, CheckpointCreated)] == [1, 2]
    assert [event.step_no for event in events if isinstance(event, StepBegin)] == [1, 2]


@pytest.mark.asyncio
async def test_model_sees_tool_result_on_next_step(tmp_path: Path):
    provider = ScriptedProvider([_glob_turn(), _text_turn("done")])
    executor, _ = _executor(tmp_path, provider)

    await executor.execute("list files")

    second_history = provider.histories[1]
    assert second_history[-1].role == Role.TOOL
    assert second_history[-1].tool_call_id == "call_1"


@pytest.mark.asyncio
async def test_thinking_limit_reached_on_fifth_consecutive_text_only_step(tmp_path: Path):
    provider = ScriptedProvider([_text_turn("thinking")])
    executor, _ = _executor(tmp_path, provider)

    reasons = [await executor.execute(f"question {i}") for i in range(5)]

    assert reasons[:4] == [StopReason.NO_TOOL_CALLS] * 4
    assert reasons[4] == StopReason.THINKING_LIMIT
    assert executor.consecutive_no_tool_steps == 5


@pytest.mark.asyncio
async def test_tool_step_resets_thinking_counter(tmp_path: Path):
    provider = ScriptedProvider([_text_turn("a"), _text_turn("b"), _glob_turn(), _text_turn("c")])
    executor, _ = _executor(tmp_path, provider)

    await executor.execute("one")
    await executor.execute("two")
    assert executor.consecutive_no_tool_steps == 2

    await executor.execute("three")
    assert executor.consecutive_no_tool_steps == 1


@pytest.mark.asyncio
async def test_max_steps_raises_before_next_step_begins(tmp_path: Path):
    provider = ScriptedProvider([_glob_turn()])
    executor, events = _executor(tmp_path, provider, LoopConfig(max_steps_per_run=2))

    with pytest.raises(MaxStepsReachedError) as exc_info:
        await executor.execute("loop forever")

    assert exc_info.value.max_steps == 2
    assert executor.state == LoopState.INTERRUPTED
    assert [event.step_no for event in events if isinstance(event, StepBegin)] == [1, 2]
    assert not any(isinstance(event, StepInterrupted) for event in events)


@pytest.mark.asyncio
async def test_model_error_ends_run_with_apology(tmp_path: Path):
    provider = ScriptedProvider([RuntimeError("connection reset")])
    executor, events = _executor(tmp_path, provider)

    reason = await executor.execute("hello")

    assert reason == StopReason.MODEL_ERROR
    last = executor.context.history[-1]
    assert last.role == Role.ASSISTANT
    assert last.text == f"{MODEL_ERROR_PREFIX}connection reset"
    assert not any(isinstance(event, StepInterrupted) for event in events)


@pytest.mark.asyncio
async def test_persistence_failure_interrupts_step(tmp_path: Path):
    provider = ScriptedProvider([_text_turn("hi")])
    context = Context(FailingUsageRepository(tmp_path / "history.jsonl"))
    executor, events = _executor(tmp_path, provider, context=context)

    with pytest.raises(PersistenceError):
        await executor.execute("hello")

    assert executor.state == LoopState.INTERRUPTED
    assert isinstance(events[-1], StepInterrupted)
    assert "disk full" in events[-1].error


@pytest.mark.asyncio
async def test_invalid_calls_are_answered_before_results(tmp_path: Path):
    turn = [
        StreamChunk.tool_call(tool_call_id="bad", arguments_delta="{}"),
        StreamChunk.tool_call(tool_call_id="good", function_name="Glob", arguments_delta='{"pattern":"*.txt"}'),
        StreamChunk.done(),
    ]
    provider = ScriptedProvider([turn, _text_turn("done")])
    executor, _ = _executor(tmp_path, provider)

    await executor.execute("find text files")

    history = executor.context.history
    assert [call.id for call in history[1].tool_calls] == ["good"]
    assert history[2].tool_call_id == "bad"
    assert history[2].text.startswith("Error: ")
    assert history[3].tool_call_id == "good"
    assert "a.txt" in history[3].text


@pytest.mark.asyncio
async def test_checkpoint_messages_are_optional(tmp_path: Path):
    provider = ScriptedProvider([_text_turn("hi")])
    executor, _ = _executor(tmp_path, provider, LoopConfig(checkpoint_messages=True))

    await executor.execute("hello")

    texts = [message.text for message in executor.context.history]
    assert texts == ["hello", "<system>CHECKPOINT 1</system>", "hi"]


@pytest.mark.asyncio
async def test_token_count_is_estimated_without_usage(tmp_path: Path):
    provider = ScriptedProvider([[StreamChunk.content("x" * 40), StreamChunk.done()]])
    executor, _ = _executor(tmp_path, provider)

    await executor.execute("y" * 40)

    assert executor.context.token_count == 20


@pytest.mark.asyncio
async def test_compaction_replaces_history_when_context_is_full(tmp_path: Path):
    provider = ScriptedProvider([_text_turn("continuing", tokens=100)], max_context_size=1000)
    context = Context(JsonlContextRepository(tmp_path / "history.jsonl"))
    await context.checkpoint()
    for i in range(10):
        await context.append_message(Message.user(f"question {i}"))
        await context.append_message(Message.assistant(f"answer {i}"))
    await context.update_token_count(5000)
    executor, events = _executor(tmp_path, provider, LoopConfig(reserved_tokens=0), context=context)

    reason = await executor.execute("next")

    history = context.history
    assert reason == StopReason.NO_TOOL_CALLS
    assert provider.generate_calls == 1
    assert len(history) == 4
    assert history[0].role == Role.ASSISTANT
    assert history[0].text.startswith("Previous context has been compacted")
    assert "summary of earlier work" in history[0].text
    assert history[1].text == "answer 9"
    assert history[2].text == "next"
    assert history[3].text == "continuing"
    assert context.token_count == 100
    assert (tmp_path / "history.jsonl.1").exists()

    begin = next(event for event in events if isinstance(event, CompactionBegin))
    end = next(event for event in events if isinstance(event, CompactionEnd))
    assert begin.token_count == 5000
    assert end.compacted is True
    assert events.index(begin) < events.index(end)
    assert provider.histories[0] == list(history[:3])


class NumberedSummaryProvider(ScriptedProvider):
    """Returns "summary 1", "summary 2", ... and records each compaction prompt."""

    def __init__(self, turns: list[Any], **kwargs: Any):
        super().__init__(turns, **kwargs)
        self.summary_prompts: list[str] = []

    async def generate(self, system_prompt, history, tools=None) -> LLMResponse:
        self.generate_calls += 1
        self.summary_prompts.append(history[0].text)
        return LLMResponse(message=Message.assistant(f"summary {self.generate_calls}"))


@pytest.mark.asyncio
async def test_second_compaction_folds_in_the_first_summary(tmp_path: Path):
    provider = NumberedSummaryProvider([_text_turn("continuing", tokens=5000)], max_context_size=1000)
    context = Context(JsonlContextRepository(tmp_path / "history.jsonl"))
    await context.checkpoint()
    for i in range(10):
        await context.append_message(Message.user(f"question {i}"))
        await context.append_message(Message.assistant(f"answer {i}"))
    await context.update_token_count(5000)
    executor, _ = _executor(tmp_path, provider, LoopConfig(reserved_tokens=0), context=context)

    await executor.execute("next")
    first_summary = context.history[0].text
    await executor.execute("again")

    history = context.history
    assert provider.generate_calls == 2
    assert "summary 1" in first_summary
    assert first_summary in provider.summary_prompts[1]
    assert history[0].role == Role.ASSISTANT
    assert "summary 2" in history[0].text
    assert [message.text for message in history[1:]] == ["continuing", "again", "continuing"]
    assert (tmp_path / "history.jsonl.2").exists()


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_the_run(tmp_path: Path):
    provider = ScriptedProvider([_glob_turn(), _text_turn("done")])
    executor, events = _executor(tmp_path, provider)

    def broken(event: WireEvent) -> None:
        raise RuntimeError("renderer crashed")

    executor.wire.subscribe(broken)

    reason = await executor.execute("list files")

    assert reason == StopReason.NO_TOOL_CALLS
    assert executor.state == LoopState.DONE
    assert [event.step_no for event in events if isinstance(event, StepBegin)] == [1, 2]
