import asyncio
from pathlib import Path

import pytest

from loopwright.llm import Role, ToolCall
from loopwright.pipeline import ToolCallPipeline
from loopwright.toolcall import ToolCallValidator, ToolErrorTracker, tool_signature
from loopwright.tools.registry import Tool, ToolRegistry, ToolResult


class EchoTool(Tool):
    name = "Echo"
    description = "Echo text back"
    parameters = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    async def execute(self, text: str, **kwargs) -> ToolResult:
        if text == "fail":
            return ToolResult.error("asked to fail", output="partial output")
        return ToolResult.ok(output=text)


class ExplodingTool(Tool):
    name = "Explode"
    description = "Always raises"
    parameters = {"type": "object", "properties": {}}

    async def execute(self, **kwargs) -> ToolResult:
        raise ValueError("boom")


class SlowTool(Tool):
    name = "Slow"
    description = "Sleeps a little"
    parameters = {"type": "object", "properties": {}}

    def __init__(self):
        self.running = 0
        self.max_running = 0

    async def execute(self, **kwargs) -> ToolResult:
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        await asyncio.sleep(0.01)
        self.running -= 1
        return ToolResult.ok(output=kwargs["_tool_call_id"])


def _pipeline(tmp_path: Path, threshold: int = 3) -> ToolCallPipeline:
    registry = ToolRegistry(work_dir=tmp_path)
    registry.register(EchoTool())
    registry.register(ExplodingTool())
    return ToolCallPipeline(registry, ToolErrorTracker(threshold))


@pytest.mark.asyncio
async def test_every_call_gets_exactly_one_message_in_order(tmp_path: Path):
    pipeline = _pipeline(tmp_path)
    calls = [
        ToolCall(id="1", name="Echo", arguments='{"text":"a"}'),
        ToolCall(id="2", name="Explode", arguments="{}"),
        ToolCall(id="3", name="Missing", arguments="{}"),
        ToolCall(id="4", name="Echo", arguments="{not json"),
        ToolCall(id="5", name="Echo", arguments='{"text":"b"}'),
    ]

    messages = await pipeline.dispatch(calls)

    assert [message.tool_call_id for message in messages] == ["1", "2", "3", "4", "5"]
    assert all(message.role == Role.TOOL for message in messages)
    assert messages[0].text == "a"
    assert messages[1].text.startswith("Error: ")
    assert "boom" in messages[1].text
    assert "Tool not found: Missing" in messages[2].text
    assert "Invalid JSON arguments" in messages[3].text
    assert messages[4].text == "b"


@pytest.mark.asyncio
async def test_calls_run_concurrently(tmp_path: Path):
    registry = ToolRegistry(work_dir=tmp_path)
    slow = SlowTool()
    registry.register(slow)
    pipeline = ToolCallPipeline(registry)

    messages = await pipeline.dispatch([ToolCall(id=str(i), name="Slow", arguments="") for i in range(3)])

    assert slow.max_running == 3
    assert [message.text for message in messages] == ["0", "1", "2"]


@pytest.mark.asyncio
async def test_error_content_includes_output(tmp_path: Path):
    pipeline = _pipeline(tmp_path)

    messages = await pipeline.dispatch([ToolCall(id="1", name="Echo", arguments='{"text":"fail"}')])

    assert messages[0].text == "Error: asked to fail\npartial output"


@pytest.mark.asyncio
async def test_repeated_identical_failures_add_warning(tmp_path: Path):
    pipeline = _pipeline(tmp_path, threshold=3)
    call = ToolCall(id="x", name="Echo", arguments='{"text":"fail"}')

    first = await pipeline.dispatch([call])
    second = await pipeline.dispatch([call])
    third = await pipeline.dispatch([call])

    assert "in a row" not in first[0].text
    assert "failed 2 times in a row" in second[0].text
    assert "WARNING" not in second[0].text
    assert "failed 3 times in a row" in third[0].text
    assert "WARNING" in third[0].text


@pytest.mark.asyncio
async def test_success_resets_streak_for_that_signature_only(tmp_path: Path):
    pipeline = _pipeline(tmp_path)
    failing = ToolCall(id="1", name="Echo", arguments='{"text":"fail"}')
    other = ToolCall(id="2", name="Explode", arguments="{}")

    await pipeline.dispatch([failing, other])
    assert pipeline.tracker.streak(tool_signature(failing)) == 1
    assert pipeline.tracker.streak(tool_signature(other)) == 1

    pipeline.tracker.record_success(tool_signature(failing))
    assert pipeline.tracker.streak(tool_signature(failing)) == 0
    assert pipeline.tracker.streak(tool_signature(other)) == 1


def test_partition_rejects_structurally_invalid_calls(tmp_path: Path):
    pipeline = _pipeline(tmp_path)
    calls = [
        ToolCall(id="1", name="Echo", arguments='{"text":"a"}'),
        ToolCall(id="1", name="Echo", arguments='{"text":"b"}'),
        ToolCall(id="", name="Echo", arguments="{}"),
        ToolCall(id="3", name=None, arguments="{}"),
        ToolCall(id="4", name="Echo", arguments=None),
    ]

    valid, rejections = pipeline.partition(calls)

    assert valid == [calls[0]]
    assert len(rejections) == 4
    assert rejections[0].tool_call_id == "1"
    assert "Duplicate tool call id" in rejections[0].text
    assert rejections[1].tool_call_id.startswith("invalid_")
    assert "missing an id" in rejections[1].text
    assert rejections[2].tool_call_id == "3"
    assert "missing a function name" in rejections[2].text
    assert "missing its argument text" in rejections[3].text
    assert all(message.text.startswith("Error: ") for message in rejections)


def test_validator_accepts_empty_argument_text() -> None:
    result = ToolCallValidator().validate(ToolCall(id="a", name="Glob", arguments=""))

    assert result.valid is True
    assert result.tool_call_id == "a"


def test_revalidating_a_valid_call_changes_nothing(tmp_path: Path) -> None:
    validator = ToolCallValidator()
    call = ToolCall(id="  call_7 ", name="Echo", arguments='{"text":"a"}')

    first = validator.validate(call, seen_ids=set())
    second = validator.validate(call, seen_ids=set())

    assert first == second
    assert first.valid is True
    assert first.tool_call_id == "call_7"
    assert (call.id, call.name, call.arguments) == ("  call_7 ", "Echo", '{"text":"a"}')

    pipeline = _pipeline(tmp_path)
    valid, rejections = pipeline.partition([call])
    valid_again, rejections_again = pipeline.partition(valid)

    assert valid_again == valid == [call]
    assert rejections == rejections_again == []
