import asyncio
from pathlib import Path

import pytest

from loopwright.approval import Approval, ApprovalRequest, ApprovalResponse
from loopwright.config import ShellToolConfig
from loopwright.tools.registry import ToolRegistry
from loopwright.tools.shell import ShellTool, is_blocked_shell_command


def _approval(response: ApprovalResponse, seen: list[ApprovalRequest] | None = None) -> Approval:
    approval = Approval()

    def answer(request: ApprovalRequest) -> None:
        if seen is not None:
            seen.append(request)
        request.resolve(response)

    approval.subscribe(answer)
    return approval


def test_blocked_patterns_match_base_command_and_phrases() -> None:
    patterns = ["rm -rf /", "mkfs", ":(){:|:&};:"]

    assert is_blocked_shell_command("ls && rm -rf /", patterns) == (True, "rm -rf /")
    assert is_blocked_shell_command("sudo mkfs /dev/sda1", patterns) == (True, "mkfs")
    assert is_blocked_shell_command(":(){ :|:& };:", patterns)[0] is True
    assert is_blocked_shell_command("ls -la", patterns) == (False, "")
    assert is_blocked_shell_command("   ", patterns) == (True, "empty_command")


@pytest.mark.asyncio
async def test_shell_runs_in_work_dir(tmp_path: Path):
    (tmp_path / "marker.txt").write_text("x", encoding="utf-8")
    tool = ShellTool(Approval(yolo=True))

    result = await tool.execute(command="ls", _work_dir=tmp_path)

    assert result.success is True
    assert "marker.txt" in result.output


@pytest.mark.asyncio
async def test_shell_reports_non_zero_exit_with_output(tmp_path: Path):
    tool = ShellTool(Approval(yolo=True))

    result = await tool.execute(command="echo oops >&2; exit 3", _work_dir=tmp_path)

    assert result.success is False
    assert result.message == "Command failed with exit code 3"
    assert "[stderr] oops" in result.output


@pytest.mark.asyncio
async def test_shell_kills_command_on_timeout(tmp_path: Path):
    tool = ShellTool(Approval(yolo=True), ShellToolConfig(timeout=1))

    result = await tool.execute(command="sleep 5", _work_dir=tmp_path)

    assert result.success is False
    assert result.message == "Command timed out after 1s"


@pytest.mark.asyncio
async def test_blocked_command_never_asks_for_approval(tmp_path: Path):
    seen: list[ApprovalRequest] = []
    tool = ShellTool(_approval(ApprovalResponse.APPROVE, seen))

    result = await tool.execute(command="rm -rf /", _work_dir=tmp_path)

    assert result.success is False
    assert result.message.startswith("Command blocked")
    assert seen == []


@pytest.mark.asyncio
async def test_rejected_command_is_not_run(tmp_path: Path):
    seen: list[ApprovalRequest] = []
    tool = ShellTool(_approval(ApprovalResponse.REJECT, seen))

    result = await tool.execute(command="touch created.txt", _tool_call_id="c1", _work_dir=tmp_path)

    assert result.status == "rejected"
    assert not (tmp_path / "created.txt").exists()
    assert seen[0].tool_call_id == "c1"
    assert seen[0].action == "run shell command"


@pytest.mark.asyncio
async def test_session_approval_skips_later_requests(tmp_path: Path):
    seen: list[ApprovalRequest] = []
    tool = ShellTool(_approval(ApprovalResponse.APPROVE_FOR_SESSION, seen))

    await tool.execute(command="echo one", _work_dir=tmp_path)
    second = await tool.execute(command="echo two", _work_dir=tmp_path)

    assert second.output == "two"
    assert len(seen) == 1


@pytest.mark.asyncio
async def test_slow_approval_does_not_count_against_command_timeout(tmp_path: Path):
    approval = Approval()

    def answer_later(request: ApprovalRequest) -> None:
        asyncio.get_running_loop().call_later(1.5, request.resolve, ApprovalResponse.APPROVE)

    approval.subscribe(answer_later)
    tool = ShellTool(approval, ShellToolConfig(timeout=1))
    registry = ToolRegistry(work_dir=tmp_path, default_timeout_seconds=0.5)
    registry.register(tool)

    result = await registry.execute("Shell", '{"command":"echo ok"}', tool_call_id="s1")

    assert tool.timeout_seconds is None
    assert result.success is True
    assert result.output == "ok"
