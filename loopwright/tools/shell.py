"""Shell tool for executing commands."""

import asyncio
import os
import re
import shlex
from pathlib import Path
from typing import Any

from loopwright.approval import Approval, ApprovalResponse
from loopwright.config import ShellToolConfig
from loopwright.logging import get_logger
from loopwright.tools.registry import Tool, ToolResult

log = get_logger(__name__)

APPROVAL_ACTION = "run shell command"
MAX_OUTPUT_CHARS = 10000

_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=.*$")
_SHELL_SEPARATOR_TOKENS = {";", "&&", "||", "|", "&"}
_SHELL_WRAPPER_TOKENS = {"sudo", "command", "builtin", "nohup", "time"}


def _split_shell_segments(command: str) -> list[list[str]]:
    """Tokenize a command and split it at control operators."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=";&|")
    lexer.whitespace_split = True
    lexer.commenters = ""
    segments: list[list[str]] = []
    current: list[str] = []
    for token in lexer:
        if token in _SHELL_SEPARATOR_TOKENS:
            if current:
                segments.append(current)
                current = []
            continue
        current.append(token)
    if current:
        segments.append(current)
    return segments


def _segment_base_command(tokens: list[str]) -> str:
    for token in tokens:
        token = token.strip()
        if not token or token in _SHELL_WRAPPER_TOKENS:
            continue
        if _ASSIGNMENT_RE.match(token) and "/" not in token:
            continue
        return token
    return ""


def is_blocked_shell_command(command: str, blocked_patterns: list[str]) -> tuple[bool, str]:
    """Check a command against blocked patterns.

    Patterns containing whitespace are searched in every segment's text; other
    patterns must match a segment's base command.
    """
    cleaned = (command or "").strip()
    if not cleaned:
        return True, "empty_command"
    try:
        segments = _split_shell_segments(cleaned)
    except ValueError:
        return True, "unparseable_command"
    base_commands = [base for segment in segments if (base := _segment_base_command(segment))]
    if not base_commands:
        return True, "unparseable_command"

    segment_texts = [" ".join(tokens) for tokens in segments]
    for raw_pattern in blocked_patterns or []:
        pattern = (raw_pattern or "").strip()
        if not pattern:
            continue
        if re.search(r"\s", pattern):
            if any(pattern in text or pattern in cleaned for text in segment_texts):
                return True, pattern
        elif any(base == pattern or Path(base).name == pattern for base in base_commands):
            return True, pattern
        elif pattern in cleaned.replace(" ", ""):
            return True, pattern
    return False, ""


class ShellTool(Tool):
    """Execute shell commands in the working directory."""

    name = "Shell"
    description = (
        "Execute a shell command in the working directory and return its output. "
        "Each call runs in a fresh shell; the process is killed when it exceeds its timeout."
    )
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
            "timeout": {
                "type": "number",
                "description": "Timeout in seconds (optional, default from config)",
            },
        },
        "required": ["command"],
    }

    def __init__(self, approval: Approval, config: ShellToolConfig | None = None):
        self.approval = approval
        self.config = config or ShellToolConfig()
        # The process timeout starts after approval; a human may take longer than that to answer.
        self.timeout_seconds = None

    async def execute(self, command: str, timeout: float | None = None, **kwargs: Any) -> ToolResult:
        blocked, matched = is_blocked_shell_command(command, self.config.blocked)
        if blocked:
            reason = {
                "empty_command": "Command is empty",
                "unparseable_command": "Command is not parseable",
            }.get(matched, f"Command matches blocked pattern: {matched}")
            log.warning("Blocked unsafe command", command=command, reason=reason)
            return ToolResult.error(f"Command blocked: {reason}")

        response = await self.approval.request_approval(
            str(kwargs.get("_tool_call_id", "")),
            APPROVAL_ACTION,
            f"Run command `{command}`",
        )
        if response == ApprovalResponse.REJECT:
            return ToolResult.rejected()

        limit = float(timeout) if timeout is not None else float(self.config.timeout)
        limit = max(1.0, min(limit, float(self.config.timeout)))
        work_dir = kwargs.get("_work_dir") or Path.cwd()

        log.info("Executing shell command", command=command, timeout=limit)
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(work_dir),
            env=os.environ.copy(),
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            label = int(limit) if limit.is_integer() else limit
            log.warning("Shell command timed out", command=command, timeout=limit)
            return ToolResult.error(f"Command timed out after {label}s")
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        stderr_text = stderr.decode("utf-8", errors="replace").strip()
        output = stdout_text
        if stderr_text:
            output += f"\n[stderr] {stderr_text}"
        if len(output) > MAX_OUTPUT_CHARS:
            output = output[:MAX_OUTPUT_CHARS] + f"\n... [truncated, {len(output)} total chars]"

        if process.returncode != 0:
            return ToolResult.error(f"Command failed with exit code {process.returncode}", output=output)
        return ToolResult.ok(output or "[no output]")
