"""Tool registry and base tool class."""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Literal

from pydantic import BaseModel, model_validator

from loopwright.exceptions import ToolArgumentError, ToolExecutionError, ToolNotFoundError
from loopwright.logging import get_logger, preview

log = get_logger(__name__)


class ToolResult(BaseModel):
    """Result from tool execution."""

    status: Literal["ok", "error", "rejected"] = "ok"
    output: str = ""
    message: str = ""

    @model_validator(mode="after")
    def _normalize_failure_message(self) -> "ToolResult":
        """Ensure failed results always provide a short message."""
        if self.status != "ok" and not self.message.strip():
            fallback = self.output.strip().splitlines()[0] if self.output.strip() else ""
            self.message = fallback or (
                "Tool execution failed" if self.status == "error" else "Rejected by user"
            )
        return self

    @property
    def success(self) -> bool:
        return self.status == "ok"

    @classmethod
    def ok(cls, output: str = "", message: str = "") -> "ToolResult":
        return cls(status="ok", output=output, message=message)

    @classmethod
    def error(cls, message: str, output: str = "") -> "ToolResult":
        return cls(status="error", output=output, message=message)

    @classmethod
    def rejected(cls, message: str = "") -> "ToolResult":
        return cls(
            status="rejected",
            output="The tool call was rejected by the user. Stop what you are doing and wait for further instructions.",
            message=message or "Rejected by user",
        )


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    # None: no registry deadline; the tool bounds its own work (e.g. after an approval wait).
    timeout_seconds: float | None = 30.0

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Besides its declared parameters every tool receives ``_tool_call_id``
        and ``_work_dir`` keyword arguments from the registry.
        """

    def get_definition(self) -> dict[str, Any]:
        """OpenAI function-style definition."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        required = self.parameters.get("required", [])
        for field in required:
            if field not in arguments:
                raise ToolArgumentError(self.name, f"Missing required argument: {field}")


def _strip_null_affixes(text: str) -> str:
    stripped = text
    if stripped.startswith("null"):
        rest = stripped[4:].strip()
        if rest.startswith(("{", "[")):
            log.warning("Removed 'null' prefix from tool arguments", arguments=preview(text))
            stripped = rest
    if stripped.endswith("null"):
        rest = stripped[:-4].strip()
        if (rest.startswith("{") and rest.endswith("}")) or (rest.startswith("[") and rest.endswith("]")):
            log.warning("Removed 'null' suffix from tool arguments", arguments=preview(text))
            stripped = rest
    return stripped


def parse_arguments(tool_name: str, argument_text: str | None) -> dict[str, Any]:
    """Turn raw streamed argument text into a keyword dict.

    Empty text means no arguments. Stray ``null`` tokens glued to the JSON
    and double-encoded JSON strings are repaired before giving up.
    """
    text = (argument_text or "").strip()
    if not text:
        return {}

    try:
        value: Any = json.loads(text)
    except json.JSONDecodeError:
        repaired = _strip_null_affixes(text)
        try:
            value = json.loads(repaired)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(tool_name, f"Invalid JSON arguments ({e.msg}). Arguments received: {text}") from e

    if isinstance(value, str):
        try:
            value = json.loads(value)
            log.warning("Unwrapped double-encoded tool arguments", tool=tool_name)
        except json.JSONDecodeError as e:
            raise ToolArgumentError(tool_name, f"Arguments must be a JSON object. Arguments received: {text}") from e

    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ToolArgumentError(tool_name, f"Arguments must be a JSON object. Arguments received: {text}")
    return value


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self, work_dir: Path | str | None = None, default_timeout_seconds: float = 120.0):
        self._tools: dict[str, Tool] = {}
        self.work_dir = Path(work_dir or Path.cwd()).expanduser().resolve()
        self.default_timeout_seconds = default_timeout_seconds

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError("Tool must have a name")
        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        return list(self._tools)

    def get_schemas(self, allowed: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """Definitions for the model call, limited to ``allowed`` names when given."""
        if allowed is None:
            return [tool.get_definition() for tool in self._tools.values()]
        names = list(allowed)
        missing = [name for name in names if name not in self._tools]
        if missing:
            log.warning("Allowed tools not registered", tools=missing)
        return [self._tools[name].get_definition() for name in names if name in self._tools]

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def execute(
        self,
        name: str,
        argument_text: str | None,
        tool_call_id: str = "",
    ) -> ToolResult:
        """Execute a tool by name with its raw argument text.

        Raises:
            ToolNotFoundError if tool not found
            ToolArgumentError if the arguments cannot be parsed
            ToolExecutionError if execution fails or times out
        """
        tool = self.get(name)
        arguments = parse_arguments(name, argument_text)
        tool.validate_arguments(arguments)

        try:
            coroutine = tool.execute(**arguments, _tool_call_id=tool_call_id, _work_dir=self.work_dir)
        except TypeError as e:
            raise ToolArgumentError(name, str(e)) from e

        timeout_seconds: float | None = None
        if tool.timeout_seconds is not None:
            timeout_seconds = float(tool.timeout_seconds or self.default_timeout_seconds)
        execute_task: asyncio.Task[ToolResult] | None = None
        try:
            log.info("Executing tool", tool=name, tool_call_id=tool_call_id, args=preview(argument_text))
            execute_task = asyncio.create_task(coroutine)
            done, _ = await asyncio.wait({execute_task}, timeout=timeout_seconds)

            if execute_task in done:
                result = execute_task.result()
                if not isinstance(result, ToolResult):
                    raise ToolExecutionError(name, "Tool returned invalid result payload")
                log.info("Tool executed", tool=name, tool_call_id=tool_call_id, status=result.status)
                return result

            await self._cancel_task(execute_task)
            timeout_label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            raise ToolExecutionError(name, f"Execution timed out after {timeout_label}s")
        except asyncio.CancelledError:
            await self._cancel_task(execute_task)
            raise
        except ToolExecutionError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e)) from e
