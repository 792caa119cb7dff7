"""Structural validation of tool calls and per-signature failure streaks."""

import uuid
from dataclasses import dataclass

from loopwright.llm import ToolCall
from loopwright.logging import get_logger, preview

log = get_logger(__name__)


def tool_signature(call: ToolCall) -> str:
    """Key used to detect identical repeated calls."""
    return f"{call.name}:{call.arguments or ''}"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    tool_call_id: str
    error: str | None = None


class ToolCallValidator:
    """Checks that a call can be dispatched: id, name and argument text present, id unique."""

    def __init__(self, id_prefix: str = "invalid_"):
        self._id_prefix = id_prefix

    def fallback_id(self) -> str:
        return f"{self._id_prefix}{uuid.uuid4().hex[:12]}"

    def validate(self, call: ToolCall, seen_ids: set[str] | None = None) -> ValidationResult:
        call_id = (call.id or "").strip()
        name = (call.name or "").strip()

        if not call_id:
            log.error("Tool call without id", tool=call.name)
            return ValidationResult(
                valid=False,
                tool_call_id=self.fallback_id(),
                error=f"Tool call for '{name or 'unknown'}' is missing an id; it was not executed.",
            )
        if seen_ids is not None and call_id in seen_ids:
            log.error("Duplicate tool call id", tool_call_id=call_id, tool=call.name)
            return ValidationResult(
                valid=False,
                tool_call_id=call_id,
                error=f"Duplicate tool call id '{call_id}'; only the first call with this id was executed.",
            )
        if not name:
            log.error("Tool call without name", tool_call_id=call_id)
            return ValidationResult(
                valid=False,
                tool_call_id=call_id,
                error="Tool not found: tool call is missing a function name.",
            )
        if call.arguments is None:
            log.error("Tool call without arguments", tool_call_id=call_id, tool=name)
            return ValidationResult(
                valid=False,
                tool_call_id=call_id,
                error=f"Tool call '{name}' is missing its argument text.",
            )
        return ValidationResult(valid=True, tool_call_id=call_id)


class ToolErrorTracker:
    """Counts consecutive failures per tool signature (name + argument text)."""

    def __init__(self, threshold: int = 3):
        self.threshold = max(1, threshold)
        self._streaks: dict[str, int] = {}

    def record_success(self, signature: str) -> None:
        self._streaks.pop(signature, None)

    def record_error(self, signature: str) -> int:
        streak = self._streaks.get(signature, 0) + 1
        self._streaks[signature] = streak
        return streak

    def streak(self, signature: str) -> int:
        return self._streaks.get(signature, 0)

    def is_repeated(self, signature: str) -> bool:
        return self.streak(signature) >= self.threshold

    def clear(self) -> None:
        self._streaks.clear()

    def build_error_content(self, message: str, output: str, signature: str) -> str:
        parts = [f"Error: {message}"]
        if output:
            parts.append(output)
        content = "\n".join(parts)

        streak = self.streak(signature)
        if streak > 1:
            content += f"\n\nThis exact call has now failed {streak} times in a row."
        if self.is_repeated(signature):
            content += (
                "\n\nWARNING: You keep calling this tool with the same arguments and it keeps failing. "
                "Try a different approach or different arguments."
            )
            log.warning("Repeated tool call errors", signature=preview(signature), streak=streak)
        return content
