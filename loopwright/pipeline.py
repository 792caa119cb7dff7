"""Validate, dispatch and collect the tool calls of one assistant turn."""

import asyncio
from typing import Sequence

from loopwright.exceptions import ToolError
from loopwright.llm import Message, ToolCall
from loopwright.logging import get_logger, preview
from loopwright.toolcall import ToolCallValidator, ToolErrorTracker, tool_signature
from loopwright.tools.registry import ToolRegistry, ToolResult

log = get_logger(__name__)


class ToolCallPipeline:
    """Turns a turn's tool calls into tool-role messages.

    Structurally invalid calls never reach a tool; they become rejection
    messages straight away. Valid calls run concurrently and the pipeline
    waits for all of them. Every failure, whatever its source, ends up as an
    error message so one broken call cannot take down its siblings.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        tracker: ToolErrorTracker | None = None,
        validator: ToolCallValidator | None = None,
    ):
        self.registry = registry
        self.tracker = tracker or ToolErrorTracker()
        self.validator = validator or ToolCallValidator()

    def partition(self, calls: Sequence[ToolCall]) -> tuple[list[ToolCall], list[Message]]:
        """Split calls into dispatchable ones and rejection messages for the rest."""
        valid: list[ToolCall] = []
        rejections: list[Message] = []
        seen_ids: set[str] = set()

        for call in calls:
            result = self.validator.validate(call, seen_ids)
            if result.valid:
                seen_ids.add(result.tool_call_id)
                valid.append(call)
                continue
            log.warning(
                "Rejected tool call",
                tool_call_id=result.tool_call_id,
                tool=call.name,
                reason=result.error,
            )
            rejections.append(Message.tool(result.tool_call_id, f"Error: {result.error}"))
        return valid, rejections

    async def _run_one(self, call: ToolCall) -> ToolResult:
        try:
            return await self.registry.execute(call.name or "", call.arguments, tool_call_id=call.id or "")
        except ToolError as e:
            return ToolResult.error(str(e))
        except Exception as e:
            log.error("Unexpected tool failure", tool=call.name, tool_call_id=call.id, error=str(e))
            return ToolResult.error(f"Unexpected error: {e}")

    def to_message(self, call: ToolCall, result: ToolResult) -> Message:
        """Convert one result into a tool message, updating the failure streak."""
        signature = tool_signature(call)
        if result.status == "ok":
            self.tracker.record_success(signature)
            content = "\n\n".join(part for part in (result.output, result.message) if part)
            return Message.tool(call.id or "", content)
        if result.status == "rejected":
            return Message.tool(call.id or "", result.output)

        streak = self.tracker.record_error(signature)
        log.info("Tool call failed", tool=call.name, tool_call_id=call.id, streak=streak, error=preview(result.message))
        return Message.tool(call.id or "", self.tracker.build_error_content(result.message, result.output, signature))

    async def dispatch(self, calls: Sequence[ToolCall]) -> list[Message]:
        """Run every call concurrently and return one message per call."""
        if not calls:
            return []
        log.debug("Dispatching tool calls", count=len(calls))
        results = await asyncio.gather(*(self._run_one(call) for call in calls))
        return [self.to_message(call, result) for call, result in zip(calls, results)]
