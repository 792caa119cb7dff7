"""Task tool: delegate a sub-task to an isolated subagent."""

from pathlib import Path
from typing import TYPE_CHECKING, Any

from loopwright.agentspec import Agent, Subagent
from loopwright.approval import ApprovalRequest, ApprovalResponse
from loopwright.context import create_context
from loopwright.exceptions import LoopwrightError, MaxStepsReachedError
from loopwright.instructions import InstructionLoader, get_instruction_loader
from loopwright.llm import Role
from loopwright.logging import get_logger, preview
from loopwright.runtime import Runtime
from loopwright.tools.registry import Tool, ToolResult
from loopwright.wire import Wire, WireEvent

if TYPE_CHECKING:
    from loopwright.engine import Engine
    from loopwright.tools.factory import ToolRegistryFactory

log = get_logger(__name__)

MAX_SUBAGENT_FILES = 10000


def next_subagent_history_file(parent_history_file: Path) -> Path:
    """Create and return the first free ``<stem>_sub_<n><suffix>`` sibling."""
    parent_history_file.parent.mkdir(parents=True, exist_ok=True)
    for index in range(1, MAX_SUBAGENT_FILES):
        candidate = parent_history_file.with_name(
            f"{parent_history_file.stem}_sub_{index}{parent_history_file.suffix}"
        )
        try:
            with open(candidate, "x", encoding="utf-8"):
                pass
        except FileExistsError:
            continue
        return candidate
    raise LoopwrightError(f"No free subagent history file next to {parent_history_file}")


class TaskTool(Tool):
    """Run a subagent on a fresh context and return its final answer."""

    name = "Task"
    parameters = {
        "type": "object",
        "properties": {
            "description": {
                "type": "string",
                "description": "A short (3-5 word) description of the task",
            },
            "subagent_name": {
                "type": "string",
                "description": "The name of the subagent to run; must be one of the subagents listed in this tool's description",
            },
            "prompt": {
                "type": "string",
                "description": (
                    "The full task for the subagent. Include all background it needs, "
                    "since it cannot see your conversation."
                ),
            },
        },
        "required": ["subagent_name", "prompt"],
    }

    def __init__(
        self,
        agent: Agent,
        runtime: Runtime,
        factory: "ToolRegistryFactory",
        history_file: Path,
        parent_wire: Wire | None = None,
        instructions: InstructionLoader | None = None,
    ):
        self.agent = agent
        self.runtime = runtime
        self.factory = factory
        self.history_file = Path(history_file)
        self.parent_wire = parent_wire
        self.instructions = instructions or get_instruction_loader()
        self.min_response_length = runtime.config.subagent.min_response_length
        self.timeout_seconds = runtime.config.subagent.timeout_seconds
        self.description = self.instructions.render(
            "task_tool_description.md",
            subagents="\n".join(
                f"- `{name}`: {subagent.description}" for name, subagent in agent.subagents.items()
            ),
        )

    def _bridge(self, event: WireEvent) -> None:
        """Forward only approval requests from the child wire to the parent."""
        if not isinstance(event, ApprovalRequest) or self.parent_wire is None:
            return
        if self.parent_wire.subscriber_count == 0:
            log.warning("Approval required but nobody is listening; allowing", action=event.action)
            event.resolve(ApprovalResponse.APPROVE)
            return
        log.debug("Forwarding subagent approval request", action=event.action)
        self.parent_wire.send(event)

    async def execute(
        self,
        subagent_name: str = "",
        prompt: str = "",
        description: str = "",
        **kwargs: Any,
    ) -> ToolResult:
        log.info("Task tool called", description=description, subagent=subagent_name)
        if not subagent_name.strip():
            return ToolResult.error("Subagent name cannot be empty", output="Invalid parameters")
        if not prompt.strip():
            return ToolResult.error("Prompt cannot be empty", output="Invalid parameters")

        subagent = self.agent.subagents.get(subagent_name)
        if subagent is None:
            available = ", ".join(self.agent.subagents) or "none"
            return ToolResult.error(f"Subagent not found: {subagent_name}", output=f"Available subagents: {available}")

        try:
            return await self._run_subagent(subagent_name, subagent, prompt)
        except LoopwrightError as e:
            log.error("Subagent run failed", subagent=subagent_name, error=str(e))
            return ToolResult.error(f"Failed to run subagent: {e}")

    async def _run_subagent(self, name: str, subagent: Subagent, prompt: str) -> ToolResult:
        from loopwright.engine import Engine

        history_file = next_subagent_history_file(self.history_file)
        child_runtime = self.runtime.for_subagent()
        child_wire = Wire(name=f"subagent:{name}")
        child_context = create_context(history_file, self.runtime.config.context)
        child_registry = self.factory.create(subagent.agent, child_runtime, child_wire, history_file)
        engine = Engine(
            subagent.agent,
            child_runtime,
            child_context,
            child_registry,
            wire=child_wire,
            is_subagent=True,
        )
        log.info("Starting subagent", subagent=name, history_file=str(history_file))

        subscription = child_wire.subscribe(self._bridge) if self.parent_wire is not None else None
        try:
            try:
                await engine.run(prompt)
            except MaxStepsReachedError as e:
                log.warning("Subagent ran out of steps", subagent=name, error=str(e))
            return await self._final_response(engine)
        finally:
            if subscription is not None:
                subscription.close()
            await engine.close()

    async def _final_response(self, engine: "Engine") -> ToolResult:
        from loopwright.executor import StopReason

        history = engine.context.history
        if not history or history[-1].role != Role.ASSISTANT:
            return ToolResult.error(
                "Failed to run subagent",
                output=self.instructions.load("subagent_no_answer.md"),
            )

        answer = history[-1].text
        if len(answer) >= self.min_response_length:
            return ToolResult.ok(answer)

        log.info("Subagent answer too short, asking for more", length=len(answer))
        try:
            reason = await engine.run(self.instructions.load("subagent_continue_prompt.md"))
        except LoopwrightError as e:
            log.warning("Subagent elaboration failed, keeping short answer", error=str(e))
            return ToolResult.ok(answer)
        if reason == StopReason.MODEL_ERROR:
            log.warning("Subagent elaboration hit a model error, keeping short answer")
            return ToolResult.ok(answer)

        history = engine.context.history
        if history and history[-1].role == Role.ASSISTANT:
            answer = history[-1].text
        log.debug("Subagent final answer", answer=preview(answer))
        return ToolResult.ok(answer)
