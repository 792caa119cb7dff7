"""Agent step loop."""

from enum import Enum
from typing import Callable

from loopwright.agentspec import Agent
from loopwright.compaction import Compaction
from loopwright.config import LoopConfig
from loopwright.context import Context
from loopwright.exceptions import MaxStepsReachedError
from loopwright.llm import LLMProvider, Message
from loopwright.logging import get_logger, preview
from loopwright.pipeline import ToolCallPipeline
from loopwright.stream import AssistantTurn, StreamAccumulator, new_placeholder_id
from loopwright.toolcall import ToolErrorTracker
from loopwright.tools.registry import ToolRegistry
from loopwright.wire import (
    CheckpointCreated,
    CompactionBegin,
    CompactionEnd,
    ContentPartEvent,
    StepBegin,
    StepInterrupted,
    Wire,
)

log = get_logger(__name__)

MODEL_ERROR_PREFIX = "Sorry, I ran into an error: "


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_MODEL = "awaiting_model"
    HANDLING_TOOL_CALLS = "handling_tool_calls"
    DONE = "done"
    INTERRUPTED = "interrupted"


class StopReason(str, Enum):
    """Why a run ended in ``Done``."""

    NO_TOOL_CALLS = "no_tool_calls"
    THINKING_LIMIT = "thinking_limit"
    MODEL_ERROR = "model_error"


class AgentExecutor:
    """Drives one agent: model step, tool handling, repeat until done.

    Steps of one executor never overlap. The consecutive no-tool-call counter
    lives on the executor, so it carries over between runs of the same
    session and is reset only by a step that requests tools.
    """

    def __init__(
        self,
        agent: Agent,
        provider: LLMProvider,
        context: Context,
        wire: Wire,
        registry: ToolRegistry,
        compaction: Compaction,
        loop_config: LoopConfig | None = None,
        is_subagent: bool = False,
        error_streak_threshold: int = 3,
        id_factory: Callable[[], str] = new_placeholder_id,
    ):
        self.agent = agent
        self.provider = provider
        self.context = context
        self.wire = wire
        self.registry = registry
        self.compaction = compaction
        self.loop_config = loop_config or LoopConfig()
        self.is_subagent = is_subagent
        self.pipeline = ToolCallPipeline(registry, ToolErrorTracker(error_streak_threshold))
        self._id_factory = id_factory
        self._state = LoopState.IDLE
        self._step_no = 0
        self.consecutive_no_tool_steps = 0

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def step_no(self) -> int:
        return self._step_no

    async def execute(self, user_input: str) -> StopReason:
        """Run the loop for one user input.

        Raises:
            MaxStepsReachedError when the step budget is exhausted
            PersistenceError (or any other unrecovered error) from a step
        """
        log.info("Agent run started", agent=self.agent.name, subagent=self.is_subagent, input=preview(user_input))
        await self.context.checkpoint(add_user_message=False)
        await self.context.append_message(Message.user(user_input))

        step_no = 1
        while True:
            self._step_no = step_no
            self._state = LoopState.RUNNING
            max_steps = self.loop_config.max_steps_per_run
            if step_no > max_steps:
                self._state = LoopState.INTERRUPTED
                log.error("Max steps reached", agent=self.agent.name, max_steps=max_steps)
                raise MaxStepsReachedError(max_steps)

            self.wire.send(StepBegin(step_no=step_no, is_subagent=self.is_subagent, agent_name=self.agent.name))
            try:
                await self._compact_if_needed()
                checkpoint_id = await self.context.checkpoint(add_user_message=self.loop_config.checkpoint_messages)
                self.wire.send(CheckpointCreated(checkpoint_id=checkpoint_id))
                reason = await self._step()
            except Exception as e:
                self._state = LoopState.INTERRUPTED
                log.error("Step interrupted", agent=self.agent.name, step=step_no, error=str(e))
                self.wire.send(StepInterrupted(error=str(e)))
                raise

            if reason is not None:
                self._state = LoopState.DONE
                log.info("Agent run finished", agent=self.agent.name, step=step_no, reason=reason.value)
                return reason
            step_no += 1

    async def _compact_if_needed(self) -> None:
        limit = self.provider.max_context_size - self.loop_config.reserved_tokens
        token_count = self.context.token_count
        if token_count <= limit:
            return

        log.info("Context near limit, compacting", tokens=token_count, max_context=self.provider.max_context_size)
        self.wire.send(CompactionBegin(token_count=token_count))
        compacted = False
        try:
            history = list(self.context.history)
            replacement = await self.compaction.compact(history, self.provider)
            if replacement != history:
                await self.context.revert_to(0)
                await self.context.checkpoint(add_user_message=False)
                await self.context.append_message(replacement)
                compacted = True
                log.info("Context compacted", before=len(history), after=len(self.context.history))
            else:
                log.info("Compaction kept the original history")
        finally:
            self.wire.send(CompactionEnd(compacted=compacted))

    async def _stream_turn(self) -> AssistantTurn:
        accumulator = StreamAccumulator(
            on_content=lambda text: self.wire.send(ContentPartEvent(text=text)),
            id_factory=self._id_factory,
        )
        stream = self.provider.generate_stream(
            self.agent.system_prompt,
            list(self.context.history),
            self.registry.get_schemas(self.agent.tools),
        )
        return await accumulator.consume(stream)

    def _estimate_tokens(self) -> int:
        total = 0
        for message in self.context.history:
            total += self.provider.count_tokens(message.text)
            for call in message.tool_calls:
                total += self.provider.count_tokens(f"{call.name}{call.arguments or ''}")
        return total

    async def _step(self) -> StopReason | None:
        """One model step. Returns a stop reason, or None to continue."""
        self._state = LoopState.AWAITING_MODEL
        try:
            turn = await self._stream_turn()
        except Exception as e:
            log.error("Model call failed", agent=self.agent.name, error=str(e))
            await self.context.append_message(Message.assistant(f"{MODEL_ERROR_PREFIX}{e}"))
            return StopReason.MODEL_ERROR

        valid, rejections = self.pipeline.partition(turn.tool_calls)
        log.info(
            "Assistant turn received",
            content_length=len(turn.content),
            tool_calls=len(turn.tool_calls),
            valid_tool_calls=len(valid),
        )

        await self.context.append_message(Message.assistant(turn.content, valid))
        if turn.usage is not None:
            await self.context.update_token_count(turn.usage.total_tokens)
        else:
            await self.context.update_token_count(self._estimate_tokens())

        if not turn.tool_calls:
            self.consecutive_no_tool_steps += 1
            if self.consecutive_no_tool_steps >= self.loop_config.max_thinking_steps:
                log.warning(
                    "Too many consecutive steps without tool calls, forcing completion",
                    steps=self.consecutive_no_tool_steps,
                )
                return StopReason.THINKING_LIMIT
            log.debug("No tool calls, finishing", consecutive=self.consecutive_no_tool_steps)
            return StopReason.NO_TOOL_CALLS

        self.consecutive_no_tool_steps = 0
        self._state = LoopState.HANDLING_TOOL_CALLS
        results = await self.pipeline.dispatch(valid)
        await self.context.append_message(rejections + results)
        log.info("Tool results appended", results=len(results), rejected=len(rejections))
        return None
