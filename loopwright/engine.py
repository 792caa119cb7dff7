"""Engine: one agent, its context and tools, exposed as ``run`` / ``get_status``."""

from pathlib import Path
from typing import Any

from loopwright.agentspec import Agent, load_agent
from loopwright.approval import ApprovalRequest, ApprovalResponse
from loopwright.compaction import Compaction, SimpleCompaction
from loopwright.config import Config, get_config
from loopwright.context import Context, create_context
from loopwright.executor import AgentExecutor, StopReason
from loopwright.llm import LLMProvider, create_provider
from loopwright.logging import get_logger
from loopwright.runtime import Runtime
from loopwright.session import SessionManager
from loopwright.tools.factory import ToolRegistryFactory
from loopwright.tools.registry import ToolRegistry
from loopwright.wire import Wire

log = get_logger(__name__)


class Engine:
    """Owns the executor of one agent and routes its approval requests onto the wire."""

    def __init__(
        self,
        agent: Agent,
        runtime: Runtime,
        context: Context,
        registry: ToolRegistry,
        compaction: Compaction | None = None,
        wire: Wire | None = None,
        is_subagent: bool = False,
    ):
        config = runtime.config
        self.agent = agent
        self.runtime = runtime
        self.context = context
        self.registry = registry
        self.wire = wire or Wire()
        self.executor = AgentExecutor(
            agent,
            runtime.provider,
            context,
            self.wire,
            registry,
            compaction or SimpleCompaction(config.compaction.preserved_messages),
            loop_config=config.loop,
            is_subagent=is_subagent,
            error_streak_threshold=config.tools.error_streak_threshold,
        )
        self._unsubscribe_approval = runtime.approval.subscribe(self._forward_approval)

    def _forward_approval(self, request: ApprovalRequest) -> None:
        if self.wire.subscriber_count == 0:
            log.warning("Approval required but nobody is listening; allowing", action=request.action)
            request.resolve(ApprovalResponse.APPROVE)
            return
        self.wire.send(request)

    async def run(self, user_input: str) -> StopReason:
        return await self.executor.execute(user_input)

    def get_status(self) -> dict[str, Any]:
        max_context_size = self.runtime.provider.max_context_size
        reserved = self.runtime.config.loop.reserved_tokens
        tokens = self.context.token_count
        usage = (tokens / max_context_size * 100) if max_context_size > 0 else 0.0
        return {
            "agent": self.agent.name,
            "state": self.executor.state.value,
            "message_count": len(self.context.history),
            "token_count": tokens,
            "checkpoint_count": self.context.n_checkpoints,
            "max_context_size": max_context_size,
            "reserved_tokens": reserved,
            "available_tokens": max(0, max_context_size - reserved - tokens),
            "context_usage_percent": round(usage, 2),
        }

    async def close(self) -> None:
        self._unsubscribe_approval()
        try:
            await self.context.close()
        finally:
            self.wire.complete()


async def create_engine(
    work_dir: Path | str | None = None,
    config: Config | None = None,
    agent_file: Path | str | None = None,
    provider: LLMProvider | None = None,
    continue_session: bool = False,
    yolo: bool | None = None,
    session_manager: SessionManager | None = None,
) -> Engine:
    """Wire up session, runtime, agent, context and tools for one engine."""
    config = config or get_config()
    resolved_work_dir = Path(work_dir or Path.cwd()).expanduser().resolve()
    manager = session_manager or SessionManager(config.resolved_sessions_path())
    session = manager.get_or_create_session(resolved_work_dir, continue_latest=continue_session)

    if provider is None:
        provider = create_provider(
            provider=config.model.provider,
            model=config.model.model,
            api_key=config.model.api_key or None,
            base_url=config.model.base_url or None,
            temperature=config.model.temperature,
            max_context_size=config.model.max_context_size,
            timeout=config.model.timeout,
        )

    runtime = Runtime.create(config, provider, session, yolo=yolo)
    agent = load_agent(agent_file, runtime.builtin_args)

    context = create_context(session.history_file, config.context)
    if await context.restore():
        log.info("Restored session history", session_id=session.id, messages=len(context.history))

    wire = Wire()
    registry = ToolRegistryFactory().create(agent, runtime, wire, session.history_file)
    log.info("Engine ready", agent=agent.name, session_id=session.id, work_dir=str(resolved_work_dir))
    return Engine(agent, runtime, context, registry, wire=wire)
