"""Builds the tool registry for an agent."""

from pathlib import Path

from loopwright.agentspec import Agent
from loopwright.logging import get_logger
from loopwright.runtime import Runtime
from loopwright.tools.glob import GlobTool
from loopwright.tools.read import ReadTool
from loopwright.tools.registry import ToolRegistry
from loopwright.tools.shell import ShellTool
from loopwright.tools.task import TaskTool
from loopwright.tools.write import WriteTool
from loopwright.wire import Wire

log = get_logger(__name__)


class ToolRegistryFactory:
    """Constructs every tool up front so a registry is complete before the loop starts.

    Parents and subagents get their registries from the same factory; only the
    runtime (approval scope), wire and history file differ.
    """

    def create(self, agent: Agent, runtime: Runtime, wire: Wire, history_file: Path) -> ToolRegistry:
        tools_config = runtime.config.tools
        registry = ToolRegistry(
            work_dir=runtime.work_dir,
            default_timeout_seconds=tools_config.default_timeout_seconds,
        )
        registry.register(ShellTool(runtime.approval, tools_config.shell))
        registry.register(ReadTool(max_chars=tools_config.read_max_chars))
        registry.register(WriteTool(runtime.approval))
        registry.register(GlobTool())
        if agent.subagents:
            registry.register(TaskTool(agent, runtime, self, history_file, parent_wire=wire))

        log.debug("Tool registry created", agent=agent.name, tools=registry.list_tools())
        return registry
