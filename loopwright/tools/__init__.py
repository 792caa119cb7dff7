"""Tools available to agents."""

from loopwright.tools.factory import ToolRegistryFactory
from loopwright.tools.glob import GlobTool
from loopwright.tools.read import ReadTool
from loopwright.tools.registry import Tool, ToolRegistry, ToolResult, parse_arguments
from loopwright.tools.shell import ShellTool
from loopwright.tools.task import TaskTool
from loopwright.tools.write import WriteTool

__all__ = [
    "GlobTool",
    "ReadTool",
    "ShellTool",
    "TaskTool",
    "Tool",
    "ToolRegistry",
    "ToolRegistryFactory",
    "ToolResult",
    "WriteTool",
    "parse_arguments",
]
