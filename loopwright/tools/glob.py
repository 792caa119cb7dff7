"""Glob tool for finding files by pattern."""

import asyncio
import glob
from pathlib import Path
from typing import Any

from loopwright.logging import get_logger
from loopwright.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class GlobTool(Tool):
    """Find files by pattern."""

    name = "Glob"
    description = "Find files matching a glob pattern, relative to the working directory."
    parameters = {
        "type": "object",
        "properties": {
            "pattern": {
                "type": "string",
                "description": "Glob pattern (e.g., '**/*.py', 'src/**/*.ts')",
            },
            "root": {
                "type": "string",
                "description": "Directory to search from (default: working directory)",
            },
            "limit": {
                "type": "number",
                "description": "Maximum number of results (default: 100)",
            },
        },
        "required": ["pattern"],
    }

    async def execute(
        self,
        pattern: str,
        root: str | None = None,
        limit: int = 100,
        **kwargs: Any,
    ) -> ToolResult:
        work_dir = Path(kwargs.get("_work_dir") or Path.cwd())
        base = (work_dir / root).resolve() if root else work_dir
        if not base.is_dir():
            return ToolResult.error(f"Directory not found: {root}")

        loop = asyncio.get_running_loop()
        matches = await loop.run_in_executor(
            None,
            lambda: sorted(glob.glob(pattern, root_dir=str(base), recursive=True)),
        )
        total = len(matches)
        matches = matches[: max(1, int(limit))]

        if not matches:
            return ToolResult.ok(f"No files found matching: {pattern}")

        output = f"Found {total} file(s):\n" + "\n".join(f"  {m}" for m in matches)
        if total > len(matches):
            output += f"\n  ... {total - len(matches)} more not shown"
        log.debug("Glob matched", pattern=pattern, count=total)
        return ToolResult.ok(output)
