"""Read tool for reading file contents."""

from pathlib import Path
from typing import Any

from loopwright.logging import get_logger
from loopwright.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class ReadTool(Tool):
    """Read file contents."""

    name = "ReadFile"
    description = "Read the contents of a text file, optionally a range of lines."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file, absolute or relative to the working directory",
            },
            "limit": {
                "type": "number",
                "description": "Maximum number of lines to read",
            },
            "offset": {
                "type": "number",
                "description": "Line number to start reading from (1-indexed)",
            },
        },
        "required": ["path"],
    }

    def __init__(self, max_chars: int = 100_000):
        self.max_chars = max_chars

    async def execute(self, path: str, limit: int | None = None, offset: int | None = None, **kwargs: Any) -> ToolResult:
        work_dir = Path(kwargs.get("_work_dir") or Path.cwd())
        file_path = (work_dir / Path(path).expanduser()).resolve()

        if not file_path.exists():
            return ToolResult.error(f"File not found: {path}")
        if not file_path.is_file():
            return ToolResult.error(f"Not a file: {path}")

        file_size = file_path.stat().st_size
        if file_size > self.max_chars and not (offset or limit):
            return ToolResult.error(
                f"File too large: {file_size} bytes (max {self.max_chars}); read it in ranges with offset/limit"
            )

        try:
            content = file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return ToolResult.error(f"Not a UTF-8 text file: {path}")

        lines = content.splitlines()
        start = max(1, int(offset or 1))
        lines = lines[start - 1:]
        if limit:
            lines = lines[: int(limit)]
        text = "\n".join(lines)[: self.max_chars]

        info = f"[{file_path} {len(text)} chars]"
        if offset or limit:
            info += f" [lines {start}-{start + len(lines) - 1}]"
        return ToolResult.ok(f"{info}\n{text}")
