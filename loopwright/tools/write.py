"""Write tool for writing file contents."""

from pathlib import Path
from typing import Any

from loopwright.approval import Approval, ApprovalResponse
from loopwright.logging import get_logger
from loopwright.tools.registry import Tool, ToolResult

log = get_logger(__name__)

APPROVAL_ACTION = "edit file"


class WriteTool(Tool):
    """Write content to files inside the working directory."""

    name = "WriteFile"
    description = "Create or overwrite a file with content. Paths must stay inside the working directory."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file, absolute or relative to the working directory",
            },
            "content": {
                "type": "string",
                "description": "Content to write to the file",
            },
            "append": {
                "type": "boolean",
                "description": "Append to file instead of overwriting",
            },
        },
        "required": ["path", "content"],
    }

    # Bounded only by the approval wait and a single file write.
    timeout_seconds = None

    def __init__(self, approval: Approval):
        self.approval = approval

    async def execute(self, path: str, content: str, append: bool = False, **kwargs: Any) -> ToolResult:
        work_dir = Path(kwargs.get("_work_dir") or Path.cwd()).resolve()
        file_path = (work_dir / Path(path).expanduser()).resolve()
        try:
            file_path.relative_to(work_dir)
        except ValueError:
            return ToolResult.error(f"Refusing to write outside the working directory: {path}")

        response = await self.approval.request_approval(
            str(kwargs.get("_tool_call_id", "")),
            APPROVAL_ACTION,
            f"{'Append to' if append else 'Write'} file `{file_path}`",
        )
        if response == ApprovalResponse.REJECT:
            return ToolResult.rejected()

        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "a" if append else "w", encoding="utf-8") as f:
            f.write(content)

        log.info("File written", path=str(file_path), chars=len(content), append=append)
        return ToolResult.ok(f"{'Appended' if append else 'Written'} {len(content)} chars to {file_path}")
