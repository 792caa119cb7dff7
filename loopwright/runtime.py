"""Per-session runtime shared by an agent and the tools it runs."""

from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any

from loopwright.approval import Approval
from loopwright.config import Config
from loopwright.llm import LLMProvider
from loopwright.session import Session

LISTING_LIMIT = 200
AGENTS_MD = "AGENTS.md"


def list_work_dir(work_dir: Path, limit: int = LISTING_LIMIT) -> str:
    """Short ``ls -la`` style listing of the top level of ``work_dir``."""
    if not work_dir.is_dir():
        return ""
    entries = sorted(work_dir.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
    lines = []
    for entry in entries[:limit]:
        if entry.is_dir():
            lines.append(f"{entry.name}/")
        else:
            lines.append(f"{entry.name}  ({entry.stat().st_size} bytes)")
    if len(entries) > limit:
        lines.append(f"... ({len(entries) - limit} more entries)")
    return "\n".join(lines)


def builtin_prompt_args(work_dir: Path) -> dict[str, str]:
    """Values every system prompt template can reference."""
    agents_md = work_dir / AGENTS_MD
    return {
        "now": datetime.now().astimezone().isoformat(timespec="seconds"),
        "work_dir": str(work_dir),
        "work_dir_listing": list_work_dir(work_dir),
        "agents_md": agents_md.read_text(encoding="utf-8").strip() if agents_md.is_file() else "",
    }


@dataclass
class Runtime:
    config: Config
    provider: LLMProvider
    session: Session
    approval: Approval
    builtin_args: dict[str, Any] = field(default_factory=dict)

    @property
    def work_dir(self) -> Path:
        return self.session.work_dir

    @classmethod
    def create(
        cls,
        config: Config,
        provider: LLMProvider,
        session: Session,
        yolo: bool | None = None,
    ) -> "Runtime":
        return cls(
            config=config,
            provider=provider,
            session=session,
            approval=Approval(yolo=config.approval.yolo if yolo is None else yolo),
            builtin_args=builtin_prompt_args(session.work_dir),
        )

    def for_subagent(self) -> "Runtime":
        """Same session and provider; approvals routed through a forked service."""
        return replace(self, approval=self.approval.fork())
