"""Session management: one JSONL context log per session, grouped by work dir."""

import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from loopwright.config import get_config
from loopwright.logging import get_logger

log = get_logger(__name__)

HISTORY_SUFFIX = ".jsonl"


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


def work_dir_key(work_dir: Path) -> str:
    return hashlib.md5(str(work_dir).encode("utf-8")).hexdigest()


@dataclass
class Session:
    """A conversation session bound to a working directory."""

    id: str
    work_dir: Path
    history_file: Path
    created_at: str = field(default_factory=_utcnow_iso)

    @property
    def is_empty(self) -> bool:
        return not self.history_file.exists() or self.history_file.stat().st_size == 0


class SessionManager:
    """Creates and finds sessions under ``<root>/<md5(work_dir)>/<id>.jsonl``."""

    def __init__(self, root: Path | str | None = None):
        if root is None:
            self.root = get_config().resolved_sessions_path()
        else:
            self.root = Path(root).expanduser().resolve()

    def _sessions_dir(self, work_dir: Path) -> Path:
        return self.root / work_dir_key(work_dir)

    def _session_from_file(self, work_dir: Path, history_file: Path) -> Session:
        created = datetime.fromtimestamp(history_file.stat().st_mtime, UTC).isoformat()
        return Session(id=history_file.stem, work_dir=work_dir, history_file=history_file, created_at=created)

    def create_session(self, work_dir: Path | str) -> Session:
        """Create a new, empty session for ``work_dir``."""
        resolved = Path(work_dir).expanduser().resolve()
        sessions_dir = self._sessions_dir(resolved)
        sessions_dir.mkdir(parents=True, exist_ok=True)

        session_id = str(uuid.uuid4())
        history_file = sessions_dir / f"{session_id}{HISTORY_SUFFIX}"
        history_file.touch()
        log.info("Created session", session_id=session_id, work_dir=str(resolved))
        return Session(id=session_id, work_dir=resolved, history_file=history_file)

    def list_sessions(self, work_dir: Path | str) -> list[Session]:
        """Sessions for ``work_dir``, most recently modified first."""
        resolved = Path(work_dir).expanduser().resolve()
        sessions_dir = self._sessions_dir(resolved)
        if not sessions_dir.is_dir():
            return []
        files = [
            path
            for path in sessions_dir.glob(f"*{HISTORY_SUFFIX}")
            if path.is_file() and "_sub_" not in path.stem
        ]
        files.sort(key=lambda path: path.stat().st_mtime, reverse=True)
        return [self._session_from_file(resolved, path) for path in files]

    def get_session(self, work_dir: Path | str, session_id: str) -> Session | None:
        resolved = Path(work_dir).expanduser().resolve()
        history_file = self._sessions_dir(resolved) / f"{session_id}{HISTORY_SUFFIX}"
        if not history_file.is_file():
            return None
        return self._session_from_file(resolved, history_file)

    def continue_session(self, work_dir: Path | str) -> Session | None:
        """Most recent non-empty session for ``work_dir``."""
        for session in self.list_sessions(work_dir):
            if not session.is_empty:
                log.info("Continuing session", session_id=session.id)
                return session
        return None

    def get_or_create_session(self, work_dir: Path | str, continue_latest: bool = False) -> Session:
        if continue_latest:
            session = self.continue_session(work_dir)
            if session is not None:
                return session
            log.info("No previous session to continue, creating a new one")
        return self.create_session(work_dir)
