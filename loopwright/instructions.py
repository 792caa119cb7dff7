"""Load and render prompt templates from disk.

Templates are looked up in two places:
  1. Personal overrides in ``~/.loopwright/instructions/`` (highest priority)
  2. Bundled defaults in ``loopwright/instructions/``
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping


_PERSONAL_DIR = Path("~/.loopwright/instructions").expanduser()


class _SafeFormatDict(dict[str, str]):
    """Leave unknown placeholders untouched instead of raising KeyError."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_template(template: str, variables: Mapping[str, object]) -> str:
    """``str.format`` substitution that tolerates unknown placeholders."""
    values = {k: str(v) for k, v in variables.items()}
    return template.format_map(_SafeFormatDict(values))


class InstructionLoader:
    """Read and render instruction templates with personal-override support."""

    def __init__(
        self,
        base_dir: Path | str | None = None,
        personal_dir: Path | str | None = None,
    ):
        self.base_dir = self._resolve_base_dir(base_dir)
        self.personal_dir: Path = (
            Path(personal_dir).expanduser().resolve()
            if personal_dir is not None
            else _PERSONAL_DIR.resolve()
        )
        self._cache: dict[str, str] = {}

    @staticmethod
    def _resolve_base_dir(base_dir: Path | str | None) -> Path:
        if base_dir is not None:
            return Path(base_dir).expanduser().resolve()
        env_dir = os.getenv("LOOPWRIGHT_INSTRUCTIONS_DIR")
        if env_dir:
            return Path(env_dir).expanduser().resolve()
        return (Path(__file__).resolve().parent / "instructions").resolve()

    def _path(self, name: str) -> Path:
        personal = self.personal_dir / name
        if personal.is_file():
            return personal
        return self.base_dir / name

    def load(self, name: str) -> str:
        """Load instruction template content by filename."""
        cached = self._cache.get(name)
        if cached is not None:
            return cached

        path = self._path(name)
        if not path.is_file():
            raise FileNotFoundError(f"Instruction template not found: {path}")
        content = path.read_text(encoding="utf-8").strip()
        self._cache[name] = content
        return content

    def render(self, name: str, **variables: object) -> str:
        return render_template(self.load(name), variables)


_loader: InstructionLoader | None = None


def get_instruction_loader() -> InstructionLoader:
    global _loader
    if _loader is None:
        _loader = InstructionLoader()
    return _loader
