"""Agent specification loading.

An agent is described by an ``agent.yaml`` file::

    version: 1
    agent:
      extend: default            # optional; "default" is the bundled agent
      name: coder
      system_prompt_path: ./system.md
      system_prompt_args:
        ROLE_ADDITIONAL: ""
      tools: [Shell, ReadFile, WriteFile, Glob]
      exclude_tools: [Shell]
      subagents:
        coder:
          path: ./sub.yaml
          description: Good at general software engineering tasks.

Relative paths resolve against the file that declares them. Subagents are
resolved when the parent is loaded, so a running agent never loads specs.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationError

from loopwright.exceptions import AgentSpecError
from loopwright.instructions import render_template
from loopwright.logging import get_logger

log = get_logger(__name__)

AGENTS_DIR = Path(__file__).resolve().parent / "agents"
DEFAULT_AGENT_FILE = AGENTS_DIR / "default" / "agent.yaml"
SUPPORTED_VERSION = 1


class SubagentSpec(BaseModel):
    path: Path
    description: str = ""


class AgentSpec(BaseModel):
    """Raw (possibly partial) agent definition as found in YAML."""

    extend: str | None = None
    name: str | None = None
    system_prompt_path: Path | None = None
    system_prompt_args: dict[str, str] = Field(default_factory=dict)
    tools: list[str] | None = None
    exclude_tools: list[str] | None = None
    subagents: dict[str, SubagentSpec] | None = None


@dataclass
class Subagent:
    agent: "Agent"
    description: str


@dataclass
class Agent:
    """Fully resolved agent: rendered prompt, final tool list, loaded subagents."""

    name: str
    system_prompt: str
    tools: list[str] = field(default_factory=list)
    subagents: dict[str, Subagent] = field(default_factory=dict)
    source: Path | None = None


def _read_spec(agent_file: Path) -> AgentSpec:
    if not agent_file.is_file():
        raise AgentSpecError(f"Agent file not found: {agent_file}")
    try:
        data = yaml.safe_load(agent_file.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise AgentSpecError(f"Invalid agent file {agent_file}: {e}") from e

    version = data.get("version", SUPPORTED_VERSION)
    if version != SUPPORTED_VERSION:
        raise AgentSpecError(f"Unsupported agent spec version: {version}")
    agent_data = data.get("agent")
    if not isinstance(agent_data, dict):
        raise AgentSpecError(f"Missing 'agent' section in {agent_file}")

    try:
        spec = AgentSpec(**agent_data)
    except ValidationError as e:
        raise AgentSpecError(f"Invalid agent spec {agent_file}: {e}") from e

    base_dir = agent_file.parent
    if spec.system_prompt_path is not None:
        spec.system_prompt_path = (base_dir / spec.system_prompt_path).resolve()
    for subagent in (spec.subagents or {}).values():
        subagent.path = (base_dir / subagent.path).resolve()
    return spec


def _merge(base: AgentSpec, override: AgentSpec) -> AgentSpec:
    """Fields set on ``override`` win; prompt args are merged key by key."""
    return AgentSpec(
        name=override.name or base.name,
        system_prompt_path=override.system_prompt_path or base.system_prompt_path,
        system_prompt_args={**base.system_prompt_args, **override.system_prompt_args},
        tools=override.tools if override.tools is not None else base.tools,
        exclude_tools=override.exclude_tools if override.exclude_tools is not None else base.exclude_tools,
        subagents=override.subagents if override.subagents is not None else base.subagents,
    )


def load_agent_spec(agent_file: Path | str, _chain: tuple[Path, ...] = ()) -> AgentSpec:
    """Load a spec file and apply its ``extend`` chain."""
    path = Path(agent_file).expanduser().resolve()
    if path in _chain:
        raise AgentSpecError(f"Circular agent extension: {' -> '.join(str(p) for p in (*_chain, path))}")

    spec = _read_spec(path)
    if spec.extend:
        base_file = DEFAULT_AGENT_FILE if spec.extend == "default" else path.parent / spec.extend
        log.debug("Extending agent spec", agent_file=str(path), base=str(base_file))
        spec = _merge(load_agent_spec(base_file, (*_chain, path)), spec)

    if not spec.name:
        raise AgentSpecError(f"Agent name is required: {path}")
    if spec.system_prompt_path is None:
        raise AgentSpecError(f"system_prompt_path is required: {path}")
    if spec.tools is None:
        raise AgentSpecError(f"tools list is required: {path}")
    return spec


def render_system_prompt(spec: AgentSpec, builtin_args: Mapping[str, Any]) -> str:
    if spec.system_prompt_path is None or not spec.system_prompt_path.is_file():
        raise AgentSpecError(f"System prompt file not found: {spec.system_prompt_path}")
    template = spec.system_prompt_path.read_text(encoding="utf-8").strip()
    return render_template(template, {**builtin_args, **spec.system_prompt_args})


def load_agent(
    agent_file: Path | str | None,
    builtin_args: Mapping[str, Any] | None = None,
    _loading: tuple[Path, ...] = (),
) -> Agent:
    """Load and fully resolve an agent, including every subagent."""
    path = Path(agent_file).expanduser().resolve() if agent_file else DEFAULT_AGENT_FILE
    if path in _loading:
        raise AgentSpecError(f"Agent {path} lists itself as a subagent")

    spec = load_agent_spec(path)
    args = dict(builtin_args or {})
    excluded = set(spec.exclude_tools or [])
    tools = [name for name in spec.tools or [] if name not in excluded]

    subagents: dict[str, Subagent] = {}
    for sub_name, sub_spec in (spec.subagents or {}).items():
        subagents[sub_name] = Subagent(
            agent=load_agent(sub_spec.path, args, (*_loading, path)),
            description=sub_spec.description,
        )

    agent = Agent(
        name=spec.name or path.parent.name,
        system_prompt=render_system_prompt(spec, args),
        tools=tools,
        subagents=subagents,
        source=path,
    )
    log.info("Loaded agent", agent=agent.name, tools=len(tools), subagents=list(subagents))
    return agent
