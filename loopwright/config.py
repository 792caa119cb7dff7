"""Configuration management for Loopwright."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_HOME = Path("~/.loopwright").expanduser()
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.yaml"
DEFAULT_SESSIONS_PATH = DEFAULT_HOME / "sessions"
LOCAL_CONFIG_FILENAME = "loopwright.yaml"


class ModelConfig(BaseModel):
    """Model configuration."""

    provider: str = "openai"
    model: str = "gpt-4o-mini"
    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    temperature: float = 0.2
    max_context_size: int = 128000
    timeout: float = 120.0


class LoopConfig(BaseModel):
    """Step-loop control."""

    max_steps_per_run: int = 100
    reserved_tokens: int = 50000
    max_thinking_steps: int = 5
    checkpoint_messages: bool = False


class ContextConfig(BaseModel):
    """Conversation log persistence."""

    backend: Literal["jsonl", "async_batch"] = "jsonl"
    batch_size: int = 10
    flush_interval_seconds: float = 5.0


class CompactionConfig(BaseModel):
    """Context compaction configuration."""

    preserved_messages: int = 2


class ShellToolConfig(BaseModel):
    """Shell tool configuration."""

    timeout: int = 60
    blocked: list[str] = [
        "rm -rf /",
        "mkfs",
        ":(){:|:&};:",
    ]


class ToolsConfig(BaseModel):
    """Tools configuration."""

    default_timeout_seconds: float = 120.0
    error_streak_threshold: int = 3
    read_max_chars: int = 100000
    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)


class SubagentConfig(BaseModel):
    """Subagent delegation configuration."""

    min_response_length: int = 200
    timeout_seconds: float = 3600.0


class ApprovalConfig(BaseModel):
    """Human approval configuration."""

    yolo: bool = False


class SessionConfig(BaseModel):
    """Session storage configuration."""

    path: str = str(DEFAULT_SESSIONS_PATH)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Loopwright."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    subagent: SubagentConfig = Field(default_factory=SubagentConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="LOOPWRIGHT_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML, falling back to defaults when no file exists."""
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_sessions_path(self) -> Path:
        """Absolute directory holding session logs."""
        return Path(self.session.path).expanduser().resolve()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
