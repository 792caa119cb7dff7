"""Custom exceptions for Loopwright."""


class LoopwrightError(Exception):
    """Base exception for Loopwright."""

    pass


class ConfigurationError(LoopwrightError):
    """Configuration-related errors."""

    pass


class AgentSpecError(ConfigurationError):
    """Agent specification could not be loaded or is invalid."""

    pass


class LLMError(LoopwrightError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, transport, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(LoopwrightError):
    """Tool execution errors."""

    pass


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ToolArgumentError(ToolError):
    """Tool arguments could not be parsed or are incomplete."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Invalid arguments for tool '{tool_name}': {message}")
        self.tool_name = tool_name


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ContextError(LoopwrightError):
    """Conversation context errors."""

    pass


class CheckpointNotFoundError(ContextError):
    """Revert target checkpoint does not exist."""

    def __init__(self, checkpoint_id: int):
        super().__init__(f"Checkpoint {checkpoint_id} does not exist")
        self.checkpoint_id = checkpoint_id


class PersistenceError(ContextError):
    """Writing to or reading from the context log failed."""

    pass


class MaxStepsReachedError(LoopwrightError):
    """Agent loop exceeded the configured number of steps."""

    def __init__(self, max_steps: int):
        super().__init__(f"Max number of steps reached: {max_steps}")
        self.max_steps = max_steps
