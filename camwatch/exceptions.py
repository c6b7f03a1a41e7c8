"""Custom exceptions for Camwatch."""


class CamwatchError(Exception):
    """Base exception for Camwatch."""

    pass


class ConfigurationError(CamwatchError):
    """Configuration-related errors."""

    pass


class LLMError(CamwatchError):
    """Reasoning-service errors (transport, decoding)."""

    pass


class LLMAPIError(LLMError):
    """Reasoning-service API errors (rate limit, auth, 5xx, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LLMTimeoutError(LLMError):
    """Round trip exceeded its deadline."""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Reasoning service did not answer within {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class ToolError(CamwatchError):
    """Tool execution errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ToolArgumentError(ToolError):
    """Tool arguments are not valid JSON or fail field checks."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Invalid arguments for '{tool_name}': {message}")
        self.tool_name = tool_name


class MemoryStoreError(CamwatchError):
    """Vector memory errors."""

    pass


class EmbeddingError(MemoryStoreError):
    """Embedding step failed or produced an unusable vector."""

    pass


class MemoryPersistenceError(MemoryStoreError):
    """Index or metadata file could not be written."""

    def __init__(self, path: str, message: str):
        super().__init__(f"Failed to persist memory to {path}: {message}")
        self.path = path
