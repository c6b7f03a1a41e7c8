"""Tool registry and base tool class."""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel, model_validator

from camwatch.exceptions import (
    ToolArgumentError,
    ToolExecutionError,
    ToolNotFoundError,
)
from camwatch.llm import ToolDefinition
from camwatch.logging import get_logger

log = get_logger(__name__)


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self

    def as_text(self) -> str:
        """Render the result the way it is handed back to the model."""
        if self.success:
            return self.content or "[no output]"
        if self.content and self.content.strip() != (self.error or "").strip():
            return f"Error: {self.error}\n{self.content}"
        return f"Error: {self.error}"


def require_str(tool_name: str, arguments: dict[str, Any], key: str) -> str:
    """Return a non-empty string field or raise ToolArgumentError."""
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolArgumentError(tool_name, f"'{key}' must be a non-empty string")
    return value.strip()


def optional_str(tool_name: str, arguments: dict[str, Any], key: str, default: str) -> str:
    value = arguments.get(key, default)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ToolArgumentError(tool_name, f"'{key}' must be a string")
    return value.strip() or default


class Tool(ABC):
    """Base class for all tools."""

    name: ClassVar[str] = ""
    description: ClassVar[str] = ""
    parameters: ClassVar[dict[str, Any]] = {"type": "object", "properties": {}}
    timeout_seconds: float = 10.0

    @abstractmethod
    def parse_params(self, arguments: dict[str, Any]) -> Any:
        """Check fields and build the tool's typed parameter struct.

        Raises:
            ToolArgumentError if a field is missing or has the wrong type
        """

    @abstractmethod
    async def execute(self, params: Any) -> ToolResult:
        """Execute the tool with its parsed parameter struct."""

    def get_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )


def parse_arguments(tool_name: str, raw_arguments: str | None) -> dict[str, Any]:
    """Decode raw JSON argument text; empty text means no arguments."""
    text = (raw_arguments or "").strip() or "{}"
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ToolArgumentError(tool_name, f"not valid JSON ({e.msg} at position {e.pos})")
    if not isinstance(parsed, dict):
        raise ToolArgumentError(tool_name, "expected a JSON object")
    return parsed


class ToolRegistry:
    """Registry of named tools. Populated at startup, read-only afterwards."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        """List registered tool names in registration order."""
        return list(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for the reasoning service."""
        return [tool.get_definition() for tool in self._tools.values()]

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Cancelled tool task raised", error=str(e))

    async def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Execute a tool by name under its wall-clock timeout.

        Raises:
            ToolNotFoundError if tool not found
            ToolArgumentError if the field checks fail
            ToolExecutionError if execution fails or times out
        """
        tool = self.get(name)
        params = tool.parse_params(arguments)

        timeout_seconds = max(0.1, float(tool.timeout_seconds))
        execute_task: asyncio.Task[ToolResult] | None = None
        try:
            log.info("Executing tool", tool=name, args=arguments)
            execute_task = asyncio.create_task(tool.execute(params))
            done, _ = await asyncio.wait({execute_task}, timeout=timeout_seconds)

            if execute_task in done:
                result = await execute_task
                if not isinstance(result, ToolResult):
                    raise ToolExecutionError(name, "Tool returned invalid result payload")
                log.info("Tool executed", tool=name, success=result.success)
                return result

            await self._cancel_task(execute_task)
            timeout_label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            raise ToolExecutionError(name, f"Execution timed out after {timeout_label}s")
        except asyncio.CancelledError:
            await self._cancel_task(execute_task)
            raise
        except ToolExecutionError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e))

    async def run(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """Like ``execute`` but every failure comes back as a failed ToolResult."""
        try:
            return await self.execute(name, arguments)
        except (ToolNotFoundError, ToolArgumentError, ToolExecutionError) as e:
            log.warning("Tool call failed", tool=name, error=str(e))
            return ToolResult(success=False, error=str(e))

    async def invoke(self, name: str, raw_arguments: str | None) -> str:
        """Parse raw JSON arguments, run the tool, and describe the outcome as text."""
        try:
            arguments = parse_arguments(name, raw_arguments)
        except ToolArgumentError as e:
            log.warning("Malformed tool arguments", tool=name, raw=raw_arguments)
            return f"Error: {e}"
        if not self.has_tool(name):
            return str(ToolNotFoundError(name))
        result = await self.run(name, arguments)
        return result.as_text()
