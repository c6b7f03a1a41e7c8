"""Tools package for Camwatch."""

from camwatch.tools.registry import (
    Tool,
    ToolRegistry,
    ToolResult,
)
from camwatch.tools.cameras import LIST_TOOL_NAME, ListCamerasTool, Target, parse_camera_listing
from camwatch.tools.probe import CHECK_TOOL_NAME, CheckCameraTool
from camwatch.tools.weather import WEATHER_TOOL_NAME, WeatherTool


def build_default_registry(config=None) -> ToolRegistry:
    """Registry with every built-in tool, configured from ``config`` or the global config."""
    from camwatch.config import get_config

    cfg = config or get_config()
    registry = ToolRegistry()
    registry.register(ListCamerasTool(cameras=cfg.cameras, timeout_seconds=cfg.tools.list_timeout))
    registry.register(CheckCameraTool(settings=cfg.tools.probe))
    registry.register(WeatherTool(settings=cfg.tools.weather))
    return registry


__all__ = [
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "LIST_TOOL_NAME",
    "CHECK_TOOL_NAME",
    "WEATHER_TOOL_NAME",
    "ListCamerasTool",
    "CheckCameraTool",
    "WeatherTool",
    "Target",
    "parse_camera_listing",
    "build_default_registry",
]
