"""Camera listing tool."""

import re
from dataclasses import dataclass
from typing import Any

from camwatch.config import CameraConfig, get_config
from camwatch.logging import get_logger
from camwatch.exceptions import ToolArgumentError
from camwatch.tools.registry import Tool, ToolResult, optional_str

log = get_logger(__name__)

LIST_TOOL_NAME = "get_cameras"

# One camera per block in the listing text.
CAMERA_ENTRY_RE = re.compile(r'Camera name: "([^"]+)"\s+RTSP address: "([^"]+)"')


@dataclass(frozen=True)
class Target:
    """A camera to check."""

    name: str
    address: str


@dataclass(frozen=True)
class ListCamerasParams:
    range: str = "all"


def render_camera_listing(cameras: list[CameraConfig]) -> str:
    if not cameras:
        return "No cameras are configured.\n"
    lines = ["All cameras retrieved successfully:\n"]
    for cam in cameras:
        lines.append(f'Camera name: "{cam.name}"\nRTSP address: "{cam.url}"\n')
    return "\n".join(lines)


def parse_camera_listing(text: str) -> list[Target]:
    """Extract ``{name, address}`` pairs from listing text."""
    return [Target(name=m.group(1), address=m.group(2)) for m in CAMERA_ENTRY_RE.finditer(text or "")]


class ListCamerasTool(Tool):
    """List every online network camera."""

    name = LIST_TOOL_NAME
    description = (
        "List all online network cameras. The result contains each camera's name and RTSP address."
    )
    parameters = {
        "type": "object",
        "properties": {
            "range": {
                "type": "string",
                "enum": ["all"],
                "description": "Which cameras to list; only 'all' is supported.",
            },
        },
        "required": [],
    }

    def __init__(self, cameras: list[CameraConfig] | None = None, timeout_seconds: float | None = None):
        if cameras is None or timeout_seconds is None:
            config = get_config()
            cameras = config.cameras if cameras is None else cameras
            timeout_seconds = config.tools.list_timeout if timeout_seconds is None else timeout_seconds
        self.cameras = list(cameras)
        self.timeout_seconds = float(timeout_seconds)

    def parse_params(self, arguments: dict[str, Any]) -> ListCamerasParams:
        scope = optional_str(self.name, arguments, "range", "all")
        if scope != "all":
            raise ToolArgumentError(self.name, f"unsupported range '{scope}', only 'all' is available")
        return ListCamerasParams(range=scope)

    async def execute(self, params: ListCamerasParams) -> ToolResult:
        log.info("Listing cameras", count=len(self.cameras))
        return ToolResult(success=True, content=render_camera_listing(self.cameras))
