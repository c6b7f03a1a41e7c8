"""Weather lookup tool."""

from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from camwatch.config import WeatherToolConfig, get_config
from camwatch.logging import get_logger
from camwatch.tools.registry import Tool, ToolResult, require_str

log = get_logger(__name__)

WEATHER_TOOL_NAME = "get_weather"


@dataclass(frozen=True)
class WeatherParams:
    city: str


class WeatherTool(Tool):
    """Fetch a one-line weather report for a city."""

    name = WEATHER_TOOL_NAME
    description = "Get the current weather for a city."
    parameters = {
        "type": "object",
        "properties": {
            "city": {"type": "string", "description": "City name, e.g. 'Beijing'"},
        },
        "required": ["city"],
    }

    def __init__(self, settings: WeatherToolConfig | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or get_config().tools.weather
        self.timeout_seconds = float(self.settings.timeout)
        self.client = client or httpx.AsyncClient(
            timeout=self.settings.timeout,
            follow_redirects=True,
            headers={"User-Agent": "Camwatch/0.1.0 (Weather Tool)"},
        )

    def parse_params(self, arguments: dict[str, Any]) -> WeatherParams:
        return WeatherParams(city=require_str(self.name, arguments, "city"))

    async def execute(self, params: WeatherParams) -> ToolResult:
        url = f"{self.settings.base_url.rstrip('/')}/{quote(params.city)}"
        try:
            response = await self.client.get(url, params={"format": "3"})
        except httpx.HTTPError as e:
            log.warning("Weather request failed", city=params.city, error=str(e))
            return ToolResult(success=False, error=f"Weather service unreachable: {e}")

        if not response.is_success:
            return ToolResult(
                success=False,
                error=f"Weather service returned HTTP {response.status_code} for {params.city}",
            )
        report = response.text.strip()
        return ToolResult(success=True, content=report or f"No weather report for {params.city}")
