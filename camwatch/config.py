"""Configuration management for Camwatch."""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.camwatch/config.yaml").expanduser()
DEFAULT_MEMORY_PATH = Path("~/.camwatch/memory").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

DEFAULT_SYSTEM_PROMPT = (
    "You are Camwatch, an operations agent for a network camera fleet. "
    "Work out what the user wants and decide which tool to call. "
    "Use get_cameras to list cameras and check_camera to probe a camera's RTSP stream. "
    "Only use RTSP addresses returned by get_cameras; never invent one."
)


class ModelConfig(BaseModel):
    """Reasoning service configuration."""

    provider: Literal["openai", "openrouter", "ollama"] = "openrouter"
    model: str = "stepfun/step-3.5-flash:free"
    base_url: str = ""
    api_key: str = ""
    temperature: float = 0.0
    max_tokens: int = 4096
    timeout: float = 30.0
    streaming: bool = True


class AgentConfig(BaseModel):
    """Dialogue state machine configuration."""

    max_retries: int = 3
    max_steps: int = 24
    report_mode: Literal["template", "llm"] = "template"
    report_detail_chars: int = 200
    system_prompt: str = DEFAULT_SYSTEM_PROMPT


class MemoryConfig(BaseModel):
    """Vector memory configuration."""

    enabled: bool = True
    path: str = str(DEFAULT_MEMORY_PATH)
    dimension: int = 384
    embedder: Literal["sentence-transformers", "local_hash"] = "sentence-transformers"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    top_k: int = 3


class CameraConfig(BaseModel):
    """One camera served by the listing tool."""

    name: str
    url: str


def _default_cameras() -> list[CameraConfig]:
    return [
        CameraConfig(name="Entrance", url="rtsp://172.21.132.230/url1"),
        CameraConfig(
            name="Office",
            url="rtsp://172.21.132.230:554/rtp/32020000002000000003_32020000001320000020?originTypeStr=rtp_push",
        ),
        CameraConfig(name="Plaza", url="rtsp://172.21.132.230/url3"),
    ]


class ProbeToolConfig(BaseModel):
    """ffprobe-based stream check configuration."""

    binary: str = "ffprobe"
    timeout: float = 10.0
    rw_timeout_us: int = 3_000_000
    max_output_chars: int = 200


class WeatherToolConfig(BaseModel):
    """Weather lookup configuration."""

    base_url: str = "https://wttr.in"
    timeout: float = 10.0


class ToolsConfig(BaseModel):
    """Tools configuration."""

    list_timeout: float = 3.0
    probe: ProbeToolConfig = Field(default_factory=ProbeToolConfig)
    weather: WeatherToolConfig = Field(default_factory=WeatherToolConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Camwatch."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    cameras: list[CameraConfig] = Field(default_factory=_default_cameras)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="CAMWATCH_",
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
    def load(cls) -> "Config":
        """Load configuration, preferring env vars over YAML."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def resolved_memory_path(self) -> Path:
        """Memory directory with ``~`` expanded."""
        return Path(self.memory.path).expanduser().resolve()


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
