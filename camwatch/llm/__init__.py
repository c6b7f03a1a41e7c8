"""OpenAI-compatible chat-completions provider over plain HTTP."""

import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from camwatch.exceptions import ConfigurationError, LLMAPIError, LLMError
from camwatch.logging import get_logger

log = get_logger(__name__)


PROVIDER_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "ollama": "http://127.0.0.1:11434/v1",
}

STREAM_END_MARKER = "[DONE]"


@dataclass
class ToolCall:
    """A tool call from the LLM. ``arguments`` is raw JSON text."""

    id: str
    name: str
    arguments: str = "{}"


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str | None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None


@dataclass
class LLMResponse:
    """Response from the LLM."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    model: str = ""
    usage: dict[str, int] = field(default_factory=dict)

    def tool_names(self) -> set[str]:
        return {call.name for call in self.tool_calls}


@dataclass
class ToolDefinition:
    """Definition of a tool for the LLM."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema


@dataclass
class ToolCallFragment:
    """One streamed piece of a tool call, keyed by its stable index."""

    index: int
    id: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass
class StreamDelta:
    """One incremental fragment of a streamed response."""

    content: str | None = None
    tool_calls: list[ToolCallFragment] = field(default_factory=list)
    usage: dict[str, int] | None = None


class LLMProvider(ABC):
    """Abstract base class for reasoning-service providers."""

    model: str = ""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        pass

    @abstractmethod
    def complete_streaming(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[StreamDelta]:
        pass

    async def close(self) -> None:
        return None


def serialize_message(msg: Message) -> dict[str, Any]:
    """Convert a message to the chat-completions wire format."""
    entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
    if msg.tool_calls:
        entry["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": call.arguments or "{}"},
            }
            for call in msg.tool_calls
        ]
    if msg.role == "tool":
        entry["tool_call_id"] = msg.tool_call_id or ""
        if msg.name:
            entry["name"] = msg.name
        entry["content"] = msg.content or ""
    return entry


def serialize_tool(tool: ToolDefinition) -> dict[str, Any]:
    """Convert a tool definition to the chat-completions wire format."""
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description or "",
            "parameters": tool.parameters or {"type": "object", "properties": {}},
        },
    }


def is_stream_end(line: str) -> bool:
    """Return True for the `data: [DONE]` terminator line."""
    stripped = line.strip()
    return stripped.startswith("data:") and stripped[len("data:"):].strip() == STREAM_END_MARKER


def parse_stream_line(line: str) -> StreamDelta | None:
    """Parse one server-sent-event line into a delta.

    Returns ``None`` for keep-alives, comments and the end marker.
    """
    stripped = line.strip()
    if not stripped.startswith("data:"):
        return None
    payload = stripped[len("data:"):].strip()
    if not payload or payload == STREAM_END_MARKER:
        return None

    chunk = json.loads(payload)
    error = chunk.get("error")
    if error:
        # OpenRouter reports upstream failures in-band after a 200
        if not isinstance(error, dict):
            error = {"message": str(error)}
        code = error.get("code")
        raise LLMAPIError(
            f"Stream error: {error.get('message') or error}",
            status_code=code if isinstance(code, int) else None,
        )
    choices = chunk.get("choices") or []
    delta = (choices[0].get("delta") if choices else None) or {}

    fragments = []
    for raw in delta.get("tool_calls") or []:
        function = raw.get("function") or {}
        fragments.append(ToolCallFragment(
            index=int(raw.get("index", 0)),
            id=raw.get("id") or None,
            name=function.get("name") or None,
            arguments=function.get("arguments") or None,
        ))

    return StreamDelta(
        content=delta.get("content") or None,
        tool_calls=fragments,
        usage=chunk.get("usage") or None,
    )


class OpenAICompatibleProvider(LLMProvider):
    """Chat-completions provider for OpenAI, OpenRouter and Ollama's /v1 API."""

    def __init__(
        self,
        model: str,
        base_url: str = PROVIDER_BASE_URLS["openai"],
        api_key: str | None = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the provider.

        Args:
            model: Model name as the service expects it
            base_url: API base URL, without the ``/chat/completions`` suffix
            api_key: Bearer token (optional for local Ollama)
            temperature: Sampling temperature
            max_tokens: Max tokens to generate
            timeout: HTTP timeout in seconds
            client: Pre-built client (tests inject a mock transport here)
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens

        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _body(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        temperature: float | None,
        max_tokens: int | None,
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [serialize_message(msg) for msg in messages],
            "stream": stream,
            "temperature": self.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.max_tokens,
        }
        if tools:
            body["tools"] = [serialize_tool(tool) for tool in tools]
            body["tool_choice"] = "auto"
        if stream:
            body["stream_options"] = {"include_usage": True}
        return body

    async def complete(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Generate a completion in one request."""
        url = f"{self.base_url}/chat/completions"
        body = self._body(messages, tools, temperature, max_tokens, stream=False)

        try:
            log.debug("Calling reasoning service", model=self.model, url=url, msg_count=len(messages))

            response = await self.client.post(url, json=body, headers=self._headers())

            log.debug("Reasoning service response status", status=response.status_code)

            if not response.is_success:
                raise LLMAPIError(
                    f"API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )

            data = response.json()
            choices = data.get("choices") or []
            if not choices:
                raise LLMError("Response contained no choices")
            message = choices[0].get("message") or {}

            tool_calls = []
            for idx, tc in enumerate(message.get("tool_calls") or []):
                function = tc.get("function") or {}
                raw_args = function.get("arguments")
                if isinstance(raw_args, dict):
                    raw_args = json.dumps(raw_args, ensure_ascii=False)
                tool_calls.append(ToolCall(
                    id=tc.get("id") or f"call_{idx}",
                    name=function.get("name", ""),
                    arguments=raw_args or "{}",
                ))

            usage = data.get("usage") or {}
            return LLMResponse(
                content=message.get("content") or "",
                tool_calls=tool_calls,
                model=data.get("model", self.model),
                usage={
                    "prompt_tokens": int(usage.get("prompt_tokens", 0) or 0),
                    "completion_tokens": int(usage.get("completion_tokens", 0) or 0),
                    "total_tokens": int(usage.get("total_tokens", 0) or 0),
                },
            )

        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise LLMError(f"Response decode error: {e}")
        except Exception as e:
            raise LLMError(f"Reasoning call failed: {e}")

    async def complete_streaming(
        self,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[StreamDelta]:
        """Stream a completion as deltas until the end marker."""
        url = f"{self.base_url}/chat/completions"
        body = self._body(messages, tools, temperature, max_tokens, stream=True)

        try:
            async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )

                async for line in response.aiter_lines():
                    if is_stream_end(line):
                        break
                    delta = parse_stream_line(line)
                    if delta is not None:
                        yield delta

        except LLMError:
            raise
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Streaming error: {e}")
        except json.JSONDecodeError as e:
            raise LLMError(f"Stream decode error: {e}")
        except Exception as e:
            raise LLMError(f"Stream failed: {e}")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def create_provider(
    provider: str = "openrouter",
    model: str = "stepfun/step-3.5-flash:free",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float = 0.0,
    max_tokens: int = 4096,
    timeout: float = 30.0,
) -> LLMProvider:
    """Create a reasoning-service provider.

    Args:
        provider: Provider name (openai, openrouter, ollama)
        model: Model name
        api_key: Optional API key
        base_url: Optional base URL overriding the provider default
        temperature: Default temperature
        max_tokens: Default max tokens
        timeout: HTTP timeout in seconds

    Returns:
        Configured LLMProvider instance
    """
    key = (provider or "").strip().lower()
    if key not in PROVIDER_BASE_URLS:
        raise ConfigurationError(
            f"Provider '{provider}' not supported. Use one of: {', '.join(sorted(PROVIDER_BASE_URLS))}."
        )
    return OpenAICompatibleProvider(
        model=model,
        base_url=base_url or PROVIDER_BASE_URLS[key],
        api_key=api_key,
        temperature=temperature,
        max_tokens=max_tokens,
        timeout=timeout,
    )


def provider_from_config(config=None) -> LLMProvider:
    """Build a provider from ``config``, or the global configuration."""
    from camwatch.config import get_config

    cfg = (config or get_config()).model
    api_key = cfg.api_key or os.environ.get("OPENROUTER_API_KEY" if cfg.provider == "openrouter" else "OPENAI_API_KEY", "")
    return create_provider(
        provider=cfg.provider,
        model=cfg.model,
        api_key=api_key or None,
        base_url=cfg.base_url or None,
        temperature=cfg.temperature,
        max_tokens=cfg.max_tokens,
        timeout=cfg.timeout,
    )
