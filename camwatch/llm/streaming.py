"""Rebuild a complete assistant response from streamed deltas.

The provider pushes ``StreamDelta`` objects into a queue from a producer task;
``collect_stream`` drains the queue into a fresh ``StreamAggregator`` until the
close marker arrives. Cancelling the consumer (for example from
``asyncio.wait_for``) cancels the producer and closes the provider stream, so
both ends of the channel are torn down together.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

from camwatch.llm import LLMResponse, StreamDelta, ToolCall
from camwatch.logging import get_logger

log = get_logger(__name__)

_CLOSED = object()


@dataclass
class _PartialToolCall:
    id: str = ""
    name_parts: list[str] = field(default_factory=list)
    argument_parts: list[str] = field(default_factory=list)


@dataclass
class _StreamFailure:
    error: BaseException


class StreamAggregator:
    """Accumulate one round trip's deltas. Not reusable across round trips."""

    def __init__(self) -> None:
        self._content_parts: list[str] = []
        self._calls: dict[int, _PartialToolCall] = {}
        self._usage: dict[str, int] = {}
        self._finished = False

    def feed(self, delta: StreamDelta) -> None:
        if self._finished:
            raise RuntimeError("StreamAggregator already finished; use a fresh instance per round trip")

        if delta.content:
            self._content_parts.append(delta.content)

        for fragment in delta.tool_calls:
            partial = self._calls.setdefault(fragment.index, _PartialToolCall())
            # first id wins
            if fragment.id and not partial.id:
                partial.id = fragment.id
            if fragment.name:
                partial.name_parts.append(fragment.name)
            if fragment.arguments:
                partial.argument_parts.append(fragment.arguments)

        if delta.usage:
            self._usage = {
                "prompt_tokens": int(delta.usage.get("prompt_tokens", 0) or 0),
                "completion_tokens": int(delta.usage.get("completion_tokens", 0) or 0),
                "total_tokens": int(delta.usage.get("total_tokens", 0) or 0),
            }

    def finish(self, model: str = "") -> LLMResponse:
        """Return the reconstructed response. Calls without a name are dropped."""
        self._finished = True
        tool_calls: list[ToolCall] = []
        for index in sorted(self._calls):
            partial = self._calls[index]
            name = "".join(partial.name_parts)
            if not name:
                log.debug("Dropping streamed tool call without name", index=index)
                continue
            tool_calls.append(ToolCall(
                id=partial.id or f"call_{index}",
                name=name,
                arguments="".join(partial.argument_parts) or "{}",
            ))
        return LLMResponse(
            content="".join(self._content_parts),
            tool_calls=tool_calls,
            model=model,
            usage=dict(self._usage),
        )


async def _pump(deltas: AsyncIterator[StreamDelta], queue: asyncio.Queue[Any]) -> None:
    try:
        async for delta in deltas:
            queue.put_nowait(delta)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        queue.put_nowait(_StreamFailure(e))
    finally:
        aclose = getattr(deltas, "aclose", None)
        if aclose is not None:
            await aclose()
        queue.put_nowait(_CLOSED)


async def collect_stream(
    deltas: AsyncIterator[StreamDelta],
    *,
    model: str = "",
    on_content: Callable[[str], None] | None = None,
) -> LLMResponse:
    """Consume a delta stream through a producer/consumer channel.

    Args:
        deltas: Provider delta iterator
        model: Model name recorded on the response
        on_content: Called with each content fragment as it arrives

    Returns:
        The reconstructed response

    Raises:
        Whatever the provider stream raised (``LLMError`` for real providers)
    """
    queue: asyncio.Queue[Any] = asyncio.Queue()
    aggregator = StreamAggregator()
    producer = asyncio.create_task(_pump(deltas, queue))
    try:
        while True:
            item = await queue.get()
            if item is _CLOSED:
                break
            if isinstance(item, _StreamFailure):
                raise item.error
            aggregator.feed(item)
            if on_content is not None and item.content:
                on_content(item.content)
    finally:
        if not producer.done():
            producer.cancel()
            try:
                await producer
            except asyncio.CancelledError:
                pass
    return aggregator.finish(model=model)
