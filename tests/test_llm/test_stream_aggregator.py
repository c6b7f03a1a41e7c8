import asyncio

import pytest

from camwatch.exceptions import LLMAPIError
from camwatch.llm import StreamDelta, ToolCall, ToolCallFragment
from camwatch.llm.streaming import StreamAggregator, collect_stream

CALL_NAME = "check_camera"
CALL_ARGS = '{"url": "rtsp://10.0.0.1/live", "name": "Entrance"}'


def _pieces(text: str, size: int) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


@pytest.mark.parametrize("size", [1, 2, 3, 7, 100])
def test_fragmented_call_matches_unfragmented(size: int):
    aggregator = StreamAggregator()
    aggregator.feed(StreamDelta(tool_calls=[ToolCallFragment(index=0, id="call_abc")]))
    for i, (name_piece, args_piece) in enumerate(
        zip(_pieces(CALL_NAME, size) + [""] * 100, _pieces(CALL_ARGS, size))
    ):
        aggregator.feed(StreamDelta(
            content=f"c{i} " if i % 2 == 0 else None,
            tool_calls=[ToolCallFragment(index=0, name=name_piece or None, arguments=args_piece)],
        ))

    response = aggregator.finish(model="m")

    assert response.tool_calls == [ToolCall(id="call_abc", name=CALL_NAME, arguments=CALL_ARGS)]
    assert response.content.startswith("c0 ")
    assert response.model == "m"


def test_unfragmented_reference():
    aggregator = StreamAggregator()
    aggregator.feed(StreamDelta(tool_calls=[
        ToolCallFragment(index=0, id="call_abc", name=CALL_NAME, arguments=CALL_ARGS),
    ]))

    assert aggregator.finish().tool_calls == [ToolCall(id="call_abc", name=CALL_NAME, arguments=CALL_ARGS)]


def test_first_id_wins():
    aggregator = StreamAggregator()
    aggregator.feed(StreamDelta(tool_calls=[ToolCallFragment(index=0, id="first", name="get_cameras")]))
    aggregator.feed(StreamDelta(tool_calls=[ToolCallFragment(index=0, id="second", arguments="{}")]))

    assert aggregator.finish().tool_calls[0].id == "first"


def test_missing_id_and_arguments_get_defaults():
    aggregator = StreamAggregator()
    aggregator.feed(StreamDelta(tool_calls=[ToolCallFragment(index=3, name="get_cameras")]))

    call = aggregator.finish().tool_calls[0]

    assert call.id == "call_3"
    assert call.arguments == "{}"


def test_nameless_calls_are_dropped_and_order_follows_index():
    aggregator = StreamAggregator()
    aggregator.feed(StreamDelta(tool_calls=[ToolCallFragment(index=1, id="b", name="check_camera")]))
    aggregator.feed(StreamDelta(tool_calls=[ToolCallFragment(index=0, id="a", name="get_cameras")]))
    aggregator.feed(StreamDelta(tool_calls=[ToolCallFragment(index=2, id="c", arguments='{"x": 1}')]))

    calls = aggregator.finish().tool_calls

    assert [call.id for call in calls] == ["a", "b"]


def test_arguments_stay_raw_text():
    aggregator = StreamAggregator()
    aggregator.feed(StreamDelta(tool_calls=[ToolCallFragment(index=0, name="check_camera", arguments='{"url": ')]))

    assert aggregator.finish().tool_calls[0].arguments == '{"url": '


def test_usage_is_captured():
    aggregator = StreamAggregator()
    aggregator.feed(StreamDelta(content="hi"))
    aggregator.feed(StreamDelta(usage={"prompt_tokens": 4, "completion_tokens": 1, "total_tokens": 5}))

    assert aggregator.finish().usage == {"prompt_tokens": 4, "completion_tokens": 1, "total_tokens": 5}


def test_aggregator_is_single_use():
    aggregator = StreamAggregator()
    aggregator.finish()

    with pytest.raises(RuntimeError):
        aggregator.feed(StreamDelta(content="late"))


async def _deltas(*items):
    for item in items:
        yield item


@pytest.mark.asyncio
async def test_collect_stream_forwards_content_in_order():
    seen: list[str] = []

    response = await collect_stream(
        _deltas(StreamDelta(content="Hel"), StreamDelta(content="lo"), StreamDelta(content="!")),
        model="m",
        on_content=seen.append,
    )

    assert seen == ["Hel", "lo", "!"]
    assert response.content == "Hello!"
    assert response.model == "m"


@pytest.mark.asyncio
async def test_collect_stream_reraises_provider_error():
    async def _failing():
        yield StreamDelta(content="partial")
        raise LLMAPIError("Streaming error: connection reset")

    with pytest.raises(LLMAPIError):
        await collect_stream(_failing())


@pytest.mark.asyncio
async def test_cancelling_consumer_closes_provider_stream():
    closed: list[bool] = []

    async def _hanging():
        try:
            yield StreamDelta(content="start")
            await asyncio.sleep(10)
            yield StreamDelta(content="never")
        finally:
            closed.append(True)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(collect_stream(_hanging()), timeout=0.05)

    assert closed == [True]
