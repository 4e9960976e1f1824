import asyncio

import pytest

from procflow.flows.streams import ResultStream, StreamResult, as_result_stream


async def _producer(events, result):
    for event in events:
        yield event
    yield StreamResult(result)


def test_plain_value_becomes_empty_stream():
    async def _go():
        stream = await as_result_stream(7)
        return await stream.collect()

    assert asyncio.run(_go()) == ([], 7)


def test_async_generator_events_and_result():
    async def _go():
        stream = await as_result_stream(_producer(["a", "b"], "done"))
        return await stream.collect()

    assert asyncio.run(_go()) == (["a", "b"], "done")


def test_awaitable_is_resolved_first():
    async def _value():
        return _producer(["x"], 1)

    async def _go():
        stream = await as_result_stream(_value())
        return await stream.collect()

    assert asyncio.run(_go()) == (["x"], 1)


def test_result_requires_full_consumption():
    async def _go():
        stream = ResultStream(_producer(["a"], 1))
        assert await stream.__anext__() == "a"
        with pytest.raises(RuntimeError):
            stream.result
        assert [item async for item in stream] == []
        return stream.result

    assert asyncio.run(_go()) == 1


def test_stream_without_result_marker_yields_none():
    async def _bare():
        yield "only"

    async def _go():
        return await ResultStream(_bare()).collect()

    assert asyncio.run(_go()) == (["only"], None)


def test_close_stops_producer():
    seen = []

    async def _tracked():
        try:
            yield "first"
            seen.append("second")
            yield "second"
        finally:
            seen.append("closed")

    async def _go():
        stream = ResultStream(_tracked())
        await stream.__anext__()
        await stream.aclose()
        return [item async for item in stream]

    assert asyncio.run(_go()) == []
    assert seen == ["closed"]


def test_errors_are_recorded_and_raised():
    async def _failing():
        yield "a"
        raise ValueError("bad")

    async def _go():
        stream = ResultStream(_failing())
        with pytest.raises(ValueError):
            await stream.collect()
        return stream

    stream = asyncio.run(_go())
    assert stream.done
    assert isinstance(stream.error, ValueError)
