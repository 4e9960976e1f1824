"""
Async event streams that finish with a result value.

Async generators cannot return a value, so producers yield a
``StreamResult`` as their last item. ``ResultStream`` strips that marker
from the event sequence and exposes its payload as ``.result``.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional


@dataclass(frozen=True)
class StreamResult:
    value: Any = None


async def _single_result(value: Any) -> AsyncIterator[Any]:
    yield StreamResult(value)


class ResultStream:
    """Single-use async iterator of events plus one terminal result."""

    def __init__(self, source: AsyncIterator[Any]) -> None:
        self._source = source
        self._result: Any = None
        self._done = False
        self.error: Optional[BaseException] = None

    @classmethod
    def completed(cls, value: Any) -> "ResultStream":
        return cls(_single_result(value))

    @property
    def done(self) -> bool:
        return self._done

    @property
    def result(self) -> Any:
        if not self._done:
            raise RuntimeError("result is only available once the stream has been fully consumed")
        return self._result

    def __aiter__(self) -> "ResultStream":
        return self

    async def __anext__(self) -> Any:
        if self._done:
            raise StopAsyncIteration
        try:
            item = await self._source.__anext__()
        except StopAsyncIteration:
            self._done = True
            raise
        except BaseException as exc:
            self._done = True
            self.error = exc
            raise
        if isinstance(item, StreamResult):
            self._result = item.value
            await self.aclose()
            raise StopAsyncIteration
        return item

    async def aclose(self) -> None:
        """Stop the stream; the producer's cleanup runs, nothing else is produced."""
        self._done = True
        closer = getattr(self._source, "aclose", None)
        if closer is not None:
            await closer()

    async def collect(self) -> tuple[list[Any], Any]:
        """Drain the stream, returning ``(events, result)``."""
        events = [event async for event in self]
        return events, self.result


async def as_result_stream(obj: Any) -> ResultStream:
    """
    Normalize what a host returned into a ``ResultStream``.

    Accepts a ``ResultStream``, any async iterator or iterable, an awaitable
    resolving to one of those, or a plain value (a stream with no events).
    """
    if inspect.isawaitable(obj) and not hasattr(obj, "__anext__"):
        obj = await obj
    if isinstance(obj, ResultStream):
        return obj
    if hasattr(obj, "__anext__"):
        return ResultStream(obj)
    if hasattr(obj, "__aiter__"):
        return ResultStream(obj.__aiter__())
    return ResultStream.completed(obj)


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


__all__ = ["ResultStream", "StreamResult", "as_result_stream", "maybe_await"]
