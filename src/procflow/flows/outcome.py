"""
Completion values threaded through every node executor.

``Returned`` replaces an exception-based return signal: each composite
executor checks for it and hands it upward immediately instead of running
the next sibling.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Union


@dataclass(frozen=True)
class Completed:
    value: Any = None
    has_value: bool = True


@dataclass(frozen=True)
class Returned:
    value: Any = None


Outcome = Union[Completed, Returned]

# Statements that do not touch the running value (status/waiting emits,
# memory writes, edge appends) complete with this.
UNCHANGED = Completed(None, has_value=False)


def is_outcome(item: Any) -> bool:
    return isinstance(item, (Completed, Returned))


class OutcomeCapture:
    """Holds the outcome a sub-executor finished with."""

    __slots__ = ("outcome",)

    def __init__(self) -> None:
        self.outcome: Optional[Outcome] = None

    @property
    def returned(self) -> bool:
        return isinstance(self.outcome, Returned)

    def value_or(self, default: Any = None) -> Any:
        if self.outcome is None or (isinstance(self.outcome, Completed) and not self.outcome.has_value):
            return default
        return self.outcome.value


async def forward_events(source: AsyncIterator[Any], capture: OutcomeCapture) -> AsyncIterator[Any]:
    """Re-yield every envelope from ``source`` and record its outcome in ``capture``."""
    try:
        async for item in source:
            if is_outcome(item):
                capture.outcome = item
            else:
                yield item
    finally:
        closer = getattr(source, "aclose", None)
        if closer is not None:
            await closer()


__all__ = ["Completed", "Outcome", "OutcomeCapture", "Returned", "UNCHANGED", "forward_events", "is_outcome"]
