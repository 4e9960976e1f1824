"""
The host boundary: every side effect a workflow run performs goes through a
``WorkflowHost``. The interpreter never talks to storage, models or other
workflows directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from .models import StatusEnvelope, WaitingEnvelope


@runtime_checkable
class RunnableHandle(Protocol):
    """A sub-workflow instance that ``run_sub_workflow`` accepts."""

    @property
    def entity_type(self) -> str: ...

    @property
    def name(self) -> str: ...


class WorkflowHost(ABC):
    """
    Capabilities the interpreter needs from its embedding application.

    Methods may be plain or ``async``. ``invoke_callable`` and
    ``run_sub_workflow`` may also hand back a ``ResultStream`` or an async
    iterator whose events are forwarded to the run's consumer; see
    ``procflow.flows.streams``.
    """

    # Identity of the workflow instance this host acts for; forwarded
    # envelopes carry it as ``caller``.
    identity: Optional[str] = None

    @abstractmethod
    def invoke_callable(self, name: str, args: Mapping[str, Any]) -> Any:
        ...

    @abstractmethod
    def create_sub_workflow(
        self,
        entity_type: str,
        name: str,
        data: Optional[Mapping[str, Any]] = None,
        *,
        idempotent: bool = True,
    ) -> Any:
        ...

    @abstractmethod
    def run_sub_workflow(self, handle: RunnableHandle) -> Any:
        ...

    @abstractmethod
    def get_stored_value(self, key: str) -> Any:
        ...

    @abstractmethod
    def set_stored_value(self, key: str, value: Any) -> Any:
        ...

    @abstractmethod
    def append_graph_edge(self, edge_type: str, target: str, data: Optional[Mapping[str, Any]] = None) -> Any:
        ...

    def make_status_envelope(self, message: str) -> Any:
        return StatusEnvelope(message=message)

    def make_waiting_envelope(self, prompt: str, *, timeout_ms: Optional[int] = None) -> Any:
        return WaitingEnvelope(prompt=prompt, timeout_ms=timeout_ms)


__all__ = ["RunnableHandle", "WorkflowHost"]
