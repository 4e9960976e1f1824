"""
In-process ``WorkflowHost`` for tests and embedding. Not durable.
"""

from __future__ import annotations

import copy
import inspect
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Tuple

from ..ast_nodes import Program
from ..config import ProcflowConfig
from ..errors import HostError
from .host import RunnableHandle, WorkflowHost
from .interpreter import execute
from .streams import StreamResult, as_result_stream

CallableFn = Callable[[Dict[str, Any]], Any]


@dataclass
class SubWorkflow:
    """Handle for a sub-workflow instance created through the host."""

    entity_type: str
    name: str
    data: Dict[str, Any] = field(default_factory=dict)
    instance_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    runs: int = 0
    last_result: Any = None


@dataclass
class GraphEdge:
    source: Optional[str]
    edge_type: str
    target: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _HostState:
    callables: Dict[str, CallableFn] = field(default_factory=dict)
    workflows: Dict[str, Program] = field(default_factory=dict)
    instances: Dict[Tuple[str, str], SubWorkflow] = field(default_factory=dict)
    memory: Dict[Tuple[Optional[str], str], Any] = field(default_factory=dict)
    edges: List[GraphEdge] = field(default_factory=list)
    calls: Counter = field(default_factory=Counter)


class InMemoryHost(WorkflowHost):
    """
    Dict-backed host.

    Callables receive the evaluated argument record and may be plain
    functions, coroutine functions, or async generator functions that yield
    events and finish with a ``StreamResult``. Sub-workflow types map to
    registered programs; running a handle executes its program with the
    handle's data as ``input``. Working memory is keyed per instance, so a
    sub-workflow does not see its parent's values.
    """

    def __init__(
        self,
        identity: Optional[str] = None,
        *,
        config: Optional[ProcflowConfig] = None,
        _state: Optional[_HostState] = None,
    ) -> None:
        self.identity = identity
        self.config = config
        self._state = _state or _HostState()

    def child(self, identity: str) -> "InMemoryHost":
        """A view of this host acting for another instance; registries are shared."""
        return InMemoryHost(identity, config=self.config, _state=self._state)

    # Registration -------------------------------------------------------

    def register_callable(self, name: str, fn: CallableFn) -> None:
        self._state.callables[name] = fn

    def register_workflow(self, entity_type: str, program: Program) -> None:
        self._state.workflows[entity_type] = program

    # Inspection ---------------------------------------------------------

    @property
    def calls(self) -> Counter:
        return self._state.calls

    @property
    def edges(self) -> List[GraphEdge]:
        return self._state.edges

    @property
    def instances(self) -> Dict[Tuple[str, str], SubWorkflow]:
        return self._state.instances

    def memory(self, identity: Optional[str] = None) -> Dict[str, Any]:
        """Working memory of ``identity`` (this host's own by default)."""
        owner = self.identity if identity is None else identity
        return {key: value for (scope, key), value in self._state.memory.items() if scope == owner}

    # WorkflowHost -------------------------------------------------------

    async def invoke_callable(self, name: str, args: Mapping[str, Any]) -> Any:
        fn = self._state.callables.get(name)
        if fn is None:
            raise HostError(f"Callable '{name}' is not registered")
        self._state.calls[f"callable:{name}"] += 1
        result = fn(dict(args))
        if inspect.isawaitable(result):
            result = await result
        return await as_result_stream(result)

    async def create_sub_workflow(
        self,
        entity_type: str,
        name: str,
        data: Optional[Mapping[str, Any]] = None,
        *,
        idempotent: bool = True,
    ) -> SubWorkflow:
        if entity_type not in self._state.workflows:
            raise HostError(f"Sub-workflow type '{entity_type}' is not registered")
        key = (entity_type, name)
        existing = self._state.instances.get(key)
        if idempotent and existing is not None:
            return existing
        self._state.calls[f"create:{entity_type}"] += 1
        handle = SubWorkflow(entity_type=entity_type, name=name, data=copy.deepcopy(dict(data or {})))
        self._state.instances[key] = handle
        return handle

    def run_sub_workflow(self, handle: RunnableHandle) -> AsyncIterator[Any]:
        program = self._state.workflows.get(handle.entity_type)
        if program is None:
            raise HostError(f"Sub-workflow type '{handle.entity_type}' is not registered")
        self._state.calls[f"run:{handle.entity_type}"] += 1
        identity = getattr(handle, "instance_id", None) or f"{handle.entity_type}:{handle.name}"
        data = getattr(handle, "data", None)
        run = execute(program, self.child(identity), input=copy.deepcopy(data), config=self.config)
        return self._track(handle, run)

    async def _track(self, handle: RunnableHandle, run: Any) -> AsyncIterator[Any]:
        try:
            async for event in run:
                yield event
        finally:
            await run.aclose()
        if isinstance(handle, SubWorkflow):
            handle.runs += 1
            handle.last_result = run.result
        yield StreamResult(run.result)

    async def get_stored_value(self, key: str) -> Any:
        return copy.deepcopy(self._state.memory.get((self.identity, key)))

    async def set_stored_value(self, key: str, value: Any) -> None:
        self._state.memory[(self.identity, key)] = copy.deepcopy(value)

    async def append_graph_edge(self, edge_type: str, target: str, data: Optional[Mapping[str, Any]] = None) -> None:
        self._state.edges.append(
            GraphEdge(source=self.identity, edge_type=edge_type, target=target, data=copy.deepcopy(dict(data or {})))
        )


__all__ = ["GraphEdge", "InMemoryHost", "SubWorkflow"]
