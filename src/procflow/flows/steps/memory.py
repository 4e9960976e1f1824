from __future__ import annotations

from contextlib import aclosing
import logging
from typing import Any, AsyncIterator

from ... import ast_nodes
from ..outcome import UNCHANGED, Completed, OutcomeCapture, forward_events
from ..state import ExecutionFrame
from ..streams import maybe_await

logger = logging.getLogger("procflow.flows.interpreter")

__all__ = ["InterpreterMemoryMixin"]


class InterpreterMemoryMixin:
    async def _execute_memory_get(self, node: ast_nodes.MemoryGet, frame: ExecutionFrame) -> AsyncIterator[Any]:
        key = self._interpolate(node.key, frame)
        value = await maybe_await(self.host.get_stored_value(key))
        if node.name:
            frame.scopes.declare(node.name, value)
        yield Completed(value)

    async def _execute_memory_set(self, node: ast_nodes.MemorySet, frame: ExecutionFrame) -> AsyncIterator[Any]:
        key = self._interpolate(node.key, frame)
        if node.value is not None:
            capture = OutcomeCapture()
            async with aclosing(forward_events(self._execute_node(node.value, frame), capture)) as events:
                async for envelope in events:
                    yield envelope
            value = capture.value_or(None)
        elif node.expr is not None:
            value = self._evaluate(node.expr, frame)
        else:
            value = None
        logger.debug("Storing working-memory key %s", key)
        await maybe_await(self.host.set_stored_value(key, value))
        yield UNCHANGED

    async def _execute_graph_append(self, node: ast_nodes.GraphAppend, frame: ExecutionFrame) -> AsyncIterator[Any]:
        edge_type = self._interpolate(node.edge_type, frame)
        target = self._interpolate(node.target, frame)
        data = self._resolve_data(node.data, frame, strict=False, purpose="Graph edge data")
        await maybe_await(self.host.append_graph_edge(edge_type, target, data))
        yield UNCHANGED
