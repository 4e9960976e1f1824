from __future__ import annotations

from contextlib import aclosing
import logging
from typing import Any, AsyncIterator, Sequence

from ... import ast_nodes
from ...errors import HostError, ProcflowError, UnknownNodeError
from ..outcome import UNCHANGED, Completed, OutcomeCapture, forward_events
from ..state import ExecutionFrame

logger = logging.getLogger("procflow.flows.interpreter")

__all__ = ["InterpreterCoreMixin"]

# Node class -> executor method name. Executors are async generators that
# yield progress envelopes and finish with exactly one Completed/Returned.
_EXECUTORS: dict[type, str] = {
    ast_nodes.Let: "_execute_let",
    ast_nodes.Set: "_execute_set",
    ast_nodes.If: "_execute_if",
    ast_nodes.Loop: "_execute_loop",
    ast_nodes.Return: "_execute_return",
    ast_nodes.Expr: "_execute_expr",
    ast_nodes.CallCallable: "_execute_call_callable",
    ast_nodes.CallSubWorkflow: "_execute_call_sub_workflow",
    ast_nodes.RunSubWorkflow: "_execute_run_sub_workflow",
    ast_nodes.EmitStatus: "_execute_emit_status",
    ast_nodes.EmitWaiting: "_execute_emit_waiting",
    ast_nodes.MemoryGet: "_execute_memory_get",
    ast_nodes.MemorySet: "_execute_memory_set",
    ast_nodes.GraphAppend: "_execute_graph_append",
}


class InterpreterCoreMixin:
    async def _execute_nodes(self, nodes: Sequence[Any], frame: ExecutionFrame) -> AsyncIterator[Any]:
        """
        Run ``nodes`` in order. Finishes with the first Returned seen, or with
        the value of the last node that produced one (UNCHANGED if none did).
        """
        last = UNCHANGED
        for node in nodes:
            capture = OutcomeCapture()
            async with aclosing(forward_events(self._execute_node(node, frame), capture)) as events:
                async for envelope in events:
                    yield envelope
            if capture.returned:
                yield capture.outcome
                return
            if isinstance(capture.outcome, Completed) and capture.outcome.has_value:
                last = capture.outcome
        yield last

    async def _execute_node(self, node: Any, frame: ExecutionFrame) -> AsyncIterator[Any]:
        span = getattr(node, "span", None)
        method_name = _EXECUTORS.get(type(node))
        if method_name is None:
            file, line, column = frame.locate(span)
            raise UnknownNodeError(
                f"Unsupported instruction '{ast_nodes.node_kind(node)}'", line=line, column=column, file=file
            )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Executing %s (line %s)", ast_nodes.node_kind(node), span.line if span else "?")
        executor = getattr(self, method_name)
        try:
            async with aclosing(executor(node, frame)) as items:
                async for item in items:
                    yield item
        except HostError:
            raise
        except ProcflowError as exc:
            if span is not None:
                exc.with_location(*frame.locate(span))
            raise
