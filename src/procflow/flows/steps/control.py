from __future__ import annotations

from contextlib import aclosing
from typing import Any, AsyncIterator, Optional, Sequence

from ... import ast_nodes
from ...errors import WorkflowTypeError
from ..outcome import UNCHANGED, Completed, OutcomeCapture, Returned, forward_events
from ..state import ExecutionFrame

__all__ = ["InterpreterControlMixin"]


def _type_label(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, dict):
        return "record"
    if isinstance(value, str):
        return "text"
    return type(value).__name__


def _nested_binding(value_node: Any) -> Optional[str]:
    if isinstance(value_node, ast_nodes.MemoryGet):
        return value_node.name
    return getattr(value_node, "result", None)


class InterpreterControlMixin:
    async def _execute_let(self, node: ast_nodes.Let, frame: ExecutionFrame) -> AsyncIterator[Any]:
        if node.body is not None:
            capture = OutcomeCapture()
            with frame.scopes.scope(f"let {node.name}"):
                async with aclosing(forward_events(self._execute_nodes(node.body, frame), capture)) as events:
                    async for envelope in events:
                        yield envelope
            if capture.returned:
                # The binding is never created when its block returns.
                yield capture.outcome
                return
            value = capture.value_or(None)
        elif node.value is not None:
            nested = _nested_binding(node.value)
            if nested:
                raise WorkflowTypeError(
                    f"let {node.name} already binds the value of its {ast_nodes.node_kind(node.value)}; "
                    f"remove the nested binding '{nested}'"
                )
            capture = OutcomeCapture()
            async with aclosing(forward_events(self._execute_node(node.value, frame), capture)) as events:
                async for envelope in events:
                    yield envelope
            value = capture.value_or(None)
        elif node.expr is not None:
            value = self._evaluate(node.expr, frame)
        else:
            value = None
        frame.scopes.declare(node.name, value)
        yield Completed(value)

    async def _execute_set(self, node: ast_nodes.Set, frame: ExecutionFrame) -> AsyncIterator[Any]:
        value = self._evaluate(node.expr, frame)
        frame.scopes.assign(node.name, value)
        yield Completed(value)

    def _select_branch(
        self, node: ast_nodes.If, frame: ExecutionFrame
    ) -> tuple[Optional[str], Optional[Sequence[Any]]]:
        if self._condition(node.condition, frame):
            return "if", node.body
        for idx, branch in enumerate(node.elifs):
            if self._condition(branch.condition, frame, span=branch.span):
                return f"elif {idx}", branch.body
        if node.orelse is not None:
            return "else", node.orelse
        return None, None

    async def _execute_if(self, node: ast_nodes.If, frame: ExecutionFrame) -> AsyncIterator[Any]:
        label, body = self._select_branch(node, frame)
        if body is None:
            yield UNCHANGED
            return
        capture = OutcomeCapture()
        with frame.scopes.scope(label):
            async with aclosing(forward_events(self._execute_nodes(body, frame), capture)) as events:
                async for envelope in events:
                    yield envelope
        yield capture.outcome

    async def _execute_loop(self, node: ast_nodes.Loop, frame: ExecutionFrame) -> AsyncIterator[Any]:
        items = self._evaluate(node.items, frame)
        if not isinstance(items, (list, tuple)):
            raise WorkflowTypeError(
                f"Loop expects a list to iterate over, but '{node.items}' evaluated to {_type_label(items)}"
            )
        result = UNCHANGED
        for index, item in enumerate(items):
            capture = OutcomeCapture()
            with frame.scopes.scope(f"loop {index}"):
                frame.scopes.declare(node.item_name, item)
                if node.index_name:
                    frame.scopes.declare(node.index_name, index)
                async with aclosing(forward_events(self._execute_nodes(node.body, frame), capture)) as events:
                    async for envelope in events:
                        yield envelope
            if capture.returned:
                yield capture.outcome
                return
            if isinstance(capture.outcome, Completed) and capture.outcome.has_value:
                result = capture.outcome
        yield result

    async def _execute_return(self, node: ast_nodes.Return, frame: ExecutionFrame) -> AsyncIterator[Any]:
        value = self._evaluate(node.expr, frame) if node.expr is not None else None
        yield Returned(value)

    async def _execute_expr(self, node: ast_nodes.Expr, frame: ExecutionFrame) -> AsyncIterator[Any]:
        yield Completed(self._evaluate(node.expr, frame))
