from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Mapping, Optional

from ... import ast_nodes
from ...errors import WorkflowTypeError
from ...observability.logging_utils import redact_metadata
from ..host import RunnableHandle
from ..models import ForwardedEnvelope
from ..outcome import Completed
from ..state import ExecutionFrame
from ..streams import as_result_stream, maybe_await

logger = logging.getLogger("procflow.flows.interpreter")

__all__ = ["InterpreterCallMixin"]


class InterpreterCallMixin:
    def _resolve_data(
        self, block: Optional[ast_nodes.DataBlock], frame: ExecutionFrame, *, strict: bool, purpose: str
    ) -> dict[str, Any]:
        """
        Build a record from ``block``: its record-valued expression, overlaid
        with its named field expressions. A non-record expression raises when
        ``strict``; otherwise it is dropped with a warning.
        """
        if block is None:
            return {}
        data: dict[str, Any] = {}
        if block.expr is not None:
            value = self._evaluate(block.expr, frame, span=block.span)
            if isinstance(value, Mapping):
                data.update(value)
            elif strict:
                raise WorkflowTypeError(
                    f"{purpose} must be a record, but '{block.expr}' evaluated to {type(value).__name__}"
                )
            else:
                logger.warning(
                    "%s expression %r produced %s, not a record; using empty data",
                    purpose,
                    block.expr,
                    type(value).__name__,
                )
        for key, source in block.fields.items():
            data[key] = self._evaluate(source, frame, span=block.span)
        return data

    async def _execute_call_callable(self, node: ast_nodes.CallCallable, frame: ExecutionFrame) -> AsyncIterator[Any]:
        args = {key: self._evaluate(source, frame) for key, source in node.args.items()}
        logger.debug("Invoking callable %s with %s", node.name, redact_metadata(args, self.config.redact_logs))
        caller = getattr(self.host, "identity", None)
        stream = await as_result_stream(self.host.invoke_callable(node.name, args))
        try:
            async for event in stream:
                yield ForwardedEnvelope(origin=node.name, caller=None if caller is None else str(caller), event=event)
        finally:
            await stream.aclose()
        value = stream.result
        if node.result:
            frame.scopes.declare(node.result, value)
        yield Completed(value)

    async def _execute_call_sub_workflow(
        self, node: ast_nodes.CallSubWorkflow, frame: ExecutionFrame
    ) -> AsyncIterator[Any]:
        entity_type = self._interpolate(node.entity_type, frame)
        name = self._interpolate(node.name, frame)
        data = self._resolve_data(node.data, frame, strict=True, purpose="Sub-workflow data")
        handle = await maybe_await(
            self.host.create_sub_workflow(entity_type, name, data, idempotent=node.idempotent)
        )
        logger.debug("Sub-workflow %s/%s ready", entity_type, name)
        if node.result:
            frame.scopes.declare(node.result, handle)
        yield Completed(handle)

    async def _execute_run_sub_workflow(self, node: ast_nodes.RunSubWorkflow, frame: ExecutionFrame) -> AsyncIterator[Any]:
        handle = self._evaluate(node.ref, frame)
        if not isinstance(handle, RunnableHandle):
            raise WorkflowTypeError(
                f"'{node.ref}' is not a runnable sub-workflow (got {type(handle).__name__}). "
                "Bind it with a sub-workflow call first."
            )
        stream = await as_result_stream(self.host.run_sub_workflow(handle))
        try:
            async for event in stream:
                yield event
        finally:
            await stream.aclose()
        value = stream.result
        if node.result:
            frame.scopes.declare(node.result, value)
        yield Completed(value)
