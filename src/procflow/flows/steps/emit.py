from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from ... import ast_nodes
from ...observability.logging_utils import redact_event
from ..outcome import UNCHANGED
from ..state import ExecutionFrame
from ..streams import maybe_await

logger = logging.getLogger("procflow.flows.interpreter")

__all__ = ["InterpreterEmitMixin"]


class InterpreterEmitMixin:
    async def _execute_emit_status(self, node: ast_nodes.EmitStatus, frame: ExecutionFrame) -> AsyncIterator[Any]:
        message = self._interpolate(node.message, frame)
        logger.debug("Status %s", redact_event({"message": message}, self.config.redact_logs))
        yield await maybe_await(self.host.make_status_envelope(message))
        yield UNCHANGED

    async def _execute_emit_waiting(self, node: ast_nodes.EmitWaiting, frame: ExecutionFrame) -> AsyncIterator[Any]:
        prompt = self._interpolate(node.prompt, frame)
        logger.debug(
            "Waiting %s", redact_event({"prompt": prompt, "timeout_ms": node.timeout_ms}, self.config.redact_logs)
        )
        yield await maybe_await(self.host.make_waiting_envelope(prompt, timeout_ms=node.timeout_ms))
        yield UNCHANGED
