"""
Workflow interpreter: walks a ``Program`` against a host, yielding progress
envelopes as it goes and finishing with the program's result.
"""

from __future__ import annotations

import logging
import time
from contextlib import aclosing
from typing import Any, AsyncIterator, Optional

from ..ast_nodes import Program
from ..config import ProcflowConfig, load_config
from ..runtime.expressions import ExpressionEvaluator
from .host import WorkflowHost
from .outcome import OutcomeCapture, forward_events
from .state import ExecutionFrame
from .steps import (
    InterpreterCallMixin,
    InterpreterControlMixin,
    InterpreterCoreMixin,
    InterpreterEmitMixin,
    InterpreterExpressionMixin,
    InterpreterMemoryMixin,
)
from .streams import ResultStream, StreamResult

logger = logging.getLogger("procflow.flows.interpreter")


class WorkflowRun(ResultStream):
    """
    One execution of a program.

    Iterate it for progress envelopes; once exhausted, ``result`` holds the
    program's value. Closing it early stops the run before any further host
    call. A run cannot be restarted.
    """

    def __init__(self, source: AsyncIterator[Any], program: Program) -> None:
        super().__init__(source)
        self.program = program


class Interpreter(
    InterpreterControlMixin,
    InterpreterCallMixin,
    InterpreterMemoryMixin,
    InterpreterEmitMixin,
    InterpreterExpressionMixin,
    InterpreterCoreMixin,
):
    def __init__(
        self,
        host: WorkflowHost,
        *,
        config: Optional[ProcflowConfig] = None,
        evaluator: Optional[ExpressionEvaluator] = None,
    ) -> None:
        self.host = host
        self.config = config or load_config()
        self.evaluator = evaluator or ExpressionEvaluator(self.config)

    def run(self, program: Program, input: Any = None, args: Any = None) -> WorkflowRun:
        return WorkflowRun(self._run(program, input, args), program)

    async def _run(self, program: Program, input: Any, args: Any) -> AsyncIterator[Any]:
        frame = ExecutionFrame(program)
        if input is not None:
            frame.scopes.declare("input", input)
        if args is not None:
            frame.scopes.declare("args", args)
        label = program.name or program.file or "<workflow>"
        logger.info("Workflow %s started", label)
        started = time.monotonic()
        capture = OutcomeCapture()
        try:
            async with aclosing(forward_events(self._execute_nodes(program.body, frame), capture)) as events:
                async for envelope in events:
                    yield envelope
        except Exception as exc:
            logger.warning(
                "Workflow %s failed after %.1fms: %s", label, (time.monotonic() - started) * 1000, type(exc).__name__
            )
            raise
        logger.info("Workflow %s finished in %.1fms", label, (time.monotonic() - started) * 1000)
        yield StreamResult(capture.value_or(None))


def execute(
    program: Program,
    host: WorkflowHost,
    input: Any = None,
    args: Any = None,
    *,
    config: Optional[ProcflowConfig] = None,
) -> WorkflowRun:
    """Start running ``program`` against ``host``; see ``WorkflowRun``."""
    return Interpreter(host, config=config).run(program, input=input, args=args)


__all__ = ["Interpreter", "WorkflowRun", "execute"]
