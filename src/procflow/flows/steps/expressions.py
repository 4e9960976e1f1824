from __future__ import annotations

from typing import Any, Optional

from ...ast_nodes import Span
from ...errors import ProcflowError
from ..state import ExecutionFrame

__all__ = ["InterpreterExpressionMixin"]


class InterpreterExpressionMixin:
    def _evaluate(self, source: str, frame: ExecutionFrame, span: Optional[Span] = None) -> Any:
        try:
            return self.evaluator.evaluate(source, frame.expression_context())
        except ProcflowError as exc:
            if span is not None:
                exc.with_location(*frame.locate(span))
            raise

    def _condition(self, source: str, frame: ExecutionFrame, span: Optional[Span] = None) -> bool:
        try:
            return self.evaluator.evaluate_boolean(source, frame.expression_context())
        except ProcflowError as exc:
            if span is not None:
                exc.with_location(*frame.locate(span))
            raise

    def _interpolate(self, template: str, frame: ExecutionFrame) -> str:
        if "{{" not in template:
            return template
        return self.evaluator.interpolate(template, frame.expression_context())
