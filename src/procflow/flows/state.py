from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from ..ast_nodes import Program, Span
from ..runtime.scopes import RuntimeContext


@dataclass
class ExecutionFrame:
    """Mutable state of one run: its program and scope stack."""

    program: Program
    scopes: RuntimeContext = field(default_factory=RuntimeContext)

    @property
    def file(self) -> Optional[str]:
        return self.program.file

    def expression_context(self) -> dict[str, Any]:
        """
        Names visible to expressions: the fields of ``input`` and ``args``
        spread at top level, then ``input`` and ``args`` themselves, then
        every scoped variable (inner scopes winning).
        """
        visible = self.scopes.to_context_object()
        input_value = visible.get("input")
        args_value = visible.get("args")
        names: dict[str, Any] = {}
        for source in (input_value, args_value):
            if isinstance(source, Mapping):
                names.update((key, val) for key, val in source.items() if isinstance(key, str))
        names["input"] = input_value
        names["args"] = args_value
        names.update(visible)
        return names

    def locate(self, span: Optional[Span]) -> tuple[Optional[str], Optional[int], Optional[int]]:
        if span is None:
            return self.file, None, None
        return span.file or self.file, span.line, span.column


__all__ = ["ExecutionFrame"]
