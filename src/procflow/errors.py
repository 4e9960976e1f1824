"""
Custom error types for the procflow interpreter.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class ProcflowError(Exception):
    """Base error with optional source location metadata."""

    message: str
    line: Optional[int] = None
    column: Optional[int] = None
    file: Optional[str] = None
    code: str = "PF-0001"
    diagnostics: list[dict[str, Any]] | None = None

    def __post_init__(self) -> None:
        if self.diagnostics is None:
            self.diagnostics = [{"code": self.code, "message": self.message, "severity": "error"}]

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.line is not None:
            parts.append(f"line {self.line}")
            if self.column is not None:
                parts.append(f"column {self.column}")
        if not parts:
            return self.message
        return f"{self.message} ({', '.join(parts)})"

    @property
    def has_location(self) -> bool:
        return self.line is not None or self.file is not None

    def with_location(self, file: Optional[str], line: Optional[int], column: Optional[int]) -> "ProcflowError":
        """Attach a location unless one is already present. Returns self."""
        if not self.has_location:
            self.file = file
            self.line = line
            self.column = column
            if self.diagnostics:
                for diag in self.diagnostics:
                    diag.setdefault("file", file)
                    diag.setdefault("line", line)
                    diag.setdefault("column", column)
        return self


@dataclass
class ExpressionSyntaxError(ProcflowError):
    """Malformed expression source."""

    code: str = "PF-1001"


@dataclass
class ForbiddenPatternError(ProcflowError):
    """Expression referenced a denylisted identifier or attribute."""

    code: str = "PF-1002"


@dataclass
class ExpressionLengthError(ProcflowError):
    """Expression source exceeded the configured maximum length."""

    code: str = "PF-1003"


@dataclass
class ExpressionRuntimeError(ProcflowError):
    """Expression parsed but raised while evaluating."""

    code: str = "PF-1100"


@dataclass
class ExpressionTimeoutError(ExpressionRuntimeError):
    """Expression exceeded its evaluation time budget."""

    timeout_ms: Optional[int] = None
    code: str = "PF-1101"


@dataclass
class WorkflowTypeError(ProcflowError, TypeError):
    """A node received a value of the wrong shape from an expression."""

    code: str = "PF-2001"


@dataclass
class DuplicateDeclarationError(ProcflowError):
    """A name is already bound in the current scope."""

    name: Optional[str] = None
    code: str = "PF-2101"


@dataclass
class VariableNotDeclaredError(ProcflowError):
    """A read or write referenced an unbound name."""

    name: Optional[str] = None
    code: str = "PF-2102"


@dataclass
class UnknownNodeError(ProcflowError):
    """The interpreter met a node kind it has no executor for."""

    code: str = "PF-2201"


@dataclass
class HostError(ProcflowError):
    """Raised by host implementations; the interpreter passes it through untouched."""

    code: str = "PF-3001"
