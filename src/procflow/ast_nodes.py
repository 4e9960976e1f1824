"""
AST node definitions for procflow programs.

Programs arrive already parsed and validated; the interpreter only reads
these nodes. Every node is a frozen dataclass and bodies are normalized to
tuples so a program can be shared between concurrent runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class Span:
    """Location span for diagnostics."""

    line: int
    column: int = 0
    file: Optional[str] = None


def _freeze_body(node: object, name: str) -> None:
    value = getattr(node, name)
    if value is not None and not isinstance(value, tuple):
        object.__setattr__(node, name, tuple(value))


def _freeze_mapping(node: object, name: str) -> None:
    value = getattr(node, name)
    if value is not None and not isinstance(value, MappingProxyType):
        object.__setattr__(node, name, MappingProxyType(dict(value)))


@dataclass(frozen=True)
class Expr:
    """Bare expression statement; its value becomes the running value."""

    expr: str
    span: Optional[Span] = None


@dataclass(frozen=True)
class DataBlock:
    """Structured data: one record-valued expression or named field expressions."""

    expr: Optional[str] = None
    fields: Mapping[str, str] = field(default_factory=dict)
    span: Optional[Span] = None

    def __post_init__(self) -> None:
        _freeze_mapping(self, "fields")


@dataclass(frozen=True)
class CallCallable:
    """Invoke a named callable ("bot") through the host."""

    name: str
    args: Mapping[str, str] = field(default_factory=dict)
    result: Optional[str] = None
    span: Optional[Span] = None

    def __post_init__(self) -> None:
        _freeze_mapping(self, "args")


@dataclass(frozen=True)
class CallSubWorkflow:
    """Create or retrieve a sub-workflow instance by type and name."""

    entity_type: str
    name: str
    data: Optional[DataBlock] = None
    idempotent: bool = True
    result: Optional[str] = None
    span: Optional[Span] = None


@dataclass(frozen=True)
class RunSubWorkflow:
    """Run a previously bound sub-workflow handle."""

    ref: str
    result: Optional[str] = None
    span: Optional[Span] = None


@dataclass(frozen=True)
class MemoryGet:
    """Read a working-memory value; binds it when ``name`` is set."""

    key: str
    name: Optional[str] = None
    span: Optional[Span] = None


ValueSource = Union[Expr, CallCallable, CallSubWorkflow, RunSubWorkflow, MemoryGet]


@dataclass(frozen=True)
class Let:
    name: str
    expr: Optional[str] = None
    value: Optional[ValueSource] = None
    body: Optional[Tuple["Node", ...]] = None
    span: Optional[Span] = None

    def __post_init__(self) -> None:
        _freeze_body(self, "body")


@dataclass(frozen=True)
class Set:
    """Reassign the nearest existing binding."""

    name: str
    expr: str
    span: Optional[Span] = None


@dataclass(frozen=True)
class ElseIf:
    condition: str
    body: Tuple["Node", ...] = ()
    span: Optional[Span] = None

    def __post_init__(self) -> None:
        _freeze_body(self, "body")


@dataclass(frozen=True)
class If:
    condition: str
    body: Tuple["Node", ...] = ()
    elifs: Tuple[ElseIf, ...] = ()
    orelse: Optional[Tuple["Node", ...]] = None
    span: Optional[Span] = None

    def __post_init__(self) -> None:
        _freeze_body(self, "body")
        _freeze_body(self, "elifs")
        _freeze_body(self, "orelse")


@dataclass(frozen=True)
class Loop:
    items: str
    body: Tuple["Node", ...] = ()
    item_name: str = "item"
    index_name: Optional[str] = None
    span: Optional[Span] = None

    def __post_init__(self) -> None:
        _freeze_body(self, "body")


@dataclass(frozen=True)
class EmitStatus:
    message: str
    span: Optional[Span] = None


@dataclass(frozen=True)
class EmitWaiting:
    prompt: str
    timeout_ms: Optional[int] = None
    span: Optional[Span] = None


@dataclass(frozen=True)
class MemorySet:
    key: str
    expr: Optional[str] = None
    value: Optional[ValueSource] = None
    span: Optional[Span] = None


@dataclass(frozen=True)
class GraphAppend:
    edge_type: str
    target: str
    data: Optional[DataBlock] = None
    span: Optional[Span] = None


@dataclass(frozen=True)
class Return:
    expr: Optional[str] = None
    span: Optional[Span] = None


Node = Union[
    Let,
    Set,
    If,
    Loop,
    CallCallable,
    CallSubWorkflow,
    RunSubWorkflow,
    EmitStatus,
    EmitWaiting,
    MemoryGet,
    MemorySet,
    GraphAppend,
    Return,
    Expr,
]


@dataclass(frozen=True)
class Program:
    """Top-level instruction list."""

    body: Tuple[Node, ...] = ()
    name: Optional[str] = None
    file: Optional[str] = None

    def __post_init__(self) -> None:
        _freeze_body(self, "body")


def node_kind(node: object) -> str:
    return type(node).__name__


def program(*body: Node, name: Optional[str] = None, file: Optional[str] = None) -> Program:
    """Convenience constructor: ``program(Let(...), Return(...))``."""
    return Program(body=tuple(body), name=name, file=file)


__all__ = [
    "Span",
    "Expr",
    "DataBlock",
    "CallCallable",
    "CallSubWorkflow",
    "RunSubWorkflow",
    "MemoryGet",
    "ValueSource",
    "Let",
    "Set",
    "ElseIf",
    "If",
    "Loop",
    "EmitStatus",
    "EmitWaiting",
    "MemorySet",
    "GraphAppend",
    "Return",
    "Node",
    "Program",
    "node_kind",
    "program",
]