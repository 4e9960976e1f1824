"""
Lexical variable storage for one workflow run.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional

from ..errors import DuplicateDeclarationError, VariableNotDeclaredError

GLOBAL_SCOPE_LABEL = "global"


class Scope:
    """One level of the binding stack."""

    __slots__ = ("label", "values", "parent")

    def __init__(self, label: str, parent: Optional["Scope"] = None) -> None:
        self.label = label
        self.values: dict[str, Any] = {}
        self.parent = parent

    def __contains__(self, name: str) -> bool:
        return name in self.values

    def __repr__(self) -> str:
        return f"Scope({self.label!r}, names={sorted(self.values)})"


class RuntimeContext:
    """
    Per-run scope stack with block shadowing.

    Declaring a name already bound in the innermost scope fails; declaring a
    name bound only in an enclosing scope shadows it until the inner scope is
    popped. Reads walk from the innermost scope outwards.
    """

    def __init__(self) -> None:
        self.global_scope = Scope(GLOBAL_SCOPE_LABEL)
        self.current = self.global_scope

    @property
    def depth(self) -> int:
        depth = 0
        scope = self.current
        while scope.parent is not None:
            depth += 1
            scope = scope.parent
        return depth

    def push_scope(self, label: str) -> Scope:
        self.current = Scope(label, parent=self.current)
        return self.current

    def pop_scope(self) -> Scope:
        if self.current.parent is None:
            raise RuntimeError("pop_scope() called with only the global scope on the stack")
        popped = self.current
        self.current = popped.parent
        return popped

    @contextmanager
    def scope(self, label: str) -> Iterator[Scope]:
        pushed = self.push_scope(label)
        try:
            yield pushed
        finally:
            # The stack may already be unwound if the run was torn down mid-block.
            if self.current is pushed:
                self.pop_scope()

    def declare(self, name: str, value: Any) -> None:
        if name in self.current:
            raise DuplicateDeclarationError(
                f"Variable '{name}' is already defined in this {self.current.label} scope", name=name
            )
        self.current.values[name] = value

    def _find(self, name: str) -> Optional[Scope]:
        scope: Optional[Scope] = self.current
        while scope is not None:
            if name in scope:
                return scope
            scope = scope.parent
        return None

    def has(self, name: str) -> bool:
        return self._find(name) is not None

    def resolve(self, name: str) -> Any:
        scope = self._find(name)
        if scope is None:
            raise VariableNotDeclaredError(f"Variable '{name}' is not defined", name=name)
        return scope.values[name]

    def assign(self, name: str, value: Any) -> None:
        scope = self._find(name)
        if scope is None:
            raise VariableNotDeclaredError(
                f"Variable '{name}' is not defined. Declare it with let before setting it.", name=name
            )
        scope.values[name] = value

    def to_context_object(self) -> dict[str, Any]:
        """Flatten every visible binding; inner scopes win on collisions."""
        chain: list[Scope] = []
        scope: Optional[Scope] = self.current
        while scope is not None:
            chain.append(scope)
            scope = scope.parent
        flattened: dict[str, Any] = {}
        for level in reversed(chain):
            flattened.update(level.values)
        return flattened


__all__ = ["GLOBAL_SCOPE_LABEL", "RuntimeContext", "Scope"]
