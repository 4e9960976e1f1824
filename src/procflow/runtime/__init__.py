"""
Runtime building blocks: the expression sandbox and the scope stack.
"""

from .expressions import ExpressionEvaluator, render_value  # noqa: F401
from .scopes import RuntimeContext, Scope  # noqa: F401

__all__ = ["ExpressionEvaluator", "RuntimeContext", "Scope", "render_value"]
