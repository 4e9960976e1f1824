from .calls import InterpreterCallMixin
from .control import InterpreterControlMixin
from .core import InterpreterCoreMixin
from .emit import InterpreterEmitMixin
from .expressions import InterpreterExpressionMixin
from .memory import InterpreterMemoryMixin

__all__ = [
    "InterpreterCallMixin",
    "InterpreterControlMixin",
    "InterpreterCoreMixin",
    "InterpreterEmitMixin",
    "InterpreterExpressionMixin",
    "InterpreterMemoryMixin",
]
