"""
procflow: an embeddable procedural workflow interpreter with a sandboxed
expression language.
"""

from .version import __version__  # noqa: F401
from .flows import InMemoryHost, Interpreter, WorkflowHost, WorkflowRun, execute  # noqa: F401

__all__ = [
    "ast_nodes",
    "errors",
    "config",
    "runtime",
    "flows",
    "InMemoryHost",
    "Interpreter",
    "WorkflowHost",
    "WorkflowRun",
    "execute",
    "__version__",
]
