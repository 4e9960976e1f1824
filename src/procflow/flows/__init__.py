"""
Workflow execution: the interpreter, the host boundary and progress envelopes.
"""

from .host import RunnableHandle, WorkflowHost  # noqa: F401
from .interpreter import Interpreter, WorkflowRun, execute  # noqa: F401
from .memory_host import GraphEdge, InMemoryHost, SubWorkflow  # noqa: F401
from .models import ForwardedEnvelope, StatusEnvelope, WaitingEnvelope, envelope_text, unwrap  # noqa: F401
from .outcome import Completed, Returned  # noqa: F401
from .streams import ResultStream, StreamResult  # noqa: F401

__all__ = [
    "Completed",
    "ForwardedEnvelope",
    "GraphEdge",
    "InMemoryHost",
    "Interpreter",
    "Returned",
    "ResultStream",
    "RunnableHandle",
    "StatusEnvelope",
    "StreamResult",
    "SubWorkflow",
    "WaitingEnvelope",
    "WorkflowHost",
    "WorkflowRun",
    "envelope_text",
    "execute",
    "unwrap",
]
