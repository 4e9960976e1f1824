"""Pydantic models for the progress envelopes a workflow run yields."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _Envelope(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class StatusEnvelope(_Envelope):
    kind: Literal["status"] = "status"
    message: str


class WaitingEnvelope(_Envelope):
    kind: Literal["waiting"] = "waiting"
    prompt: str
    timeout_ms: Optional[int] = Field(default=None, ge=0, description="How long the host may wait for input")


class ForwardedEnvelope(_Envelope):
    kind: Literal["forwarded"] = "forwarded"
    origin: str = Field(..., description="Callable that produced the event")
    caller: Optional[str] = Field(default=None, description="Identity of the calling workflow instance")
    event: Any = Field(..., description="The nested event, unchanged")


ProgressEnvelope = Annotated[
    Union[StatusEnvelope, WaitingEnvelope, ForwardedEnvelope],
    Field(discriminator="kind"),
]


def unwrap(envelope: Any) -> Any:
    """Follow forwarded envelopes down to the event that was first emitted."""
    while isinstance(envelope, ForwardedEnvelope):
        envelope = envelope.event
    return envelope


def envelope_text(envelope: Any) -> Optional[str]:
    """Status message or waiting prompt carried by ``envelope``, if any."""
    inner = unwrap(envelope)
    if isinstance(inner, StatusEnvelope):
        return inner.message
    if isinstance(inner, WaitingEnvelope):
        return inner.prompt
    return None


__all__ = [
    "ForwardedEnvelope",
    "ProgressEnvelope",
    "StatusEnvelope",
    "WaitingEnvelope",
    "envelope_text",
    "unwrap",
]
