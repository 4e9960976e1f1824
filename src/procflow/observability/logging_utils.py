from __future__ import annotations

import os
from typing import Any, Dict, Mapping, Optional

_SENSITIVE_KEYS = {"email", "phone", "authorization", "access_token", "api_key", "password", "secret", "token"}
_TEXT_KEYS = ("message", "prompt", "content", "input")


def _env_bool(name: str, default: bool = True) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _redacting(enabled: Optional[bool]) -> bool:
    if enabled is not None:
        return enabled
    return _env_bool("PF_LOG_REDACT_MESSAGES", True)


def redact_text(text: str, enabled: Optional[bool] = None) -> str:
    if not _redacting(enabled) or not text:
        return text
    return "[REDACTED]"


def redact_metadata(meta: Mapping[str, Any], enabled: Optional[bool] = None) -> Dict[str, Any]:
    if not _redacting(enabled):
        return dict(meta)
    redacted: Dict[str, Any] = {}
    for key, value in meta.items():
        if str(key).lower() in _SENSITIVE_KEYS:
            redacted[key] = "[REDACTED]"
        else:
            redacted[key] = value
    return redacted


def redact_event(event: Mapping[str, Any], enabled: Optional[bool] = None) -> Dict[str, Any]:
    """
    Apply message/metadata redaction to event payloads before logging.
    """

    sanitized = dict(event)
    for key in _TEXT_KEYS:
        if key in sanitized and isinstance(sanitized[key], str):
            sanitized[key] = redact_text(sanitized[key], enabled)
    for key in ("metadata", "args", "data"):
        if key in sanitized and isinstance(sanitized[key], Mapping):
            sanitized[key] = redact_metadata(sanitized[key], enabled)
    return sanitized


__all__ = ["redact_event", "redact_metadata", "redact_text"]
