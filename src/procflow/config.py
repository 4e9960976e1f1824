"""
Centralized configuration loader for the interpreter and expression sandbox.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_EXPRESSION_TIMEOUT_MS = 1000
DEFAULT_MAX_EXPRESSION_LENGTH = 4000
DEFAULT_MAX_RANGE_SIZE = 1_000_000
DEFAULT_MAX_SEQUENCE_LENGTH = 1_000_000


@dataclass(frozen=True)
class ProcflowConfig:
    expression_timeout_ms: int = DEFAULT_EXPRESSION_TIMEOUT_MS
    max_expression_length: int = DEFAULT_MAX_EXPRESSION_LENGTH
    max_range_size: int = DEFAULT_MAX_RANGE_SIZE
    max_sequence_length: int = DEFAULT_MAX_SEQUENCE_LENGTH
    redact_logs: bool = True

    @property
    def expression_timeout_seconds(self) -> float:
        return self.expression_timeout_ms / 1000.0


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    try:
        value = int(environ.get(name, default))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    val = environ.get(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def load_config(env: Optional[Mapping[str, str]] = None) -> ProcflowConfig:
    environ = env if env is not None else os.environ
    return ProcflowConfig(
        expression_timeout_ms=_env_int(environ, "PF_EXPRESSION_TIMEOUT_MS", DEFAULT_EXPRESSION_TIMEOUT_MS),
        max_expression_length=_env_int(environ, "PF_MAX_EXPRESSION_LENGTH", DEFAULT_MAX_EXPRESSION_LENGTH),
        max_range_size=_env_int(environ, "PF_MAX_RANGE_SIZE", DEFAULT_MAX_RANGE_SIZE),
        max_sequence_length=_env_int(environ, "PF_MAX_SEQUENCE_LENGTH", DEFAULT_MAX_SEQUENCE_LENGTH),
        redact_logs=_env_bool(environ, "PF_LOG_REDACT_MESSAGES", True),
    )
