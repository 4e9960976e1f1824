"""
Security boundary helpers for the expression evaluator: the static denylist,
deep freeze/thaw of evaluation contexts, and the whitelisted namespaces that
expressions may reach.
"""

from __future__ import annotations

import contextvars
import datetime as _dt
import io
import json as _json
import math as _math
import re as _re
import time as _time
import tokenize
import urllib.parse as _urlparse
from typing import Any, Callable, Iterable, Mapping, Optional

import regex as _regex

from ..errors import ForbiddenPatternError

# Names that open a path to the process, the module loader, dynamic code or
# the object model.
FORBIDDEN_IDENTIFIERS = frozenset(
    {
        "__import__",
        "__builtins__",
        "builtins",
        "importlib",
        "os",
        "sys",
        "subprocess",
        "eval",
        "exec",
        "compile",
        "open",
        "globals",
        "locals",
        "vars",
        "getattr",
        "setattr",
        "delattr",
        "breakpoint",
        "memoryview",
        "help",
        "exit",
        "quit",
        "format",
        "format_map",
        "mro",
        "gi_frame",
        "gi_code",
        "ag_frame",
        "ag_code",
        "cr_frame",
        "cr_code",
        "f_globals",
        "f_locals",
        "f_builtins",
        "f_back",
        "tb_frame",
        "func_globals",
    }
)

_FORBIDDEN_RE = _re.compile(
    r"(?<![A-Za-z0-9_])(?:"
    + "|".join(sorted((_re.escape(name) for name in FORBIDDEN_IDENTIFIERS), key=len, reverse=True))
    + r")(?![A-Za-z0-9_])"
)
_DUNDER_RE = _re.compile(r"(?<![A-Za-z0-9])__[A-Za-z0-9_]*")


def is_forbidden_name(name: str) -> bool:
    return name in FORBIDDEN_IDENTIFIERS or name.startswith("__")


def _forbidden(name: str, column: int | None) -> ForbiddenPatternError:
    return ForbiddenPatternError(
        f"Expression uses '{name}', which is not allowed in workflow expressions.",
        column=column,
    )


def check_forbidden(source: str) -> None:
    """
    Reject sources naming a denylisted identifier or any dunder name.

    Identifiers are taken from the token stream so that quoted text such as
    ``"open"`` stays usable. Sources the tokenizer cannot read are scanned as
    raw text instead, which errs on the side of rejecting.
    """
    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(source).readline))
    except (tokenize.TokenError, SyntaxError):
        match = _DUNDER_RE.search(source) or _FORBIDDEN_RE.search(source)
        if match:
            raise _forbidden(match.group(0), match.start() + 1)
        return
    for tok in tokens:
        if tok.type == tokenize.NAME and is_forbidden_name(tok.string):
            raise _forbidden(tok.string, tok.start[1] + 1)


class FrozenDict(dict):
    """A dict whose mutating methods raise TypeError."""

    def _readonly(self, *args: Any, **kwargs: Any) -> None:
        raise TypeError("workflow values are read-only inside expressions")

    __setitem__ = _readonly
    __delitem__ = _readonly
    __ior__ = _readonly
    clear = _readonly
    pop = _readonly
    popitem = _readonly
    setdefault = _readonly
    update = _readonly


class FrozenList(list):
    """A list whose mutating methods raise TypeError."""

    def _readonly(self, *args: Any, **kwargs: Any) -> None:
        raise TypeError("workflow values are read-only inside expressions")

    __setitem__ = _readonly
    __delitem__ = _readonly
    __iadd__ = _readonly
    __imul__ = _readonly
    append = _readonly
    extend = _readonly
    insert = _readonly
    remove = _readonly
    pop = _readonly
    clear = _readonly
    sort = _readonly
    reverse = _readonly


def freeze(value: Any) -> Any:
    """Deep-copy ``value`` into read-only containers."""
    if isinstance(value, (FrozenDict, FrozenList)):
        return value
    if isinstance(value, Mapping):
        return FrozenDict((key, freeze(val)) for key, val in value.items())
    if isinstance(value, list):
        return FrozenList(freeze(item) for item in value)
    if isinstance(value, tuple):
        return tuple(freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of :func:`freeze`: plain, mutable copies for callers."""
    if isinstance(value, dict):
        return {key: thaw(val) for key, val in value.items()}
    if isinstance(value, list):
        return [thaw(item) for item in value]
    if isinstance(value, tuple):
        return tuple(thaw(item) for item in value)
    if isinstance(value, frozenset):
        return set(thaw(item) for item in value)
    return value


class SafeNamespace:
    """Read-only bag of whitelisted helpers exposed as ``name.member``."""

    def __init__(self, name: str, members: Mapping[str, Any]) -> None:
        object.__setattr__(self, "_name", name)
        object.__setattr__(self, "_members", dict(members))

    def __getattr__(self, item: str) -> Any:
        members = object.__getattribute__(self, "_members")
        if item in members:
            return members[item]
        raise AttributeError(f"{object.__getattribute__(self, '_name')} has no member '{item}'")

    def __setattr__(self, key: str, value: Any) -> None:
        raise TypeError("namespaces are read-only")

    def __repr__(self) -> str:
        return f"<namespace {object.__getattribute__(self, '_name')}>"

    def members(self) -> Iterable[Any]:
        return object.__getattribute__(self, "_members").values()


_INT_PREFIX_RE = _re.compile(r"\s*[+-]?\d+")
_FLOAT_PREFIX_RE = _re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _parse_int(value: Any, base: int = 10) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if _math.isfinite(value) else None
    if base != 10:
        try:
            return int(str(value).strip(), base)
        except ValueError:
            return None
    match = _INT_PREFIX_RE.match(str(value))
    return int(match.group(0)) if match else None


def _parse_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _FLOAT_PREFIX_RE.match(str(value))
    return float(match.group(0)) if match else None


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and _math.isnan(value)


def _is_finite(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and _math.isfinite(value)


def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def _json_dumps(value: Any, indent: int | None = None, sort_keys: bool = False) -> str:
    return _json.dumps(value, indent=indent, sort_keys=sort_keys, ensure_ascii=False, default=str)


def _json_loads(text: str) -> Any:
    return _json.loads(text)


def _uri_encode(text: Any) -> str:
    return _urlparse.quote(str(text), safe=";,/?:@&=+$#-_.!~*'()")


def _uri_encode_component(text: Any) -> str:
    return _urlparse.quote(str(text), safe="-_.!~*'()")


def _uri_decode(text: Any) -> str:
    return _urlparse.unquote(str(text))


def _now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def _today() -> _dt.date:
    return _dt.date.today()


def _from_iso(text: str) -> _dt.datetime:
    return _dt.datetime.fromisoformat(str(text))


def _timestamp() -> float:
    return _time.time()


# Monotonic deadline of the expression evaluating in the current context;
# regex calls get the time left on it as their timeout.
expression_deadline: contextvars.ContextVar[Optional[float]] = contextvars.ContextVar(
    "procflow_expression_deadline", default=None
)


def _regex_timeout() -> Optional[float]:
    deadline = expression_deadline.get()
    if deadline is None:
        return None
    return max(deadline - _time.monotonic(), 0.001)


def _bounded_regex(name: str) -> Callable[..., Any]:
    """
    Wrap ``regex.<name>`` so matching stops at the evaluation deadline.

    The ``regex`` package raises ``TimeoutError`` when the timeout passes;
    the evaluator reports that as an expression timeout.
    """

    def call(*args: Any, **kwargs: Any) -> Any:
        kwargs["timeout"] = _regex_timeout()
        return getattr(_regex, name)(*args, **kwargs)

    call.__name__ = name
    call.__qualname__ = f"re.{name}"
    return call


_MATH_NAMES = (
    "ceil",
    "floor",
    "trunc",
    "sqrt",
    "pow",
    "exp",
    "log",
    "log2",
    "log10",
    "sin",
    "cos",
    "tan",
    "fabs",
    "fsum",
    "gcd",
    "isclose",
    "pi",
    "e",
    "inf",
    "nan",
)

NAMESPACES: dict[str, SafeNamespace] = {
    "math": SafeNamespace("math", {name: getattr(_math, name) for name in _MATH_NAMES}),
    "json": SafeNamespace("json", {"dumps": _json_dumps, "loads": _json_loads}),
    "re": SafeNamespace(
        "re",
        {
            "match": _bounded_regex("match"),
            "search": _bounded_regex("search"),
            "fullmatch": _bounded_regex("fullmatch"),
            "findall": _bounded_regex("findall"),
            "sub": _bounded_regex("sub"),
            "split": _bounded_regex("split"),
            "escape": _regex.escape,
        },
    ),
    "uri": SafeNamespace(
        "uri",
        {
            "encode": _uri_encode,
            "decode": _uri_decode,
            "encode_component": _uri_encode_component,
            "decode_component": _uri_decode,
        },
    ),
    "number": SafeNamespace(
        "number",
        {
            "parse_int": _parse_int,
            "parse_float": _parse_float,
            "is_nan": _is_nan,
            "is_finite": _is_finite,
            "is_integer": _is_integer,
        },
    ),
    "date": SafeNamespace(
        "date",
        {"now": _now, "today": _today, "from_iso": _from_iso, "timestamp": _timestamp},
    ),
}

SAFE_BUILTINS: dict[str, Callable[..., Any]] = {
    "len": len,
    "min": min,
    "max": max,
    "sum": sum,
    "abs": abs,
    "round": round,
    "sorted": sorted,
    "reversed": reversed,
    "any": any,
    "all": all,
    "enumerate": enumerate,
    "zip": zip,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "list": list,
    "dict": dict,
    "set": set,
    "tuple": tuple,
}

SAFE_CONSTANTS: dict[str, Any] = {"true": True, "false": False, "null": None}

# Receivers whose public attributes expressions may read and whose bound
# methods they may call.
ATTRIBUTE_RECEIVERS: tuple[type, ...] = (
    str,
    int,
    float,
    bool,
    dict,
    list,
    tuple,
    set,
    frozenset,
    _dt.date,
    _dt.time,
    _dt.timedelta,
    type(_regex.match("", "")),
    type(_regex.compile("")),
    SafeNamespace,
)


def whitelisted_callables() -> set[int]:
    """Identity set of every function reachable through the safe namespaces."""
    allowed: set[int] = {id(fn) for fn in SAFE_BUILTINS.values()}
    for namespace in NAMESPACES.values():
        allowed.update(id(member) for member in namespace.members() if callable(member))
    return allowed
