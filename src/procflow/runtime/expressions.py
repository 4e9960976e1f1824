"""
Sandboxed expression evaluation.

Expressions are a restricted subset of Python expression syntax. Sources are
length-checked, screened for denylisted identifiers, parsed with :mod:`ast`
and validated node by node before anything runs. Evaluation walks the tree
against a deep-frozen copy of the context under a wall-clock deadline; no
source is ever handed to ``eval``.
"""

from __future__ import annotations

import ast
import difflib
import functools
import json
import logging
import math
import operator
import re
import time
import types
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any, Optional

from ..config import ProcflowConfig, load_config
from ..errors import (
    ExpressionLengthError,
    ExpressionRuntimeError,
    ExpressionSyntaxError,
    ExpressionTimeoutError,
    ForbiddenPatternError,
    ProcflowError,
)
from .sandbox import (
    ATTRIBUTE_RECEIVERS,
    NAMESPACES,
    SAFE_BUILTINS,
    SAFE_CONSTANTS,
    FrozenDict,
    FrozenList,
    SafeNamespace,
    check_forbidden,
    expression_deadline,
    freeze,
    is_forbidden_name,
    thaw,
    whitelisted_callables,
)

logger = logging.getLogger("procflow.runtime.expressions")

EvaluationError = ExpressionRuntimeError

_ALLOWED_NODES = (
    ast.Expression,
    ast.Constant,
    ast.Name,
    ast.Load,
    ast.Store,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.BinOp,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.FloorDiv,
    ast.Mod,
    ast.Pow,
    ast.LShift,
    ast.RShift,
    ast.BitOr,
    ast.BitXor,
    ast.BitAnd,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.Invert,
    ast.Compare,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.Is,
    ast.IsNot,
    ast.In,
    ast.NotIn,
    ast.IfExp,
    ast.Dict,
    ast.List,
    ast.Tuple,
    ast.Set,
    ast.Starred,
    ast.ListComp,
    ast.SetComp,
    ast.DictComp,
    ast.GeneratorExp,
    ast.comprehension,
    ast.Lambda,
    ast.arguments,
    ast.arg,
    ast.Subscript,
    ast.Slice,
    ast.Attribute,
    ast.Call,
    ast.keyword,
    ast.JoinedStr,
    ast.FormattedValue,
)

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.LShift: operator.lshift,
    ast.RShift: operator.rshift,
    ast.BitOr: operator.or_,
    ast.BitXor: operator.xor,
    ast.BitAnd: operator.and_,
}

_UNARY_OPS = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
    ast.Invert: operator.invert,
}

_CMP_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
}

# Integer results of **, << and * may not exceed this many bits.
_MAX_INT_BITS = 1_000_000
_PADDING_METHODS = {"ljust", "rjust", "center", "zfill", "expandtabs"}
_DIGITS_RE = re.compile(r"\d+")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_int_bits(bits: float) -> None:
    if bits > _MAX_INT_BITS:
        raise ExpressionRuntimeError(
            f"Integer result would need about {int(bits)} bits; the limit is {_MAX_INT_BITS}."
        )


def build_missing_field_error(field: str, record: Any, *, context: str) -> str:
    available: list[str] = []
    if isinstance(record, Mapping):
        available = [str(k) for k in record.keys()]
    parts: list[str] = [context]
    if available:
        parts.append(f"Available fields: {', '.join(available)}.")
        matches = difflib.get_close_matches(field, available, n=1, cutoff=0.6)
        if matches and matches[0] != field:
            parts.append(f"Did you mean {matches[0]}?")
    return " ".join(parts)


def render_value(value: Any) -> str:
    """Stringify an interpolated value."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _validate_tree(tree: ast.AST) -> None:
    for node in ast.walk(tree):
        column = getattr(node, "col_offset", None)
        column = column + 1 if column is not None else None
        if not isinstance(node, _ALLOWED_NODES):
            raise ForbiddenPatternError(
                f"{type(node).__name__} is not supported in workflow expressions.", column=column
            )
        if isinstance(node, ast.Name) and is_forbidden_name(node.id):
            raise ForbiddenPatternError(f"Expression uses '{node.id}', which is not allowed.", column=column)
        if isinstance(node, ast.Attribute) and (node.attr.startswith("_") or is_forbidden_name(node.attr)):
            raise ForbiddenPatternError(f"Attribute '{node.attr}' is not accessible from expressions.", column=column)
        if isinstance(node, ast.Lambda):
            args = node.args
            if args.vararg or args.kwarg or args.kwonlyargs or args.defaults or args.posonlyargs:
                raise ForbiddenPatternError("Lambdas may only take plain positional parameters.", column=column)
        if isinstance(node, ast.comprehension) and node.is_async:
            raise ForbiddenPatternError("Async comprehensions are not supported.", column=column)


@functools.lru_cache(maxsize=512)
def _parse(source: str) -> ast.Expression:
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as exc:
        raise ExpressionSyntaxError(f"Invalid expression '{source}': {exc.msg}", column=exc.offset) from exc
    except (ValueError, RecursionError, MemoryError) as exc:
        raise ExpressionSyntaxError(f"Invalid expression '{source}': {exc}") from exc
    _validate_tree(tree)
    return tree


class GuardedRange:
    """``range`` replacement that is size-capped and honours the deadline while iterating."""

    __slots__ = ("_walker", "_range")

    def __init__(self, walker: "_Walker", *args: int) -> None:
        rng = range(*args)
        if len(rng) > walker.max_range:
            raise ExpressionRuntimeError(
                f"range() would produce {len(rng)} items; the limit is {walker.max_range}."
            )
        self._walker = walker
        self._range = rng

    def __iter__(self) -> Iterator[int]:
        for value in self._range:
            self._walker.check_deadline()
            yield value

    def __reversed__(self) -> Iterator[int]:
        for value in reversed(self._range):
            self._walker.check_deadline()
            yield value

    def __len__(self) -> int:
        return len(self._range)

    def __getitem__(self, index: Any) -> Any:
        return self._range[index]

    def __contains__(self, value: Any) -> bool:
        return value in self._range

    def __repr__(self) -> str:
        return repr(self._range)


class _Lambda:
    __slots__ = ("_walker", "_node", "_closure")

    def __init__(self, walker: "_Walker", node: ast.Lambda, closure: dict[str, Any]) -> None:
        self._walker = walker
        self._node = node
        self._closure = closure

    def __call__(self, *args: Any) -> Any:
        params = [a.arg for a in self._node.args.args]
        if len(args) != len(params):
            raise TypeError(f"lambda expects {len(params)} argument(s), got {len(args)}")
        scope = dict(self._closure)
        scope.update(zip(params, args))
        with self._walker.scoped(scope):
            return self._walker.visit(self._node.body)


class _Walker:
    """One evaluation: names, local scopes for comprehensions and lambdas, and the deadline."""

    def __init__(self, names: Mapping[str, Any], config: ProcflowConfig, callables: set[int]) -> None:
        self._names = names
        self._locals: list[dict[str, Any]] = []
        self._callables = callables
        self._timeout_ms = config.expression_timeout_ms
        self._deadline = time.monotonic() + config.expression_timeout_seconds
        self.max_range = config.max_range_size
        self.max_sequence = config.max_sequence_length
        self._range = functools.partial(GuardedRange, self)

    def timeout_error(self) -> ExpressionTimeoutError:
        return ExpressionTimeoutError(
            f"Expression exceeded its {self._timeout_ms} ms time limit.", timeout_ms=self._timeout_ms
        )

    def check_deadline(self) -> None:
        if time.monotonic() > self._deadline:
            raise self.timeout_error()

    @contextmanager
    def scoped(self, scope: dict[str, Any]):
        self._locals.append(scope)
        try:
            yield
        finally:
            self._locals.pop()

    def run(self, tree: ast.Expression) -> Any:
        token = expression_deadline.set(self._deadline)
        try:
            value = self.visit(tree.body)
            if isinstance(value, (Iterator, GuardedRange)):
                value = list(value)
        finally:
            expression_deadline.reset(token)
        return value

    def visit(self, node: ast.AST) -> Any:
        self.check_deadline()
        method = getattr(self, f"visit_{type(node).__name__}", None)
        if method is None:
            raise ForbiddenPatternError(f"{type(node).__name__} is not supported in workflow expressions.")
        return method(node)

    def _snapshot_locals(self) -> dict[str, Any]:
        merged: dict[str, Any] = {}
        for scope in self._locals:
            merged.update(scope)
        return merged

    # leaves

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        name = node.id
        for scope in reversed(self._locals):
            if name in scope:
                return scope[name]
        if name in self._names:
            return self._names[name]
        if name == "range":
            return self._range
        if name in SAFE_CONSTANTS:
            return SAFE_CONSTANTS[name]
        if name in SAFE_BUILTINS:
            return SAFE_BUILTINS[name]
        if name in NAMESPACES:
            return NAMESPACES[name]
        raise ExpressionRuntimeError(f"Variable '{name}' is not defined")

    # operators

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        is_and = isinstance(node.op, ast.And)
        value: Any = is_and
        for operand in node.values:
            value = self.visit(operand)
            if is_and and not value:
                return value
            if not is_and and value:
                return value
        return value

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        op_type = type(node.op)
        if op_type is ast.Mult:
            self._check_repetition(left, right)
            self._check_repetition(right, left)
            if _is_int(left) and _is_int(right):
                _check_int_bits(abs(left).bit_length() + abs(right).bit_length())
        elif op_type is ast.Pow and _is_int(left) and _is_int(right) and right > 0 and abs(left) > 1:
            _check_int_bits(math.log2(abs(left)) * right)
        elif op_type is ast.LShift and _is_int(left) and _is_int(right) and right > 0 and left:
            _check_int_bits(abs(left).bit_length() + right)
        elif op_type is ast.Mod and isinstance(left, str):
            args = right if isinstance(right, tuple) else (right,)
            if any(isinstance(a, int) and abs(a) > self.max_sequence for a in args):
                raise ExpressionRuntimeError("String formatting argument is too large.")
        return _BIN_OPS[op_type](left, right)

    def _check_repetition(self, seq: Any, count: Any) -> None:
        if isinstance(seq, (str, list, tuple)) and isinstance(count, int) and not isinstance(count, bool):
            size = len(seq) * count
            if size > self.max_sequence:
                raise ExpressionRuntimeError(
                    f"Repetition would produce {size} items; the limit is {self.max_sequence}."
                )

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        return _UNARY_OPS[type(node.op)](self.visit(node.operand))

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            if not _CMP_OPS[type(op)](left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        if self.visit(node.test):
            return self.visit(node.body)
        return self.visit(node.orelse)

    # displays

    def _iter_elements(self, elts: list[ast.expr]) -> Iterator[Any]:
        for elt in elts:
            if isinstance(elt, ast.Starred):
                yield from self.visit(elt.value)
            else:
                yield self.visit(elt)

    def visit_List(self, node: ast.List) -> list:
        return list(self._iter_elements(node.elts))

    def visit_Tuple(self, node: ast.Tuple) -> tuple:
        return tuple(self._iter_elements(node.elts))

    def visit_Set(self, node: ast.Set) -> set:
        return set(self._iter_elements(node.elts))

    def visit_Dict(self, node: ast.Dict) -> dict:
        result: dict[Any, Any] = {}
        for key, value in zip(node.keys, node.values):
            if key is None:
                result.update(self.visit(value))
            else:
                result[self.visit(key)] = self.visit(value)
        return result

    def visit_Starred(self, node: ast.Starred) -> Any:
        raise ExpressionRuntimeError("Starred values are only allowed inside lists, tuples, sets and calls.")

    # comprehensions

    def _bind_target(self, target: ast.expr, value: Any, scope: dict[str, Any]) -> None:
        if isinstance(target, ast.Name):
            scope[target.id] = value
            return
        if isinstance(target, (ast.Tuple, ast.List)):
            items = list(value)
            if len(items) != len(target.elts):
                raise ValueError(f"cannot unpack {len(items)} values into {len(target.elts)} names")
            for sub_target, item in zip(target.elts, items):
                self._bind_target(sub_target, item, scope)
            return
        raise ForbiddenPatternError("Comprehension targets must be names or tuples of names.")

    def _comprehension_scopes(
        self, generators: list[ast.comprehension], index: int, outer: dict[str, Any]
    ) -> Iterator[dict[str, Any]]:
        # Scopes are pushed only around synchronous visits, never across a
        # yield, so interleaved generators cannot unbalance the stack.
        generator = generators[index]
        with self.scoped(outer):
            iterable = self.visit(generator.iter)
        for item in iterable:
            self.check_deadline()
            scope = dict(outer)
            self._bind_target(generator.target, item, scope)
            with self.scoped(scope):
                keep = all(self.visit(cond) for cond in generator.ifs)
            if not keep:
                continue
            if index + 1 == len(generators):
                yield scope
            else:
                yield from self._comprehension_scopes(generators, index + 1, scope)

    def _element_values(self, elt: ast.expr, generators: list[ast.comprehension]) -> Iterator[Any]:
        for scope in self._comprehension_scopes(generators, 0, self._snapshot_locals()):
            with self.scoped(scope):
                value = self.visit(elt)
            yield value

    def visit_ListComp(self, node: ast.ListComp) -> list:
        return list(self._element_values(node.elt, node.generators))

    def visit_SetComp(self, node: ast.SetComp) -> set:
        return set(self._element_values(node.elt, node.generators))

    def visit_GeneratorExp(self, node: ast.GeneratorExp) -> Iterator[Any]:
        return self._element_values(node.elt, node.generators)

    def visit_DictComp(self, node: ast.DictComp) -> dict:
        result: dict[Any, Any] = {}
        for scope in self._comprehension_scopes(node.generators, 0, self._snapshot_locals()):
            with self.scoped(scope):
                result[self.visit(node.key)] = self.visit(node.value)
        return result

    def visit_Lambda(self, node: ast.Lambda) -> _Lambda:
        return _Lambda(self, node, self._snapshot_locals())

    # access

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        target = self.visit(node.value)
        key = self.visit(node.slice)
        if isinstance(target, Mapping) and not isinstance(key, slice) and key not in target:
            raise ExpressionRuntimeError(
                build_missing_field_error(str(key), target, context=f"I don't know field {key!r} on this record.")
            )
        return target[key]

    def visit_Slice(self, node: ast.Slice) -> slice:
        lower = self.visit(node.lower) if node.lower is not None else None
        upper = self.visit(node.upper) if node.upper is not None else None
        step = self.visit(node.step) if node.step is not None else None
        return slice(lower, upper, step)

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        target = self.visit(node.value)
        attr = node.attr
        if isinstance(target, Mapping):
            if attr in target:
                return target[attr]
            if not hasattr(dict, attr):
                raise ExpressionRuntimeError(
                    build_missing_field_error(attr, target, context=f"I don't know field {attr} on this record.")
                )
        if not isinstance(target, ATTRIBUTE_RECEIVERS):
            raise ExpressionRuntimeError(f"Cannot read '{attr}' from a {type(target).__name__} value.")
        try:
            return getattr(target, attr)
        except AttributeError as exc:
            raise ExpressionRuntimeError(f"{type(target).__name__} value has no attribute '{attr}'") from exc

    def _is_allowed_callable(self, fn: Any) -> bool:
        if fn is self._range or isinstance(fn, _Lambda):
            return True
        if id(fn) in self._callables:
            return True
        owner = getattr(fn, "__self__", None)
        if owner is None or isinstance(owner, (SafeNamespace, types.ModuleType)):
            return False
        if isinstance(fn, (types.BuiltinMethodType, types.MethodWrapperType)):
            return isinstance(owner, ATTRIBUTE_RECEIVERS)
        # Mutators on frozen containers are plain Python methods; letting the
        # call through surfaces their read-only TypeError.
        return isinstance(fn, types.MethodType) and isinstance(owner, (FrozenDict, FrozenList))

    def visit_Call(self, node: ast.Call) -> Any:
        fn = self.visit(node.func)
        if not self._is_allowed_callable(fn):
            raise ExpressionRuntimeError(f"{type(fn).__name__} values cannot be called from expressions.")
        args = list(self._iter_elements(node.args))
        kwargs: dict[str, Any] = {}
        for kw in node.keywords:
            if kw.arg is None:
                kwargs.update(self.visit(kw.value))
            else:
                kwargs[kw.arg] = self.visit(kw.value)
        if isinstance(getattr(fn, "__self__", None), str) and getattr(fn, "__name__", "") in _PADDING_METHODS:
            if any(isinstance(a, int) and a > self.max_sequence for a in args):
                raise ExpressionRuntimeError("Requested string width is too large.")
        try:
            return fn(*args, **kwargs)
        except TimeoutError as exc:
            raise self.timeout_error() from exc

    # f-strings

    def visit_JoinedStr(self, node: ast.JoinedStr) -> str:
        return "".join(str(self.visit(part)) for part in node.values)

    def visit_FormattedValue(self, node: ast.FormattedValue) -> str:
        value = self.visit(node.value)
        if node.conversion == ord("r"):
            value = repr(value)
        elif node.conversion == ord("s"):
            value = str(value)
        elif node.conversion == ord("a"):
            value = ascii(value)
        spec = self.visit(node.format_spec) if node.format_spec is not None else ""
        if any(int(digits) > self.max_sequence for digits in _DIGITS_RE.findall(spec)):
            raise ExpressionRuntimeError("Format width is too large.")
        return format(value, spec)


class ExpressionEvaluator:
    """Evaluates expression strings against a read-only context."""

    def __init__(self, config: Optional[ProcflowConfig] = None) -> None:
        self.config = config or load_config()
        self._callables = whitelisted_callables()

    def compile(self, source: str) -> ast.Expression:
        """Run every static check and return the validated tree."""
        if not isinstance(source, str):
            raise ExpressionSyntaxError(f"Expressions must be strings, got {type(source).__name__}")
        text = source.strip()
        if not text:
            raise ExpressionSyntaxError("Expression is empty")
        if len(text) > self.config.max_expression_length:
            raise ExpressionLengthError(
                f"Expression is {len(text)} characters long; the limit is {self.config.max_expression_length}."
            )
        try:
            check_forbidden(text)
        except ForbiddenPatternError:
            logger.debug("rejected expression with forbidden identifier")
            raise
        return _parse(text)

    def evaluate(self, source: str, context: Optional[Mapping[str, Any]] = None) -> Any:
        tree = self.compile(source)
        return self._run(source, tree, freeze(dict(context or {})))

    def evaluate_boolean(self, source: str, context: Optional[Mapping[str, Any]] = None) -> bool:
        return bool(self.evaluate(source, context))

    def interpolate(self, template: str, context: Optional[Mapping[str, Any]] = None) -> str:
        """
        Replace every ``{{ expr }}`` marker with the rendered value of ``expr``.

        An opening ``{{`` without a closing ``}}`` is kept as literal text
        together with everything after it.
        """
        if "{{" not in template:
            return template
        frozen: Any = None
        parts: list[str] = []
        pos = 0
        while True:
            start = template.find("{{", pos)
            if start < 0:
                parts.append(template[pos:])
                break
            end = template.find("}}", start + 2)
            if end < 0:
                parts.append(template[pos:])
                break
            parts.append(template[pos:start])
            source = template[start + 2 : end]
            tree = self.compile(source)
            if frozen is None:
                frozen = freeze(dict(context or {}))
            parts.append(render_value(self._run(source, tree, frozen)))
            pos = end + 2
        return "".join(parts)

    def _run(self, source: str, tree: ast.Expression, names: Mapping[str, Any]) -> Any:
        walker = _Walker(names, self.config, self._callables)
        try:
            value = walker.run(tree)
        except ProcflowError:
            raise
        except Exception as exc:
            raise ExpressionRuntimeError(
                f"Expression '{source.strip()}' failed: {type(exc).__name__}: {exc}"
            ) from exc
        return thaw(value)


__all__ = [
    "EvaluationError",
    "ExpressionEvaluator",
    "GuardedRange",
    "build_missing_field_error",
    "render_value",
]
