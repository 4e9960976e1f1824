import time
from collections.abc import Mapping

import pytest
import regex

from procflow.config import ProcflowConfig
from procflow.errors import (
    ExpressionLengthError,
    ExpressionRuntimeError,
    ExpressionSyntaxError,
    ExpressionTimeoutError,
    ForbiddenPatternError,
)
from procflow.runtime.expressions import ExpressionEvaluator, render_value


def _evaluator(**overrides) -> ExpressionEvaluator:
    return ExpressionEvaluator(ProcflowConfig(**overrides))


def test_arithmetic_over_context_names():
    ev = _evaluator()
    assert ev.evaluate("a + b * 2", {"a": 1, "b": 3}) == 7
    assert ev.evaluate("(a + b) // 2", {"a": 5, "b": 4}) == 4
    assert ev.evaluate("'x' if a > 2 else 'y'", {"a": 3}) == "x"


def test_record_fields_by_dot_and_subscript():
    ev = _evaluator()
    ctx = {"user": {"name": "Ada", "tags": ["x", "y"]}}
    assert ev.evaluate("user.name", ctx) == "Ada"
    assert ev.evaluate("user['tags'][1]", ctx) == "y"
    assert ev.evaluate("user.tags[-1].upper()", ctx) == "Y"


def test_record_keys_win_over_dict_methods():
    ev = _evaluator()
    assert ev.evaluate("rec.items", {"rec": {"items": [1, 2]}}) == [1, 2]
    assert ev.evaluate("sorted(rec.keys())", {"rec": {"b": 1, "a": 2}}) == ["a", "b"]


def test_missing_field_suggests_close_match():
    ev = _evaluator()
    with pytest.raises(ExpressionRuntimeError) as info:
        ev.evaluate("user.nmae", {"user": {"name": "Ada"}})
    assert "Did you mean name?" in info.value.message


def test_undefined_variable():
    with pytest.raises(ExpressionRuntimeError) as info:
        _evaluator().evaluate("missing + 1")
    assert "not defined" in info.value.message


def test_comprehensions_and_lambdas():
    ev = _evaluator()
    ctx = {"xs": [1, 2, 3], "rec": {"a": 1, "b": 2}}
    assert ev.evaluate("[x * 2 for x in xs if x > 1]", ctx) == [4, 6]
    assert ev.evaluate("sorted(xs, key=lambda v: -v)", ctx) == [3, 2, 1]
    assert ev.evaluate("{k: v * 10 for k, v in rec.items()}", ctx) == {"a": 10, "b": 20}
    assert ev.evaluate("[(x, y) for x in xs for y in xs if x < y]", ctx) == [(1, 2), (1, 3), (2, 3)]
    assert ev.evaluate("any(x > 2 for x in xs)", ctx) is True


def test_python_truthiness():
    ev = _evaluator()
    assert ev.evaluate_boolean("[]") is False
    assert ev.evaluate_boolean("'x'") is True
    assert ev.evaluate_boolean("0") is False
    assert ev.evaluate_boolean("null") is False
    assert ev.evaluate_boolean("{'a': 1}") is True


def test_safe_namespaces():
    ev = _evaluator()
    assert ev.evaluate("math.floor(2.7)") == 2
    assert ev.evaluate("json.dumps({'a': 1})") == '{"a": 1}'
    assert ev.evaluate("json.loads('[1, 2]')") == [1, 2]
    assert ev.evaluate("number.parse_int('42px')") == 42
    assert ev.evaluate("number.parse_float('abc')") is None
    assert ev.evaluate("uri.encode_component('a b&c')") == "a%20b%26c"
    assert ev.evaluate("re.sub('[0-9]', '#', 'a1b2')") == "a#b#"


def test_f_strings():
    ev = _evaluator()
    assert ev.evaluate("f'{name}!'", {"name": "Ada"}) == "Ada!"
    assert ev.evaluate("f'{n:>3}'", {"n": 5}) == "  5"


def test_syntax_errors():
    ev = _evaluator()
    with pytest.raises(ExpressionSyntaxError):
        ev.evaluate("1 +")
    with pytest.raises(ExpressionSyntaxError):
        ev.evaluate("   ")


def test_runtime_failure_is_wrapped():
    with pytest.raises(ExpressionRuntimeError) as info:
        _evaluator().evaluate("1 / 0")
    assert "ZeroDivisionError" in info.value.message
    assert isinstance(info.value.__cause__, ZeroDivisionError)


def test_length_limit_applies_before_parsing():
    ev = _evaluator(max_expression_length=10)
    assert ev.evaluate("1 + 1") == 2
    with pytest.raises(ExpressionLengthError):
        ev.evaluate("1 + 1 + 1 + 1")
    with pytest.raises(ExpressionLengthError):
        ev.evaluate("this is ( not valid python")


@pytest.mark.parametrize(
    "source",
    [
        "__import__('os')",
        "os.system('ls')",
        "open('/etc/passwd')",
        "().__class__",
        "eval('1')",
        "x.__dict__",
        "getattr(x, 'y')",
        "(lambda: 1).__code__",
        "x._private",
        "(y := 1)",
    ],
)
def test_forbidden_sources(source):
    with pytest.raises(ForbiddenPatternError):
        _evaluator().evaluate(source, {"x": {"y": 1}})


def test_forbidden_words_inside_strings_are_allowed():
    assert _evaluator().evaluate("'open' + ' house'") == "open house"


def test_forbidden_check_runs_before_context_is_read():
    class ExplodingContext(Mapping):
        def __getitem__(self, key):
            raise AssertionError("context was read")

        def __iter__(self):
            raise AssertionError("context was read")

        def __len__(self):
            raise AssertionError("context was read")

    with pytest.raises(ForbiddenPatternError):
        _evaluator().evaluate("__import__('os').system('echo hi')", ExplodingContext())


def test_non_whitelisted_callables_are_refused():
    with pytest.raises(ExpressionRuntimeError):
        _evaluator().evaluate("fn()", {"fn": print})


def test_timeout_stops_runaway_expression():
    ev = _evaluator(expression_timeout_ms=100)
    started = time.monotonic()
    with pytest.raises(ExpressionTimeoutError) as info:
        ev.evaluate("sum(i * i for i in range(1000000))")
    assert info.value.timeout_ms == 100
    assert isinstance(info.value, ExpressionRuntimeError)
    assert time.monotonic() - started < 2.0


def test_size_guards():
    with pytest.raises(ExpressionRuntimeError):
        _evaluator(max_range_size=10).evaluate("list(range(11))")
    with pytest.raises(ExpressionRuntimeError):
        _evaluator(max_sequence_length=100).evaluate("'ab' * 1000")
    with pytest.raises(ExpressionRuntimeError):
        _evaluator().evaluate("10 ** 1000000")
    assert _evaluator(max_range_size=10).evaluate("list(range(3))") == [0, 1, 2]


def test_context_values_cannot_be_mutated():
    ev = _evaluator()
    data = {"items": [1, 2, 3]}
    with pytest.raises(ExpressionRuntimeError):
        ev.evaluate("input.items.append(4)", {"input": data})
    with pytest.raises(ExpressionRuntimeError):
        ev.evaluate("input.update({'x': 1})", {"input": data})
    assert data == {"items": [1, 2, 3]}


def test_results_are_plain_mutable_copies():
    data = {"items": [1, 2, 3]}
    result = _evaluator().evaluate("input.items", {"input": data})
    assert type(result) is list
    result.append(4)
    assert data == {"items": [1, 2, 3]}


def test_interpolate():
    ev = _evaluator()
    ctx = {"user": {"name": "Ada"}, "count": 3}
    assert ev.interpolate("Hello {{ user.name }}, you have {{ count }} items", ctx) == "Hello Ada, you have 3 items"
    assert ev.interpolate("no markers", ctx) == "no markers"


def test_interpolate_renders_values():
    ctx = {"flag": True, "nothing": None, "rec": {"a": 1}}
    assert _evaluator().interpolate("{{ flag }}|{{ nothing }}|{{ rec }}", ctx) == 'true||{"a": 1}'


def test_unterminated_marker_is_literal():
    ev = _evaluator()
    assert ev.interpolate("Total: {{ count", {"count": 1}) == "Total: {{ count"
    assert ev.interpolate("A {{ x }} B {{ y", {"x": 1}) == "A 1 B {{ y"


def test_interpolate_propagates_errors():
    with pytest.raises(ForbiddenPatternError):
        _evaluator().interpolate("{{ __import__('os') }}")


def test_render_value():
    assert render_value(False) == "false"
    assert render_value(None) == ""
    assert render_value([1, "a"]) == '[1, "a"]'
    assert render_value(3.5) == "3.5"


@pytest.mark.parametrize(
    "source",
    [
        "(10 ** 10000) ** 5000",
        "1 << 2000000",
        "(2 ** 600000) * (2 ** 600000)",
    ],
)
def test_integer_results_are_size_capped(source):
    started = time.monotonic()
    with pytest.raises(ExpressionRuntimeError) as info:
        _evaluator().evaluate(source)
    assert "bits" in info.value.message
    assert time.monotonic() - started < 1.0


def test_integer_arithmetic_within_budget():
    ev = _evaluator()
    assert ev.evaluate("2 ** 100") == 2**100
    assert ev.evaluate("1 << 64") == 2**64
    assert ev.evaluate("(-3) ** 3") == -27
    assert ev.evaluate("2 ** -1") == 0.5


def test_regex_calls_get_the_remaining_deadline(monkeypatch):
    seen = {}

    def slow_search(pattern, string, **kwargs):
        seen["timeout"] = kwargs.get("timeout")
        raise TimeoutError("regex timed out")

    monkeypatch.setattr(regex, "search", slow_search)
    with pytest.raises(ExpressionTimeoutError) as info:
        _evaluator(expression_timeout_ms=500).evaluate("re.search('a', 'b')")
    assert info.value.timeout_ms == 500
    assert 0 < seen["timeout"] <= 0.5


def test_catastrophic_pattern_stops_at_the_deadline():
    ev = _evaluator(expression_timeout_ms=200)
    started = time.monotonic()
    try:
        result = ev.evaluate("re.match('(a+)+$', 'a' * 28 + 'b')")
    except ExpressionTimeoutError:
        pass
    else:
        assert result is None
    assert time.monotonic() - started < 2.0


def test_regex_match_objects_are_readable():
    ev = _evaluator()
    assert ev.evaluate("re.search('[0-9]+', 'order 42 shipped').group(0)") == "42"
    assert ev.evaluate("re.findall('[a-z]', 'a1b2')") == ["a", "b"]
    assert ev.evaluate("re.split(',', 'x,y')") == ["x", "y"]
