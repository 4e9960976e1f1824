from procflow.errors import (
    ExpressionTimeoutError,
    HostError,
    ProcflowError,
    WorkflowTypeError,
)


def test_message_includes_location():
    err = ProcflowError("Something broke", line=3, column=5, file="main.flow")
    assert str(err) == "Something broke (main.flow, line 3, column 5)"
    assert str(ProcflowError("bare")) == "bare"


def test_with_location_keeps_first_location():
    err = ProcflowError("boom")
    assert not err.has_location
    err.with_location("inner.flow", 2, 1)
    err.with_location("outer.flow", 9, 1)
    assert (err.file, err.line, err.column) == ("inner.flow", 2, 1)
    assert err.diagnostics[0]["line"] == 2


def test_codes_and_hierarchy():
    assert ExpressionTimeoutError("slow", timeout_ms=5).code == "PF-1101"
    assert HostError("nope").code == "PF-3001"
    err = WorkflowTypeError("bad shape")
    assert isinstance(err, TypeError)
    assert isinstance(err, ProcflowError)
    assert err.diagnostics == [{"code": "PF-2001", "message": "bad shape", "severity": "error"}]
