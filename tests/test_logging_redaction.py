from procflow.observability.logging_utils import redact_event, redact_metadata, redact_text


def test_text_redaction_default():
    assert redact_text("secret message") == "[REDACTED]"
    assert redact_text("") == ""


def test_text_redaction_disabled(monkeypatch):
    monkeypatch.setenv("PF_LOG_REDACT_MESSAGES", "false")
    assert redact_text("secret message") == "secret message"


def test_explicit_flag_overrides_environment(monkeypatch):
    monkeypatch.setenv("PF_LOG_REDACT_MESSAGES", "false")
    assert redact_text("secret", enabled=True) == "[REDACTED]"


def test_metadata_redaction():
    redacted = redact_metadata({"email": "user@example.com", "other": "ok", "API_KEY": "k"})
    assert redacted["email"] == "[REDACTED]"
    assert redacted["API_KEY"] == "[REDACTED]"
    assert redacted["other"] == "ok"


def test_redact_event_combines_text_and_metadata(monkeypatch):
    event = {"prompt": "hello", "args": {"token": "abc", "x": "y"}, "timeout_ms": 5}
    cleaned = redact_event(event)
    assert cleaned["prompt"] == "[REDACTED]"
    assert cleaned["args"]["token"] == "[REDACTED]"
    assert cleaned["args"]["x"] == "y"
    assert cleaned["timeout_ms"] == 5
    monkeypatch.setenv("PF_LOG_REDACT_MESSAGES", "false")
    assert redact_event(event)["prompt"] == "hello"
