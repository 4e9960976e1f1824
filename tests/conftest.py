import pytest


@pytest.fixture(autouse=True)
def _default_limits(monkeypatch):
    """Keep every test on the default sandbox limits regardless of the caller's shell."""
    for name in (
        "PF_EXPRESSION_TIMEOUT_MS",
        "PF_MAX_EXPRESSION_LENGTH",
        "PF_MAX_RANGE_SIZE",
        "PF_MAX_SEQUENCE_LENGTH",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PF_LOG_REDACT_MESSAGES", "true")
    yield
