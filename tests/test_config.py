from procflow.config import ProcflowConfig, load_config


def test_defaults():
    config = load_config({})
    assert config == ProcflowConfig()
    assert config.expression_timeout_ms == 1000
    assert config.max_expression_length == 4000
    assert config.expression_timeout_seconds == 1.0
    assert config.redact_logs is True


def test_environment_overrides():
    config = load_config(
        {
            "PF_EXPRESSION_TIMEOUT_MS": "250",
            "PF_MAX_EXPRESSION_LENGTH": "80",
            "PF_MAX_RANGE_SIZE": "10",
            "PF_MAX_SEQUENCE_LENGTH": "20",
            "PF_LOG_REDACT_MESSAGES": "false",
        }
    )
    assert config.expression_timeout_ms == 250
    assert config.max_expression_length == 80
    assert config.max_range_size == 10
    assert config.max_sequence_length == 20
    assert config.redact_logs is False


def test_invalid_values_fall_back_to_defaults():
    config = load_config({"PF_EXPRESSION_TIMEOUT_MS": "soon", "PF_MAX_RANGE_SIZE": "-5"})
    assert config.expression_timeout_ms == 1000
    assert config.max_range_size == 1_000_000


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("PF_EXPRESSION_TIMEOUT_MS", "42")
    assert load_config().expression_timeout_ms == 42
