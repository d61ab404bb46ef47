import os
import pytest

from flowscorer.config import DEFAULT_SCORE_API, load_config


def _clear_env(keys):
    for k in keys:
        os.environ.pop(k, None)


def test_load_config_defaults(monkeypatch):
    # clear potentially noisy env vars
    _clear_env([
        "SCORE_API",
        "MAX_CONCURRENT",
        "MAX_ATTEMPTS",
        "RETRY_BASE_DELAY_MS",
        "RETRY_CAP_EXPONENT",
        "RETRY_JITTER_MS",
        "DIRECT_TIMEOUT_MS",
        "POST_TIMEOUT_MS",
        "RELAY_ENABLED",
        "SCORE_GOOD_THRESHOLD",
        "SCORE_WARN_THRESHOLD",
        "POLL_INTERVAL_MS",
        "LOG_FILE",
    ])

    cfg = load_config()

    assert cfg.score_api == DEFAULT_SCORE_API
    assert cfg.max_concurrent == 3
    assert cfg.max_attempts == 3

    # backoff: 600ms base, exponent capped at 5, up to 250ms jitter
    assert cfg.retry_base_delay_ms == 600
    assert cfg.retry_cap_exponent == 5
    assert cfg.retry_jitter_ms == 250

    # direct channel timeout vs generic POST helper timeout
    assert cfg.direct_timeout_ms == 9000
    assert cfg.post_timeout_ms == 8000
    assert cfg.relay_enabled is True

    assert cfg.good_threshold == 60.0
    assert cfg.warn_threshold == 30.0
    assert cfg.log_file.name == "scorer.log"


def test_load_config_env_overrides_and_bounds(monkeypatch):
    # push extremes to test clamping
    monkeypatch.setenv("MAX_CONCURRENT", "999")
    monkeypatch.setenv("MAX_ATTEMPTS", "0")
    monkeypatch.setenv("RETRY_JITTER_MS", "-5")
    monkeypatch.setenv("DIRECT_TIMEOUT_MS", "10")
    monkeypatch.setenv("RELAY_ENABLED", "false")
    monkeypatch.setenv("SCORE_GOOD_THRESHOLD", "75.5")
    monkeypatch.setenv("SCORE_API", "http://localhost:9999/score")

    cfg = load_config()

    # check clamps
    assert cfg.max_concurrent == 64
    assert cfg.max_attempts == 1
    assert cfg.retry_jitter_ms == 0
    assert cfg.direct_timeout_ms == 500

    # booleans / floats / strings honored
    assert cfg.relay_enabled is False
    assert cfg.good_threshold == pytest.approx(75.5)
    assert cfg.score_api == "http://localhost:9999/score"


def test_load_config_ignores_garbage(monkeypatch):
    monkeypatch.setenv("MAX_CONCURRENT", "three")
    monkeypatch.setenv("SCORE_WARN_THRESHOLD", "n/a")
    monkeypatch.setenv("SCORE_API", "   ")

    cfg = load_config()
    assert cfg.max_concurrent == 3
    assert cfg.warn_threshold == 30.0
    assert cfg.score_api == DEFAULT_SCORE_API


def test_jitter_never_exceeds_base_delay(monkeypatch):
    monkeypatch.setenv("RETRY_BASE_DELAY_MS", "10")
    monkeypatch.setenv("RETRY_JITTER_MS", "5000")
    assert load_config().retry_jitter_ms == 10

    # the 250ms default is capped too
    monkeypatch.delenv("RETRY_JITTER_MS")
    monkeypatch.setenv("RETRY_BASE_DELAY_MS", "100")
    assert load_config().retry_jitter_ms == 100
