import random

import pytest
from tenacity import RetryCallState

from flowscorer.retry import RetryPolicy


def test_delay_never_below_exponential_floor():
    policy = RetryPolicy(base_ms=600, cap_exponent=5, jitter_ms=250, rng=random.Random(7))
    for n in range(0, 12):
        floor = 600 * 2 ** min(n, 5)
        for _ in range(20):
            d = policy.delay_for(n)
            assert floor <= d <= floor + 250
            assert d >= 600


def test_floor_is_non_decreasing_and_caps():
    policy = RetryPolicy(base_ms=600, cap_exponent=5, jitter_ms=0)
    delays = [policy.delay_for(n) for n in range(0, 9)]
    assert delays[:6] == [600, 1200, 2400, 4800, 9600, 19200]
    assert delays == sorted(delays)
    # past the cap exponent the delay stays flat
    assert delays[5] == delays[6] == delays[8] == 19200


def test_jitter_is_capped_at_base_so_delays_never_decrease():
    policy = RetryPolicy(base_ms=10, cap_exponent=5, jitter_ms=5000, rng=random.Random(3))
    assert policy.jitter_ms == 10
    for _ in range(50):
        delays = [policy.delay_for(n) for n in range(0, 6)]
        assert delays == sorted(delays)


def test_negative_attempt_is_treated_as_first():
    policy = RetryPolicy(base_ms=600, jitter_ms=0)
    assert policy.delay_for(-3) == 600


def test_policy_is_a_tenacity_wait_strategy():
    policy = RetryPolicy(base_ms=600, jitter_ms=0)
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    state.attempt_number = 1
    assert policy(state) == pytest.approx(0.6)
    state.attempt_number = 2
    assert policy(state) == pytest.approx(1.2)


def test_from_config(monkeypatch):
    from flowscorer.config import load_config

    monkeypatch.setenv("RETRY_BASE_DELAY_MS", "100")
    monkeypatch.setenv("RETRY_CAP_EXPONENT", "2")
    monkeypatch.setenv("RETRY_JITTER_MS", "0")
    monkeypatch.setenv("MAX_ATTEMPTS", "4")
    policy = RetryPolicy.from_config(load_config())
    assert [policy.delay_for(n) for n in range(4)] == [100, 200, 400, 400]
    assert policy.max_attempts == 4
