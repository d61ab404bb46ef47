from __future__ import annotations

import random
from typing import Optional

from tenacity import RetryCallState
from tenacity.wait import wait_base


class RetryPolicy(wait_base):
    """
    Capped exponential backoff with additive jitter:

        delay_for(n) = base_ms * 2 ** min(n, cap_exponent) + uniform(0, jitter_ms)

    `n` is the 0-based attempt that just failed. Instances plug straight into
    tenacity as a `wait=` strategy (tenacity counts attempts from 1 and wants seconds).
    """

    def __init__(
        self,
        base_ms: int = 600,
        cap_exponent: int = 5,
        jitter_ms: int = 250,
        max_attempts: int = 3,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.base_ms = max(1, int(base_ms))
        self.cap_exponent = max(0, int(cap_exponent))
        # jitter <= base keeps delay_for non-decreasing up to the cap
        self.jitter_ms = min(max(0, int(jitter_ms)), self.base_ms)
        self.max_attempts = max(1, int(max_attempts))
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, cfg, rng: Optional[random.Random] = None) -> "RetryPolicy":
        return cls(
            base_ms=cfg.retry_base_delay_ms,
            cap_exponent=cfg.retry_cap_exponent,
            jitter_ms=cfg.retry_jitter_ms,
            max_attempts=cfg.max_attempts,
            rng=rng,
        )

    def floor_for(self, attempt: int) -> int:
        return self.base_ms * 2 ** min(max(0, attempt), self.cap_exponent)

    def delay_for(self, attempt: int) -> int:
        jitter = int(self._rng.uniform(0, self.jitter_ms)) if self.jitter_ms else 0
        return self.floor_for(attempt) + jitter

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.delay_for(retry_state.attempt_number - 1) / 1000.0
