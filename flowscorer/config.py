from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from .utils import getenv_bool, getenv_float, getenv_int, getenv_str

# ---------- Project Paths ----------
PROJECT_ROOT: Path = Path(__file__).resolve().parents[1]
LOG_DIR: Path = PROJECT_ROOT / "logs"
LOG_FILE: Path = LOG_DIR / "scorer.log"

DEFAULT_SCORE_API = "https://sableye.serviceslab.click/score"


# ---------- Config dataclass ----------
@dataclass(frozen=True)
class Config:
    # Scoring endpoint
    score_api: str
    user_agent: str

    # Concurrency
    max_concurrent: int

    # Retry / backoff
    max_attempts: int
    retry_base_delay_ms: int
    retry_cap_exponent: int
    retry_jitter_ms: int

    # Transport
    direct_timeout_ms: int
    post_timeout_ms: int
    relay_enabled: bool

    # Badge thresholds
    good_threshold: float
    warn_threshold: float

    # Discovery
    poll_interval_ms: int

    # Paths
    project_root: Path
    log_file: Path


# ---------- Loader ----------
def load_config() -> Config:
    # jitter is capped at the base delay
    base_ms = getenv_int("RETRY_BASE_DELAY_MS", 600, 10, 60000)

    cfg = Config(
        score_api=getenv_str("SCORE_API", DEFAULT_SCORE_API),
        user_agent=getenv_str("SCORER_USER_AGENT", "flowscorer/0.1 (+httpx)"),

        # Three in-flight requests keeps the scoring service responsive.
        max_concurrent=getenv_int("MAX_CONCURRENT", 3, 1, 64),

        # retry/backoff
        max_attempts=getenv_int("MAX_ATTEMPTS", 3, 1, 10),
        retry_base_delay_ms=base_ms,
        retry_cap_exponent=getenv_int("RETRY_CAP_EXPONENT", 5, 0, 10),
        retry_jitter_ms=min(getenv_int("RETRY_JITTER_MS", 250, 0, 5000), base_ms),

        # transport
        direct_timeout_ms=getenv_int("DIRECT_TIMEOUT_MS", 9000, 500, 120000),
        post_timeout_ms=getenv_int("POST_TIMEOUT_MS", 8000, 500, 120000),
        relay_enabled=getenv_bool("RELAY_ENABLED", True),

        # badge thresholds (score >= good → green, >= warn → amber, else red)
        good_threshold=getenv_float("SCORE_GOOD_THRESHOLD", 60.0, 0.0, 100.0),
        warn_threshold=getenv_float("SCORE_WARN_THRESHOLD", 30.0, 0.0, 100.0),

        poll_interval_ms=getenv_int("POLL_INTERVAL_MS", 1000, 100, 60000),

        # paths
        project_root=PROJECT_ROOT,
        log_file=Path(getenv_str("LOG_FILE", str(LOG_FILE))),
    )
    return cfg
