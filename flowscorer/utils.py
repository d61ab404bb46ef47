from __future__ import annotations

import asyncio
import json
import os
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, Optional

import httpx

# ========== Environment helpers ==========

def getenv_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return v if v is not None and v.strip() else default

def getenv_int(name: str, default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        val = int(raw)
    except ValueError:
        return default
    if min_val is not None:
        val = max(min_val, val)
    if max_val is not None:
        val = min(max_val, val)
    return val

def getenv_float(name: str, default: float, min_val: Optional[float] = None, max_val: Optional[float] = None) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        val = float(raw)
    except ValueError:
        return default
    if min_val is not None:
        val = max(min_val, val)
    if max_val is not None:
        val = min(max_val, val)
    return val

def getenv_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


# ========== Exceptions ==========

class TransientScoringError(Exception):
    """Retryable transport failure (network error, timeout, non-2xx status)."""

class InvalidResponseError(TransientScoringError):
    """Scoring service answered with a body that is not a recognised JSON shape."""

class RelayUnavailableError(Exception):
    """The intermediary relay is not running or refused the message."""

def http_status_to_exc(status: Optional[int]) -> Optional[Exception]:
    if status is None or 200 <= status < 300:
        return None
    # every non-2xx answer is retryable
    return TransientScoringError(f"HTTP {status}")

def error_message(exc: BaseException) -> str:
    msg = str(exc).strip()
    return msg or type(exc).__name__

# ========== JSON POST helper ==========

@dataclass
class PostResult:
    ok: bool
    status: int
    data: Any = None
    error: Optional[str] = None


def safe_json_loads(s: str) -> Optional[Any]:
    try:
        return json.loads(s)
    except (TypeError, ValueError):
        return None


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    payload: dict,
    timeout_ms: int = 8000,
) -> PostResult:
    """
    POST `payload` as JSON and bound the whole request by `timeout_ms`.

    Never raises for transport problems; timeouts and network errors come back
    as ok=False, status=0 with the underlying message. `data` is the parsed
    JSON body or None when the body is not JSON.
    """
    try:
        resp = await asyncio.wait_for(
            client.post(url, json=payload, headers={"Content-Type": "application/json"}),
            timeout=max(0.001, timeout_ms / 1000.0),
        )
    except asyncio.TimeoutError:
        return PostResult(ok=False, status=0, error=f"Timeout after {timeout_ms}ms")
    except httpx.HTTPError as e:
        return PostResult(ok=False, status=0, error=error_message(e))

    data = safe_json_loads(resp.text)
    return PostResult(ok=resp.is_success, status=resp.status_code, data=data)


def httpx_client(cfg) -> httpx.AsyncClient:
    """
    Return a preconfigured AsyncClient for talking to the scoring endpoint.
    Request timeouts are enforced per call by post_json; the client timeout is a backstop.
    """
    limits = httpx.Limits(max_keepalive_connections=8, max_connections=max(4, cfg.max_concurrent * 2))
    timeout = httpx.Timeout(max(cfg.direct_timeout_ms, cfg.post_timeout_ms) / 1000.0)
    headers = {
        "User-Agent": cfg.user_agent,
        "Accept": "application/json",
    }
    return httpx.AsyncClient(timeout=timeout, limits=limits, headers=headers)


# ========== Per-row log context ==========

# Row currently being scored by this asyncio task (tasks copy context on creation).
CURRENT_ROW_ID: ContextVar[Optional[str]] = ContextVar("CURRENT_ROW_ID", default=None)
