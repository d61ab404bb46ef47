from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .transport import normalize_response
from .utils import RelayUnavailableError, httpx_client, post_json

logger = logging.getLogger(__name__)


class ScoreRelay:
    """
    Intermediary that forwards {"type": "score", "payload": {...}} messages to
    the scoring service over its own HTTP client and answers with the
    normalized {"ok", "data"} / {"ok": False, "error"} envelope.

    Messages of any other type are ignored (reply is None).
    """

    def __init__(
        self,
        url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_ms: int = 8000,
        owns_client: Optional[bool] = None,
    ) -> None:
        self.url = url
        self.timeout_ms = timeout_ms
        self._client = client
        self._owns_client = client is None if owns_client is None else owns_client
        self._running = False

    @classmethod
    def from_config(cls, cfg) -> "ScoreRelay":
        return cls(cfg.score_api, client=httpx_client(cfg), timeout_ms=cfg.post_timeout_ms, owns_client=True)

    @property
    def running(self) -> bool:
        return self._running and self._client is not None and not self._client.is_closed

    def start(self) -> None:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_ms / 1000.0))
            self._owns_client = True
        self._running = True

    async def aclose(self) -> None:
        self._running = False
        if self._owns_client and self._client is not None:
            await self._client.aclose()

    async def __aenter__(self) -> "ScoreRelay":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def handle(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not isinstance(message, dict) or message.get("type") != "score":
            return None
        if not self.running:
            raise RelayUnavailableError("Relay is not running")

        res = await post_json(self._client, self.url, message.get("payload") or {}, timeout_ms=self.timeout_ms)
        if res.status == 0:
            logger.error("Relay fetch failed: %s", res.error)
            return {"ok": False, "error": res.error or "Fetch failed"}
        if res.data is None:
            logger.error("Invalid JSON from scoring service (HTTP %s)", res.status)
            return {"ok": False, "error": "Invalid JSON from scoring service"}
        if not res.ok:
            return {"ok": False, "error": f"HTTP {res.status}"}
        return normalize_response(res.data).as_dict()
