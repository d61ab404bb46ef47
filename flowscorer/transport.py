from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx

from .models import FlowRecord, TransportResponse
from .utils import (
    InvalidResponseError,
    RelayUnavailableError,
    TransientScoringError,
    error_message,
    http_status_to_exc,
    post_json,
)

logger = logging.getLogger(__name__)

INVALID_JSON = "Invalid JSON"


def normalize_response(raw: Any) -> TransportResponse:
    """
    Fold every accepted response shape into TransportResponse:
      - {"ok": ..., "data": ..., "error": ...} envelopes pass through
      - a bare {"score": n, "reason": "..."} becomes ok=True with that data
      - anything else is a parse failure
    """
    if isinstance(raw, TransportResponse):
        return raw
    if not isinstance(raw, dict):
        return TransportResponse(ok=False, error=INVALID_JSON)
    if "ok" in raw:
        data = raw.get("data")
        return TransportResponse(
            ok=bool(raw["ok"]),
            data=data if isinstance(data, dict) else None,
            error=raw.get("error"),
        )
    if "score" in raw:
        return TransportResponse(ok=True, data={"score": raw["score"], "reason": raw.get("reason")})
    return TransportResponse(ok=False, error=INVALID_JSON)


# ---------- Channels ----------

class ScoreChannel:
    """One way of getting a record to the scoring service."""

    name = "channel"

    def available(self) -> bool:
        return True

    async def send(self, record: FlowRecord) -> TransportResponse:
        raise NotImplementedError


class RelayChannel(ScoreChannel):
    """
    Primary channel: hand the record to the intermediary relay, which owns its
    own network egress, and wait for its reply.
    """

    name = "relay"

    def __init__(self, relay) -> None:
        self.relay = relay

    def available(self) -> bool:
        return self.relay is not None and getattr(self.relay, "running", True)

    async def send(self, record: FlowRecord) -> TransportResponse:
        message = {"type": "score", "payload": record.to_payload()}
        try:
            reply = await self.relay.handle(message)
        except RelayUnavailableError as e:
            return TransportResponse(ok=False, error=error_message(e))
        except Exception as e:
            logger.debug("relay raised for row %s", record.id, exc_info=True)
            return TransportResponse(ok=False, error=error_message(e))
        if not reply:
            return TransportResponse(ok=False, error="No response")
        return normalize_response(reply)


class DirectChannel(ScoreChannel):
    """Secondary channel: POST the record straight to the scoring endpoint."""

    name = "direct"

    def __init__(self, client: httpx.AsyncClient, url: str, timeout_ms: int = 9000) -> None:
        self.client = client
        self.url = url
        self.timeout_ms = timeout_ms

    def available(self) -> bool:
        return not self.client.is_closed

    async def _post(self, record: FlowRecord) -> Any:
        res = await post_json(self.client, self.url, record.to_payload(), timeout_ms=self.timeout_ms)
        if res.status == 0:
            raise TransientScoringError(res.error or "Fetch failed")
        exc = http_status_to_exc(res.status)
        if exc is not None:
            raise exc
        if res.data is None:
            raise InvalidResponseError(INVALID_JSON)
        return res.data

    async def send(self, record: FlowRecord) -> TransportResponse:
        try:
            raw = await self._post(record)
        except TransientScoringError as e:
            return TransportResponse(ok=False, error=error_message(e))
        return normalize_response(raw)


# ---------- Transport ----------

class Transport:
    """
    Tries each channel in order within ONE logical attempt; the first channel
    that yields ok+data wins. Falling through to the next channel does not
    count as a retry.
    """

    def __init__(self, channels: Sequence[ScoreChannel]) -> None:
        self.channels = list(channels)

    async def send(self, record: FlowRecord, attempt: int = 0) -> TransportResponse:
        last: Optional[TransportResponse] = None
        for channel in self.channels:
            if not channel.available():
                continue
            res = await channel.send(record)
            if res.succeeded:
                return res
            logger.warning(
                "%s channel failed for row %s (attempt %d): %s",
                channel.name, record.id, attempt + 1, res.error or res.as_dict(),
            )
            last = res
        return last or TransportResponse(ok=False, error="No transport channel available")


def build_transport(cfg, client: httpx.AsyncClient, relay=None) -> Transport:
    channels: list[ScoreChannel] = []
    if relay is not None and cfg.relay_enabled:
        channels.append(RelayChannel(relay))
    channels.append(DirectChannel(client, cfg.score_api, timeout_ms=cfg.direct_timeout_ms))
    return Transport(channels)
