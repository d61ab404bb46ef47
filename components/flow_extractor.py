from __future__ import annotations

import logging
import re
from typing import List, Optional

from bs4.element import Tag

from flowscorer.models import FlowRecord
from .grid_document import ROW_ID_ATTR, RowHandle

logger = logging.getLogger(__name__)

_WS = re.compile(r"\s+")


def normalize(s: Optional[str]) -> str:
    return _WS.sub(" ", s or "").strip()


def pills_from(row: Tag, selector: str) -> List[str]:
    """Text of each matching pill, preferring its inner elem-text node."""
    out: List[str] = []
    for el in row.select(selector):
        inner = el.select_one('[data-tid="elem-text"]')
        text = normalize((inner or el).get_text())
        if text:
            out.append(text)
    return out


def cloud_workloads_from(row: Tag, selector: str) -> List[str]:
    out: List[str] = []
    for el in row.select(selector):
        title_el = el.select_one('[data-tid="cloud-header-title"]')
        sub_el = el.select_one('[data-tid="cloud-header-subtitle"]')
        title = normalize(title_el.get_text() if title_el else "")
        if not title:
            continue
        subtitle = normalize(sub_el.get_text() if sub_el else "")
        out.append(f"{title} ({subtitle})" if subtitle else title)
    return out


def text_of(row: Tag, selector: str) -> str:
    el = row.select_one(selector)
    return normalize(el.get_text() if el else "")


class FlowExtractor:
    """Builds a FlowRecord from a grid row. Pure and synchronous; None means 'do not enqueue'."""

    def extract(self, row: RowHandle) -> Optional[FlowRecord]:
        tag = row.tag
        if tag is None:
            logger.debug("Row %s is detached; nothing to extract", row.row_id)
            return None
        try:
            return self._extract(tag, row.row_id)
        except Exception:
            logger.exception("Extract failed for row %s", row.row_id)
            return None

    def _extract(self, row: Tag, fallback_id: str) -> FlowRecord:
        rid = normalize(row.get(ROW_ID_ATTR)) or fallback_id

        source_ips = (
            pills_from(row, '[data-tid*="source"] [data-tid*="allowlist"]')
            + cloud_workloads_from(row, '[data-tid*="source"] [data-tid="cloud-header"]')
            + pills_from(row, '[data-tid*="source"] [data-tid*="workload"]')
        )
        target_ips = (
            pills_from(row, '[data-tid*="target"] [data-tid*="allowlist"]')
            + cloud_workloads_from(row, '[data-tid*="target"] [data-tid="cloud-header"]')
            + pills_from(row, '[data-tid*="target"] [data-tid*="workload"]')
            + pills_from(row, '[data-tid*="target"] [data-tid*="unmanaged"]')
        )

        fields = {
            # Source
            "sourceIPs": source_ips,
            "sourceLabels": pills_from(row, '[data-tid*="sourcelabels"] a'),
            "sourceProcess": text_of(row, '[data-tid*="sourceprocess"]'),
            "sourceUser": text_of(row, '[data-tid*="sourceuser"]'),
            # Target
            "targetIPs": target_ips,
            "targetLabels": pills_from(row, '[data-tid*="targetlabels"] a'),
            "targetProcess": text_of(row, '[data-tid*="targetprocess"]'),
            "targetUser": text_of(row, '[data-tid*="targetuser"]'),
            "targetFQDN": text_of(row, '[data-tid*="targetfqdn"]'),
            # Service / port
            "services": pills_from(row, '[data-tid*="comp-pill-service"]'),
            "portProtocol": text_of(row, '[data-tid*="portprotocol"]'),
            # Flow metadata
            "flows": text_of(row, '[data-tid*="flowsandbytes"]'),
            "connections": text_of(row, '[data-tid*="connections"]'),
            "firstDetected": text_of(row, '[data-tid*="firstdetected"]'),
            "lastDetected": text_of(row, '[data-tid*="lastdetected"]'),
        }
        record = FlowRecord(id=rid, fields=fields)
        logger.debug("Payload for row %s: %s", rid, record.to_payload())
        return record
