from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

from bs4 import BeautifulSoup
from bs4.element import Tag

from flowscorer.reconciler import BadgeCategory
from .grid_document import RowHandle

logger = logging.getLogger(__name__)

BADGE_CLASS = "score-badge"

# Medium-soft palette
BADGE_COLORS: Dict[BadgeCategory, str] = {
    BadgeCategory.BAD: "#e67c73",
    BadgeCategory.WARN: "#ffd65c",
    BadgeCategory.GOOD: "#6fcf97",
    BadgeCategory.ERROR: "#6c757d",
}

# Reported view first, then draft, then progressively looser matches.
DECISION_CELL_SELECTORS: Tuple[str, ...] = (
    '[data-tid="comp-grid-column-reportedpolicy-policydecision"]',
    '[data-tid="comp-grid-column-policy-policydecision"]',
    '[data-tid*="reportedpolicy-policydecision"]',
    '[data-tid*="policy-policydecision"]',
    '[data-tid*="policydecision"]',
)

_BADGE_STYLE = (
    "display:inline-block;margin-left:6px;padding:2px 6px;border-radius:4px;"
    "font-weight:bold;font-size:12px;color:#fff;background:{bg};"
)


def decision_cell(row: Tag) -> Optional[Tag]:
    for sel in DECISION_CELL_SELECTORS:
        cell = row.select_one(sel)
        if cell is not None:
            return cell
    return None


class BadgeRenderer:
    """Mounts a score badge into a row's policy-decision cell. Returns False when there is no cell."""

    def __init__(self, colors: Optional[Dict[BadgeCategory, str]] = None) -> None:
        self.colors = dict(BADGE_COLORS if colors is None else colors)

    def render(self, row: RowHandle, text: str, category: BadgeCategory, tooltip: str = "") -> bool:
        tag = row.tag
        if tag is None:
            return False
        cell = decision_cell(tag)
        if cell is None:
            return False

        for old in cell.select(f".{BADGE_CLASS}"):
            old.decompose()

        factory = BeautifulSoup("", "html.parser")
        badge = factory.new_tag("div", attrs={
            "class": BADGE_CLASS,
            "data-category": category.value,
            "style": _BADGE_STYLE.format(bg=self.colors.get(category, BADGE_COLORS[BadgeCategory.ERROR])),
        })
        badge.string = text
        if tooltip:
            badge["title"] = tooltip
        cell.append(badge)
        return True


def badge_of(row: RowHandle) -> Optional[Tag]:
    """Currently mounted badge for a row, if any."""
    tag = row.tag
    if tag is None:
        return None
    return tag.select_one(f".{BADGE_CLASS}")
