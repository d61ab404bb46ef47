from __future__ import annotations

import logging
from enum import Enum
from typing import Any, AsyncIterator, Optional, Protocol, Tuple

from .models import Flag, RowLike, RowState, RowStateStore, ScoreResult

logger = logging.getLogger(__name__)

TERMINAL_FAILURE_REASON = "Scoring failed after retries"


class BadgeCategory(str, Enum):
    GOOD = "good"
    WARN = "warn"
    BAD = "bad"
    ERROR = "error"


class Presenter(Protocol):
    def render(self, row: RowLike, text: str, category: BadgeCategory, tooltip: str) -> bool: ...


def _as_number(score: Any) -> float:
    try:
        return float(score)
    except (TypeError, ValueError):
        return float("nan")


def _fmt(n: float) -> str:
    if n != n:  # NaN
        return "NaN"
    return str(int(n)) if n.is_integer() else f"{n:g}"


def score_badge(score: Any, good: float = 60.0, warn: float = 30.0) -> Tuple[str, BadgeCategory]:
    """Map a numeric score to (badge text, category). Non-numeric scores fall to BAD."""
    n = _as_number(score)
    if n >= good:
        return f"✅ {_fmt(n)}", BadgeCategory.GOOD
    if n >= warn:
        return f"⚠️ {_fmt(n)}", BadgeCategory.WARN
    return f"❗ {_fmt(n)}", BadgeCategory.BAD


ERROR_BADGE_TEXT = "⚠️ ERR"


class ResultReconciler:
    """
    Applies score results onto rows.

    A success whose mount point is missing (the row re-rendered its internals
    while the request was in flight) is stashed on the row state with
    scored=OFF; `try_replay` renders it once the target shows up again.
    Terminal failures are rendered immediately and never stashed.
    """

    def __init__(
        self,
        presenter: Presenter,
        states: RowStateStore,
        *,
        good_threshold: float = 60.0,
        warn_threshold: float = 30.0,
    ) -> None:
        self.presenter = presenter
        self.states = states
        self.good_threshold = good_threshold
        self.warn_threshold = warn_threshold

    def _render_score(self, row: RowLike, score: Any, reason: Optional[str]) -> bool:
        text, category = score_badge(score, self.good_threshold, self.warn_threshold)
        return self.presenter.render(row, text, category, reason or "")

    def apply(self, row: RowLike, result: ScoreResult, state: Optional[RowState] = None) -> bool:
        """
        `state` is the row state the result belongs to; it defaults to the
        current one in the store.
        """
        if result.is_failure:
            rendered = self.presenter.render(
                row, ERROR_BADGE_TEXT, BadgeCategory.ERROR, result.error_reason or "Scoring failed"
            )
            if not rendered:
                logger.warning("Error badge for row %s had no mount point; notification lost", row.row_id)
            return rendered

        st = state if state is not None else self.states.get(row.row_id)
        if self._render_score(row, result.score, result.reason):
            st.scored = Flag.ON
            st.clear_stash()
            logger.info("Rendered score %s for row %s", result.score, row.row_id)
            return True

        st.stash(result.score, result.reason)
        logger.debug("Mount point missing for row %s; stashed score %s", row.row_id, st.score_value)
        return False

    def try_replay(self, row: RowLike) -> bool:
        st = self.states.peek(row.row_id)
        if st is None or not st.has_stash or st.is_terminal:
            return False
        if not self._render_score(row, st.score_value, st.score_reason):
            return False
        st.scored = Flag.ON
        st.clear_stash()
        logger.info("Replayed stashed score for row %s", row.row_id)
        return True

    async def consume(self, events: AsyncIterator[RowLike]) -> int:
        """Drain a stream of 'target available' events; returns how many replays rendered."""
        replayed = 0
        async for row in events:
            if self.try_replay(row):
                replayed += 1
        return replayed
