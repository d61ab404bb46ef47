from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple


class RowLike(Protocol):
    """Anything the pipeline can score: it only needs a stable row identifier."""
    row_id: str


# ---------------------------------------------------------------------------
#  Records
# ---------------------------------------------------------------------------

# Field names sent to the scoring service (wire names, camelCase on purpose).
LIST_FIELDS: Tuple[str, ...] = (
    "sourceIPs", "sourceLabels", "targetIPs", "targetLabels", "services",
)
TEXT_FIELDS: Tuple[str, ...] = (
    "sourceProcess", "sourceUser",
    "targetProcess", "targetUser", "targetFQDN",
    "portProtocol",
    "flows", "connections", "firstDetected", "lastDetected",
)


@dataclass(frozen=True)
class FlowRecord:
    """
    Immutable snapshot of one grid row, taken at admission time.
    `fields` holds tuples for list fields and plain strings for text fields.
    """
    id: str
    fields: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen = {
            k: tuple(v) if isinstance(v, (list, tuple)) else v
            for k, v in dict(self.fields).items()
        }
        object.__setattr__(self, "fields", MappingProxyType(frozen))

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id}
        for k, v in self.fields.items():
            payload[k] = list(v) if isinstance(v, tuple) else v
        return payload


# ---------------------------------------------------------------------------
#  Row state
# ---------------------------------------------------------------------------

class Flag(Enum):
    UNSET = None
    OFF = "0"
    ON = "1"


@dataclass
class RowState:
    scored: Flag = Flag.UNSET
    scoring: Flag = Flag.UNSET
    score_value: Optional[str] = None
    score_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.scored is Flag.ON

    @property
    def is_busy(self) -> bool:
        return self.scoring is Flag.ON

    @property
    def has_stash(self) -> bool:
        return bool(self.score_value)

    def stash(self, score: Any, reason: Optional[str]) -> None:
        self.score_value = "" if score is None else str(score)
        self.score_reason = reason or ""
        self.scored = Flag.OFF

    def clear_stash(self) -> None:
        self.score_value = None
        self.score_reason = None


class RowStateStore:
    """In-memory row states keyed by row identifier. Lives as long as the page."""

    def __init__(self) -> None:
        self._states: Dict[str, RowState] = {}

    def get(self, row_id: str) -> RowState:
        st = self._states.get(row_id)
        if st is None:
            st = self._states[row_id] = RowState()
        return st

    def peek(self, row_id: str) -> Optional[RowState]:
        return self._states.get(row_id)

    def forget(self, row_id: str) -> None:
        self._states.pop(row_id, None)

    def reset(self) -> None:
        self._states.clear()

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, row_id: object) -> bool:
        return row_id in self._states


# ---------------------------------------------------------------------------
#  Queue items & results
# ---------------------------------------------------------------------------

@dataclass
class WorkItem:
    row: RowLike
    record: FlowRecord
    # state the item was admitted under; a reset orphans it
    state: RowState = field(default_factory=RowState)
    attempts: int = 0


@dataclass(frozen=True)
class ScoreResult:
    score: Optional[float] = None
    reason: Optional[str] = None
    error_reason: Optional[str] = None

    @classmethod
    def failure(cls, error_reason: str) -> "ScoreResult":
        return cls(error_reason=error_reason)

    @classmethod
    def from_data(cls, data: Mapping[str, Any]) -> "ScoreResult":
        return cls(score=data.get("score"), reason=data.get("reason"))

    @property
    def is_failure(self) -> bool:
        return self.error_reason is not None


@dataclass(frozen=True)
class TransportResponse:
    ok: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.ok and bool(self.data)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": self.ok, "data": self.data}
        if self.error is not None:
            out["error"] = self.error
        return out
