import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Union

import pytest

from flowscorer.models import FlowRecord, RowStateStore, TransportResponse
from flowscorer.reconciler import ResultReconciler
from flowscorer.retry import RetryPolicy
from flowscorer.scoring_queue import ScoringQueue


@dataclass(frozen=True)
class Row:
    row_id: str


class FakePresenter:
    """Records renders; rows listed in `missing` have no mount point."""

    def __init__(self):
        self.missing: set = set()
        self.renders: List[tuple] = []

    def render(self, row, text, category, tooltip=""):
        if row.row_id in self.missing:
            return False
        self.renders.append((row.row_id, text, category, tooltip))
        return True

    def renders_for(self, row_id):
        return [r for r in self.renders if r[0] == row_id]


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


Step = Union[TransportResponse, Exception]


class ScriptedTransport:
    """
    Plays back a per-row script of responses/exceptions; the last step repeats.
    Optional `gate` holds every send until it is set.
    """

    def __init__(self, script: Optional[Dict[str, Sequence[Step]]] = None, default: Optional[Step] = None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.default = default or TransportResponse(ok=True, data={"score": 75, "reason": "ok"})
        self.calls: List[tuple] = []
        self.gate: Optional[asyncio.Event] = None
        self.in_flight = 0
        self.peak_in_flight = 0

    async def send(self, record, attempt=0):
        self.calls.append((record.id, attempt))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            steps = self.script.get(record.id)
            if steps:
                step = steps.pop(0) if len(steps) > 1 else steps[0]
            else:
                step = self.default
            if isinstance(step, Exception):
                raise step
            return step
        finally:
            self.in_flight -= 1

    def calls_for(self, row_id):
        return [c for c in self.calls if c[0] == row_id]


def simple_extract(row):
    if row.row_id.startswith("bad"):
        return None
    return FlowRecord(id=row.row_id, fields={"sourceIPs": ["10.0.0.1"], "portProtocol": "443 TCP"})


@pytest.fixture
def presenter():
    return FakePresenter()


@pytest.fixture
def states():
    return RowStateStore()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def make_queue(presenter, states, sleeper):
    def _make(transport, *, max_concurrent=3, max_attempts=3, extract=simple_extract):
        reconciler = ResultReconciler(presenter, states)
        policy = RetryPolicy(base_ms=600, cap_exponent=5, jitter_ms=0, max_attempts=max_attempts)
        return ScoringQueue(
            extract, transport, reconciler, states,
            max_concurrent=max_concurrent, policy=policy, sleep=sleeper,
        )
    return _make


def row_html(row_id: str, *, with_cell: bool = True) -> str:
    cell = (
        '<div data-tid="comp-grid-column-reportedpolicy-policydecision">Allowed</div>'
        if with_cell else ""
    )
    return f"""
    <div data-tid="comp-grid-row" data-handler-id="{row_id}">
      <div data-tid="comp-grid-column-source">
        <div data-tid="comp-pill-workload"><span data-tid="elem-text">  web-01 </span></div>
        <div data-tid="cloud-header">
          <span data-tid="cloud-header-title">vpc-a</span>
          <span data-tid="cloud-header-subtitle">us-east</span>
        </div>
      </div>
      <div data-tid="comp-grid-column-sourcelabels"><a>env:prod</a><a> app:web </a></div>
      <div data-tid="comp-grid-column-sourceprocess">nginx</div>
      <div data-tid="comp-grid-column-target">
        <div data-tid="comp-pill-unmanaged">10.0.0.5</div>
      </div>
      <div data-tid="comp-grid-column-targetfqdn">db.internal</div>
      <div data-tid="comp-grid-column-service"><div data-tid="comp-pill-service">postgres</div></div>
      <div data-tid="comp-grid-column-portprotocol">5432   TCP</div>
      <div data-tid="comp-grid-column-flowsandbytes">12 flows</div>
      {cell}
    </div>
    """


def grid_html(*rows: str) -> str:
    return f'<html><body><div data-tid="comp-grid">{"".join(rows)}</div></body></html>'


@pytest.fixture
def make_grid():
    def _make(*row_ids, missing_cells=()):
        return grid_html(*(row_html(r, with_cell=r not in missing_cells) for r in row_ids))
    return _make
