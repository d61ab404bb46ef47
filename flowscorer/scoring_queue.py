from __future__ import annotations

import asyncio
import logging
from collections import Counter, deque
from typing import Awaitable, Callable, Deque, Optional, Set

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, retry_if_result, stop_after_attempt

from .models import Flag, FlowRecord, RowLike, RowStateStore, ScoreResult, TransportResponse, WorkItem
from .reconciler import TERMINAL_FAILURE_REASON, ResultReconciler
from .retry import RetryPolicy
from .transport import Transport
from .utils import CURRENT_ROW_ID

logger = logging.getLogger(__name__)

Extract = Callable[[RowLike], Optional[FlowRecord]]


def _failed(res: Optional[TransportResponse]) -> bool:
    return res is None or not res.succeeded


class ScoringQueue:
    """
    Bounded-concurrency scoring queue.

    - admit(): dedup + extract + enqueue, all synchronous (no await between the
      state check and scoring=ON).
    - pump(): starts one task per pending item while a slot is free; every
      finished task frees its slot and pumps again, so 0 <= active <= max_concurrent
      and no slot idles while work is pending.
    - each task runs the attempt loop (tenacity) to success or exhaustion; row
      removal never cancels it, only reset() does.
    """

    def __init__(
        self,
        extract: Extract,
        transport: Transport,
        reconciler: ResultReconciler,
        states: RowStateStore,
        *,
        max_concurrent: int = 3,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.extract = extract
        self.transport = transport
        self.reconciler = reconciler
        self.states = states
        self.max_concurrent = max(1, int(max_concurrent))
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

        self._pending: Deque[WorkItem] = deque()
        self._tasks: Set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

        self.active = 0
        self.peak_active = 0
        self.stats: Counter = Counter()

    # ---------------- Admission ----------------

    @property
    def pending(self) -> int:
        return len(self._pending)

    def admit(self, row: RowLike) -> bool:
        st = self.states.get(row.row_id)
        if st.is_busy or st.is_terminal:
            return False

        record = self.extract(row)
        if record is None:
            return False

        st.scoring = Flag.ON
        self._pending.append(WorkItem(row=row, record=record, state=st))
        self.stats["admitted"] += 1
        logger.info("Queued row %s (pending=%d active=%d)", row.row_id, len(self._pending), self.active)
        self.pump()
        return True

    # ---------------- Dispatch ----------------

    def pump(self) -> None:
        while self.active < self.max_concurrent and self._pending:
            item = self._pending.popleft()
            self.active += 1
            self.peak_active = max(self.peak_active, self.active)
            self._idle.clear()
            task = asyncio.get_running_loop().create_task(self._run(item), name=f"score:{item.record.id}")
            self._tasks.add(task)
            task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        # runs even for tasks cancelled before their first step
        self._tasks.discard(task)
        self.active -= 1
        self.pump()
        if not self.active and not self._pending:
            self._idle.set()

    async def _run(self, item: WorkItem) -> None:
        CURRENT_ROW_ID.set(item.record.id)
        try:
            await self._process(item)
        except Exception:
            logger.exception("Unexpected error while scoring row %s", item.record.id)
            item.state.scoring = Flag.OFF

    async def join(self) -> None:
        """Wait until nothing is pending or in flight."""
        while self._pending or self.active:
            await self._idle.wait()

    def reset(self) -> None:
        """
        Drop all row state, pending items and in-flight tasks, as a page reload
        would. Cancelled tasks only ever touch the orphaned state they were
        admitted with.
        """
        dropped = len(self._pending)
        self._pending.clear()
        cancelled = len(self._tasks)
        for task in list(self._tasks):
            task.cancel()
        self.states.reset()
        if not self.active:
            self._idle.set()
        logger.info("Reset: dropped %d pending, cancelled %d in flight", dropped, cancelled)

    # ---------------- Attempt loop ----------------

    async def _attempt(self, item: WorkItem) -> TransportResponse:
        attempt = item.attempts
        logger.info("Sending row %s (attempt %d/%d)", item.record.id, attempt + 1, self.policy.max_attempts)
        try:
            return await self.transport.send(item.record, attempt)
        finally:
            item.attempts += 1

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            why = repr(outcome.exception())
        else:
            res = outcome.result() if outcome is not None else None
            why = res.error if res is not None else "no response"
        wait_s = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning("Scoring failed for row %s, backing off %dms: %s",
                       retry_state.args[0].record.id if retry_state.args else "?", int(wait_s * 1000), why)

    async def _process(self, item: WorkItem) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self.policy,
            retry=retry_if_exception_type(Exception) | retry_if_result(_failed),
            sleep=self._sleep,
            before_sleep=self._log_backoff,
            retry_error_callback=lambda _state: None,
        )
        res = await retrying(self._attempt, item)
        st = item.state

        if res is not None and res.succeeded:
            logger.info("Response for row %s: %s", item.record.id, res.data)
            if not self.reconciler.apply(item.row, ScoreResult.from_data(res.data), st):
                self.stats["stashed"] += 1
            self.stats["succeeded"] += 1
            st.scoring = Flag.OFF
            return

        logger.error("Row %s exhausted %d attempts", item.record.id, item.attempts)
        self.reconciler.apply(item.row, ScoreResult.failure(TERMINAL_FAILURE_REASON), st)
        self.stats["failed"] += 1
        st.scored = Flag.ON
        st.scoring = Flag.OFF
