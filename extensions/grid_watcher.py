from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set

from components.grid_document import GridDocument, RowHandle
from flowscorer.reconciler import ResultReconciler
from flowscorer.scoring_queue import ScoringQueue

logger = logging.getLogger("extensions.grid_watcher")

HtmlSource = Callable[[], Awaitable[Optional[str]]]

_CLOSED = object()


class TargetEvents:
    """
    Stream of 'presentation target may be available for row X' events.
    Iterate with `async for`; iteration ends after `close()`.
    """

    def __init__(self) -> None:
        self._q: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def publish(self, row: RowHandle) -> None:
        if not self._closed:
            self._q.put_nowait(row)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._q.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[RowHandle]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[RowHandle]:
        while True:
            item = await self._q.get()
            if item is _CLOSED:
                return
            yield item


class GridWatcher:
    """
    Discovery source. Each ingested snapshot re-renders the grid; every row in
    it is offered to the queue (admit is idempotent) and announced on the
    target-event stream so stashed results can be replayed.
    """

    def __init__(
        self,
        document: GridDocument,
        queue: ScoringQueue,
        reconciler: ResultReconciler,
        events: Optional[TargetEvents] = None,
    ) -> None:
        self.document = document
        self.queue = queue
        self.reconciler = reconciler
        self.events = events
        self._seen: Set[str] = set()
        self.snapshots = 0

    def ingest(self, html: str) -> int:
        self.document.load(html)
        self.snapshots += 1
        if not self.document.has_grid():
            logger.debug("Snapshot %d has no grid yet", self.snapshots)
            return 0

        admitted = 0
        fresh: List[str] = []
        for row in self.document.rows():
            if row.row_id not in self._seen:
                self._seen.add(row.row_id)
                fresh.append(row.row_id)
            if self.events is not None:
                self.events.publish(row)
            else:
                self.reconciler.try_replay(row)
            if self.queue.admit(row):
                admitted += 1
        if fresh:
            logger.info("Snapshot %d: %d new rows, %d admitted", self.snapshots, len(fresh), admitted)
        return admitted

    def reset(self) -> None:
        """Forget everything, as a full page reload would."""
        self._seen.clear()
        self.queue.reset()

    async def watch(self, source: HtmlSource, interval_s: float = 1.0) -> int:
        """
        Poll `source` until it returns None; an empty string means "no new snapshot".
        Returns the number of snapshots ingested.
        """
        count = 0
        while True:
            html = await source()
            if html is None:
                return count
            if html:
                self.ingest(html)
                count += 1
            await asyncio.sleep(interval_s)
