from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import httpx

from components.badge_renderer import BadgeRenderer
from components.flow_extractor import FlowExtractor
from components.grid_document import GridDocument
from extensions.grid_watcher import GridWatcher, HtmlSource, TargetEvents
from extensions.logging import LoggingExtension
from flowscorer.config import Config, load_config
from flowscorer.models import RowStateStore
from flowscorer.reconciler import ResultReconciler
from flowscorer.relay import ScoreRelay
from flowscorer.retry import RetryPolicy
from flowscorer.scoring_queue import ScoringQueue
from flowscorer.transport import build_transport
from flowscorer.utils import httpx_client


# ----------------------------
# CLI parsing
# ----------------------------

def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Watch a flow grid, score each new row remotely, and annotate rows with the result"
    )

    src = p.add_mutually_exclusive_group(required=True)
    src.add_argument("--html-file", type=Path, help="HTML snapshot file, re-read on every poll")
    src.add_argument("--url", type=str, help="URL serving the grid HTML, fetched on every poll")

    p.add_argument("--out", type=Path, default=None, help="Write the annotated grid HTML here on exit")
    p.add_argument("--polls", type=int, default=1, help="Number of snapshots to ingest (0 = until interrupted)")
    p.add_argument("--max-concurrent", type=int, default=None, help="Override MAX_CONCURRENT")
    p.add_argument("--no-relay", dest="relay", action="store_false", default=True,
                   help="Skip the relay channel and POST directly")
    p.add_argument("--disabled", action="store_true", help="Load the grid but do not score anything")

    # Logging
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Console/file log level")
    return p.parse_args()


# ----------------------------
# Sources
# ----------------------------

def _file_source(path: Path, polls: int) -> HtmlSource:
    remaining = {"n": polls}

    async def _read() -> Optional[str]:
        if polls and remaining["n"] <= 0:
            return None
        remaining["n"] -= 1
        return path.read_text(encoding="utf-8")

    return _read


def _url_source(client: httpx.AsyncClient, url: str, polls: int) -> HtmlSource:
    remaining = {"n": polls}
    logger = logging.getLogger("run_scorer")

    async def _fetch() -> Optional[str]:
        if polls and remaining["n"] <= 0:
            return None
        remaining["n"] -= 1
        try:
            resp = await client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Grid fetch failed (%s); keeping previous snapshot", e)
            return ""
        return resp.text

    return _fetch


# ----------------------------
# Pipeline wiring
# ----------------------------

def build_pipeline(cfg: Config, document: GridDocument, client: httpx.AsyncClient,
                   relay: Optional[ScoreRelay], events: Optional[TargetEvents] = None) -> GridWatcher:
    states = RowStateStore()
    reconciler = ResultReconciler(
        BadgeRenderer(), states,
        good_threshold=cfg.good_threshold, warn_threshold=cfg.warn_threshold,
    )
    queue = ScoringQueue(
        FlowExtractor().extract,
        build_transport(cfg, client, relay),
        reconciler,
        states,
        max_concurrent=cfg.max_concurrent,
        policy=RetryPolicy.from_config(cfg),
    )
    return GridWatcher(document, queue, reconciler, events)


async def main_async() -> None:
    args = _parse_args()
    cfg = load_config()

    log_ext = LoggingExtension(cfg.log_file, global_level=getattr(logging, args.log_level.upper(), logging.INFO))
    root_logger = logging.getLogger("run_scorer")

    if args.max_concurrent:
        cfg = replace(cfg, max_concurrent=max(1, args.max_concurrent))
    if not args.relay:
        cfg = replace(cfg, relay_enabled=False)

    document = GridDocument()
    events = TargetEvents()

    async with httpx_client(cfg) as client:
        relay = ScoreRelay.from_config(cfg) if cfg.relay_enabled else None
        if relay is not None:
            relay.start()
        watcher = build_pipeline(cfg, document, client, relay, events)
        replayer = asyncio.create_task(watcher.reconciler.consume(events))

        source = (
            _file_source(args.html_file, args.polls)
            if args.html_file is not None
            else _url_source(client, args.url, args.polls)
        )

        try:
            if args.disabled:
                html = await source()
                document.load(html or "")
                root_logger.info("Scoring disabled; loaded %d rows", len(document.rows()))
            else:
                await watcher.watch(source, cfg.poll_interval_ms / 1000.0)
                await watcher.queue.join()
        finally:
            events.close()
            replayed = await replayer
            if relay is not None:
                await relay.aclose()
            stats = watcher.queue.stats
            root_logger.info(
                "Session summary: admitted=%d succeeded=%d failed=%d stashed=%d replayed=%d peak_active=%d",
                stats["admitted"], stats["succeeded"], stats["failed"], stats["stashed"],
                replayed, watcher.queue.peak_active,
            )
            if args.out is not None:
                args.out.parent.mkdir(parents=True, exist_ok=True)
                args.out.write_text(document.html(), encoding="utf-8")
                root_logger.info("Annotated grid written to %s", args.out)
            log_ext.close()


# ----------------------------
# Entrypoint
# ----------------------------

def main() -> None:
    asyncio.run(main_async())

if __name__ == "__main__":
    main()
