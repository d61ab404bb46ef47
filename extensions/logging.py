from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional

from flowscorer.utils import CURRENT_ROW_ID


class _RowContextFilter(logging.Filter):
    """
    Stamp every record with the row id of the scoring task that emitted it
    ("-" outside a scoring task). Attached to handlers so module loggers
    need no changes.
    """
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.row_id = CURRENT_ROW_ID.get() or "-"
        return True


class LoggingExtension:
    def __init__(
        self,
        log_file: Optional[Path] = None,
        *,
        global_level: int = logging.INFO,
        file_level: Optional[int] = None,  # default to global_level if None
    ) -> None:
        self.log_file = log_file
        self.global_level = global_level
        self.file_level = file_level if file_level is not None else global_level
        self._handlers: list[logging.Handler] = []
        self._filter = _RowContextFilter()

        # Console formatter/handler on root
        self._install_console(self.global_level)
        if log_file is not None:
            self._install_file(log_file, self.file_level)

        # Make root permissive; rely on handler levels to filter.
        logging.getLogger().setLevel(logging.DEBUG)

    # ---------------- Console ----------------

    def _install_console(self, level: int) -> None:
        root = logging.getLogger()
        # Remove any default handlers (e.g., from basicConfig)
        for h in list(root.handlers):
            root.removeHandler(h)

        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.addFilter(self._filter)
        ch.setFormatter(logging.Formatter("%(levelname)s [%(row_id)s] %(message)s"))
        root.addHandler(ch)
        self._handlers.append(ch)

    # ---------------- File ----------------

    def _install_file(self, path: Path, level: int) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(path, mode="a", encoding="utf-8")
        fh.setLevel(level)
        fh.addFilter(self._filter)
        fh.setFormatter(logging.Formatter(
            fmt="%(asctime)s %(levelname)s [%(name)s] [row=%(row_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logging.getLogger().addHandler(fh)
        self._handlers.append(fh)

    # ---------------- Cleanup ----------------

    def close(self):
        root = logging.getLogger()
        for h in self._handlers:
            root.removeHandler(h)
            h.flush()
            h.close()
        self._handlers.clear()
