from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

logger = logging.getLogger(__name__)

GRID_SELECTOR = '[data-tid="comp-grid"]'
ROW_SELECTOR = 'div[data-tid="comp-grid-row"]'
ROW_ID_ATTR = "data-handler-id"


class GridDocument:
    """
    The observed flow grid. Each `load()` replaces the whole snapshot, which is
    how a re-render looks from the outside: row ids survive, tags do not.
    Badges rendered into the current snapshot are visible through `html()`.
    """

    def __init__(self, html: str = "") -> None:
        self._soup = BeautifulSoup(html or "", "html.parser")
        self._index: Dict[str, Tag] = {}
        self._reindex()

    def load(self, html: str) -> List[str]:
        self._soup = BeautifulSoup(html or "", "html.parser")
        self._reindex()
        return list(self._index)

    def _reindex(self) -> None:
        self._index = {}
        grid = self.grid()
        if grid is None:
            return
        for tag in grid.select(ROW_SELECTOR):
            rid = (tag.get(ROW_ID_ATTR) or "").strip()
            if rid and rid not in self._index:
                self._index[rid] = tag

    def grid(self) -> Optional[Tag]:
        return self._soup.select_one(GRID_SELECTOR)

    def has_grid(self) -> bool:
        return self.grid() is not None

    def find_row(self, row_id: str) -> Optional[Tag]:
        return self._index.get(row_id)

    def rows(self) -> List["RowHandle"]:
        return [RowHandle(rid, self) for rid in self._index]

    def html(self) -> str:
        return str(self._soup)


@dataclass(frozen=True)
class RowHandle:
    """Stable reference to a grid row by id; `tag` resolves against the current snapshot."""
    row_id: str
    document: GridDocument

    @property
    def tag(self) -> Optional[Tag]:
        return self.document.find_row(self.row_id)

    @property
    def attached(self) -> bool:
        return self.tag is not None
