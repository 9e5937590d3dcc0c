from __future__ import annotations

import math
from typing import Callable, Optional

from ..config import DEFAULT_PAGE_SIZE

__all__ = ["Paginator"]


class Paginator:
    """Page-index state for classic paged grids.

    ``page_index`` is zero-based and always clamped to ``[0, total_pages - 1]``;
    ``start_index``/``end_index`` are the one-based row numbers shown to users.
    """

    def __init__(
        self,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        total_count: int = 0,
        page_index: int = 0,
        on_change: Optional[Callable[[int, int], None]] = None,
    ):
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self._page_size = page_size
        self._total_count = max(0, total_count)
        self._page_index = 0
        self.on_change = on_change
        self._page_index = self._clamp(page_index)

    def __repr__(self) -> str:
        return f"Paginator(page_index={self._page_index}, page_size={self._page_size}, total_count={self._total_count})"

    @property
    def page_index(self) -> int:
        return self._page_index

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def total_count(self) -> int:
        return self._total_count

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self._total_count / self._page_size))

    @property
    def has_next_page(self) -> bool:
        return self._page_index < self.total_pages - 1

    @property
    def has_previous_page(self) -> bool:
        return self._page_index > 0

    @property
    def offset(self) -> int:
        return self._page_index * self._page_size

    @property
    def start_index(self) -> int:
        if self._total_count == 0:
            return 0
        return self.offset + 1

    @property
    def end_index(self) -> int:
        return min(self.offset + self._page_size, self._total_count)

    def _clamp(self, page_index: int) -> int:
        return min(max(0, page_index), self.total_pages - 1)

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self._page_index, self._page_size)

    def set_page_index(self, page_index: int) -> int:
        new = self._clamp(page_index)
        if new != self._page_index:
            self._page_index = new
            self._changed()
        return new

    def set_page_size(self, page_size: int) -> None:
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        if page_size == self._page_size:
            return
        self._page_size = page_size
        self._page_index = 0
        self._changed()

    def set_total_count(self, total_count: int) -> None:
        self._total_count = max(0, total_count)
        clamped = self._clamp(self._page_index)
        if clamped != self._page_index:
            self._page_index = clamped
            self._changed()

    def next(self) -> int:
        return self.set_page_index(self._page_index + 1)

    def previous(self) -> int:
        return self.set_page_index(self._page_index - 1)

    def first(self) -> int:
        return self.set_page_index(0)

    def last(self) -> int:
        return self.set_page_index(self.total_pages - 1)
