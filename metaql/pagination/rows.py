from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

from .cache import PageCache, PageCacheKey, PageData

__all__ = ["RowCacheAccessor"]


class RowCacheAccessor:
    """Row-level reads and local patches over cached pages.

    ``key_for_page`` maps a page index to the cache key of the current option
    set; rows are located with ``divmod(index, page_size)``.
    """

    def __init__(self, cache: PageCache, key_for_page: Callable[[int], PageCacheKey], page_size: int):
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        self.cache = cache
        self.key_for_page = key_for_page
        self.page_size = page_size

    def _locate(self, index: int):
        if index < 0:
            return None, 0
        page_index, offset = divmod(index, self.page_size)
        return self.key_for_page(page_index), offset

    def get_page(self, page_index: int) -> Optional[PageData]:
        return self.cache.get(self.key_for_page(page_index))

    def get_row(self, index: int) -> Optional[Any]:
        key, offset = self._locate(index)
        if key is None:
            return None
        page = self.cache.get(key)
        if page is None or offset >= len(page.rows):
            return None
        return page.rows[offset]

    def is_row_loaded(self, index: int) -> bool:
        key, offset = self._locate(index)
        if key is None:
            return False
        page = self.cache.get(key)
        return page is not None and offset < len(page.rows)

    def update_row_at_index(self, index: int, patch: Mapping[str, Any]) -> bool:
        """Shallow-merge ``patch`` into a cached row. ``False`` when the row is not cached."""
        key, offset = self._locate(index)
        if key is None:
            return False

        def _merge(page: PageData) -> Optional[PageData]:
            if offset >= len(page.rows):
                return None
            row = page.rows[offset]
            if not isinstance(row, Mapping):
                return None
            merged: Dict[str, Any] = {**row, **patch}
            return page.with_row(offset, merged)

        return self.cache.update(key, _merge) is not None
