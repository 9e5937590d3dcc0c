"""Page cache keyed by an explicit structural key.

A :class:`PageCacheKey` is ``(scope, entity, page_index, OptionsFingerprint)``.
The fingerprint hashes the filter and the selection through canonical JSON, so
two option sets that differ only in mapping key order share a key while any
real difference (order, filter, selection, page size) yields a disjoint one.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, Tuple, TypeVar

from ..core.selection import selection_key
from ..core.utils import Direction, dir_value, stable_hash
from ..config import DEFAULT_GC_TIME

__all__ = ["OrderBy", "PageInfo", "PageData", "OptionsFingerprint", "PageCacheKey", "PageCache"]

_logger = logging.getLogger(__name__)

Row = TypeVar("Row")


@dataclass(frozen=True)
class OrderBy:
    field: str
    direction: Any = Direction.asc  # type: ignore[attr-defined]

    @property
    def direction_value(self) -> str:
        return dir_value(self.direction)

    @classmethod
    def coerce(cls, raw: Any) -> "OrderBy":
        """Accept ``OrderBy``, ``'name'``, ``'-name'``, ``('name', 'desc')`` or ``{'field':..., 'direction':...}``."""
        if isinstance(raw, OrderBy):
            return raw
        if isinstance(raw, str):
            if raw.startswith('-'):
                return cls(field=raw[1:], direction=Direction.desc)  # type: ignore[attr-defined]
            return cls(field=raw)
        if isinstance(raw, Mapping):
            return cls(field=raw['field'], direction=_direction(raw.get('direction')))
        name, direction = raw
        return cls(field=name, direction=_direction(direction))


def _direction(raw: Any) -> Any:
    return Direction(dir_value(raw))  # type: ignore[operator]


@dataclass(frozen=True)
class PageInfo:
    has_next_page: bool = False
    has_previous_page: bool = False
    start_cursor: Optional[str] = None
    end_cursor: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "PageInfo":
        raw = raw or {}
        return cls(
            has_next_page=bool(raw.get('hasNextPage')),
            has_previous_page=bool(raw.get('hasPreviousPage')),
            start_cursor=raw.get('startCursor'),
            end_cursor=raw.get('endCursor'),
        )


@dataclass(frozen=True)
class PageData(Generic[Row]):
    rows: Tuple[Row, ...]
    page_info: PageInfo
    page_index: int
    total_count: Optional[int] = None

    def with_row(self, index: int, row: Row) -> "PageData[Row]":
        rows = list(self.rows)
        rows[index] = row
        return replace(self, rows=tuple(rows))


@dataclass(frozen=True)
class OptionsFingerprint:
    page_size: int
    order_by: Tuple[Tuple[str, str], ...] = ()
    filter_hash: str = ''
    selection_hash: str = ''

    @classmethod
    def build(
        cls,
        page_size: int,
        order_by: Iterable[Any] = (),
        where: Optional[Mapping[str, Any]] = None,
        selection: Any = None,
    ) -> "OptionsFingerprint":
        # order-by keys keep their position: sort precedence is significant
        order = tuple((o.field, o.direction_value) for o in (OrderBy.coerce(x) for x in order_by))
        return cls(
            page_size=page_size,
            order_by=order,
            filter_hash=stable_hash(where or {}),
            selection_hash=stable_hash(selection_key(selection)),
        )


@dataclass(frozen=True)
class PageCacheKey:
    scope: str
    entity: str
    page_index: int
    options: OptionsFingerprint


@dataclass
class _Entry:
    page: PageData
    stored_at: float
    accessed_at: float = 0.0


class PageCache:
    """In-memory page store shared by pagination engines.

    Entries not accessed for ``gc_time`` seconds are evicted lazily; ``None``
    keeps them until invalidated.
    """

    def __init__(self, *, gc_time: Optional[float] = DEFAULT_GC_TIME, clock: Callable[[], float] = time.monotonic):
        self.gc_time = gc_time
        self._clock = clock
        self._entries: Dict[PageCacheKey, _Entry] = {}

    def __len__(self) -> int:
        self._collect()
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return self.get(key) is not None  # type: ignore[arg-type]

    def _collect(self) -> None:
        if self.gc_time is None:
            return
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.accessed_at >= self.gc_time]
        for k in expired:
            del self._entries[k]
        if expired:
            _logger.debug("Evicted %d expired pages", len(expired))

    def get(self, key: PageCacheKey) -> Optional[PageData]:
        self._collect()
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry.accessed_at = self._clock()
        return entry.page

    def age(self, key: PageCacheKey) -> Optional[float]:
        """Seconds since the page was stored, ``None`` when absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return self._clock() - entry.stored_at

    def set(self, key: PageCacheKey, page: PageData) -> None:
        now = self._clock()
        self._entries[key] = _Entry(page=page, stored_at=now, accessed_at=now)

    def update(self, key: PageCacheKey, fn: Callable[[PageData], Optional[PageData]]) -> Optional[PageData]:
        """Replace a cached page with ``fn(page)``; a ``None`` result leaves it untouched."""
        current = self.get(key)
        if current is None:
            return None
        new = fn(current)
        if new is None:
            return None
        entry = self._entries[key]
        entry.page = new
        return new

    def keys_for(self, scope: str, entity: str) -> List[PageCacheKey]:
        self._collect()
        return [k for k in self._entries if k.scope == scope and k.entity == entity]

    def invalidate(self, scope: str, entity: str) -> int:
        """Drop every page of ``entity`` under ``scope``, whatever its options."""
        keys = [k for k in self._entries if k.scope == scope and k.entity == entity]
        for k in keys:
            del self._entries[k]
        if keys:
            _logger.info("Invalidated %d cached pages of %s", len(keys), entity)
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()
