"""Hybrid cursor/offset pagination over a list query.

Page policy:

* page 0 is always requested with ``first`` only;
* page 1 waits until page 0's end cursor is known and uses ``after``;
* pages >= 2 use ``after`` when the previous page's cursor is known and fall
  back to ``offset = page_index * page_size`` otherwise.

Each completed page records its end cursor under its own index. Changing the
entity or any fetch option clears the cursor chain, the total count and the
requested pages and invalidates the entity's cached pages; responses that
arrive for a superseded configuration are dropped.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from ..builder import BuiltDocument, PrintedDocument, QueryBuilder
from ..config import DEFAULT_PAGE_SIZE, EngineConfig
from ..core.selection import FieldSelection
from ..errors import QueryExecutionError
from ..naming import constant_case
from ..transport import Transport
from .cache import OptionsFingerprint, OrderBy, PageCache, PageCacheKey, PageData, PageInfo
from .rows import RowCacheAccessor

__all__ = ["TableOptions", "PagePlan", "PaginationSnapshot", "InfiniteTable", "flatten_connections"]

_logger = logging.getLogger("metaql")

Listener = Callable[["PaginationSnapshot"], None]


@dataclass(frozen=True)
class TableOptions:
    page_size: int = DEFAULT_PAGE_SIZE
    order_by: Tuple[OrderBy, ...] = ()
    where: Optional[Mapping[str, Any]] = None
    selection: Any = None
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.page_size <= 0:
            raise ValueError(f"page_size must be positive, got {self.page_size}")
        object.__setattr__(self, 'order_by', tuple(OrderBy.coerce(o) for o in self.order_by))

    def fingerprint(self) -> OptionsFingerprint:
        return OptionsFingerprint.build(self.page_size, self.order_by, self.where, self.selection)


@dataclass(frozen=True)
class PagePlan:
    page_index: int
    after: Optional[str] = None
    offset: Optional[int] = None


@dataclass(frozen=True)
class PaginationSnapshot:
    entity: str
    version: int
    cursor_chain: Mapping[int, str] = field(default_factory=dict)
    total_count: Optional[int] = None
    requested_pages: FrozenSet[int] = frozenset()
    loading_pages: FrozenSet[int] = frozenset()
    failed_pages: FrozenSet[int] = frozenset()
    loaded_pages: Tuple[int, ...] = ()
    error: Optional[BaseException] = None


def flatten_connections(row: Any, selection: Iterable[FieldSelection]) -> Any:
    """Replace ``{"totalCount": n, "nodes": [...]}`` relation values with their node lists."""
    if not isinstance(row, Mapping):
        return row
    out = dict(row)
    for s in selection:
        if not s.is_object or s.is_belong_to:
            continue
        value = out.get(s.name)
        if isinstance(value, Mapping) and 'nodes' in value:
            out[s.name] = list(value.get('nodes') or ())
    return out


class InfiniteTable:
    """Pagination state for one (entity, options) combination at a time.

    Not thread-safe; belongs to the event loop it fetches on.
    """

    def __init__(
        self,
        entity: str,
        *,
        builder: QueryBuilder,
        transport: Transport,
        cache: Optional[PageCache] = None,
        options: Optional[TableOptions] = None,
        config: Optional[EngineConfig] = None,
        scope: str = 'default',
    ):
        self.config = config or EngineConfig()
        self._builder = builder
        self._transport = transport
        self._cache = cache if cache is not None else PageCache(gc_time=self.config.gc_time)
        self._scope = scope
        self._entity = entity
        self._options = options or TableOptions(page_size=self.config.page_size)
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._generation = 0
        self._version = 0
        self._reset_state()
        self.restore_cursor_chain()

    # --- state -----------------------------------------------------------

    def _reset_state(self, requested: Iterable[int] = (0,)) -> None:
        self._fingerprint = self._options.fingerprint()
        self._cursor_chain: Dict[int, str] = {}
        self._total_count: Optional[int] = None
        self._requested: Set[int] = set(requested) | {0}
        self._in_flight: Dict[int, asyncio.Task] = {}
        self._failed: Dict[int, BaseException] = {}
        self._results: Dict[int, PageData] = {}
        self._error: Optional[BaseException] = None
        self._document: Optional[BuiltDocument] = None
        self._printed: Optional[PrintedDocument] = None
        self._rows = RowCacheAccessor(self._cache, self._key, self._options.page_size)

    def _key(self, page_index: int) -> PageCacheKey:
        return PageCacheKey(self._scope, self._entity, page_index, self._fingerprint)

    @property
    def entity(self) -> str:
        return self._entity

    @property
    def options(self) -> TableOptions:
        return self._options

    @property
    def page_size(self) -> int:
        return self._options.page_size

    @property
    def cache(self) -> PageCache:
        return self._cache

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def total_count(self) -> int:
        return self._total_count if self._total_count is not None else 0

    @property
    def cursor_chain(self) -> Mapping[int, str]:
        return MappingProxyType(dict(self._cursor_chain))

    @property
    def requested_pages(self) -> FrozenSet[int]:
        return frozenset(self._requested)

    @property
    def loaded_pages(self) -> Tuple[int, ...]:
        loaded = {p for p in self._requested | set(self._results) if self._page(p) is not None}
        return tuple(sorted(loaded))

    @property
    def is_loading(self) -> bool:
        return bool(self._in_flight)

    @property
    def has_initial_data(self) -> bool:
        return self._page(0) is not None

    def is_page_loading(self, page_index: int) -> bool:
        return page_index in self._in_flight

    @property
    def snapshot(self) -> PaginationSnapshot:
        return PaginationSnapshot(
            entity=self._entity,
            version=self._version,
            cursor_chain=self.cursor_chain,
            total_count=self._total_count,
            requested_pages=frozenset(self._requested),
            loading_pages=frozenset(self._in_flight),
            failed_pages=frozenset(self._failed),
            loaded_pages=self.loaded_pages,
            error=self._error,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a new snapshot on every state change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        self._version += 1
        snap = self.snapshot
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                _logger.exception("Pagination listener failed")

    # --- configuration ---------------------------------------------------

    def set_entity(self, entity: str) -> None:
        if entity == self._entity:
            return
        _logger.info("Switching pagination from %s to %s", self._entity, entity)
        self._cache.invalidate(self._scope, self._entity)
        self._entity = entity
        self._reconfigure(restore=True)

    def set_options(self, options: TableOptions) -> None:
        if options.fingerprint() == self._fingerprint:
            enabled_now = options.enabled and not self._options.enabled
            self._options = options
            if enabled_now:
                self._pump()
            return
        _logger.info("Options of %s changed; resetting pagination", self._entity)
        self._cache.invalidate(self._scope, self._entity)
        self._options = options
        self._reconfigure()

    def update_options(self, **changes: Any) -> None:
        self.set_options(replace(self._options, **changes))

    def _reconfigure(self, restore: bool = False) -> None:
        self._generation += 1
        self._reset_state()
        if restore:
            self.restore_cursor_chain()
        self._emit()
        self._pump()

    def restore_cursor_chain(self) -> int:
        """Rebuild cursors and total count from cached pages, stopping at the first miss."""
        restored = 0
        page_index = 0
        while True:
            page = self._cache.get(self._key(page_index))
            if page is None:
                break
            cursor = page.page_info.end_cursor
            if cursor and page_index not in self._cursor_chain:
                self._cursor_chain[page_index] = cursor
                restored += 1
            if page.total_count is not None:
                self._total_count = page.total_count
            page_index += 1
        if restored:
            _logger.debug("Restored %d cursors of %s from cache", restored, self._entity)
            self._emit()
        return restored

    def invalidate(self) -> None:
        """Drop cached pages and failures, then refetch the requested pages."""
        _logger.info("Invalidating %s", self._entity)
        requested = set(self._requested)
        self._cache.invalidate(self._scope, self._entity)
        self._generation += 1
        self._reset_state(requested)
        self._emit()
        self._pump()

    def reset(self) -> None:
        """Back to a single requested page with empty state."""
        self._cache.invalidate(self._scope, self._entity)
        self._reconfigure()

    # --- fetching --------------------------------------------------------

    def start(self) -> None:
        self._pump()

    def ensure_rows_loaded(self, start: int, end: int) -> None:
        """Request the pages covering rows ``[start, end)`` plus the prefetch buffer."""
        size = self._options.page_size
        first_page = max(0, start) // size
        last_page = max(0, max(start, end) - 1) // size + self.config.prefetch_pages
        if self._total_count is not None:
            max_page = max(0, math.ceil(self._total_count / size) - 1)
            if first_page > max_page:
                _logger.debug("Rows %d-%d of %s are past the last page", start, end, self._entity)
                return
            last_page = min(last_page, max_page)
        new = set(range(first_page, last_page + 1)) - self._requested
        if new:
            self._requested |= new
            _logger.debug("Requested pages %s of %s", sorted(new), self._entity)
            self._emit()
        self._pump()

    def _get_document(self) -> PrintedDocument:
        if self._printed is None:
            query = self._builder.query(self._entity).select(self._options.selection)
            self._document = query.with_edges(self.config.use_edges).get_many()
            self._printed = self._document.print()
        return self._printed

    def plan(self, page_index: int) -> Optional[PagePlan]:
        """How ``page_index`` would be fetched now; ``None`` while it must wait."""
        if page_index == 0:
            return PagePlan(0)
        cursor = self._cursor_chain.get(page_index - 1)
        if cursor is not None:
            return PagePlan(page_index, after=cursor)
        if page_index >= 2:
            return PagePlan(page_index, offset=page_index * self._options.page_size)
        return None

    def _order_by_tokens(self) -> List[str]:
        known = set(self._builder.table(self._entity).field_names)
        return [
            f"{constant_case(o.field)}_{o.direction_value.upper()}"
            for o in self._options.order_by
            if o.field in known
        ]

    def variables_for(self, plan: PagePlan) -> Dict[str, Any]:
        variables: Dict[str, Any] = {'first': self._options.page_size}
        if plan.after is not None:
            variables['after'] = plan.after
        elif plan.offset is not None:
            variables['offset'] = plan.offset
        order = self._order_by_tokens()
        if order:
            variables['orderBy'] = order
        if self._options.where:
            variables['filter'] = dict(self._options.where)
        return variables

    def _is_stale(self, key: PageCacheKey) -> bool:
        stale_time = self.config.stale_time
        if stale_time is None:
            return False
        age = self._cache.age(key)
        return age is not None and age >= stale_time

    def _pump(self) -> None:
        if not self._options.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _logger.debug("No running event loop; fetches of %s deferred", self._entity)
            return
        document = self._get_document()
        scheduled = []
        for page_index in sorted(self._requested):
            if page_index in self._in_flight or page_index in self._failed:
                continue
            key = self._key(page_index)
            if self._cache.get(key) is not None and not self._is_stale(key):
                continue
            plan = self.plan(page_index)
            if plan is None:
                continue
            task = loop.create_task(self._fetch(plan, document, self._generation))
            self._in_flight[page_index] = task
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            scheduled.append(page_index)
        if scheduled:
            _logger.debug("Fetching pages %s of %s", scheduled, self._entity)
            self._emit()

    async def _fetch(self, plan: PagePlan, document: PrintedDocument, generation: int) -> None:
        page_index = plan.page_index
        try:
            data = await self._transport.execute(document, self.variables_for(plan))
            page = self._parse(page_index, data, document.operation_key)
        except Exception as e:
            if generation != self._generation:
                return
            self._in_flight.pop(page_index, None)
            self._failed[page_index] = e
            self._error = e
            _logger.warning("Fetching page %d of %s failed: %s", page_index, self._entity, e)
            self._emit()
            return
        if generation != self._generation:
            _logger.debug("Dropping page %d of %s from a superseded configuration", page_index, self._entity)
            return
        self._in_flight.pop(page_index, None)
        self._results[page_index] = page
        self._cache.set(self._key(page_index), page)
        if page.total_count is not None:
            self._total_count = page.total_count
        if page.page_info.end_cursor:
            self._cursor_chain[page_index] = page.page_info.end_cursor
        self._emit()
        self._pump()

    def _parse(self, page_index: int, data: Mapping[str, Any], operation_key: str) -> PageData:
        connection = data.get(operation_key) if data else None
        if connection is None:
            raise QueryExecutionError(f"No data returned for table '{self._entity}'")
        if 'edges' in connection:
            raw_rows = [edge.get('node') for edge in connection.get('edges') or ()]
        else:
            raw_rows = list(connection.get('nodes') or ())
        selection = self._document.selection if self._document is not None else ()
        total = connection.get('totalCount')
        return PageData(
            rows=tuple(flatten_connections(r, selection) for r in raw_rows),
            page_info=PageInfo.from_dict(connection.get('pageInfo')),
            page_index=page_index,
            total_count=total if isinstance(total, int) else None,
        )

    async def wait_idle(self) -> None:
        """Wait until every scheduled fetch (including superseded ones) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
        self._in_flight.clear()

    # --- rows ------------------------------------------------------------

    def _page(self, page_index: int) -> Optional[PageData]:
        cached = self._cache.get(self._key(page_index))
        if cached is not None:
            return cached
        return self._results.get(page_index)

    def get_row_at_index(self, index: int) -> Optional[Any]:
        if self._rows.is_row_loaded(index):
            return self._rows.get_row(index)
        if index < 0:
            return None
        page_index, offset = divmod(index, self._options.page_size)
        page = self._results.get(page_index)
        if page is None or offset >= len(page.rows):
            return None
        return page.rows[offset]

    def is_row_loaded(self, index: int) -> bool:
        if self._rows.is_row_loaded(index):
            return True
        if index < 0:
            return False
        page_index, offset = divmod(index, self._options.page_size)
        page = self._results.get(page_index)
        return page is not None and offset < len(page.rows)

    def update_row_at_index(self, index: int, patch: Mapping[str, Any]) -> bool:
        updated = self._rows.update_row_at_index(index, patch)
        if updated:
            self._emit()
        return updated
