"""Hybrid cursor/offset pagination, page cache and row accessors."""
from .cache import OptionsFingerprint, OrderBy, PageCache, PageCacheKey, PageData, PageInfo
from .engine import InfiniteTable, PagePlan, PaginationSnapshot, TableOptions, flatten_connections
from .paginator import Paginator
from .rows import RowCacheAccessor

__all__ = [
    'OptionsFingerprint', 'OrderBy', 'PageCache', 'PageCacheKey', 'PageData', 'PageInfo',
    'InfiniteTable', 'PagePlan', 'PaginationSnapshot', 'TableOptions', 'flatten_connections',
    'Paginator', 'RowCacheAccessor',
]
