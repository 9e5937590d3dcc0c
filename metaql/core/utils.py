from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any

import strawberry


class _DirectionEnum(Enum):
    asc = 'asc'
    desc = 'desc'

Direction = strawberry.enum(_DirectionEnum, name="Direction")  # type: ignore


def dir_value(order_dir: Any) -> str:
    if order_dir is None:
        return 'asc'
    val = getattr(order_dir, 'value', order_dir)
    val = str(val).lower()
    if val not in ('asc', 'desc'):
        raise ValueError(f"Invalid order direction: {order_dir!r}")
    return val


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return repr(value)


def canonical_json(value: Any) -> str:
    """JSON text with sorted keys so equal mappings always serialize identically."""
    return json.dumps(value, sort_keys=True, separators=(',', ':'), default=_json_default)


def stable_hash(value: Any) -> str:
    return hashlib.sha1(canonical_json(value).encode('utf-8')).hexdigest()[:16]
