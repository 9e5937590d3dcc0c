"""Sub-selections for fields whose wire value is an object rather than a scalar.

PostGraphile exposes PostGIS and interval columns as object types; selecting
them as bare leaves is a validation error, so they are expanded here:

* geometry collections -> ``{ geometries { ... on GeometryPoint { x y } } }``
* points -> ``{ x y }``
* any other geometry/geography -> ``{ geojson }``
* intervals -> ``{ years months days hours minutes seconds }``

Array-typed fields are always emitted as bare leaves.
"""
from __future__ import annotations

from enum import Enum
from typing import List, Optional

from graphql.language import ast as gql_ast

from ..meta import MetaField
from . import nodes

__all__ = ["StructuredKind", "structured_kind", "requires_subselection", "expand", "INTERVAL_FIELDS"]

INTERVAL_FIELDS = ('years', 'months', 'days', 'hours', 'minutes', 'seconds')
POINT_FIELDS = ('x', 'y')

_GEOMETRY_PG_TYPES = {'geometry', 'geography'}


class StructuredKind(str, Enum):
    GEOMETRY_COLLECTION = 'geometryCollection'
    POINT = 'point'
    GEOMETRY = 'geometry'
    INTERVAL = 'interval'


def _norm(value: Optional[str]) -> str:
    return (value or '').replace('_', '').replace(' ', '').lower()


def _geometry_prefix(field: MetaField) -> str:
    t = field.type
    if _norm(t.pg_type) == 'geography' or _norm(t.gql_type).startswith('geography'):
        return 'Geography'
    return 'Geometry'


def structured_kind(field: MetaField) -> Optional[StructuredKind]:
    """Classify a field; ``None`` means it is selected as a plain leaf."""
    t = field.type
    if t.is_array:
        return None
    pg_type = _norm(t.pg_type)
    gql_type = _norm(t.gql_type)
    subtype = _norm(t.subtype)
    if pg_type == 'interval' or gql_type == 'interval':
        return StructuredKind.INTERVAL
    geometry_like = (
        pg_type in _GEOMETRY_PG_TYPES
        or gql_type == 'geojson'
        or gql_type.startswith('geometry')
        or gql_type.startswith('geography')
    )
    if not geometry_like:
        return None
    if subtype == 'geometrycollection' or gql_type.endswith('geometrycollection'):
        return StructuredKind.GEOMETRY_COLLECTION
    if subtype == 'point' or (gql_type.endswith('point') and gql_type != 'geojson'):
        return StructuredKind.POINT
    return StructuredKind.GEOMETRY


def requires_subselection(field: MetaField) -> bool:
    return structured_kind(field) is not None


def _leaves(names) -> List[gql_ast.FieldNode]:
    return [nodes.field(n) for n in names]


def expand(field: MetaField, alias: Optional[str] = None) -> gql_ast.FieldNode:
    """Selection node for ``field``: structured sub-selection or a bare leaf."""
    kind = structured_kind(field)
    if kind is None:
        return nodes.field(field.name, alias=alias)
    if kind is StructuredKind.INTERVAL:
        return nodes.field(field.name, alias=alias, selections=_leaves(INTERVAL_FIELDS))
    if kind is StructuredKind.POINT:
        return nodes.field(field.name, alias=alias, selections=_leaves(POINT_FIELDS))
    if kind is StructuredKind.GEOMETRY_COLLECTION:
        # only point members are selectable; other member shapes come back empty
        point = nodes.inline_fragment(_geometry_prefix(field) + 'Point', _leaves(POINT_FIELDS))
        return nodes.field(field.name, alias=alias, selections=[nodes.field('geometries', selections=[point])])
    return nodes.field(field.name, alias=alias, selections=[nodes.field('geojson')])
