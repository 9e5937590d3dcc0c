"""Build metadata and operation definitions from SQLAlchemy tables.

Table and column names follow PostGraphile's default inflection: the table
``post_comments`` becomes model ``PostComment`` with list query
``postComments``, single query ``postComment`` and mutations
``createPostComment`` / ``updatePostComment`` / ``deletePostComment``.

Columns may override the derived wire type via ``info``::

    Column('location', String, info={'metaql': {'gqlType': 'GeometryPoint',
                                                'pgType': 'geometry',
                                                'subtype': 'Point'}})
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import Column, MetaData, Table, UniqueConstraint
from sqlalchemy.dialects import postgresql
from sqlalchemy.sql import sqltypes
from sqlalchemy.types import TypeDecorator

from .core.ast import NON_MUTABLE_PROPS
from .meta import (
    IntrospectionSchema,
    MetaConstraint,
    MetaField,
    MetaFieldType,
    MetaForeignConstraint,
    MetaObject,
    MetaRelation,
    MetaTable,
    MutationType,
    OperationDefinition,
    QType,
    QueryProperty,
    RelationKind,
)
from .naming import (
    lower_first,
    singularize,
    snake_to_camel,
    to_camel_case_plural,
    to_camel_case_singular,
    upper_first,
)

__all__ = [
    "model_name_for_table",
    "field_name_for_column",
    "field_type_for_column",
    "meta_from_sqlalchemy",
    "generate_introspection_schema",
    "introspect",
]

_logger = logging.getLogger(__name__)

INFO_KEY = 'metaql'

# Subclasses before their bases (BigInteger < Integer, Enum < String).
_TYPE_MAP: Tuple[Tuple[type, str, Optional[str]], ...] = (
    (sqltypes.Boolean, 'Boolean', 'bool'),
    (sqltypes.BigInteger, 'BigInt', 'int8'),
    (sqltypes.SmallInteger, 'Int', 'int2'),
    (sqltypes.Integer, 'Int', 'int4'),
    (sqltypes.Float, 'Float', 'float8'),
    (sqltypes.Numeric, 'BigFloat', 'numeric'),
    (sqltypes.Date, 'Date', 'date'),
    (sqltypes.Time, 'Time', 'time'),
    (sqltypes.Uuid, 'UUID', 'uuid'),
    (postgresql.JSONB, 'JSON', 'jsonb'),
    (sqltypes.JSON, 'JSON', 'json'),
    (postgresql.TSVECTOR, 'String', 'tsvector'),
    (sqltypes.LargeBinary, 'String', 'bytea'),
    (sqltypes.Enum, 'String', 'enum'),
    (sqltypes.Text, 'String', 'text'),
    (sqltypes.String, 'String', 'varchar'),
)


def model_name_for_table(table_name: str) -> str:
    """``post_comments`` -> ``PostComment``."""
    return upper_first(singularize(snake_to_camel(table_name, upper_first=True)))


def field_name_for_column(column_name: str) -> str:
    return snake_to_camel(column_name)


def _unwrap(sa_type: Any) -> Any:
    if isinstance(sa_type, TypeDecorator):
        return getattr(sa_type, 'impl_instance', None) or sa_type.impl
    return sa_type


def _geometry_type(sa_type: Any) -> Optional[MetaFieldType]:
    # geoalchemy2 Geometry/Geography expose ``geometry_type`` ('POINT', 'GEOMETRY', ...)
    geometry_type = getattr(sa_type, 'geometry_type', None)
    if geometry_type is None:
        return None
    pg_type = type(sa_type).__name__.lower()
    prefix = 'Geography' if pg_type == 'geography' else 'Geometry'
    raw = str(geometry_type).upper()
    if raw in ('GEOMETRY', 'GEOGRAPHY'):
        return MetaFieldType(gql_type='GeoJSON', pg_type=pg_type)
    subtype = {'GEOMETRYCOLLECTION': 'GeometryCollection', 'MULTIPOINT': 'MultiPoint'}.get(raw, raw.title())
    return MetaFieldType(gql_type=f'{prefix}{subtype}', pg_type=pg_type, subtype=subtype)


def _scalar_type(sa_type: Any) -> MetaFieldType:
    # Interval is itself a TypeDecorator over DateTime; classify before unwrapping
    if isinstance(sa_type, (sqltypes.Interval, postgresql.INTERVAL)):
        return MetaFieldType(gql_type='Interval', pg_type='interval')
    sa_type = _unwrap(sa_type)
    geo = _geometry_type(sa_type)
    if geo is not None:
        return geo
    if isinstance(sa_type, sqltypes.DateTime):
        return MetaFieldType(
            gql_type='Datetime',
            pg_type='timestamptz' if getattr(sa_type, 'timezone', False) else 'timestamp',
        )
    for cls, gql_type, pg_type in _TYPE_MAP:
        if isinstance(sa_type, cls):
            return MetaFieldType(gql_type=gql_type, pg_type=pg_type)
    _logger.debug("Unmapped column type %r, using String", sa_type)
    return MetaFieldType(gql_type='String')


def field_type_for_column(column: Column) -> MetaFieldType:
    sa_type = _unwrap(column.type)
    if isinstance(sa_type, sqltypes.ARRAY):
        item = _scalar_type(sa_type.item_type)
        ftype = MetaFieldType(gql_type=item.gql_type, pg_type=item.pg_type, is_array=True)
    else:
        ftype = _scalar_type(column.type)
    override = (column.info or {}).get(INFO_KEY)
    if override:
        merged = {
            'gqlType': ftype.gql_type,
            'isArray': ftype.is_array,
            'pgType': ftype.pg_type,
            'subtype': ftype.subtype,
        }
        merged.update(override)
        ftype = MetaFieldType.from_dict(merged)
    return ftype


def _metadata_of(source: Any) -> Iterable[Table]:
    if isinstance(source, MetaData):
        return source.sorted_tables
    if isinstance(source, Table):
        return [source]
    metadata = getattr(source, 'metadata', None)
    if isinstance(metadata, MetaData):
        return metadata.sorted_tables
    return list(source)


def _relation_field_name(column_name: str, ref_model: str) -> str:
    if column_name.endswith('_id') and len(column_name) > 3:
        return field_name_for_column(column_name[:-3])
    return lower_first(ref_model) + 'By' + upper_first(field_name_for_column(column_name))


def meta_from_sqlalchemy(source: Union[MetaData, Any]) -> MetaObject:
    """Describe every table of a ``MetaData`` (or declarative base) as a :class:`MetaTable`."""
    tables = list(_metadata_of(source))
    models = {t.name: model_name_for_table(t.name) for t in tables}
    has_many: Dict[str, List[MetaRelation]] = {}
    for t in tables:
        for fk in sorted(t.foreign_keys, key=lambda f: f.parent.name):
            ref = fk.column.table.name
            if ref not in models:
                continue
            kind = RelationKind.HAS_ONE if fk.parent.unique else RelationKind.HAS_MANY
            child_field = (
                to_camel_case_singular(models[t.name]) if kind is RelationKind.HAS_ONE
                else to_camel_case_plural(models[t.name])
            )
            name = f"{child_field}By{upper_first(field_name_for_column(fk.parent.name))}"
            has_many.setdefault(ref, []).append(MetaRelation(field_name=name, kind=kind, ref_table=models[t.name]))

    out: List[MetaTable] = []
    for t in tables:
        fields = tuple(MetaField(name=field_name_for_column(c.name), type=field_type_for_column(c)) for c in t.columns)
        primary = tuple(
            MetaConstraint(name=field_name_for_column(c.name), type='primary')
            for c in t.primary_key.columns
        )
        unique_cols: List[str] = [c.name for c in t.columns if c.unique]
        for cons in t.constraints:
            if isinstance(cons, UniqueConstraint):
                unique_cols.extend(c.name for c in cons.columns)
        unique = tuple(
            MetaConstraint(name=field_name_for_column(n), type='unique')
            for n in dict.fromkeys(unique_cols)
        )
        foreign: List[MetaForeignConstraint] = []
        for fk in sorted(t.foreign_keys, key=lambda f: f.parent.name):
            ref_table = fk.column.table.name
            if ref_table not in models:
                _logger.warning("Skipping foreign key %s.%s: table %s not introspected", t.name, fk.parent.name, ref_table)
                continue
            foreign.append(MetaForeignConstraint(
                from_key=MetaConstraint(
                    name=field_name_for_column(fk.parent.name),
                    type='foreign',
                    alias=_relation_field_name(fk.parent.name, models[ref_table]),
                ),
                ref_table=models[ref_table],
                to_key=MetaConstraint(name=field_name_for_column(fk.column.name), type='primary'),
            ))
        out.append(MetaTable(
            name=models[t.name],
            fields=fields,
            primary_constraints=primary,
            unique_constraints=unique,
            foreign_constraints=tuple(foreign),
            relations=tuple(has_many.get(t.name, ())),
        ))
    _logger.debug("Introspected %d tables", len(out))
    return MetaObject(tables=tuple(out))


def _field_property(f: MetaField, *, not_null: bool = False) -> QueryProperty:
    return QueryProperty(name=f.name, type=f.type.gql_type, is_not_null=not_null, is_array=f.type.is_array)


def generate_introspection_schema(meta: MetaObject) -> IntrospectionSchema:
    """Synthesize the operation definitions a PostGraphile schema exposes for ``meta``."""
    ops: Dict[str, OperationDefinition] = {}
    for t in meta:
        model = t.name
        type_name = upper_first(snake_to_camel(model))
        plural = to_camel_case_plural(model)
        single = to_camel_case_singular(model)
        selection = tuple(t.scalar_field_names()) + tuple(
            r.field_name for r in t.all_relations() if not t.is_primary_key(r.field_name)
        )
        ops[plural] = OperationDefinition(model=model, qtype=QType.GET_MANY, selection=selection)

        key_fields = [t.field(c.name) for c in t.primary_constraints if t.field(c.name) is not None]
        key_props = {f.name: _field_property(f, not_null=True) for f in key_fields}
        attrs = {
            f.name: _field_property(f)
            for f in t.scalar_fields()
            if f.name not in NON_MUTABLE_PROPS
        }
        ops[f"create{type_name}"] = OperationDefinition(
            model=model,
            qtype=QType.MUTATION,
            mutation_type=MutationType.CREATE,
            selection=selection,
            properties={'input': QueryProperty(
                name='input',
                type=f"Create{type_name}Input",
                is_not_null=True,
                properties={single: QueryProperty(
                    name=single, type=f"{type_name}Input", is_not_null=True, properties=attrs,
                )},
            )},
        )
        if not key_props:
            continue
        ops[single] = OperationDefinition(model=model, qtype=QType.GET_ONE, selection=selection, properties=key_props)
        patch_attrs = {n: p for n, p in attrs.items() if n not in key_props}
        ops[f"update{type_name}"] = OperationDefinition(
            model=model,
            qtype=QType.MUTATION,
            mutation_type=MutationType.PATCH,
            selection=selection,
            properties={'input': QueryProperty(
                name='input',
                type=f"Update{type_name}Input",
                is_not_null=True,
                properties=dict(key_props, patch=QueryProperty(
                    name='patch', type=f"{type_name}Patch", is_not_null=True, properties=patch_attrs,
                )),
            )},
        )
        ops[f"delete{type_name}"] = OperationDefinition(
            model=model,
            qtype=QType.MUTATION,
            mutation_type=MutationType.DELETE,
            selection=selection,
            properties={'input': QueryProperty(
                name='input', type=f"Delete{type_name}Input", is_not_null=True, properties=dict(key_props),
            )},
        )
    return IntrospectionSchema(operations=ops)


def introspect(source: Any) -> Tuple[MetaObject, IntrospectionSchema]:
    meta = meta_from_sqlalchemy(source)
    return meta, generate_introspection_schema(meta)
