"""Normalized schema metadata consumed by the selection resolver and builder.

Two inputs describe a backend:

* :class:`MetaObject` - tables with their fields, constraints and relations.
* :class:`IntrospectionSchema` - operation key -> :class:`OperationDefinition`
  describing each query/mutation the API exposes.

Both are frozen. A schema refresh replaces them wholesale.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .errors import ModelNotFoundError

__all__ = [
    "MetaFieldType",
    "MetaField",
    "MetaConstraint",
    "MetaForeignConstraint",
    "RelationKind",
    "MetaRelation",
    "MetaTable",
    "MetaObject",
    "QType",
    "MutationType",
    "QueryProperty",
    "OperationDefinition",
    "IntrospectionSchema",
    "validate_meta_object",
]

_logger = logging.getLogger(__name__)


def _get(raw: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in raw and raw[k] is not None:
            return raw[k]
    return default


@dataclass(frozen=True)
class MetaFieldType:
    gql_type: str
    is_array: bool = False
    pg_alias: Optional[str] = None
    pg_type: Optional[str] = None
    subtype: Optional[str] = None
    typmod: Any = None
    modifier: Any = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "MetaFieldType":
        return cls(
            gql_type=_get(raw, 'gqlType', 'gql_type', default='String'),
            is_array=bool(_get(raw, 'isArray', 'is_array', default=False)),
            pg_alias=_get(raw, 'pgAlias', 'pg_alias'),
            pg_type=_get(raw, 'pgType', 'pg_type'),
            subtype=_get(raw, 'subtype'),
            typmod=_get(raw, 'typmod'),
            modifier=_get(raw, 'modifier'),
        )


@dataclass(frozen=True)
class MetaField:
    name: str
    type: MetaFieldType

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "MetaField":
        return cls(name=raw['name'], type=MetaFieldType.from_dict(raw.get('type') or {}))


@dataclass(frozen=True)
class MetaConstraint:
    name: str
    type: Optional[str] = None
    alias: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "MetaConstraint":
        if isinstance(raw, str):
            return cls(name=raw)
        return cls(name=raw['name'], type=raw.get('type'), alias=raw.get('alias'))


@dataclass(frozen=True)
class MetaForeignConstraint:
    """A foreign key. ``from_key.alias`` names the relation field when it differs from the column."""

    from_key: MetaConstraint
    ref_table: str
    to_key: MetaConstraint

    @property
    def relation_name(self) -> str:
        return self.from_key.alias or self.from_key.name

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "MetaForeignConstraint":
        ref = _get(raw, 'refTable', 'ref_table')
        if isinstance(ref, Mapping):
            ref = ref.get('name')
        return cls(
            from_key=MetaConstraint.from_dict(_get(raw, 'fromKey', 'from_key')),
            ref_table=ref,
            to_key=MetaConstraint.from_dict(_get(raw, 'toKey', 'to_key', default={'name': 'id'})),
        )


class RelationKind(str, Enum):
    BELONGS_TO = 'belongsTo'
    HAS_ONE = 'hasOne'
    HAS_MANY = 'hasMany'
    MANY_TO_MANY = 'manyToMany'


@dataclass(frozen=True)
class MetaRelation:
    field_name: str
    kind: RelationKind
    ref_table: str

    @property
    def is_belongs_to(self) -> bool:
        return self.kind in (RelationKind.BELONGS_TO, RelationKind.HAS_ONE)

    @property
    def is_collection(self) -> bool:
        return self.kind in (RelationKind.HAS_MANY, RelationKind.MANY_TO_MANY)


def _relations_from_raw(raw: Any) -> Tuple[MetaRelation, ...]:
    if not raw:
        return ()
    out: List[MetaRelation] = []
    if isinstance(raw, Mapping):
        # {belongsTo: [...], hasMany: [...]} shape of the _meta payload
        for kind in RelationKind:
            for item in raw.get(kind.value) or []:
                ref = _get(item, 'refTable', 'references', 'rightTable', default={})
                if isinstance(ref, Mapping):
                    ref = ref.get('name')
                out.append(MetaRelation(field_name=_get(item, 'fieldName', 'field_name'), kind=kind, ref_table=ref))
        return tuple(out)
    for item in raw:
        if isinstance(item, MetaRelation):
            out.append(item)
            continue
        out.append(MetaRelation(
            field_name=_get(item, 'fieldName', 'field_name'),
            kind=RelationKind(item['kind']),
            ref_table=_get(item, 'refTable', 'ref_table'),
        ))
    return tuple(out)


@dataclass(frozen=True)
class MetaTable:
    name: str
    fields: Tuple[MetaField, ...] = ()
    primary_constraints: Tuple[MetaConstraint, ...] = ()
    unique_constraints: Tuple[MetaConstraint, ...] = ()
    foreign_constraints: Tuple[MetaForeignConstraint, ...] = ()
    relations: Tuple[MetaRelation, ...] = ()

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def field(self, name: str) -> Optional[MetaField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def is_primary_key(self, name: str) -> bool:
        return any(c.name == name or c.alias == name for c in self.primary_constraints)

    def foreign_constraint_for(self, name: str) -> Optional[MetaForeignConstraint]:
        for fk in self.foreign_constraints:
            if fk.relation_name == name:
                return fk
        return None

    def all_relations(self) -> Tuple[MetaRelation, ...]:
        """Declared relations plus belongs-to relations implied by foreign keys."""
        declared = {r.field_name for r in self.relations}
        implied = tuple(
            MetaRelation(field_name=fk.relation_name, kind=RelationKind.BELONGS_TO, ref_table=fk.ref_table)
            for fk in self.foreign_constraints
            if fk.relation_name not in declared
        )
        return implied + tuple(self.relations)

    def relation(self, name: str) -> Optional[MetaRelation]:
        for rel in self.all_relations():
            if rel.field_name == name:
                return rel
        return None

    def is_relational_field(self, name: str) -> bool:
        """Foreign-key reference (or declared relation) that is not also a primary key."""
        if self.is_primary_key(name):
            return False
        return self.relation(name) is not None

    def scalar_fields(self) -> Tuple[MetaField, ...]:
        return tuple(f for f in self.fields if not self.is_relational_field(f.name))

    def scalar_field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.scalar_fields())

    def relation_names(self) -> Tuple[str, ...]:
        return tuple(r.field_name for r in self.all_relations() if not self.is_primary_key(r.field_name))

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "MetaTable":
        return cls(
            name=raw['name'],
            fields=tuple(MetaField.from_dict(f) for f in raw.get('fields') or ()),
            primary_constraints=tuple(
                MetaConstraint.from_dict(c)
                for c in _get(raw, 'primaryConstraints', 'primary_constraints', default=())
            ),
            unique_constraints=tuple(
                MetaConstraint.from_dict(c)
                for c in _get(raw, 'uniqueConstraints', 'unique_constraints', default=())
            ),
            foreign_constraints=tuple(
                MetaForeignConstraint.from_dict(c)
                for c in _get(raw, 'foreignConstraints', 'foreign_constraints', default=())
            ),
            relations=_relations_from_raw(raw.get('relations')),
        )


@dataclass(frozen=True)
class MetaObject:
    tables: Tuple[MetaTable, ...] = ()

    def __iter__(self) -> Iterator[MetaTable]:
        return iter(self.tables)

    def __len__(self) -> int:
        return len(self.tables)

    def table(self, name: str) -> Optional[MetaTable]:
        for t in self.tables:
            if t.name == name:
                return t
        return None

    def require_table(self, name: str) -> MetaTable:
        t = self.table(name)
        if t is None:
            raise ModelNotFoundError(name)
        return t

    @classmethod
    def from_dict(cls, raw: Any) -> "MetaObject":
        """Parse a ``_meta`` payload (``{"tables": [...]}``) or a bare list of tables."""
        if isinstance(raw, Mapping):
            raw = raw.get('_meta', raw)
            raw = raw.get('tables') or ()
        return cls(tables=tuple(t if isinstance(t, MetaTable) else MetaTable.from_dict(t) for t in raw))


def validate_meta_object(meta: MetaObject) -> List[str]:
    """Structural checks; returns a list of problems (empty when valid)."""
    errors: List[str] = []
    seen = set()
    for t in meta.tables:
        if not t.name:
            errors.append("Table without a name")
            continue
        if t.name in seen:
            errors.append(f"Duplicate table '{t.name}'")
        seen.add(t.name)
        names = t.field_names
        dupes = sorted({n for n in names if names.count(n) > 1})
        for d in dupes:
            errors.append(f"Duplicate field '{d}' in table '{t.name}'")
        for pk in t.primary_constraints:
            if pk.name not in names:
                errors.append(f"Primary key '{pk.name}' does not exist in table '{t.name}'")
    table_names = {t.name for t in meta.tables}
    for t in meta.tables:
        for fk in t.foreign_constraints:
            if fk.ref_table not in table_names:
                errors.append(f"Foreign key '{fk.from_key.name}' of table '{t.name}' references unknown table '{fk.ref_table}'")
        for rel in t.relations:
            if rel.ref_table not in table_names:
                errors.append(f"Relation '{rel.field_name}' of table '{t.name}' references unknown table '{rel.ref_table}'")
    return errors


# --- operation definitions -------------------------------------------------

class QType(str, Enum):
    GET_MANY = 'getMany'
    GET_ONE = 'getOne'
    MUTATION = 'mutation'


class MutationType(str, Enum):
    CREATE = 'create'
    PATCH = 'patch'
    DELETE = 'delete'


@dataclass(frozen=True)
class QueryProperty:
    name: str
    type: Optional[str] = None
    is_not_null: bool = False
    is_array: bool = False
    is_array_not_null: bool = False
    properties: Mapping[str, "QueryProperty"] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, raw: Mapping[str, Any]) -> "QueryProperty":
        return cls(
            name=raw.get('name', name),
            type=raw.get('type'),
            is_not_null=bool(_get(raw, 'isNotNull', 'is_not_null', default=False)),
            is_array=bool(_get(raw, 'isArray', 'is_array', default=False)),
            is_array_not_null=bool(_get(raw, 'isArrayNotNull', 'is_array_not_null', default=False)),
            properties=_properties_from_raw(raw.get('properties')),
        )


def _properties_from_raw(raw: Any) -> Dict[str, QueryProperty]:
    if not raw:
        return {}
    out: Dict[str, QueryProperty] = {}
    items = raw.items() if isinstance(raw, Mapping) else ((p.get('name'), p) for p in raw)
    for name, p in items:
        out[name] = p if isinstance(p, QueryProperty) else QueryProperty.from_dict(name, p)
    return out


@dataclass(frozen=True)
class OperationDefinition:
    model: str
    qtype: QType
    selection: Tuple[str, ...] = ()
    properties: Mapping[str, QueryProperty] = field(default_factory=dict)
    mutation_type: Optional[MutationType] = None

    @property
    def input_type_name(self) -> Optional[str]:
        prop = self.properties.get('input')
        return prop.type if prop is not None else None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "OperationDefinition":
        mt = _get(raw, 'mutationType', 'mutation_type')
        return cls(
            model=raw['model'],
            qtype=QType(raw['qtype']),
            selection=tuple(raw.get('selection') or ()),
            properties=_properties_from_raw(raw.get('properties')),
            mutation_type=MutationType(mt) if mt else None,
        )


@dataclass(frozen=True)
class IntrospectionSchema:
    operations: Mapping[str, OperationDefinition] = field(default_factory=dict)

    def __getitem__(self, key: str) -> OperationDefinition:
        return self.operations[key]

    def __contains__(self, key: object) -> bool:
        return key in self.operations

    def __iter__(self) -> Iterator[str]:
        return iter(self.operations)

    def __len__(self) -> int:
        return len(self.operations)

    def items(self):
        return self.operations.items()

    def get(self, key: str) -> Optional[OperationDefinition]:
        return self.operations.get(key)

    def for_model(self, model: str) -> Dict[str, OperationDefinition]:
        return {k: d for k, d in self.operations.items() if d.model == model}

    def models(self) -> Sequence[str]:
        seen: Dict[str, None] = {}
        for d in self.operations.values():
            seen.setdefault(d.model, None)
        return list(seen)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "IntrospectionSchema":
        ops: Dict[str, OperationDefinition] = {}
        for key, d in raw.items():
            ops[key] = d if isinstance(d, OperationDefinition) else OperationDefinition.from_dict(d)
        _logger.debug("Parsed %d operation definitions", len(ops))
        return cls(operations=ops)
