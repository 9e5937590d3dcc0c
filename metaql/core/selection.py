"""Field selection resolution.

A selection request is either a :class:`Preset` or an :class:`ExplicitSelection`.
:func:`resolve` turns it into a list of :class:`FieldSelection` nodes, silently
dropping names the table does not declare. :func:`validate` reports the same
mistakes as messages and is meant to be called explicitly before building.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..errors import SelectionValidationError
from ..meta import MetaField, MetaObject, MetaRelation, MetaTable
from .custom_ast import requires_subselection

__all__ = [
    "MINIMAL_FIELD_COUNT",
    "DEFAULT_NESTED_RELATION_FIRST",
    "Preset",
    "RelationInclude",
    "ExplicitSelection",
    "SelectionSpec",
    "RelationSelect",
    "SelectionOptions",
    "FieldSelection",
    "ValidationResult",
    "coerce_selection",
    "is_explicit_mapping",
    "selection_key",
    "selection_options",
    "selections_from_options",
    "resolve",
    "validate",
    "ensure_valid",
    "available_relations",
    "is_relational_field",
    "is_large_payload",
]

_logger = logging.getLogger(__name__)

MINIMAL_FIELD_COUNT = 3
DEFAULT_NESTED_RELATION_FIRST = 20

_LARGE_PG_TYPES = {'json', 'jsonb', 'tsvector', 'bytea', 'xml'}
_LARGE_GQL_TYPES = {'JSON', 'GeoJSON'}
_EXPLICIT_KEYS = {'select', 'exclude', 'include'}


class Preset(str, Enum):
    MINIMAL = 'minimal'
    DISPLAY = 'display'
    ALL = 'all'
    FULL = 'full'


@dataclass(frozen=True)
class RelationInclude:
    """Sub-selection for one relation; ``select=None`` means every scalar field."""

    select: Optional[Tuple[str, ...]] = None
    variables: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(cls, raw: Any) -> Optional["RelationInclude"]:
        if isinstance(raw, RelationInclude):
            return raw
        if raw is True:
            return cls()
        if raw is False or raw is None:
            return None
        if isinstance(raw, (list, tuple)):
            return cls(select=tuple(raw))
        if isinstance(raw, Mapping):
            sel = raw.get('select')
            if isinstance(sel, Mapping):
                sel = tuple(k for k, on in sel.items() if on)
            elif sel is not None:
                sel = tuple(sel)
            return cls(select=sel, variables=dict(raw.get('variables') or {}))
        raise TypeError(f"Unsupported include value: {raw!r}")


@dataclass(frozen=True)
class ExplicitSelection:
    select: Optional[Tuple[str, ...]] = None
    exclude: Tuple[str, ...] = ()
    include: Mapping[str, RelationInclude] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ExplicitSelection":
        unknown = set(raw) - _EXPLICIT_KEYS
        if unknown:
            raise TypeError(f"Unknown selection keys: {sorted(unknown)}")
        include: Dict[str, RelationInclude] = {}
        for rel_name, value in (raw.get('include') or {}).items():
            inc = RelationInclude.coerce(value)
            if inc is not None:
                include[rel_name] = inc
        select = raw.get('select')
        return cls(
            select=tuple(select) if select is not None else None,
            exclude=tuple(raw.get('exclude') or ()),
            include=include,
        )


SelectionSpec = Union[Preset, ExplicitSelection]


@dataclass(frozen=True)
class RelationSelect:
    select: Mapping[str, bool]
    variables: Mapping[str, Any] = field(default_factory=dict)


SelectionOptions = Dict[str, Union[bool, RelationSelect]]


@dataclass(frozen=True)
class FieldSelection:
    """Node of a resolved selection tree (leaf or relation object)."""

    name: str
    is_object: bool = False
    field_defn: Optional[MetaField] = None
    is_belong_to: bool = False
    selection: Tuple["FieldSelection", ...] = ()
    variables: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: Tuple[str, ...] = ()


def coerce_selection(raw: Any) -> SelectionSpec:
    if raw is None:
        return Preset.DISPLAY
    if isinstance(raw, (Preset, ExplicitSelection)):
        return raw
    if isinstance(raw, str):
        try:
            return Preset(raw)
        except ValueError:
            raise ValueError(f"Unknown selection preset: {raw!r}") from None
    if isinstance(raw, Mapping):
        return ExplicitSelection.from_dict(raw)
    raise TypeError(f"Unsupported selection spec: {raw!r}")


def is_explicit_mapping(spec: Any) -> bool:
    """A mapping keyed only by ``select``/``exclude``/``include`` is an explicit selection."""
    return isinstance(spec, Mapping) and set(spec) <= _EXPLICIT_KEYS


def selection_key(spec: Any) -> Any:
    """JSON-able canonical form of a selection spec or options mapping (for hashing).

    ``None`` keeps its own key: builders resolve it to every scalar field,
    which is not the ``display`` preset.
    """
    if spec is None:
        return {'preset': None}
    if isinstance(spec, (str, Preset)):
        return {'preset': coerce_selection(spec).value}
    if is_explicit_mapping(spec):
        return selection_key(ExplicitSelection.from_dict(spec))
    if isinstance(spec, ExplicitSelection):
        return {
            'select': list(spec.select) if spec.select is not None else None,
            'exclude': sorted(spec.exclude),
            'include': {
                k: {'select': list(v.select) if v.select is not None else None, 'variables': dict(v.variables)}
                for k, v in spec.include.items()
            },
        }
    if isinstance(spec, Mapping):
        out: Dict[str, Any] = {}
        for k, v in spec.items():
            if isinstance(v, RelationSelect):
                out[k] = {'select': dict(v.select), 'variables': dict(v.variables)}
            else:
                out[k] = v
        return {'options': out}
    return selection_key(coerce_selection(spec))


def _tables_by_name(all_tables: Union[MetaObject, Iterable[MetaTable], None]) -> Dict[str, MetaTable]:
    if all_tables is None:
        return {}
    return {t.name: t for t in all_tables}


def is_large_payload(f: MetaField) -> bool:
    t = f.type
    if (t.pg_type or '').lower() in _LARGE_PG_TYPES or t.gql_type in _LARGE_GQL_TYPES:
        return True
    return requires_subselection(f)


def is_relational_field(name: str, table: MetaTable) -> bool:
    return table.is_relational_field(name)


def available_relations(table: MetaTable) -> List[MetaRelation]:
    return [r for r in table.all_relations() if not table.is_primary_key(r.field_name)]


def _relation_select(
    table: MetaTable,
    rel_name: str,
    tables: Dict[str, MetaTable],
    inc: RelationInclude,
    nested_relation_first: int,
) -> Optional[RelationSelect]:
    rel = table.relation(rel_name)
    ref = tables.get(rel.ref_table) if rel is not None else None
    if ref is None:
        _logger.debug("Dropping relation %s.%s: referenced table not available", table.name, rel_name)
        return None
    ref_scalars = ref.scalar_field_names()
    if inc.select is None:
        names: Sequence[str] = ref_scalars
    else:
        names = [n for n in inc.select if n in ref_scalars]
    variables = dict(inc.variables)
    if rel.is_collection and 'first' not in variables and nested_relation_first:
        variables['first'] = nested_relation_first
    return RelationSelect(select={n: True for n in names}, variables=variables)


def selection_options(
    table: MetaTable,
    all_tables: Union[MetaObject, Iterable[MetaTable], None],
    spec: Any,
    *,
    nested_relation_first: int = DEFAULT_NESTED_RELATION_FIRST,
) -> SelectionOptions:
    """Resolve ``spec`` to a ``{field: True | RelationSelect}`` mapping."""
    spec = coerce_selection(spec)
    tables = _tables_by_name(all_tables)
    tables.setdefault(table.name, table)
    scalars = table.scalar_fields()
    opts: SelectionOptions = {}

    if isinstance(spec, Preset):
        if spec is Preset.MINIMAL:
            picked = scalars[:MINIMAL_FIELD_COUNT]
        elif spec is Preset.DISPLAY:
            picked = tuple(f for f in scalars if not is_large_payload(f))
        else:
            picked = scalars
        for f in picked:
            opts[f.name] = True
        if spec is Preset.FULL:
            for rel in available_relations(table):
                rs = _relation_select(table, rel.field_name, tables, RelationInclude(), nested_relation_first)
                if rs is not None:
                    opts[rel.field_name] = rs
        return opts

    scalar_names = [f.name for f in scalars]
    scalar_set = set(scalar_names)
    excluded = set(spec.exclude)
    requested = spec.select if spec.select is not None else scalar_names
    for n in requested:
        if n in scalar_set and n not in excluded:
            opts.setdefault(n, True)
    for rel_name, inc in spec.include.items():
        if rel_name in excluded or not table.is_relational_field(rel_name):
            continue
        rs = _relation_select(table, rel_name, tables, inc, nested_relation_first)
        if rs is not None:
            opts[rel_name] = rs
    return opts


def selections_from_options(
    table: MetaTable,
    all_tables: Union[MetaObject, Iterable[MetaTable], None],
    options: Mapping[str, Union[bool, RelationSelect]],
) -> List[FieldSelection]:
    tables = _tables_by_name(all_tables)
    tables.setdefault(table.name, table)
    out: List[FieldSelection] = []
    for name, value in options.items():
        if value is True:
            f = table.field(name)
            if f is not None and not table.is_relational_field(name):
                out.append(FieldSelection(name=name, field_defn=f))
            continue
        if not isinstance(value, RelationSelect):
            continue
        rel = table.relation(name)
        ref = tables.get(rel.ref_table) if rel is not None else None
        if ref is None:
            continue
        sub = tuple(
            FieldSelection(name=n, field_defn=ref.field(n))
            for n, on in value.select.items()
            if on and ref.field(n) is not None
        )
        out.append(FieldSelection(
            name=name,
            is_object=True,
            is_belong_to=rel.is_belongs_to,
            selection=sub,
            variables=dict(value.variables),
        ))
    return out


def resolve(
    table: MetaTable,
    all_tables: Union[MetaObject, Iterable[MetaTable], None],
    spec: Any,
    *,
    nested_relation_first: int = DEFAULT_NESTED_RELATION_FIRST,
) -> List[FieldSelection]:
    """Lenient resolution: unknown names are dropped without error."""
    opts = selection_options(table, all_tables, spec, nested_relation_first=nested_relation_first)
    return selections_from_options(table, all_tables, opts)


def validate(
    spec: Any,
    table: MetaTable,
    all_tables: Union[MetaObject, Iterable[MetaTable], None] = None,
) -> ValidationResult:
    """Strict check of an explicit selection. Presets are always valid."""
    spec = coerce_selection(spec)
    if isinstance(spec, Preset):
        return ValidationResult(is_valid=True)
    tables = _tables_by_name(all_tables)
    declared = set(table.field_names)
    errors: List[str] = []
    for n in spec.select or ():
        if n not in declared:
            errors.append(f"Field '{n}' does not exist in table '{table.name}'")
    for n in spec.exclude:
        if n not in declared and not table.is_relational_field(n):
            errors.append(f"Field '{n}' does not exist in table '{table.name}'")
    for rel_name, inc in spec.include.items():
        if not table.is_relational_field(rel_name):
            errors.append(f"Field '{rel_name}' is not a relational field in table '{table.name}'")
            continue
        if not tables or inc.select is None:
            continue
        rel = table.relation(rel_name)
        ref = tables.get(rel.ref_table)
        if ref is None:
            errors.append(f"Table '{rel.ref_table}' referenced by '{rel_name}' does not exist")
            continue
        ref_declared = set(ref.field_names)
        for sub in inc.select:
            if sub not in ref_declared:
                errors.append(f"Field '{sub}' does not exist in table '{ref.name}'")
    return ValidationResult(is_valid=not errors, errors=tuple(errors))


def ensure_valid(
    spec: Any,
    table: MetaTable,
    all_tables: Union[MetaObject, Iterable[MetaTable], None] = None,
) -> SelectionSpec:
    result = validate(spec, table, all_tables)
    if not result.is_valid:
        raise SelectionValidationError(result.errors)
    return coerce_selection(spec)
