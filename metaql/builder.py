"""Query/mutation builder.

The builder is an immutable pipeline::

    builder = QueryBuilder(meta, introspection)
    doc = builder.query('User').select('display').get_many().print()
    doc.serialized   # query getUsersQuery($first: Int, ...) { users(...) { ... } }

``query(model)`` returns a fresh :class:`EntityQuery`; ``select`` returns a new
one; every build method returns a :class:`BuiltDocument`. Nothing is mutated,
so one builder can serve many documents concurrently.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from graphql import print_ast
from graphql.language import ast as gql_ast

from .core import ast as doc_ast
from .core.selection import (
    DEFAULT_NESTED_RELATION_FIRST,
    ExplicitSelection,
    FieldSelection,
    Preset,
    RelationSelect,
    is_explicit_mapping,
    selection_options,
)
from .errors import (
    ConfigurationError,
    DocumentNotBuiltError,
    InvalidMetaError,
    MutationNotFoundError,
    OperationNotFoundError,
)
from .meta import (
    IntrospectionSchema,
    MetaObject,
    MetaTable,
    MutationType,
    OperationDefinition,
    QType,
    validate_meta_object,
)
from .naming import operation_query_name, snake_to_camel, upper_first

__all__ = ["OperationKind", "PrintedDocument", "BuiltDocument", "EntityQuery", "QueryBuilder"]

_logger = logging.getLogger(__name__)

_MUTATION_VERBS = {
    MutationType.CREATE: 'Create',
    MutationType.PATCH: 'Update',
    MutationType.DELETE: 'Delete',
}


class OperationKind(str, Enum):
    GET_MANY = 'getMany'
    GET_ALL = 'getAll'
    COUNT = 'count'
    GET_ONE = 'getOne'
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'


@dataclass(frozen=True)
class PrintedDocument:
    ast: gql_ast.DocumentNode
    query_name: str
    serialized: str
    operation_key: str

    def __str__(self) -> str:
        return self.serialized


@dataclass(frozen=True)
class BuiltDocument:
    model: str
    kind: OperationKind
    operation_key: str
    query_name: str
    ast: gql_ast.DocumentNode
    selection: Tuple[FieldSelection, ...] = ()

    def print(self) -> PrintedDocument:
        return PrintedDocument(
            ast=self.ast,
            query_name=self.query_name,
            serialized=print_ast(self.ast),
            operation_key=self.operation_key,
        )


@dataclass(frozen=True)
class EntityQuery:
    """A model chosen on a :class:`QueryBuilder`, optionally with a selection."""

    builder: "QueryBuilder"
    model: str
    selection_spec: Any = None
    edges: bool = False

    def select(self, spec: Any = None) -> "EntityQuery":
        """Apply a selection.

        ``spec`` may be ``None`` (scalar fields only), a preset name or
        :class:`Preset`, an :class:`ExplicitSelection`, a mapping keyed only by
        ``select``/``exclude``/``include``, or a selection options
        mapping ``{field: True | RelationSelect | {"select": {...}}}``.
        """
        return replace(self, selection_spec=spec)

    def with_edges(self, enabled: bool = True) -> "EntityQuery":
        return replace(self, edges=enabled)

    def _selection(self, definition: OperationDefinition) -> Tuple[FieldSelection, ...]:
        return self.builder.resolve_selection(self.model, definition, self.selection_spec)

    def _built(self, kind: OperationKind, key: str, name: str, document, selection=()) -> BuiltDocument:
        _logger.debug("Built %s document %s for %s", kind.value, name, self.model)
        return BuiltDocument(
            model=self.model,
            kind=kind,
            operation_key=key,
            query_name=name,
            ast=document,
            selection=tuple(selection),
        )

    def get_many(self) -> BuiltDocument:
        key, defn = self.builder.find_query(self.model, QType.GET_MANY)
        selection = self._selection(defn)
        name = operation_query_name(key)
        document = doc_ast.get_many(name, key, defn, selection, edges=self.edges)
        return self._built(OperationKind.GET_MANY, key, name, document, selection)

    def all(self) -> BuiltDocument:
        key, defn = self.builder.find_query(self.model, QType.GET_MANY)
        selection = self._selection(defn)
        name = operation_query_name(key, 'QueryAll')
        return self._built(OperationKind.GET_ALL, key, name, doc_ast.get_all(name, key, defn, selection), selection)

    def count(self) -> BuiltDocument:
        key, defn = self.builder.find_query(self.model, QType.GET_MANY)
        name = operation_query_name(key, 'CountQuery')
        return self._built(OperationKind.COUNT, key, name, doc_ast.get_count(name, key, defn))

    def get_one(self) -> BuiltDocument:
        key, defn = self.builder.find_query(self.model, QType.GET_ONE)
        selection = self._selection(defn)
        name = operation_query_name(key)
        return self._built(OperationKind.GET_ONE, key, name, doc_ast.get_one(name, key, defn, selection), selection)

    def create(self) -> BuiltDocument:
        key, defn = self.builder.find_mutation(self.model, MutationType.CREATE)
        selection = self._selection(defn)
        name = f"{key}Mutation"
        return self._built(OperationKind.CREATE, key, name, doc_ast.create_one(name, key, defn, selection), selection)

    def update(self) -> BuiltDocument:
        key, defn = self.builder.find_mutation(self.model, MutationType.PATCH)
        selection = self._selection(defn)
        name = f"{key}Mutation"
        return self._built(OperationKind.UPDATE, key, name, doc_ast.patch_one(name, key, defn, selection), selection)

    def delete(self) -> BuiltDocument:
        key, defn = self.builder.find_mutation(self.model, MutationType.DELETE)
        name = f"{key}Mutation"
        return self._built(OperationKind.DELETE, key, name, doc_ast.delete_one(name, key, defn))

    def print(self) -> PrintedDocument:
        raise DocumentNotBuiltError()


class QueryBuilder:
    """Entry point: holds the metadata and introspected operations of one schema version."""

    def __init__(
        self,
        meta: Union[MetaObject, Mapping[str, Any], Sequence[Any]],
        introspection: Union[IntrospectionSchema, Mapping[str, Any]],
        *,
        nested_relation_first: int = DEFAULT_NESTED_RELATION_FIRST,
    ):
        if not isinstance(meta, MetaObject):
            meta = MetaObject.from_dict(meta)
        if not isinstance(introspection, IntrospectionSchema):
            introspection = IntrospectionSchema.from_dict(introspection)
        errors = validate_meta_object(meta)
        if errors:
            raise InvalidMetaError(errors)
        self.meta = meta
        self.introspection = introspection
        self.nested_relation_first = nested_relation_first
        self._models: Dict[str, Dict[str, OperationDefinition]] = {}
        for key, defn in introspection.items():
            self._models.setdefault(defn.model, {})[key] = defn

    def __repr__(self) -> str:
        return f"QueryBuilder(models={sorted(self._models)!r})"

    def models(self) -> List[str]:
        return list(self._models)

    def query(self, model: str) -> EntityQuery:
        return EntityQuery(builder=self, model=model)

    def table(self, model: str) -> MetaTable:
        return self.meta.require_table(model)

    # --- lookups ---------------------------------------------------------

    def find_query(self, model: str, qtype: QType) -> Tuple[str, OperationDefinition]:
        defs = self._models.get(model)
        if not defs:
            raise OperationNotFoundError(model)
        matches = [(k, d) for k, d in defs.items() if d.qtype is qtype]
        if not matches:
            raise OperationNotFoundError(model, qtype.value)
        if len(matches) > 1:
            keys = ', '.join(k for k, _ in matches)
            raise ConfigurationError(f"Multiple {qtype.value} queries found for {model}: {keys}")
        return matches[0]

    def find_mutation(self, model: str, mutation_type: MutationType) -> Tuple[str, OperationDefinition]:
        defs = self._models.get(model)
        if not defs:
            raise OperationNotFoundError(model)
        candidates = [
            (k, d) for k, d in defs.items()
            if d.qtype is QType.MUTATION and d.mutation_type is mutation_type
        ]
        expected = f"{_MUTATION_VERBS[mutation_type]}{upper_first(snake_to_camel(model))}Input"
        matches = [(k, d) for k, d in candidates if d.input_type_name == expected]
        if len(matches) != 1:
            raise MutationNotFoundError(model, mutation_type.value, [k for k, _ in candidates])
        return matches[0]

    # --- selections ------------------------------------------------------

    def _selection_definition(self, model: str, definition: OperationDefinition) -> OperationDefinition:
        if definition.qtype is QType.MUTATION:
            return self.find_query(model, QType.GET_MANY)[1]
        return definition

    def pick_scalar_fields(
        self,
        model: str,
        definition: OperationDefinition,
        only: Optional[Iterable[str]] = None,
    ) -> Tuple[FieldSelection, ...]:
        """Scalar fields of ``definition`` known to the model's metadata.

        Mutations use the model's list query selection. ``only`` restricts and
        orders the result.
        """
        table = self.table(model)
        definition = self._selection_definition(model, definition)
        declared = definition.selection or table.field_names
        if only is None:
            names: Iterable[str] = declared
        else:
            allowed = set(declared)
            names = [n for n in only if n in allowed]
        out: List[FieldSelection] = []
        seen = set()
        for name in names:
            f = table.field(name)
            if f is None or name in seen or table.is_relational_field(name):
                continue
            seen.add(name)
            out.append(FieldSelection(name=name, field_defn=f))
        return tuple(out)

    def pick_all_fields(
        self,
        model: str,
        definition: OperationDefinition,
        options: Mapping[str, Any],
    ) -> Tuple[FieldSelection, ...]:
        """Resolve a selection options mapping against the operation definitions."""
        table = self.table(model)
        allowed = set(self._selection_definition(model, definition).selection)
        out: List[FieldSelection] = []
        for name, value in options.items():
            if not value:
                continue
            relational = table.is_relational_field(name)
            if allowed and name not in allowed and not relational:
                continue
            if value is True and not relational:
                f = table.field(name)
                if f is not None:
                    out.append(FieldSelection(name=name, field_defn=f))
                continue
            rel = table.relation(name)
            if rel is None:
                _logger.debug("Ignoring object selection %s.%s: not a relation", model, name)
                continue
            if isinstance(value, RelationSelect):
                # resolved options: an empty select means no matching field survived
                wanted = [n for n, on in value.select.items() if on]
                variables = dict(value.variables)
            elif isinstance(value, Mapping):
                raw = value.get('select')
                if isinstance(raw, Mapping):
                    wanted = [n for n, on in raw.items() if on] or None
                else:
                    wanted = list(raw) if raw else None
                variables = dict(value.get('variables') or {})
            else:
                wanted, variables = None, {}
            try:
                _, ref_defn = self.find_query(rel.ref_table, QType.GET_MANY)
            except OperationNotFoundError as e:
                raise ConfigurationError(
                    f"Relation {model}.{name} references {rel.ref_table}, which has no getMany definition"
                ) from e
            sub = self.pick_scalar_fields(rel.ref_table, ref_defn, only=wanted)
            out.append(FieldSelection(
                name=name,
                is_object=True,
                is_belong_to=rel.is_belongs_to,
                selection=sub,
                variables=variables,
            ))
        return tuple(out)

    def resolve_selection(
        self,
        model: str,
        definition: OperationDefinition,
        spec: Any,
    ) -> Tuple[FieldSelection, ...]:
        if spec is None:
            return self.pick_scalar_fields(model, definition)
        if isinstance(spec, Mapping) and not is_explicit_mapping(spec):
            return self.pick_all_fields(model, definition, spec)
        if isinstance(spec, (str, Preset, ExplicitSelection, Mapping)):
            options = selection_options(
                self.table(model), self.meta, spec, nested_relation_first=self.nested_relation_first
            )
            return self.pick_all_fields(model, definition, options)
        raise TypeError(f"Unsupported selection spec: {spec!r}")
