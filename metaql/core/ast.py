"""Document constructors for PostGraphile-style queries and mutations."""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from graphql.language import ast as gql_ast

from ..errors import ConfigurationError
from ..meta import OperationDefinition, QueryProperty
from ..naming import lower_first, order_by_type_name, singularize, snake_to_camel, upper_first
from . import nodes
from .custom_ast import expand
from .selection import FieldSelection

__all__ = [
    "NON_MUTABLE_PROPS",
    "PAGE_INFO_FIELDS",
    "get_selections",
    "get_many",
    "get_all",
    "get_count",
    "get_one",
    "create_one",
    "patch_one",
    "delete_one",
]

NON_MUTABLE_PROPS = ('createdAt', 'createdBy', 'updatedAt', 'updatedBy')
PAGE_INFO_FIELDS = ('hasNextPage', 'hasPreviousPage', 'endCursor', 'startCursor')


def _type_name(model: str) -> str:
    return upper_first(snake_to_camel(model))


def _document(
    operation: gql_ast.OperationType,
    op_name: str,
    variables: Sequence[gql_ast.VariableDefinitionNode],
    selections: Iterable[gql_ast.SelectionNode],
) -> gql_ast.DocumentNode:
    op = gql_ast.OperationDefinitionNode(
        operation=operation,
        name=nodes.name(op_name),
        variable_definitions=tuple(variables),
        directives=(),
        selection_set=nodes.selection_set(selections),
    )
    return gql_ast.DocumentNode(definitions=(op,))


def get_selections(selection: Sequence[FieldSelection]) -> List[gql_ast.SelectionNode]:
    out: List[gql_ast.SelectionNode] = []
    for s in selection:
        if not s.is_object:
            out.append(expand(s.field_defn) if s.field_defn is not None else nodes.field(s.name))
            continue
        args = [nodes.argument(k, nodes.value(v)) for k, v in s.variables.items()]
        sub = get_selections(s.selection)
        if s.is_belong_to:
            if sub:
                out.append(nodes.field(s.name, args=args, selections=sub))
            continue
        conn: List[gql_ast.SelectionNode] = [nodes.field('totalCount')]
        if sub:
            conn.append(nodes.field('nodes', selections=sub))
        out.append(nodes.field(s.name, args=args, selections=conn))
    return out


def _page_info() -> gql_ast.FieldNode:
    return nodes.field('pageInfo', selections=[nodes.field(n) for n in PAGE_INFO_FIELDS])


def get_many(
    query_name: str,
    key: str,
    definition: OperationDefinition,
    selection: Sequence[FieldSelection],
    *,
    edges: bool = False,
) -> gql_ast.DocumentNode:
    model = _type_name(definition.model)
    variables = [
        nodes.variable_definition('first', nodes.type_node('Int')),
        nodes.variable_definition('last', nodes.type_node('Int')),
        nodes.variable_definition('after', nodes.type_node('Cursor')),
        nodes.variable_definition('before', nodes.type_node('Cursor')),
        nodes.variable_definition('offset', nodes.type_node('Int')),
        nodes.variable_definition('condition', nodes.type_node(f'{model}Condition')),
        nodes.variable_definition('filter', nodes.type_node(f'{model}Filter')),
        nodes.variable_definition(
            'orderBy', nodes.type_node(order_by_type_name(definition.model), not_null=True, is_array=True)
        ),
    ]
    args = [
        nodes.argument(n, nodes.variable(n))
        for n in ('first', 'last', 'offset', 'after', 'before', 'condition', 'filter', 'orderBy')
    ]
    sub = get_selections(selection)
    if edges:
        rows = nodes.field('edges', selections=[nodes.field('cursor'), nodes.field('node', selections=sub)])
    else:
        rows = nodes.field('nodes', selections=sub)
    connection = nodes.field(key, args=args, selections=[nodes.field('totalCount'), _page_info(), rows])
    return _document(gql_ast.OperationType.QUERY, query_name, variables, [connection])


def get_all(
    query_name: str,
    key: str,
    definition: OperationDefinition,
    selection: Sequence[FieldSelection],
) -> gql_ast.DocumentNode:
    connection = nodes.field(key, selections=[
        nodes.field('totalCount'),
        nodes.field('nodes', selections=get_selections(selection)),
    ])
    return _document(gql_ast.OperationType.QUERY, query_name, (), [connection])


def get_count(query_name: str, key: str, definition: OperationDefinition) -> gql_ast.DocumentNode:
    model = _type_name(definition.model)
    variables = [
        nodes.variable_definition('condition', nodes.type_node(f'{model}Condition')),
        nodes.variable_definition('filter', nodes.type_node(f'{model}Filter')),
    ]
    args = [nodes.argument(n, nodes.variable(n)) for n in ('condition', 'filter')]
    connection = nodes.field(key, args=args, selections=[nodes.field('totalCount')])
    return _document(gql_ast.OperationType.QUERY, query_name, variables, [connection])


def _property_variable(prop: QueryProperty, *, force_not_null: bool = False) -> gql_ast.VariableDefinitionNode:
    return nodes.variable_definition(prop.name, nodes.type_node(
        prop.type or 'String',
        not_null=force_not_null or prop.is_not_null,
        is_array=prop.is_array,
        array_not_null=prop.is_array_not_null,
    ))


def get_one(
    query_name: str,
    key: str,
    definition: OperationDefinition,
    selection: Sequence[FieldSelection],
) -> gql_ast.DocumentNode:
    props = [p for p in definition.properties.values() if p.is_not_null]
    variables = [_property_variable(p) for p in props]
    args = [nodes.argument(p.name, nodes.variable(p.name)) for p in props]
    row = nodes.field(key, args=args, selections=get_selections(selection))
    return _document(gql_ast.OperationType.QUERY, query_name, variables, [row])


def _input_property(key: str, definition: OperationDefinition) -> QueryProperty:
    prop = definition.properties.get('input')
    if prop is None:
        raise ConfigurationError(f"No input field for mutation: {key}")
    return prop


def _payload_field(definition: OperationDefinition) -> str:
    return lower_first(singularize(_type_name(definition.model)))


def _mutable(props: Iterable[QueryProperty], skip: Iterable[str] = ()) -> List[QueryProperty]:
    skip = set(skip) | set(NON_MUTABLE_PROPS)
    return [p for p in props if p.name not in skip]


def create_one(
    mutation_name: str,
    key: str,
    definition: OperationDefinition,
    selection: Sequence[FieldSelection],
) -> gql_ast.DocumentNode:
    model_field = _payload_field(definition)
    input_prop = _input_property(key, definition)
    model_prop = input_prop.properties.get(model_field)
    if model_prop is None or not model_prop.properties:
        raise ConfigurationError(f"No properties found for model: {definition.model}")
    attrs = _mutable(model_prop.properties.values())
    variables = [_property_variable(p) for p in attrs]
    model_value = gql_ast.ObjectValueNode(fields=tuple(nodes.object_field(p.name, nodes.variable(p.name)) for p in attrs))
    input_value = gql_ast.ObjectValueNode(fields=(nodes.object_field(model_field, model_value),))
    mutation = nodes.field(
        key,
        args=[nodes.argument('input', input_value)],
        selections=[nodes.field(model_field, selections=get_selections(selection))],
    )
    return _document(gql_ast.OperationType.MUTATION, mutation_name, variables, [mutation])


def patch_one(
    mutation_name: str,
    key: str,
    definition: OperationDefinition,
    selection: Sequence[FieldSelection],
) -> gql_ast.DocumentNode:
    """``update<Model>(input: {<key attrs>, patch: {...}})``.

    Key attributes (every input property other than ``patch``) become required
    variables; patch attributes sharing a key attribute's name are left out so
    each variable is declared once.
    """
    model_field = _payload_field(definition)
    input_prop = _input_property(key, definition)
    patch_prop = input_prop.properties.get('patch')
    if patch_prop is None or not patch_prop.properties:
        raise ConfigurationError(f"No patch properties found for model: {definition.model}")
    patch_by = [p for n, p in input_prop.properties.items() if n not in ('patch', 'clientMutationId')]
    attrs = _mutable(patch_prop.properties.values(), skip=[p.name for p in patch_by])
    variables = [_property_variable(p, force_not_null=True) for p in patch_by]
    variables += [_property_variable(p) for p in attrs]
    patch_value = gql_ast.ObjectValueNode(fields=tuple(nodes.object_field(p.name, nodes.variable(p.name)) for p in attrs))
    input_fields: Tuple[gql_ast.ObjectFieldNode, ...] = tuple(
        nodes.object_field(p.name, nodes.variable(p.name)) for p in patch_by
    ) + (nodes.object_field('patch', patch_value),)
    mutation = nodes.field(
        key,
        args=[nodes.argument('input', gql_ast.ObjectValueNode(fields=input_fields))],
        selections=[nodes.field(model_field, selections=get_selections(selection))],
    )
    return _document(gql_ast.OperationType.MUTATION, mutation_name, variables, [mutation])


def delete_one(
    mutation_name: str,
    key: str,
    definition: OperationDefinition,
    selection: Optional[Sequence[FieldSelection]] = None,
) -> gql_ast.DocumentNode:
    input_prop = _input_property(key, definition)
    attrs = [p for n, p in input_prop.properties.items() if n != 'clientMutationId']
    if not attrs:
        raise ConfigurationError(f"No properties found for model: {definition.model}")
    variables = [_property_variable(p) for p in attrs]
    input_value = gql_ast.ObjectValueNode(fields=tuple(nodes.object_field(p.name, nodes.variable(p.name)) for p in attrs))
    mutation = nodes.field(
        key,
        args=[nodes.argument('input', input_value)],
        selections=[nodes.field('clientMutationId')],
    )
    return _document(gql_ast.OperationType.MUTATION, mutation_name, variables, [mutation])
