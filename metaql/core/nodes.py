"""Thin constructors over graphql-core AST nodes."""
from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

from graphql.language import ast as gql_ast

__all__ = [
    "name",
    "field",
    "selection_set",
    "inline_fragment",
    "variable",
    "variable_definition",
    "type_node",
    "argument",
    "object_field",
    "value",
]


def name(value: str) -> gql_ast.NameNode:
    return gql_ast.NameNode(value=value)


def selection_set(selections: Iterable[gql_ast.SelectionNode]) -> gql_ast.SelectionSetNode:
    return gql_ast.SelectionSetNode(selections=tuple(selections))


def field(
    field_name: str,
    *,
    args: Sequence[gql_ast.ArgumentNode] = (),
    selections: Optional[Iterable[gql_ast.SelectionNode]] = None,
    alias: Optional[str] = None,
) -> gql_ast.FieldNode:
    return gql_ast.FieldNode(
        alias=name(alias) if alias else None,
        name=name(field_name),
        arguments=tuple(args),
        directives=(),
        selection_set=selection_set(selections) if selections is not None else None,
    )


def inline_fragment(type_name: str, selections: Iterable[gql_ast.SelectionNode]) -> gql_ast.InlineFragmentNode:
    return gql_ast.InlineFragmentNode(
        type_condition=gql_ast.NamedTypeNode(name=name(type_name)),
        directives=(),
        selection_set=selection_set(selections),
    )


def variable(var_name: str) -> gql_ast.VariableNode:
    return gql_ast.VariableNode(name=name(var_name))


def type_node(
    type_name: str,
    *,
    not_null: bool = False,
    is_array: bool = False,
    array_not_null: bool = False,
) -> gql_ast.TypeNode:
    """Named type optionally wrapped as ``T!``, ``[T]``, ``[T!]!``."""
    node: gql_ast.TypeNode = gql_ast.NamedTypeNode(name=name(type_name))
    if not_null:
        node = gql_ast.NonNullTypeNode(type=node)
    if is_array:
        node = gql_ast.ListTypeNode(type=node)
        if array_not_null:
            node = gql_ast.NonNullTypeNode(type=node)
    return node


def variable_definition(var_name: str, var_type: gql_ast.TypeNode) -> gql_ast.VariableDefinitionNode:
    return gql_ast.VariableDefinitionNode(
        variable=variable(var_name), type=var_type, default_value=None, directives=()
    )


def argument(arg_name: str, arg_value: gql_ast.ValueNode) -> gql_ast.ArgumentNode:
    return gql_ast.ArgumentNode(name=name(arg_name), value=arg_value)


def object_field(field_name: str, field_value: gql_ast.ValueNode) -> gql_ast.ObjectFieldNode:
    return gql_ast.ObjectFieldNode(name=name(field_name), value=field_value)


def value(v: Any) -> gql_ast.ValueNode:
    """Literal value node for a plain Python value."""
    if isinstance(v, gql_ast.ValueNode):
        return v
    if v is None:
        return gql_ast.NullValueNode()
    # bool before int: bool is an int subclass
    if isinstance(v, bool):
        return gql_ast.BooleanValueNode(value=v)
    if isinstance(v, Enum):
        return gql_ast.EnumValueNode(value=str(v.value))
    if isinstance(v, int):
        return gql_ast.IntValueNode(value=str(v))
    if isinstance(v, float):
        return gql_ast.FloatValueNode(value=repr(v))
    if isinstance(v, str):
        return gql_ast.StringValueNode(value=v, block=False)
    if isinstance(v, Mapping):
        return gql_ast.ObjectValueNode(fields=tuple(object_field(str(k), value(x)) for k, x in v.items()))
    if isinstance(v, (list, tuple)):
        return gql_ast.ListValueNode(values=tuple(value(x) for x in v))
    raise TypeError(f"Unsupported literal value: {v!r}")
