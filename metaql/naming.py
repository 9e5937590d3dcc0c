"""Common naming utilities for MetaQL.

Provides camelCase/PascalCase/snake_case conversion plus the small amount of
English inflection needed to derive PostGraphile-style operation and type
names (``User`` -> ``users``, ``UsersOrderBy``, ``CreateUserInput``).
"""
from __future__ import annotations

import re

__all__ = [
    "camel_to_snake",
    "snake_to_camel",
    "lower_first",
    "upper_first",
    "pluralize",
    "singularize",
    "constant_case",
    "to_camel_case_plural",
    "to_camel_case_singular",
    "order_by_type_name",
    "model_name_to_get_many",
    "operation_query_name",
]

_IRREGULAR = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "mouse": "mice",
    "goose": "geese",
    "datum": "data",
    "index": "indices",
}
_IRREGULAR_REVERSE = {v: k for k, v in _IRREGULAR.items()}
_UNCOUNTABLE = {"data", "metadata", "information", "equipment", "news", "series", "species"}

_word_split = re.compile(r"([A-Z]?[a-z0-9]+|[A-Z]+(?![a-z]))$")


def camel_to_snake(name: str) -> str:
    """Convert camelCase or PascalCase identifier to snake_case.

    Idempotent for already snake_case input. Handles sequences of capitals.
    """
    if not isinstance(name, str) or not name:
        return name  # type: ignore
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    s2 = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1)
    return s2.lower()


def snake_to_camel(name: str, upper_first: bool = False) -> str:
    """Convert snake_case identifier to camelCase or PascalCase.

    upper_first=False returns lowerCamelCase (default), True returns UpperCamelCase.
    Idempotent for already camelCase strings without underscores.
    """
    if not isinstance(name, str) or not name:
        return name  # type: ignore
    if '_' not in name:
        if upper_first:
            return name[0].upper() + name[1:]
        return name
    parts = [p for p in name.split('_') if p]
    if not parts:
        return ''
    first = parts[0].lower() if not upper_first else parts[0].capitalize()
    rest = ''.join(p.capitalize() for p in parts[1:])
    return first + rest


def lower_first(name: str) -> str:
    return name[:1].lower() + name[1:] if name else name


def upper_first(name: str) -> str:
    return name[:1].upper() + name[1:] if name else name


def _split_last_word(name: str):
    m = _word_split.search(name)
    if not m:
        return "", name
    return name[:m.start()], m.group(0)


def _match_case(word: str, template: str) -> str:
    if template.isupper() and len(template) > 1:
        return word.upper()
    if template[:1].isupper():
        return word[:1].upper() + word[1:]
    return word


def _pluralize_word(word: str) -> str:
    low = word.lower()
    if low in _UNCOUNTABLE:
        return word
    if low in _IRREGULAR:
        return _match_case(_IRREGULAR[low], word)
    if low.endswith('y') and low[-2:] not in ('ay', 'ey', 'iy', 'oy', 'uy'):
        return word[:-1] + 'ies'
    if low.endswith(('s', 'x', 'z', 'ch', 'sh')):
        return word + 'es'
    return word + 's'


def _singularize_word(word: str) -> str:
    low = word.lower()
    if low in _UNCOUNTABLE:
        return word
    if low in _IRREGULAR_REVERSE:
        return _match_case(_IRREGULAR_REVERSE[low], word)
    if low.endswith('ies') and len(low) > 3:
        return word[:-3] + 'y'
    if low.endswith(('sses', 'xes', 'zes', 'ches', 'shes')):
        return word[:-2]
    if low.endswith('s') and not low.endswith(('ss', 'us', 'is')):
        return word[:-1]
    return word


def pluralize(name: str) -> str:
    """Pluralize the last word of an identifier (``UserSetting`` -> ``UserSettings``)."""
    if not name:
        return name
    if '_' in name:
        head, _, tail = name.rpartition('_')
        return f"{head}_{_pluralize_word(tail)}"
    head, tail = _split_last_word(name)
    return head + _pluralize_word(tail)


def singularize(name: str) -> str:
    """Singularize the last word of an identifier (``post_comments`` -> ``post_comment``)."""
    if not name:
        return name
    if '_' in name:
        head, _, tail = name.rpartition('_')
        return f"{head}_{_singularize_word(tail)}"
    head, tail = _split_last_word(name)
    return head + _singularize_word(tail)


def constant_case(name: str) -> str:
    """``createdAt`` -> ``CREATED_AT``."""
    return camel_to_snake(name).upper()


def to_camel_case_plural(name: str) -> str:
    """Collection field name for a model or table name: ``User`` -> ``users``."""
    return lower_first(pluralize(snake_to_camel(name)))


def to_camel_case_singular(name: str) -> str:
    """Single-row field name for a model or table name: ``users`` -> ``user``."""
    return lower_first(singularize(snake_to_camel(name)))


def order_by_type_name(name: str) -> str:
    """``User`` -> ``UsersOrderBy``."""
    return upper_first(to_camel_case_plural(name)) + "OrderBy"


def model_name_to_get_many(model: str) -> str:
    """Operation key of the list query of ``model`` (``UserSetting`` -> ``userSettings``)."""
    return to_camel_case_plural(model)


def operation_query_name(key: str, suffix: str = "Query") -> str:
    """``users`` -> ``getUsersQuery``; ``suffix='CountQuery'`` -> ``getUsersCountQuery``."""
    return "get" + upper_first(snake_to_camel(key)) + suffix
