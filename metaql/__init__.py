"""MetaQL public API and lightweight lazy exports.

Importing ``metaql`` does not pull in SQLAlchemy or httpx; the submodules that
need them (``introspection``, ``transport``, ``pagination``) load on first
attribute access.

Exposes:
- QueryBuilder, EntityQuery, BuiltDocument, PrintedDocument (builder)
- MetaObject, MetaTable, IntrospectionSchema and friends (meta)
- Preset, ExplicitSelection, resolve, validate (selection)
- InfiniteTable, TableOptions, PageCache, Paginator (pagination)
- HttpTransport, SchemaTransport (transport)
- introspect, meta_from_sqlalchemy, generate_introspection_schema (introspection)
- EngineConfig
"""
from __future__ import annotations

__version__ = "0.1.0"

_EXPORTS = {
    'QueryBuilder': 'builder',
    'EntityQuery': 'builder',
    'BuiltDocument': 'builder',
    'PrintedDocument': 'builder',
    'OperationKind': 'builder',
    'MetaObject': 'meta',
    'MetaTable': 'meta',
    'MetaField': 'meta',
    'MetaFieldType': 'meta',
    'MetaConstraint': 'meta',
    'MetaForeignConstraint': 'meta',
    'MetaRelation': 'meta',
    'RelationKind': 'meta',
    'IntrospectionSchema': 'meta',
    'OperationDefinition': 'meta',
    'QueryProperty': 'meta',
    'QType': 'meta',
    'MutationType': 'meta',
    'Preset': 'core.selection',
    'ExplicitSelection': 'core.selection',
    'FieldSelection': 'core.selection',
    'resolve': 'core.selection',
    'validate': 'core.selection',
    'ensure_valid': 'core.selection',
    'InfiniteTable': 'pagination',
    'TableOptions': 'pagination',
    'OrderBy': 'pagination',
    'PageCache': 'pagination',
    'PageData': 'pagination',
    'Paginator': 'pagination',
    'RowCacheAccessor': 'pagination',
    'HttpTransport': 'transport',
    'SchemaTransport': 'transport',
    'introspect': 'introspection',
    'meta_from_sqlalchemy': 'introspection',
    'generate_introspection_schema': 'introspection',
    'EngineConfig': 'config',
}


def __getattr__(name: str):  # PEP 562 lazy exports
    import importlib as _importlib
    if name in {'builder', 'meta', 'errors', 'naming', 'config', 'introspection', 'transport', 'pagination', 'core'}:
        return _importlib.import_module(__name__ + '.' + name)
    module = _EXPORTS.get(name)
    if module is None:
        raise AttributeError(name)
    return getattr(_importlib.import_module(__name__ + '.' + module), name)


__all__ = sorted(_EXPORTS) + ['__version__']
