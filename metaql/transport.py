"""Executing documents against a GraphQL backend.

:class:`HttpTransport` posts to a remote endpoint with httpx;
:class:`SchemaTransport` runs documents in-process against a Strawberry or
graphql-core schema. Both return the ``data`` mapping and raise
:class:`~metaql.errors.TransportError` subclasses on failure.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, Union, runtime_checkable

import httpx
from graphql import GraphQLSchema, graphql, print_ast
from graphql.language import ast as gql_ast

from .builder import BuiltDocument, PrintedDocument
from .errors import (
    ConstraintViolationError,
    DataErrorType,
    ForbiddenError,
    GraphQLResponseError,
    NetworkError,
    QueryExecutionError,
    TransportError,
    TransportTimeoutError,
    UnauthorizedError,
)

__all__ = [
    "Document",
    "Transport",
    "document_text",
    "operation_name",
    "parse_graphql_response",
    "HttpTransport",
    "SchemaTransport",
]

_logger = logging.getLogger(__name__)

Document = Union[str, PrintedDocument, BuiltDocument, gql_ast.DocumentNode]

_CONSTRAINT_CODES = {
    '23505': DataErrorType.UNIQUE_VIOLATION,
    '23503': DataErrorType.FOREIGN_KEY_VIOLATION,
    '23502': DataErrorType.NOT_NULL_VIOLATION,
    '23514': DataErrorType.CHECK_VIOLATION,
}


@runtime_checkable
class Transport(Protocol):
    async def execute(self, document: Document, variables: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        ...


def document_text(document: Document) -> str:
    if isinstance(document, str):
        return document
    if isinstance(document, PrintedDocument):
        return document.serialized
    if isinstance(document, BuiltDocument):
        return document.print().serialized
    if isinstance(document, gql_ast.DocumentNode):
        return print_ast(document)
    raise TypeError(f"Unsupported document: {document!r}")


def operation_name(document: Document) -> Optional[str]:
    if isinstance(document, (PrintedDocument, BuiltDocument)):
        return document.query_name
    return None


def _error_from_entry(entry: Mapping[str, Any]) -> TransportError:
    message = entry.get('message') or 'GraphQL error'
    extensions = entry.get('extensions') or {}
    code = extensions.get('code') or entry.get('code')
    code = str(code) if code is not None else None
    upper = (code or '').upper()
    if upper in ('UNAUTHENTICATED', 'UNAUTHORIZED'):
        return UnauthorizedError(message, code=code, details=entry)
    if upper == 'FORBIDDEN':
        return ForbiddenError(message, code=code, details=entry)
    if code in _CONSTRAINT_CODES:
        return ConstraintViolationError(message, code=code, details=entry, error_type=_CONSTRAINT_CODES[code])
    return GraphQLResponseError(message, code=code, details=entry)


def parse_graphql_response(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``payload['data']`` or raise for the first reported error."""
    errors: Sequence[Mapping[str, Any]] = payload.get('errors') or ()
    if errors:
        err = _error_from_entry(errors[0])
        if len(errors) > 1:
            err.details = list(errors)
        raise err
    data = payload.get('data')
    if data is None:
        raise QueryExecutionError("Response contained no data")
    return dict(data)


class HttpTransport:
    """POST documents to ``endpoint``; ``credential`` is sent as a bearer token."""

    def __init__(
        self,
        endpoint: str,
        *,
        credential: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self._headers: Dict[str, str] = {'Content-Type': 'application/json', 'Accept': 'application/json'}
        if headers:
            self._headers.update(headers)
        if credential:
            self._headers['Authorization'] = credential if credential.lower().startswith('bearer ') else f"Bearer {credential}"
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "HttpTransport":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def execute(self, document: Document, variables: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {'query': document_text(document), 'variables': dict(variables or {})}
        name = operation_name(document)
        if name:
            body['operationName'] = name
        try:
            response = await self._get_client().post(self.endpoint, json=body, headers=self._headers)
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"Request to {self.endpoint} timed out") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Request to {self.endpoint} failed: {e}") from e
        status = response.status_code
        if status == 401:
            raise UnauthorizedError("Authentication required", status=status)
        if status == 403:
            raise ForbiddenError("Access denied", status=status)
        try:
            payload = response.json()
        except ValueError as e:
            raise QueryExecutionError(
                f"Invalid response from {self.endpoint} (HTTP {status})",
                status=status,
                error_type=DataErrorType.BAD_REQUEST if 400 <= status < 500 else None,
            ) from e
        if status >= 400 and not payload.get('errors'):
            raise QueryExecutionError(f"HTTP {status} from {self.endpoint}", status=status, details=payload)
        _logger.debug("%s -> HTTP %s", name or 'anonymous operation', status)
        return parse_graphql_response(payload)


class SchemaTransport:
    """Execute documents in-process against a Strawberry or graphql-core schema."""

    def __init__(self, schema: Any, *, context_value: Any = None, root_value: Any = None):
        self.schema = schema
        self.context_value = context_value
        self.root_value = root_value

    async def execute(self, document: Document, variables: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        source = document_text(document)
        name = operation_name(document)
        if isinstance(self.schema, GraphQLSchema):
            result = await graphql(
                self.schema,
                source,
                root_value=self.root_value,
                context_value=self.context_value,
                variable_values=dict(variables or {}),
                operation_name=name,
            )
        else:
            result = await self.schema.execute(
                source,
                variable_values=dict(variables or {}),
                context_value=self.context_value,
                root_value=self.root_value,
                operation_name=name,
            )
        if result.errors:
            payload = {'errors': [e.formatted for e in result.errors]}
            return parse_graphql_response(payload)
        return parse_graphql_response({'data': result.data})
