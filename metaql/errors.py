"""Exception types raised by MetaQL.

Configuration and validation problems derive from ``ValueError`` and are raised
synchronously while documents are being built. Transport problems derive from
``RuntimeError`` and carry a :class:`DataErrorType` so callers can branch on the
failure category without string matching.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Sequence

__all__ = [
    "DataErrorType",
    "ConfigurationError",
    "ModelNotFoundError",
    "OperationNotFoundError",
    "MutationNotFoundError",
    "InvalidMetaError",
    "SelectionValidationError",
    "DocumentNotBuiltError",
    "TransportError",
    "NetworkError",
    "TransportTimeoutError",
    "UnauthorizedError",
    "ForbiddenError",
    "GraphQLResponseError",
    "ConstraintViolationError",
    "QueryExecutionError",
]


class DataErrorType(str, Enum):
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    BAD_REQUEST = "BAD_REQUEST"
    NOT_FOUND = "NOT_FOUND"
    GRAPHQL_ERROR = "GRAPHQL_ERROR"
    QUERY_EXECUTION_FAILED = "QUERY_EXECUTION_FAILED"
    UNIQUE_VIOLATION = "UNIQUE_VIOLATION"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
    NOT_NULL_VIOLATION = "NOT_NULL_VIOLATION"
    CHECK_VIOLATION = "CHECK_VIOLATION"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ConfigurationError(ValueError):
    """Metadata or introspection does not support the requested document."""


class ModelNotFoundError(ConfigurationError):
    def __init__(self, model: str):
        super().__init__(f"Model meta not found for {model}")
        self.model = model


class OperationNotFoundError(ConfigurationError):
    def __init__(self, model: str, qtype: Optional[str] = None):
        if qtype is None:
            msg = f"No queries found for {model}"
        else:
            msg = f"No query found for {model}:{qtype}"
        super().__init__(msg)
        self.model = model
        self.qtype = qtype


class MutationNotFoundError(ConfigurationError):
    def __init__(self, model: str, mutation_type: str, candidates: Sequence[str] = ()):
        msg = f"No mutation found for {model}:{mutation_type}"
        if candidates:
            msg += f" (candidates: {', '.join(candidates)})"
        super().__init__(msg)
        self.model = model
        self.mutation_type = mutation_type
        self.candidates = list(candidates)


class InvalidMetaError(ConfigurationError):
    def __init__(self, errors: Sequence[str]):
        super().__init__("Meta object is invalid:\n" + "\n".join(f"- {e}" for e in errors))
        self.errors = list(errors)


class SelectionValidationError(ValueError):
    """Raised by the strict selection path; ``errors`` holds every message."""

    def __init__(self, errors: Sequence[str]):
        super().__init__("; ".join(errors) if errors else "Invalid field selection")
        self.errors: List[str] = list(errors)


class DocumentNotBuiltError(RuntimeError):
    def __init__(self, message: str = "No AST generated. Please call a query method first."):
        super().__init__(message)


class TransportError(RuntimeError):
    """Failure while executing a document against the backend."""

    error_type: DataErrorType = DataErrorType.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status: Optional[int] = None,
        details: Any = None,
        error_type: Optional[DataErrorType] = None,
    ):
        super().__init__(message)
        self.code = code
        self.status = status
        self.details = details
        if error_type is not None:
            self.error_type = error_type


class NetworkError(TransportError):
    error_type = DataErrorType.NETWORK_ERROR


class TransportTimeoutError(TransportError):
    error_type = DataErrorType.TIMEOUT_ERROR


class UnauthorizedError(TransportError):
    error_type = DataErrorType.UNAUTHORIZED


class ForbiddenError(TransportError):
    error_type = DataErrorType.FORBIDDEN


class GraphQLResponseError(TransportError):
    error_type = DataErrorType.GRAPHQL_ERROR


class ConstraintViolationError(GraphQLResponseError):
    """A PostgreSQL integrity error surfaced through the GraphQL layer."""


class QueryExecutionError(TransportError):
    error_type = DataErrorType.QUERY_EXECUTION_FAILED
