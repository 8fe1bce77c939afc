"""Klever context store - context storage and retrieval engine with FastMCP tools."""

__version__ = "0.1.0"

from .contexts.models import ContextMetadata, ContextPayload, ContextType, QueryParams, QueryResult
from .errors import CapacityError, ContextError, NotFoundError, StorageError, ValidationError

__all__ = [
    "CapacityError",
    "ContextError",
    "ContextMetadata",
    "ContextPayload",
    "ContextType",
    "NotFoundError",
    "QueryParams",
    "QueryResult",
    "StorageError",
    "ValidationError",
    "__version__",
]
