"""Context records and their query types.

The orchestration layer lives in klever_mcp.contexts.service and is not
re-exported here, so that storage backends can import the models without
pulling in the service.
"""

from .models import (
    ContextMetadata,
    ContextPayload,
    ContextType,
    QueryParams,
    QueryResult,
)

__all__ = [
    "ContextMetadata",
    "ContextPayload",
    "ContextType",
    "QueryParams",
    "QueryResult",
]
