"""Context store tools as a standalone FastMCP server.

Translates between the MCP tool protocol and ContextService. Payloads use
the camelCase wire format; every tool returns JSON text. Validation failures
and unknown ids are raised as ToolError.

Tools:
- add_context / batch_add_contexts: Ingest contexts
- get_context / update_context / delete_context: Point operations
- query_context / count_contexts: Filtered queries
- find_similar: Metadata-overlap similarity lookup
- get_knowledge_stats: Totals and per-type counts
"""

import json
from typing import Any, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from loguru import logger

from klever_mcp.config import StorageConfig
from klever_mcp.contexts.service import ContextService
from klever_mcp.errors import NotFoundError, StorageError, ValidationError
from klever_mcp.storage import create_storage

# Create FastMCP server instance
context_server = FastMCP("KleverContext")

_context_service: Optional[ContextService] = None


def get_context_service() -> ContextService:
    """Return the module-level service, building it from the environment on first use."""
    global _context_service
    if _context_service is None:
        _context_service = ContextService(create_storage(StorageConfig.from_env()))
    return _context_service


def set_context_service(service: Optional[ContextService]) -> None:
    """Replace the module-level service (None resets to lazy construction)."""
    global _context_service
    _context_service = service


def _dump(data: dict[str, Any]) -> str:
    return json.dumps(data, indent=2)


@context_server.tool()
async def add_context(
    type: str,
    content: str,
    metadata: dict[str, Any],
    id: Optional[str] = None,
    relatedContextIds: Optional[list[str]] = None,
) -> str:
    """
    Add a context to the knowledge base.

    Args:
        type: Context type (code_example, best_practice, documentation, ...)
        content: Context body
        metadata: Metadata object with title (required), description, tags,
            relevanceScore, contractType, language, author
        id: Optional explicit id
        relatedContextIds: Optional related context ids

    Returns:
        JSON with the assigned id
    """
    payload: dict[str, Any] = {"type": type, "content": content, "metadata": metadata}
    if id is not None:
        payload["id"] = id
    if relatedContextIds is not None:
        payload["relatedContextIds"] = relatedContextIds

    try:
        context_id = await get_context_service().ingest(payload)
    except ValidationError as e:
        raise ToolError(f"Invalid context: {e}")
    except StorageError as e:
        logger.error(f"Failed to add context: {e}")
        raise ToolError(f"Failed to add context: {e}")

    return _dump({"success": True, "id": context_id, "message": "Context added successfully"})


@context_server.tool()
async def get_context(id: str) -> str:
    """
    Retrieve a context by id.

    Args:
        id: Context id

    Returns:
        JSON with the context
    """
    try:
        context = await get_context_service().retrieve(id)
    except StorageError as e:
        raise ToolError(f"Failed to get context: {e}")

    if context is None:
        raise ToolError(f"Context not found: {id}")
    return _dump({"success": True, "data": context.to_dict()})


@context_server.tool()
async def query_context(
    query: Optional[str] = None,
    types: Optional[list[str]] = None,
    tags: Optional[list[str]] = None,
    contractType: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    rerank: bool = False,
) -> str:
    """
    Search contexts by type, tags, contract type and free text.

    Every word of `query` must appear in the content, title, description or
    tags. Results are ordered by relevance score, or with `rerank` the page
    is reordered by how closely each context matches `query`.

    Args:
        query: Free-text search terms
        types: Context types to include
        tags: Match contexts having any of these tags
        contractType: Contract classification
        limit: Page size (default 10)
        offset: Page start (default 0)
        rerank: Reorder the returned page by query match

    Returns:
        JSON with results, total and pagination
    """
    params = {
        "query": query,
        "types": types,
        "tags": tags,
        "contractType": contractType,
        "limit": limit,
        "offset": offset,
    }
    try:
        result = await get_context_service().query(params, rerank=rerank)
    except ValidationError as e:
        raise ToolError(f"Invalid query: {e}")
    except StorageError as e:
        raise ToolError(f"Query failed: {e}")

    logger.debug(f"Query returned {len(result.results)} of {result.total} results")
    return _dump({"success": True, **result.to_dict()})


@context_server.tool()
async def update_context(id: str, changes: dict[str, Any]) -> str:
    """
    Partially update a context.

    Only the provided fields change; metadata fields are merged one by one.

    Args:
        id: Context id
        changes: Partial payload, e.g. {"metadata": {"title": "New title"}}

    Returns:
        Confirmation JSON
    """
    try:
        updated = await get_context_service().update(id, changes)
    except ValidationError as e:
        raise ToolError(f"Invalid update: {e}")
    except StorageError as e:
        raise ToolError(f"Failed to update context: {e}")

    if not updated:
        raise ToolError(f"Context not found: {id}")
    return _dump({"success": True, "message": "Context updated successfully"})


@context_server.tool()
async def delete_context(id: str) -> str:
    """
    Delete a context and all of its index entries.

    Args:
        id: Context id

    Returns:
        Confirmation JSON
    """
    try:
        deleted = await get_context_service().delete(id)
    except StorageError as e:
        raise ToolError(f"Failed to delete context: {e}")

    if not deleted:
        raise ToolError(f"Context not found: {id}")
    return _dump({"success": True, "message": "Context deleted successfully"})


@context_server.tool()
async def find_similar(id: str, limit: int = 5) -> str:
    """
    Find contexts sharing the type and any tag of a reference context.

    Args:
        id: Reference context id
        limit: Maximum results (1-100, default 5)

    Returns:
        JSON with similar contexts
    """
    try:
        similar = await get_context_service().find_similar(id, limit)
    except NotFoundError as e:
        raise ToolError(str(e))
    except ValidationError as e:
        raise ToolError(f"Invalid limit: {e}")
    except StorageError as e:
        raise ToolError(f"Similarity lookup failed: {e}")

    return _dump({"success": True, "data": [context.to_dict() for context in similar]})


@context_server.tool()
async def batch_add_contexts(contexts: list[dict[str, Any]]) -> str:
    """
    Add up to 100 contexts at once.

    Malformed items are reported by 0-based index without stopping the batch.

    Args:
        contexts: List of context payloads

    Returns:
        JSON with ids, per-item errors and status (success, partial, failed)
    """
    try:
        result = await get_context_service().batch_ingest(contexts)
    except ValidationError as e:
        raise ToolError(f"Invalid batch: {e}")
    except StorageError as e:
        raise ToolError(f"Batch ingest failed: {e}")

    return _dump(result.to_dict())


@context_server.tool()
async def count_contexts(
    query: Optional[str] = None,
    types: Optional[list[str]] = None,
    tags: Optional[list[str]] = None,
    contractType: Optional[str] = None,
) -> str:
    """
    Count all contexts, or those matching the given filters.

    Returns:
        JSON with the count
    """
    params = {"query": query, "types": types, "tags": tags, "contractType": contractType}
    filters = {key: value for key, value in params.items() if value is not None}
    try:
        count = await get_context_service().count(filters or None)
    except ValidationError as e:
        raise ToolError(f"Invalid filters: {e}")
    except StorageError as e:
        raise ToolError(f"Count failed: {e}")

    return _dump({"success": True, "count": count})


@context_server.tool()
async def get_knowledge_stats() -> str:
    """
    Summarize the knowledge base.

    Returns:
        JSON with total, per-type counts and one example per type
    """
    try:
        stats = await get_context_service().stats()
    except StorageError as e:
        raise ToolError(f"Failed to get stats: {e}")

    logger.debug(f"Knowledge stats: {stats['total']} total contexts")
    return _dump({"success": True, "stats": stats})
