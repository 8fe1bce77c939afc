"""Query semantics shared by the in-memory and Redis backends."""

from collections.abc import Iterable
from datetime import datetime, timezone

from ..contexts.models import ContextPayload, QueryParams, QueryResult
from .indexes import MASTER_ENTRY, IndexEntry, IndexFamily

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def seed_entries(params: QueryParams) -> list[IndexEntry]:
    """
    Pick the index buckets whose union seeds the candidate set.

    Only one filter class seeds candidates, in the order
    types > tags > contract_type > master.
    """
    if params.types:
        return [(IndexFamily.TYPE, t.value) for t in params.types]
    if params.tags:
        return [(IndexFamily.TAG, tag) for tag in params.tags]
    if params.contract_type:
        return [(IndexFamily.CONTRACT, params.contract_type)]
    return [MASTER_ENTRY]


def query_tokens(query: str | None) -> list[str]:
    if not query:
        return []
    return query.lower().split()


def matches_text(payload: ContextPayload, tokens: list[str]) -> bool:
    """Every token must appear as a substring of the searchable text."""
    if not tokens:
        return True
    searchable = payload.searchable_text()
    return all(token in searchable for token in tokens)


def matches(payload: ContextPayload, params: QueryParams) -> bool:
    """Apply every provided filter, including the one that seeded candidates."""
    if params.types and payload.type not in params.types:
        return False
    if params.tags and not set(params.tags) & set(payload.metadata.tags):
        return False
    if params.contract_type and payload.metadata.contract_type != params.contract_type:
        return False
    return matches_text(payload, query_tokens(params.query))


def ranking_key(payload: ContextPayload) -> tuple:
    # Score descending; created_at and id make the order total across calls
    return (
        -(payload.metadata.relevance_score or 0.0),
        payload.metadata.created_at or _EPOCH,
        payload.id or "",
    )


def filter_and_rank(
    candidates: Iterable[ContextPayload], params: QueryParams
) -> list[ContextPayload]:
    return sorted((c for c in candidates if matches(c, params)), key=ranking_key)


def paginate(ranked: list[ContextPayload], params: QueryParams) -> QueryResult:
    """Slice [offset, offset + limit); total is the size before slicing."""
    start = params.offset
    end = start + params.limit
    return QueryResult(
        results=ranked[start:end],
        total=len(ranked),
        offset=params.offset,
        limit=params.limit,
    )
