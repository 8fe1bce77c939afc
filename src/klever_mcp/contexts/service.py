"""Context service: orchestration above a storage backend."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from loguru import logger

from ..config import Config
from ..errors import NotFoundError, ValidationError
from ..storage.base import StorageBackend
from .models import ContextPayload, ContextType, QueryParams, QueryResult
from .seed import load_seed_file

PayloadInput = Union[ContextPayload, Mapping[str, Any]]
QueryInput = Union[QueryParams, Mapping[str, Any], None]

# Types that get a relevance boost when no score is provided
_BOOSTED_TYPES = {
    ContextType.DOCUMENTATION,
    ContextType.BEST_PRACTICE,
    ContextType.SECURITY_TIP,
}


@dataclass
class BatchItemError:
    """A rejected batch item; index is 0-based."""

    index: int
    error: str


@dataclass
class BatchIngestResult:
    """Outcome of a batch ingest with per-item errors."""

    ids: list[str] = field(default_factory=list)
    errors: list[BatchItemError] = field(default_factory=list)
    total: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def status(self) -> str:
        """One of success, partial (some items failed) or failed (none stored)."""
        if not self.errors:
            return "success"
        if self.ids:
            return "partial"
        return "failed"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "status": self.status,
            "ids": list(self.ids),
            "message": f"Ingested {len(self.ids)} out of {self.total} contexts",
        }
        if self.errors:
            data["errors"] = [{"index": e.index, "error": e.error} for e in self.errors]
        return data


def _as_payload(payload: PayloadInput) -> ContextPayload:
    if isinstance(payload, ContextPayload):
        return payload.validated()
    return ContextPayload.from_dict(payload)


def _as_query(params: QueryInput) -> QueryParams:
    if isinstance(params, QueryParams):
        return params
    return QueryParams.from_dict(params or {})


class ContextService:
    """
    Orchestration layer over a StorageBackend.

    Adds default pagination, relevance scoring on ingest, metadata-overlap
    similarity lookups, bounded batch ingest and knowledge stats. Never
    bypasses the backend contract.
    """

    def __init__(self, storage: StorageBackend):
        self._storage = storage

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    async def ingest(self, payload: PayloadInput) -> str:
        """
        Validate and store a context.

        A relevance score is computed when the payload has none.

        Raises:
            ValidationError: If the payload is malformed
            StorageError: If the backend fails
        """
        record = _as_payload(payload)
        if record.metadata.relevance_score is None:
            record.metadata.relevance_score = self.calculate_relevance_score(record)
        return await self._storage.store(record)

    async def retrieve(self, context_id: str) -> Optional[ContextPayload]:
        return await self._storage.retrieve(context_id)

    async def query(self, params: QueryInput = None, rerank: bool = False) -> QueryResult:
        """
        Filter, rank and paginate contexts.

        With `rerank` and a free-text query, the returned page is reordered
        by `rank_by_relevance`. Page membership and `total` are unchanged.
        """
        query = _as_query(params)
        result = await self._storage.query(query)
        if rerank and query.query:
            result.results = self.rank_by_relevance(result.results, query.query)
        return result

    async def update(self, context_id: str, changes: Mapping[str, Any]) -> bool:
        """Partially update a context; False if the id is unknown."""
        return await self._storage.update(context_id, changes)

    async def delete(self, context_id: str) -> bool:
        return await self._storage.delete(context_id)

    async def count(self, params: QueryInput = None) -> int:
        if params is None:
            return await self._storage.count()
        return await self._storage.count(_as_query(params))

    async def find_similar(self, context_id: str, limit: int = 5) -> list[ContextPayload]:
        """
        Find contexts sharing the reference context's type and any of its tags.

        Similarity is metadata overlap only. The reference itself is never
        returned.

        Raises:
            NotFoundError: If the reference context doesn't exist
            ValidationError: If limit is outside 1..MAX_SIMILAR_LIMIT
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or not (
            1 <= limit <= Config.MAX_SIMILAR_LIMIT
        ):
            raise ValidationError(
                f"limit must be between 1 and {Config.MAX_SIMILAR_LIMIT}, got {limit}"
            )

        reference = await self._storage.retrieve(context_id)
        if reference is None:
            raise NotFoundError(context_id)

        # One extra slot for the reference itself
        result = await self._storage.query(
            QueryParams(
                types=[reference.type],
                tags=list(reference.metadata.tags) or None,
                limit=limit + 1,
                offset=0,
            )
        )
        return [c for c in result.results if c.id != context_id][:limit]

    async def batch_ingest(self, payloads: Sequence[PayloadInput]) -> BatchIngestResult:
        """
        Ingest each payload independently and collect per-item errors.

        Malformed items are reported with their 0-based index and do not stop
        the batch. A StorageError aborts the whole call.

        Raises:
            ValidationError: If the batch is not a list or exceeds MAX_BATCH_SIZE
            StorageError: If the backend fails
        """
        if isinstance(payloads, (str, bytes, Mapping)) or not isinstance(payloads, Sequence):
            raise ValidationError("Batch must be a list of contexts")
        if len(payloads) > Config.MAX_BATCH_SIZE:
            raise ValidationError(f"Batch too large: maximum batch size is {Config.MAX_BATCH_SIZE}")

        result = BatchIngestResult(total=len(payloads))
        for index, payload in enumerate(payloads):
            try:
                result.ids.append(await self.ingest(payload))
            except ValidationError as e:
                result.errors.append(BatchItemError(index=index, error=str(e)))

        if result.errors:
            logger.warning(
                f"Batch ingest stored {len(result.ids)}/{result.total} contexts, "
                f"{len(result.errors)} rejected"
            )
        return result

    async def ingest_seed_file(self, path: str | Path) -> BatchIngestResult:
        """Batch-ingest a YAML seed file in chunks of MAX_BATCH_SIZE."""
        payloads = load_seed_file(path)
        combined = BatchIngestResult(total=len(payloads))
        size = Config.MAX_BATCH_SIZE

        for start in range(0, len(payloads), size):
            chunk = await self.batch_ingest(payloads[start : start + size])
            combined.ids.extend(chunk.ids)
            combined.errors.extend(
                BatchItemError(index=start + e.index, error=e.error) for e in chunk.errors
            )

        logger.info(
            f"Seed ingest complete: {len(combined.ids)} contexts loaded, "
            f"{len(combined.errors)} failed"
        )
        return combined

    async def stats(self) -> dict[str, Any]:
        """Total count, per-type counts and one example per populated type."""
        stats: dict[str, Any] = {
            "total": await self.count(),
            "byType": {},
            "examples": [],
        }
        for context_type in ContextType:
            result = await self._storage.query(QueryParams(types=[context_type], limit=1))
            if result.total == 0:
                continue
            stats["byType"][context_type.value] = result.total
            example = result.results[0]
            stats["examples"].append(
                {
                    "type": context_type.value,
                    "title": example.metadata.title,
                    "tags": list(example.metadata.tags),
                }
            )
        return stats

    @staticmethod
    def calculate_relevance_score(payload: ContextPayload) -> float:
        """Heuristic default score for payloads ingested without one."""
        score = 0.5

        if payload.type in _BOOSTED_TYPES:
            score += 0.2
        if payload.type is ContextType.DEPLOYMENT_TOOL:
            score += 0.15
        if len(payload.content) > 500:
            score += 0.1
        if len(payload.metadata.tags) >= 3:
            score += 0.1
        if payload.metadata.description and len(payload.metadata.description) > 50:
            score += 0.1

        return min(round(score, 4), 1.0)

    @staticmethod
    def rank_by_relevance(
        contexts: Sequence[ContextPayload], query: str
    ) -> list[ContextPayload]:
        """
        Re-rank contexts against a free-text query.

        Score = stored score (0.5 if unset) + 0.3 whole-query match
        + 0.2 * matched-token ratio + 0.2 contract type mention, capped at 1.
        """
        query_lower = query.lower()
        tokens = query_lower.split()

        def score(context: ContextPayload) -> float:
            value = context.metadata.relevance_score
            value = 0.5 if value is None else value
            searchable = context.searchable_text()
            if query_lower and query_lower in searchable:
                value += 0.3
            if tokens:
                matched = sum(1 for token in tokens if token in searchable)
                value += matched / len(tokens) * 0.2
            contract_type = context.metadata.contract_type
            if contract_type and contract_type.lower() in query_lower:
                value += 0.2
            return min(value, 1.0)

        return sorted(contexts, key=score, reverse=True)
