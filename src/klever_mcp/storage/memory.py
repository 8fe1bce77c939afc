"""In-process storage backend."""

from collections.abc import Mapping
from typing import Any, Optional

from loguru import logger

from ..contexts.models import ContextPayload, QueryParams, QueryResult
from ..errors import CapacityError
from .base import StorageBackend, prepare_for_store, prepare_for_update
from .indexes import IndexDelta, IndexEntry, IndexFamily
from .query import filter_and_rank, paginate, seed_entries


class InMemoryStorage(StorageBackend):
    """
    Volatile storage keyed by context id with in-memory secondary indices.

    Every mutation writes the primary map and applies the index delta in
    the same synchronous step with no await in between, so under the
    single-threaded event loop no other operation can observe a partial
    update. Running this backend from multiple threads requires a lock
    around _commit().

    Capacity:
    - max_size bounds the number of records (None disables the bound)
    - storing a new id when full raises CapacityError; nothing is evicted
    - overwriting an existing id and updates are always allowed
    """

    def __init__(self, max_size: Optional[int] = 10000):
        """Initialize empty storage."""
        self.max_size = max_size
        self._contexts: dict[str, ContextPayload] = {}
        self._indexes: dict[IndexFamily, dict[str, set[str]]] = {
            family: {} for family in IndexFamily
        }

    def _apply_index_delta(self, context_id: str, delta: IndexDelta) -> None:
        for family, value in delta.removals:
            bucket = self._indexes[family].get(value)
            if bucket is None:
                continue
            bucket.discard(context_id)
            if not bucket:
                del self._indexes[family][value]
        for family, value in delta.additions:
            self._indexes[family].setdefault(value, set()).add(context_id)

    def _commit(
        self, context_id: str, before: Optional[ContextPayload], after: Optional[ContextPayload]
    ) -> None:
        """Write the primary record and its index delta together."""
        if after is None:
            self._contexts.pop(context_id, None)
        else:
            self._contexts[context_id] = after
        self._apply_index_delta(context_id, IndexDelta.between(before, after))

    def index_members(self, entry: IndexEntry) -> set[str]:
        """Ids in one index bucket (a copy)."""
        family, value = entry
        return set(self._indexes[family].get(value, ()))

    async def store(self, payload: ContextPayload) -> str:
        payload = payload.validated()
        existing = self._contexts.get(payload.id) if payload.id is not None else None

        if existing is None and self.max_size is not None and len(self._contexts) >= self.max_size:
            logger.warning(f"In-memory storage full, rejecting new context (max={self.max_size})")
            raise CapacityError(f"Storage limit reached (max: {self.max_size} contexts)")

        record = prepare_for_store(payload, existing)
        self._commit(record.id, existing, record)
        logger.debug(f"Stored context {record.id} ({record.type.value})")
        return record.id

    async def retrieve(self, context_id: str) -> Optional[ContextPayload]:
        record = self._contexts.get(context_id)
        return record.copy() if record is not None else None

    def _candidates(self, params: QueryParams) -> list[ContextPayload]:
        ids: set[str] = set()
        for entry in seed_entries(params):
            ids |= self.index_members(entry)
        return [self._contexts[cid] for cid in ids if cid in self._contexts]

    async def query(self, params: QueryParams) -> QueryResult:
        ranked = filter_and_rank(self._candidates(params), params)
        result = paginate(ranked, params)
        result.results = [record.copy() for record in result.results]
        return result

    async def update(self, context_id: str, changes: Mapping[str, Any]) -> bool:
        existing = self._contexts.get(context_id)
        if existing is None:
            return False

        record = prepare_for_update(existing, changes)
        self._commit(context_id, existing, record)
        logger.debug(f"Updated context {context_id}")
        return True

    async def delete(self, context_id: str) -> bool:
        existing = self._contexts.get(context_id)
        if existing is None:
            return False

        self._commit(context_id, existing, None)
        logger.debug(f"Deleted context {context_id}")
        return True

    async def count(self, params: Optional[QueryParams] = None) -> int:
        if params is None or not params.has_filters:
            return len(self._contexts)
        return len(filter_and_rank(self._candidates(params), params))
