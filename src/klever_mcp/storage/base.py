"""Storage backend contract."""

import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Optional

from ..contexts.models import ContextPayload, QueryParams, QueryResult, utcnow


def new_context_id() -> str:
    """Random 128-bit identifier rendered as text."""
    return str(uuid.uuid4())


def prepare_for_store(
    payload: ContextPayload, existing: Optional[ContextPayload] = None
) -> ContextPayload:
    """
    Return the record that `store` persists.

    Assigns an id if absent. created_at is kept from the existing record,
    else from the payload, else now. updated_at is now, never earlier than
    created_at.
    """
    record = payload.copy()
    if record.id is None:
        record.id = new_context_id()

    now = utcnow()
    if existing is not None and existing.metadata.created_at is not None:
        record.metadata.created_at = existing.metadata.created_at
    elif record.metadata.created_at is None:
        record.metadata.created_at = now
    record.metadata.updated_at = max(now, record.metadata.created_at)
    return record


def prepare_for_update(existing: ContextPayload, changes: Mapping[str, Any]) -> ContextPayload:
    """Merge a partial update into the existing record and refresh updated_at."""
    record = existing.merged(changes)
    record.id = existing.id
    record.metadata.created_at = existing.metadata.created_at
    now = utcnow()
    if record.metadata.created_at is not None:
        now = max(now, record.metadata.created_at)
    record.metadata.updated_at = now
    return record


class StorageBackend(ABC):
    """
    Interface every storage backend satisfies.

    Each mutation commits the primary record and all of its index
    memberships as one atomic unit. Readers never observe a record whose
    indices are partially updated.
    """

    @abstractmethod
    async def store(self, payload: ContextPayload) -> str:
        """
        Persist a record and its index memberships.

        Returns:
            The assigned context id

        Raises:
            StorageError: If the backend is unavailable or the batch fails
        """

    @abstractmethod
    async def retrieve(self, context_id: str) -> Optional[ContextPayload]:
        """Point lookup; returns None if the id is unknown."""

    @abstractmethod
    async def query(self, params: QueryParams) -> QueryResult:
        """Filter, rank and paginate records."""

    @abstractmethod
    async def update(self, context_id: str, changes: Mapping[str, Any]) -> bool:
        """
        Partially merge a wire-form change set into an existing record.

        Returns:
            False if the id is unknown, True once the merge is committed
        """

    @abstractmethod
    async def delete(self, context_id: str) -> bool:
        """Remove a record and every index membership; False if unknown."""

    @abstractmethod
    async def count(self, params: Optional[QueryParams] = None) -> int:
        """Size of the store, or of the filtered result set."""

    async def close(self) -> None:
        """Release backend resources."""
