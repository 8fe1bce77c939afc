"""Redis-backed durable storage."""

import json
from collections.abc import Callable, Mapping
from contextlib import contextmanager
from typing import Any, Optional

from loguru import logger
from redis import asyncio as aioredis

from ..config import RedisSettings
from ..contexts.models import ContextPayload, QueryParams, QueryResult
from ..errors import ContextError, StorageError
from ..redis_client import close_redis_client, get_redis_client, mark_redis_unhealthy
from .base import StorageBackend, new_context_id, prepare_for_store, prepare_for_update
from .indexes import MASTER_ENTRY, IndexDelta, IndexEntry, IndexFamily
from .query import filter_and_rank, paginate, seed_entries

# Returned by a mutation callback to leave the record untouched
_SKIP = object()


class RedisStorage(StorageBackend):
    """
    Durable storage over Redis with set-based secondary indices.

    Key scheme (default prefixes):
    - klever:context:<id>             JSON payload
    - klever:index:type:<type>        set of ids
    - klever:index:tag:<tag>          set of ids
    - klever:index:contract:<name>    set of ids
    - klever:index:all                master set of every id

    Atomicity:
    - Every mutation is one MULTI/EXEC transaction covering the payload
      write/delete and every index SADD/SREM
    - The payload key is WATCHed while the prior record is read, so a
      concurrent commit aborts the transaction and it is retried
    - Redis failures surface as StorageError; nothing is committed
    """

    def __init__(self, settings: Optional[RedisSettings] = None):
        """Initialize backend; the connection is established lazily."""
        self._settings = settings or RedisSettings()
        self._redis_client: aioredis.Redis | None = None

    async def _get_redis(self) -> aioredis.Redis:
        """
        Get the shared Redis client, reconnecting if the last call failed.

        Returns:
            Redis client instance with connection pooling
        """
        if self._redis_client is None:
            self._redis_client = await get_redis_client(self._settings)
        return self._redis_client

    @contextmanager
    def _translate_errors(self, operation: str):
        try:
            yield
        except (aioredis.ConnectionError, aioredis.TimeoutError) as e:
            logger.error(f"Redis connection failed in {operation}: {e}")
            self._redis_client = None
            mark_redis_unhealthy()
            raise StorageError(f"Redis unavailable during {operation}: {e}") from e
        except aioredis.RedisError as e:
            logger.error(f"Redis error in {operation}: {e}")
            raise StorageError(f"Redis {operation} failed: {e}") from e

    def _context_key(self, context_id: str) -> str:
        return f"{self._settings.key_prefix}{context_id}"

    def _index_key(self, entry: IndexEntry) -> str:
        family, value = entry
        if family is IndexFamily.ALL:
            return f"{self._settings.index_prefix}all"
        return f"{self._settings.index_prefix}{family.value}:{value}"

    @staticmethod
    def _encode(payload: ContextPayload) -> str:
        return json.dumps(payload.to_dict())

    @staticmethod
    def _decode(raw: str) -> ContextPayload:
        return ContextPayload.from_dict(json.loads(raw))

    def _decode_stored(self, context_id: str, raw: str) -> ContextPayload:
        try:
            return self._decode(raw)
        except (ValueError, ContextError) as e:
            logger.error(f"Corrupt payload for context {context_id}: {e}")
            raise StorageError(f"Corrupt payload for context {context_id}") from e

    def _queue_index_delta(self, pipe: Any, context_id: str, delta: IndexDelta) -> None:
        for entry in delta.removals:
            pipe.srem(self._index_key(entry), context_id)
        for entry in delta.additions:
            pipe.sadd(self._index_key(entry), context_id)

    async def _commit(
        self,
        context_id: str,
        operation: str,
        mutate: Callable[[Optional[ContextPayload]], Any],
    ) -> Optional[ContextPayload]:
        """
        Read-modify-write one record in a WATCH/MULTI/EXEC transaction.

        Args:
            context_id: Record id
            operation: Operation name for logs and errors
            mutate: Called with the prior record (or None); returns the record
                to write, None to delete it, or _SKIP to write nothing

        Returns:
            The prior record, or None if it did not exist

        Raises:
            StorageError: On Redis failure or repeated concurrent modification
        """
        key = self._context_key(context_id)
        attempts = self._settings.watch_retries

        with self._translate_errors(operation):
            redis = await self._get_redis()
            for attempt in range(1, attempts + 1):
                async with redis.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        before = self._decode_stored(context_id, raw) if raw is not None else None
                        after = mutate(before)
                        if after is _SKIP:
                            return before

                        pipe.multi()
                        if after is None:
                            pipe.delete(key)
                        else:
                            pipe.set(key, self._encode(after))
                        self._queue_index_delta(pipe, context_id, IndexDelta.between(before, after))
                        await pipe.execute()
                        return before
                    except aioredis.WatchError:
                        logger.warning(
                            f"Concurrent modification of context {context_id} during "
                            f"{operation} (attempt {attempt}/{attempts}), retrying"
                        )

        raise StorageError(
            f"Failed to {operation} context {context_id} atomically after {attempts} attempts"
        )

    async def store(self, payload: ContextPayload) -> str:
        record = payload.validated()
        context_id = record.id or new_context_id()
        record.id = context_id

        await self._commit(context_id, "store", lambda before: prepare_for_store(record, before))
        logger.debug(f"Stored context {context_id} ({record.type.value})")
        return context_id

    async def retrieve(self, context_id: str) -> Optional[ContextPayload]:
        with self._translate_errors("retrieve"):
            redis = await self._get_redis()
            raw = await redis.get(self._context_key(context_id))

        if raw is None:
            return None
        return self._decode_stored(context_id, raw)

    async def _candidates(self, params: QueryParams) -> list[ContextPayload]:
        keys = [self._index_key(entry) for entry in seed_entries(params)]

        with self._translate_errors("query"):
            redis = await self._get_redis()
            if len(keys) == 1:
                ids = await redis.smembers(keys[0])
            else:
                ids = await redis.sunion(keys)
            if not ids:
                return []
            values = await redis.mget([self._context_key(cid) for cid in ids])

        candidates = []
        for raw in values:
            # Deleted between the index read and MGET
            if raw is None:
                continue
            try:
                candidates.append(self._decode(raw))
            except (ValueError, ContextError) as e:
                logger.warning(f"Skipping corrupt context payload: {e}")
        return candidates

    async def query(self, params: QueryParams) -> QueryResult:
        ranked = filter_and_rank(await self._candidates(params), params)
        return paginate(ranked, params)

    async def update(self, context_id: str, changes: Mapping[str, Any]) -> bool:
        def mutate(before: Optional[ContextPayload]) -> Any:
            if before is None:
                return _SKIP
            return prepare_for_update(before, changes)

        before = await self._commit(context_id, "update", mutate)
        if before is None:
            return False
        logger.debug(f"Updated context {context_id}")
        return True

    async def delete(self, context_id: str) -> bool:
        def mutate(before: Optional[ContextPayload]) -> Any:
            return _SKIP if before is None else None

        before = await self._commit(context_id, "delete", mutate)
        if before is None:
            return False
        logger.debug(f"Deleted context {context_id}")
        return True

    async def count(self, params: Optional[QueryParams] = None) -> int:
        if params is None or not params.has_filters:
            with self._translate_errors("count"):
                redis = await self._get_redis()
                return await redis.scard(self._index_key(MASTER_ENTRY))
        return len(filter_and_rank(await self._candidates(params), params))

    async def index_members(self, entry: IndexEntry) -> set[str]:
        """Ids in one index bucket."""
        with self._translate_errors("index_members"):
            redis = await self._get_redis()
            return set(await redis.smembers(self._index_key(entry)))

    async def close(self) -> None:
        """Drop the shared client and its connection pool."""
        self._redis_client = None
        await close_redis_client()
