"""Shared async Redis client provider and health checks."""

import asyncio
import time
from typing import Any, Optional, Tuple

from loguru import logger

from redis import asyncio as aioredis

from .config import RedisSettings

_redis_client: Optional[aioredis.Redis] = None
_redis_pool: Optional[aioredis.ConnectionPool] = None
_needs_ping: bool = True

_REDIS_SLOW_OPERATION_MS = 100.0


class InstrumentedRedis(aioredis.Redis):
    """Redis client that logs slow commands."""

    async def execute_command(self, *args: Any, **options: Any) -> Any:
        command = "unknown"
        if args:
            command = args[0]
            if isinstance(command, bytes):
                command = command.decode("utf-8", errors="ignore")
            else:
                command = str(command)
        start_time = time.perf_counter()
        try:
            return await super().execute_command(*args, **options)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000.0
            if duration_ms > _REDIS_SLOW_OPERATION_MS:
                logger.warning(
                    "Slow Redis operation detected (command={}, duration_ms={:.2f})",
                    command,
                    duration_ms,
                )


async def _reset() -> None:
    global _redis_client, _redis_pool
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None


async def get_redis_client(settings: Optional[RedisSettings] = None) -> aioredis.Redis:
    """
    Get or create the process-wide Redis client.

    The client and its connection pool are created lazily on first use and
    reused afterwards. After mark_redis_unhealthy() the next call pings the
    server again, reconnecting with exponential backoff if needed.

    Args:
        settings: Connection settings, used when the pool is created

    Raises:
        redis.ConnectionError / redis.TimeoutError: When retries are exhausted
    """
    global _redis_client, _redis_pool, _needs_ping

    if _redis_client is not None and not _needs_ping:
        _log_pool_stats("reuse")
        return _redis_client

    settings = settings or RedisSettings()
    for attempt in range(1, settings.connect_retries + 1):
        try:
            if _redis_pool is None:
                _redis_pool = aioredis.ConnectionPool.from_url(
                    settings.url,
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=settings.max_connections,
                    socket_connect_timeout=settings.socket_connect_timeout,
                    socket_timeout=settings.socket_timeout,
                )
            if _redis_client is None:
                _redis_client = InstrumentedRedis(connection_pool=_redis_pool)
            await _redis_client.ping()
            _needs_ping = False
            _log_pool_stats("ready")
            break
        except (aioredis.ConnectionError, aioredis.TimeoutError) as exc:
            logger.warning(
                "Redis connection attempt {}/{} failed: {}",
                attempt,
                settings.connect_retries,
                exc,
            )
            await _reset()
            if attempt >= settings.connect_retries:
                logger.error("Redis connection retries exhausted")
                raise
            backoff = min(
                settings.connect_retry_delay * (2 ** (attempt - 1)),
                settings.connect_retry_max_delay,
            )
            await asyncio.sleep(backoff)
    return _redis_client


def mark_redis_unhealthy() -> None:
    """Force the next get_redis_client() call to re-validate the connection."""
    global _needs_ping
    _needs_ping = True


def _log_pool_stats(context: str) -> None:
    if _redis_pool is None:
        return
    in_use = len(getattr(_redis_pool, "_in_use_connections", ()))
    available = len(getattr(_redis_pool, "_available_connections", ()))
    logger.debug(
        "Redis pool {}: in_use={}, idle={}, max={}",
        context,
        in_use,
        available,
        _redis_pool.max_connections,
    )


async def close_redis_client() -> None:
    """Close the shared Redis client and connection pool."""
    global _needs_ping
    await _reset()
    _needs_ping = True


async def check_redis_health(settings: Optional[RedisSettings] = None) -> Tuple[bool, str]:
    """Ping Redis to verify connectivity and return status."""
    try:
        redis = await get_redis_client(settings)
        result = await redis.ping()
        if result is True or result == "PONG":
            return True, "Redis ping succeeded"
        return False, f"Unexpected Redis ping response: {result}"
    except (aioredis.ConnectionError, aioredis.TimeoutError) as exc:
        return False, f"Redis connection failed: {exc}"
    except aioredis.RedisError as exc:
        return False, f"Redis health check error: {exc}"
