"""Storage backends and the configuration-driven backend factory."""

from loguru import logger

from ..config import StorageConfig
from .base import StorageBackend
from .memory import InMemoryStorage
from .redis import RedisStorage


def create_storage(config: StorageConfig | None = None) -> StorageBackend:
    """
    Create the storage backend selected by configuration.

    Args:
        config: Storage configuration; defaults to StorageConfig.from_env()

    Returns:
        InMemoryStorage or RedisStorage

    Raises:
        ValueError: If storage_type is not "memory" or "redis"
    """
    config = config or StorageConfig.from_env()

    if config.storage_type == "redis":
        logger.info(f"Using Redis storage at {config.redis.url}")
        return RedisStorage(config.redis)
    if config.storage_type == "memory":
        logger.info(f"Using in-memory storage (max_size={config.memory_max_size})")
        return InMemoryStorage(max_size=config.memory_max_size)

    raise ValueError(f"Unknown storage type '{config.storage_type}'. Valid types: memory, redis")


__all__ = ["InMemoryStorage", "RedisStorage", "StorageBackend", "create_storage"]
