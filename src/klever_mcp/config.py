"""Centralized configuration for the Klever context store."""

import os
from dataclasses import dataclass, field
from typing import Optional


def _optional_int(value: str) -> Optional[int]:
    """Parse an optional integer; empty, "0" and "none" disable the limit."""
    if value.strip().lower() in ("", "0", "none"):
        return None
    return int(value)


class Config:
    """
    Klever context store configuration with environment variable overrides.

    All configuration values are centralized here with sensible defaults.
    Values can be overridden via environment variables. Storage backends
    never read this class directly; they receive a StorageConfig built by
    StorageConfig.from_env().
    """

    @staticmethod
    def _parse_port(port_str: str) -> int:
        """Parse and validate port number from string."""
        try:
            port = int(port_str)
            if not (1 <= port <= 65535):
                raise ValueError(f"Port must be 1-65535, got {port}")
            return port
        except ValueError as e:
            raise ValueError(f"Invalid PORT environment variable: {e}")

    # ========================================================================
    # Server Configuration
    # ========================================================================
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = _parse_port.__func__(os.getenv("PORT", "3000"))
    MCP_TRANSPORT: str = os.getenv("MCP_TRANSPORT", "stdio")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "klever_mcp.log")
    SEED_FILE: str = os.getenv("SEED_FILE", "")

    # ========================================================================
    # Storage Selection
    # ========================================================================
    STORAGE_TYPE: str = os.getenv("STORAGE_TYPE", "memory")
    MEMORY_MAX_SIZE: Optional[int] = _optional_int(os.getenv("MEMORY_MAX_SIZE", "10000"))

    # ========================================================================
    # Redis Configuration
    # ========================================================================
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    REDIS_KEY_PREFIX: str = os.getenv("REDIS_KEY_PREFIX", "klever:context:")
    REDIS_INDEX_PREFIX: str = os.getenv("REDIS_INDEX_PREFIX", "klever:index:")
    REDIS_MAX_CONNECTIONS: int = int(os.getenv("REDIS_MAX_CONNECTIONS", "100"))
    REDIS_SOCKET_CONNECT_TIMEOUT: float = float(
        os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "2")
    )
    REDIS_SOCKET_TIMEOUT: float = float(os.getenv("REDIS_SOCKET_TIMEOUT", "2"))
    REDIS_CONNECT_RETRIES: int = int(os.getenv("REDIS_CONNECT_RETRIES", "3"))
    REDIS_CONNECT_RETRY_DELAY: float = float(os.getenv("REDIS_CONNECT_RETRY_DELAY", "0.2"))
    REDIS_CONNECT_RETRY_MAX_DELAY: float = float(
        os.getenv("REDIS_CONNECT_RETRY_MAX_DELAY", "2")
    )
    REDIS_WATCH_RETRIES: int = int(os.getenv("REDIS_WATCH_RETRIES", "5"))

    # ========================================================================
    # Service Limits
    # ========================================================================
    DEFAULT_QUERY_LIMIT: int = int(os.getenv("DEFAULT_QUERY_LIMIT", "10"))
    MAX_BATCH_SIZE: int = int(os.getenv("MAX_BATCH_SIZE", "100"))
    MAX_SIMILAR_LIMIT: int = int(os.getenv("MAX_SIMILAR_LIMIT", "100"))

    @classmethod
    def validate(cls) -> bool:
        """
        Validate configuration consistency.

        Returns:
            True if validation passes

        Raises:
            ValueError: If validation fails
        """
        errors = []

        if cls.STORAGE_TYPE not in ("memory", "redis"):
            errors.append(f"STORAGE_TYPE must be 'memory' or 'redis', got '{cls.STORAGE_TYPE}'")

        if cls.MEMORY_MAX_SIZE is not None and cls.MEMORY_MAX_SIZE < 0:
            errors.append(f"MEMORY_MAX_SIZE must be >= 0, got {cls.MEMORY_MAX_SIZE}")

        if cls.MCP_TRANSPORT not in ("stdio", "sse", "http"):
            errors.append(
                f"MCP_TRANSPORT must be one of stdio, sse, http, got '{cls.MCP_TRANSPORT}'"
            )

        # Validate Redis settings
        if cls.REDIS_MAX_CONNECTIONS <= 0:
            errors.append(
                f"REDIS_MAX_CONNECTIONS must be > 0, got {cls.REDIS_MAX_CONNECTIONS}"
            )
        if cls.REDIS_SOCKET_CONNECT_TIMEOUT <= 0:
            errors.append(
                "REDIS_SOCKET_CONNECT_TIMEOUT must be > 0, "
                f"got {cls.REDIS_SOCKET_CONNECT_TIMEOUT}"
            )
        if cls.REDIS_SOCKET_TIMEOUT <= 0:
            errors.append(
                f"REDIS_SOCKET_TIMEOUT must be > 0, got {cls.REDIS_SOCKET_TIMEOUT}"
            )
        if cls.REDIS_CONNECT_RETRIES <= 0:
            errors.append(
                f"REDIS_CONNECT_RETRIES must be > 0, got {cls.REDIS_CONNECT_RETRIES}"
            )
        if cls.REDIS_WATCH_RETRIES <= 0:
            errors.append(f"REDIS_WATCH_RETRIES must be > 0, got {cls.REDIS_WATCH_RETRIES}")

        # Validate service limits
        for name in ("DEFAULT_QUERY_LIMIT", "MAX_BATCH_SIZE", "MAX_SIMILAR_LIMIT"):
            value = getattr(cls, name)
            if value <= 0:
                errors.append(f"{name} must be > 0, got {value}")

        if errors:
            raise ValueError(f"Config validation failed: {'; '.join(errors)}")

        return True


@dataclass(frozen=True)
class RedisSettings:
    """Connection and key-scheme settings for the Redis backend."""

    url: str = "redis://localhost:6379"
    key_prefix: str = "klever:context:"
    index_prefix: str = "klever:index:"
    max_connections: int = 100
    socket_connect_timeout: float = 2.0
    socket_timeout: float = 2.0
    connect_retries: int = 3
    connect_retry_delay: float = 0.2
    connect_retry_max_delay: float = 2.0
    watch_retries: int = 5


@dataclass(frozen=True)
class StorageConfig:
    """Explicit storage configuration passed to the backend factory."""

    storage_type: str = "memory"
    memory_max_size: Optional[int] = 10000
    redis: RedisSettings = field(default_factory=RedisSettings)

    @classmethod
    def from_env(cls) -> "StorageConfig":
        """Build a StorageConfig from the environment-backed Config class."""
        return cls(
            storage_type=Config.STORAGE_TYPE,
            memory_max_size=Config.MEMORY_MAX_SIZE,
            redis=RedisSettings(
                url=Config.REDIS_URL,
                key_prefix=Config.REDIS_KEY_PREFIX,
                index_prefix=Config.REDIS_INDEX_PREFIX,
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                connect_retries=Config.REDIS_CONNECT_RETRIES,
                connect_retry_delay=Config.REDIS_CONNECT_RETRY_DELAY,
                connect_retry_max_delay=Config.REDIS_CONNECT_RETRY_MAX_DELAY,
                watch_retries=Config.REDIS_WATCH_RETRIES,
            ),
        )
