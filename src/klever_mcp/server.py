"""Entry point: configure logging, build the context service, run the tool server."""

import asyncio
import sys

from loguru import logger

from servers.context_tools import context_server, get_context_service

from .config import Config

SERVER_NAME = "KleverContext"


def configure_logging() -> None:
    """Install the console and rotating file sinks."""
    logger.remove()  # Remove default handler

    # stdout carries the MCP stdio protocol, so logs go to stderr
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> | <level>{message}</level>",
        level=Config.LOG_LEVEL,
    )

    if Config.LOG_FILE:
        logger.add(
            Config.LOG_FILE,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            level="DEBUG",
        )


async def ingest_seed() -> None:
    """Load Config.SEED_FILE into the store, if configured."""
    if not Config.SEED_FILE:
        return
    logger.info(f"Ingesting seed contexts from {Config.SEED_FILE}...")
    service = get_context_service()
    try:
        result = await service.ingest_seed_file(Config.SEED_FILE)
    finally:
        # Connections are bound to this event loop; the server runs its own
        await service.storage.close()
    for error in result.errors:
        logger.warning(f"Seed context #{error.index} rejected: {error.error}")


def main():
    """
    Main entry point for the context server.

    Configures:
    - Loguru for structured logging
    - Storage backend from environment configuration
    - stdio, SSE or streamable HTTP transport
    """
    configure_logging()

    try:
        Config.validate()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Starting {SERVER_NAME} (storage={Config.STORAGE_TYPE})...")

    try:
        asyncio.run(ingest_seed())
    except Exception as e:
        logger.error(f"Seed ingest failed: {e}")
        sys.exit(1)

    try:
        if Config.MCP_TRANSPORT == "stdio":
            context_server.run(transport="stdio")
        else:
            context_server.run(transport=Config.MCP_TRANSPORT, host=Config.HOST, port=Config.PORT)
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Server error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
