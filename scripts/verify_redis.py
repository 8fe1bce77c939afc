#!/usr/bin/env python3
"""
Redis Storage Verification Script
Verifies Redis connectivity and the context store's index bookkeeping
against a live server using a throwaway key prefix.
"""

import asyncio
import os
import sys
import uuid

from redis import asyncio as aioredis

from klever_mcp.config import RedisSettings
from klever_mcp.contexts.models import ContextMetadata, ContextPayload, ContextType, QueryParams
from klever_mcp.redis_client import close_redis_client
from klever_mcp.storage.indexes import IndexFamily
from klever_mcp.storage.redis import RedisStorage


async def verify_storage():
    """
    Verify Redis connection and a store/query/update/delete cycle.

    Tests:
    - PING command
    - store() writes payload and index sets
    - query() finds the record by tag
    - update() moves tag index membership
    - delete() removes payload and index memberships
    """
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379")
    run_id = uuid.uuid4().hex[:8]
    settings = RedisSettings(
        url=redis_url,
        key_prefix=f"verify:{run_id}:context:",
        index_prefix=f"verify:{run_id}:index:",
    )
    storage = RedisStorage(settings)

    print(f"Connecting to Redis at: {redis_url}")

    try:
        # Test 1: PING command
        print("\n[1/5] Testing PING command...")
        redis = await storage._get_redis()
        if not await redis.ping():
            print("✗ PING failed - unexpected response")
            return False
        print("✓ PING successful - received PONG")

        # Test 2: store
        print("\n[2/5] Storing probe context...")
        context_id = await storage.store(
            ContextPayload(
                type=ContextType.DOCUMENTATION,
                content="verification probe",
                metadata=ContextMetadata(title="Probe", tags=["probe"]),
            )
        )
        if context_id not in await storage.index_members((IndexFamily.TAG, "probe")):
            print("✗ Tag index missing probe id")
            return False
        print(f"✓ Stored context {context_id}")

        # Test 3: query
        print("\n[3/5] Querying by tag...")
        result = await storage.query(QueryParams(tags=["probe"]))
        if [c.id for c in result.results] != [context_id]:
            print(f"✗ Unexpected query results: {[c.id for c in result.results]}")
            return False
        print("✓ Query returned the probe context")

        # Test 4: update
        print("\n[4/5] Updating tags...")
        await storage.update(context_id, {"metadata": {"tags": ["checked"]}})
        if context_id in await storage.index_members((IndexFamily.TAG, "probe")):
            print("✗ Old tag index still holds probe id")
            return False
        print("✓ Tag index membership moved")

        # Test 5: delete
        print("\n[5/5] Deleting probe context...")
        await storage.delete(context_id)
        leftovers = [key async for key in redis.scan_iter(f"verify:{run_id}:*")]
        if leftovers:
            print(f"✗ Keys left behind: {leftovers}")
            return False
        print("✓ Payload and index sets removed")

        print("\n" + "=" * 50)
        print("✓ Redis Storage Status: OPERATIONAL")
        print("=" * 50)
        return True

    except aioredis.ConnectionError as e:
        print(f"\n✗ Redis Connection Error: {e}")
        print("  - Ensure Redis container is running")
        print("  - Verify REDIS_URL environment variable")
        return False
    except Exception as e:
        print(f"\n✗ Unexpected Error: {e}")
        return False
    finally:
        await close_redis_client()


if __name__ == "__main__":
    success = asyncio.run(verify_storage())
    sys.exit(0 if success else 1)
