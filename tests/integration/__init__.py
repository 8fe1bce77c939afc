"""Integration tests for the Klever context store.

Test Organization:
- test_redis_storage_flow.py: RedisStorage and ContextService against a live Redis server
"""
