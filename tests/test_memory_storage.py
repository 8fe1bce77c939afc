"""
Unit Tests for InMemoryStorage

Tests backend operations:
- store(): Persist records, assign ids, enforce capacity
- retrieve(): Point lookups return isolated copies
- query(): Filter, rank and paginate
- update(): Partial merges with index moves
- delete(): Remove records and every index membership
- count(): Whole store and filtered counts
"""

import asyncio
from datetime import datetime, timezone

import pytest

from klever_mcp.contexts.models import ContextMetadata, ContextPayload, QueryParams
from klever_mcp.errors import CapacityError, ValidationError
from klever_mcp.storage.indexes import MASTER_ENTRY, IndexFamily, index_entries
from klever_mcp.storage.memory import InMemoryStorage
from tests.conftest import make_payload


def _payload(**kwargs) -> ContextPayload:
    return ContextPayload.from_dict(make_payload(**kwargs))


def _assert_indexes_consistent(storage: InMemoryStorage) -> None:
    """Every record is in exactly its own buckets, and buckets hold only live ids."""
    expected: dict = {}
    for context_id, record in storage._contexts.items():
        for entry in index_entries(record):
            expected.setdefault(entry, set()).add(context_id)

    actual = {
        (family, value): ids
        for family, buckets in storage._indexes.items()
        for value, ids in buckets.items()
    }
    assert actual == expected


@pytest.mark.asyncio
@pytest.mark.unit
async def test_store_assigns_id_and_timestamps(memory_storage):
    """store() generates an id and sets createdAt/updatedAt."""
    context_id = await memory_storage.store(_payload(title="First"))

    record = await memory_storage.retrieve(context_id)
    assert record is not None
    assert record.id == context_id
    assert record.metadata.created_at is not None
    assert record.metadata.updated_at >= record.metadata.created_at
    _assert_indexes_consistent(memory_storage)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_store_uses_explicit_id(memory_storage):
    context_id = await memory_storage.store(_payload(id="explicit-1"))
    assert context_id == "explicit-1"
    assert memory_storage.index_members(MASTER_ENTRY) == {"explicit-1"}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_store_over_existing_id_keeps_created_at_and_moves_indexes(memory_storage):
    """Re-storing an id replaces the record but keeps its creation time."""
    await memory_storage.store(_payload(id="ctx", tags=["old"]))
    first = await memory_storage.retrieve("ctx")

    await asyncio.sleep(0.01)
    await memory_storage.store(_payload(id="ctx", tags=["new"], title="Replaced"))
    second = await memory_storage.retrieve("ctx")

    assert second.metadata.title == "Replaced"
    assert second.metadata.created_at == first.metadata.created_at
    assert second.metadata.updated_at >= first.metadata.updated_at
    assert memory_storage.index_members((IndexFamily.TAG, "old")) == set()
    assert memory_storage.index_members((IndexFamily.TAG, "new")) == {"ctx"}
    _assert_indexes_consistent(memory_storage)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_retrieve_unknown_returns_none(memory_storage):
    assert await memory_storage.retrieve("missing") is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_retrieve_returns_isolated_copy(memory_storage):
    """Mutating a retrieved record does not change stored state."""
    context_id = await memory_storage.store(_payload(tags=["a"]))

    record = await memory_storage.retrieve(context_id)
    record.metadata.tags.append("mutated")

    fresh = await memory_storage.retrieve(context_id)
    assert fresh.metadata.tags == ["a"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_capacity_rejects_new_ids_when_full():
    """A full store rejects new ids but still accepts overwrites and updates."""
    storage = InMemoryStorage(max_size=2)
    await storage.store(_payload(id="a"))
    await storage.store(_payload(id="b"))

    with pytest.raises(CapacityError):
        await storage.store(_payload(id="c"))

    await storage.store(_payload(id="a", title="overwrite"))
    assert await storage.update("b", {"content": "changed"}) is True
    assert await storage.count() == 2

    await storage.delete("a")
    assert await storage.store(_payload(id="c")) == "c"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unbounded_storage():
    storage = InMemoryStorage(max_size=None)
    for i in range(25):
        await storage.store(_payload(id=str(i)))
    assert await storage.count() == 25


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_merges_and_moves_indexes(memory_storage):
    """update() merges partially and moves type/tag/contract memberships."""
    context_id = await memory_storage.store(
        _payload(type="code_example", tags=["a", "b"], contract_type="token", description="keep")
    )

    updated = await memory_storage.update(
        context_id,
        {"type": "optimization", "metadata": {"tags": ["b", "c"], "contractType": "nft"}},
    )
    assert updated is True

    record = await memory_storage.retrieve(context_id)
    assert record.type.value == "optimization"
    assert record.metadata.description == "keep"
    assert memory_storage.index_members((IndexFamily.TYPE, "code_example")) == set()
    assert memory_storage.index_members((IndexFamily.TAG, "a")) == set()
    assert memory_storage.index_members((IndexFamily.TAG, "c")) == {context_id}
    assert memory_storage.index_members((IndexFamily.CONTRACT, "token")) == set()
    assert memory_storage.index_members((IndexFamily.CONTRACT, "nft")) == {context_id}
    _assert_indexes_consistent(memory_storage)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_update_unknown_id_returns_false(memory_storage):
    assert await memory_storage.update("missing", {"content": "x"}) is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_invalid_update_leaves_record_untouched(memory_storage):
    """A rejected change set commits nothing."""
    context_id = await memory_storage.store(_payload(title="Original", tags=["a"]))

    with pytest.raises(ValidationError):
        await memory_storage.update(context_id, {"metadata": {"title": "New", "tags": 7}})

    record = await memory_storage.retrieve(context_id)
    assert record.metadata.title == "Original"
    _assert_indexes_consistent(memory_storage)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_delete_removes_record_and_every_index_entry(memory_storage):
    """After delete no bucket references the id."""
    context_id = await memory_storage.store(
        _payload(tags=["a", "b"], contract_type="token")
    )
    other_id = await memory_storage.store(_payload(tags=["a"]))

    assert await memory_storage.delete(context_id) is True
    assert await memory_storage.retrieve(context_id) is None
    for buckets in memory_storage._indexes.values():
        for ids in buckets.values():
            assert context_id not in ids
    assert memory_storage.index_members((IndexFamily.TAG, "a")) == {other_id}
    _assert_indexes_consistent(memory_storage)

    assert await memory_storage.delete(context_id) is False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_query_uses_filters_and_ranking(memory_storage):
    await memory_storage.store(_payload(id="low", tags=["kda"], relevance_score=0.2))
    await memory_storage.store(_payload(id="high", tags=["kda"], relevance_score=0.9))
    await memory_storage.store(_payload(id="other", tags=["nft"], relevance_score=1.0))

    result = await memory_storage.query(QueryParams(tags=["kda"]))

    assert [c.id for c in result.results] == ["high", "low"]
    assert result.total == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_count_with_and_without_filters(memory_storage):
    await memory_storage.store(_payload(type="code_example"))
    await memory_storage.store(_payload(type="code_example"))
    await memory_storage.store(_payload(type="optimization"))

    assert await memory_storage.count() == 3
    assert await memory_storage.count(QueryParams(types=["code_example"])) == 2
    assert await memory_storage.count(QueryParams(limit=1)) == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_update_refreshes_updated_at(memory_storage):
    context_id = await memory_storage.store(_payload(title="Same"))
    before = await memory_storage.retrieve(context_id)

    await asyncio.sleep(0.01)
    assert await memory_storage.update(context_id, {}) is True

    after = await memory_storage.retrieve(context_id)
    assert after.metadata.title == "Same"
    assert after.metadata.updated_at > before.metadata.updated_at
    assert after.metadata.created_at == before.metadata.created_at


@pytest.mark.asyncio
@pytest.mark.unit
async def test_store_rejects_invalid_payload_object(memory_storage):
    """Directly built payloads are validated before anything is committed."""
    payload = ContextPayload(
        type="code_example",
        content="fn main() {}",
        metadata=ContextMetadata(title="Bad score", relevance_score=1.5),
        id="bad",
    )

    with pytest.raises(ValidationError):
        await memory_storage.store(payload)

    assert await memory_storage.retrieve("bad") is None
    assert await memory_storage.count() == 0
    _assert_indexes_consistent(memory_storage)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_store_normalizes_naive_created_at(memory_storage):
    payload = ContextPayload(
        type="code_example",
        content="fn main() {}",
        metadata=ContextMetadata(title="Backfilled", created_at=datetime(2024, 1, 1)),
    )

    context_id = await memory_storage.store(payload)

    record = await memory_storage.retrieve(context_id)
    assert record.metadata.created_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert record.metadata.updated_at > record.metadata.created_at
