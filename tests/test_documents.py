"""
Test DocumentCollection e apply_increments (persistent store).
"""
import pytest

from buffering.errors import FieldPathConflictError
from buffering.types import IncrementOperation
from core.database import apply_increments, to_async_url


def test_apply_increments_creates_missing_levels():
    data = {"name": "Mario"}

    updated = apply_increments(data, [IncrementOperation("u1", "stats.totalCU", 5)])

    assert updated == {"name": "Mario", "stats": {"totalCU": 5}}
    # L'originale non viene toccato
    assert data == {"name": "Mario"}


def test_apply_increments_goes_negative():
    updated = apply_increments(
        {"stats": {"totalCU": 3}},
        [IncrementOperation("u1", "stats.totalCU", -10), IncrementOperation("u1", "stats.calls", 1)],
    )

    assert updated == {"stats": {"totalCU": -7, "calls": 1}}


@pytest.mark.parametrize("data,path", [
    ({"stats": 5}, "stats.totalCU"),
    ({"stats": {"totalCU": "many"}}, "stats.totalCU"),
    ({"flag": True}, "flag"),
    ({}, "stats..totalCU"),
])
def test_apply_increments_conflicts(data, path):
    with pytest.raises(FieldPathConflictError):
        apply_increments(data, [IncrementOperation("u1", path, 1)])


def test_to_async_url():
    assert to_async_url("postgresql://u:p@db/x") == "postgresql+asyncpg://u:p@db/x"
    assert to_async_url("postgres://u:p@db/x") == "postgresql+asyncpg://u:p@db/x"
    assert to_async_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"


@pytest.mark.asyncio
async def test_insert_and_find_one(collection):
    await collection.insert_many([{"_id": "u1", "stats": {"totalCU": 1}}, {"_id": "u2"}])

    assert await collection.find_one("u1") == {"_id": "u1", "stats": {"totalCU": 1}}
    assert await collection.find_one("u2") == {"_id": "u2"}
    assert await collection.find_one("missing") is None


@pytest.mark.asyncio
async def test_bulk_increment_reports_matched_unmatched_failed(collection):
    await collection.insert_many([
        {"_id": "u1"},
        {"_id": "u2", "stats": {"totalCU": 10}},
        {"_id": "u3", "stats": "broken"},
    ])

    result = await collection.bulk_increment([
        IncrementOperation("u1", "stats.totalCU", 4),
        IncrementOperation("u2", "stats.totalCU", -3),
        IncrementOperation("u2", "counter", 2),
        IncrementOperation("u3", "stats.totalCU", 1),
        IncrementOperation("ghost", "counter", 1),
    ])

    assert result.matched == ["u1", "u2"]
    assert result.unmatched == ["ghost"]
    assert list(result.failed) == ["u3"]
    assert result.applied_operations == 3

    assert await collection.find_one("u1") == {"_id": "u1", "stats": {"totalCU": 4}}
    assert await collection.find_one("u2") == {"_id": "u2", "stats": {"totalCU": 7}, "counter": 2}
    assert await collection.find_one("u3") == {"_id": "u3", "stats": "broken"}
    assert await collection.find_one("ghost") is None


@pytest.mark.asyncio
async def test_collections_are_isolated(collection, session_factory):
    from core.database import DocumentCollection

    other = DocumentCollection(collection.name + "-other", session_factory=session_factory)
    await collection.insert_many([{"_id": "u1", "counter": 1}])
    await other.insert_many([{"_id": "u1", "counter": 100}])

    await collection.bulk_increment([IncrementOperation("u1", "counter", 1)])

    assert (await collection.find_one("u1"))["counter"] == 2
    assert (await other.find_one("u1"))["counter"] == 100

    assert await collection.drop() == 1
    assert await collection.find_one("u1") is None
    assert await other.find_one("u1") is not None


@pytest.mark.asyncio
async def test_empty_bulk_is_noop(collection):
    result = await collection.bulk_increment([])

    assert result.matched == [] and result.applied_operations == 0
