"""Tests for the local store."""
import json
from datetime import timedelta

import pytest

from fluentwork.errors import StoreUnavailable, ValidationFailure
from fluentwork.models.records import HistoryEntry, Snapshot, UserProfile
from fluentwork.services.coach import default_weekly_plan
from fluentwork.stores.factory import open_store
from fluentwork.stores.local import LocalStore
from fluentwork.stores.memory import InMemoryKeyValueMedium
from fluentwork.stores.remote import RemoteStore


class FailingMedium(InMemoryKeyValueMedium):
    """Medium whose writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_writes = False
        self.fail_reads = False

    def get(self, key):
        if self.fail_reads:
            raise OSError("storage unavailable")
        return super().get(key)

    def set(self, key, value):
        if self.fail_writes:
            raise OSError("quota exceeded")
        super().set(key, value)


@pytest.mark.asyncio
async def test_load_all_empty(local_store: LocalStore, user_id: str) -> None:
    assert await local_store.load_all(user_id) == []
    assert await local_store.load_latest_plan(user_id) is None
    assert await local_store.load_history(user_id) == []


@pytest.mark.asyncio
async def test_upsert_is_idempotent(local_store: LocalStore, kv_medium, user_id: str, record_factory) -> None:
    """Test upserting the same record twice leaves the same document."""
    record = record_factory(user_id)

    await local_store.upsert_progress(record)
    first = kv_medium.get(f"test:{user_id}:snapshot")
    await local_store.upsert_progress(record)

    assert kv_medium.get(f"test:{user_id}:snapshot") == first
    assert await local_store.load_all(user_id) == [record]


@pytest.mark.asyncio
async def test_upsert_replaces_by_key(local_store: LocalStore, user_id: str, now, record_factory) -> None:
    await local_store.upsert_progress(record_factory(user_id, mastery_level=1))
    updated = record_factory(user_id, mastery_level=2, times_reviewed=2, times_correct=2, updated_at=now + timedelta(1))

    await local_store.upsert_progress(updated)

    assert await local_store.load_all(user_id) == [updated]


@pytest.mark.asyncio
async def test_load_all_sorted_by_due_date(local_store: LocalStore, user_id: str, now, record_factory) -> None:
    late = record_factory(user_id, "a", next_review_date=now + timedelta(days=3))
    soon = record_factory(user_id, "b", next_review_date=now + timedelta(days=1))
    overdue = record_factory(user_id, "c", next_review_date=now - timedelta(days=1))
    for record in (late, soon, overdue):
        await local_store.upsert_progress(record)

    records = await local_store.load_all(user_id)

    assert [record.vocabulary_item_id for record in records] == ["c", "b", "a"]


@pytest.mark.asyncio
async def test_load_all_enriches_with_vocabulary(
    local_store: LocalStore, user_id: str, record_factory, vocabulary_item
) -> None:
    await local_store.upsert_progress(record_factory(user_id).with_vocabulary(vocabulary_item))

    [record] = await local_store.load_all(user_id)

    assert record.vocabulary == vocabulary_item


@pytest.mark.asyncio
async def test_users_are_isolated(local_store: LocalStore, user_id: str, record_factory) -> None:
    await local_store.upsert_progress(record_factory(user_id))

    assert await local_store.load_all("someone-else") == []


@pytest.mark.asyncio
async def test_failed_write_keeps_previous_document(user_id: str, now, record_factory) -> None:
    """Test a rejected write raises StoreUnavailable and changes nothing."""
    medium = FailingMedium()
    store = LocalStore(medium, key_prefix="test")
    original = record_factory(user_id)
    await store.upsert_progress(original)
    before = medium.get(f"test:{user_id}:snapshot")

    medium.fail_writes = True
    with pytest.raises(StoreUnavailable) as exc_info:
        await store.upsert_progress(record_factory(user_id, mastery_level=2, times_reviewed=2, times_correct=2))

    assert exc_info.value.backend == "local"
    assert medium.get(f"test:{user_id}:snapshot") == before
    assert await store.load_all(user_id) == [original]


@pytest.mark.asyncio
async def test_unreadable_medium(user_id: str) -> None:
    medium = FailingMedium()
    medium.fail_reads = True

    with pytest.raises(StoreUnavailable):
        await LocalStore(medium).load_all(user_id)


@pytest.mark.asyncio
async def test_corrupt_document(user_id: str) -> None:
    medium = InMemoryKeyValueMedium({f"test:{user_id}:snapshot": "{not json"})

    with pytest.raises(StoreUnavailable):
        await LocalStore(medium, key_prefix="test").load(user_id)


@pytest.mark.asyncio
async def test_invalid_record_is_not_written(local_store: LocalStore, kv_medium, user_id: str, record_factory) -> None:
    """Test ValidationFailure prevents the write."""
    with pytest.raises(ValidationFailure):
        await local_store.upsert_progress(record_factory(user_id, times_reviewed=1, times_correct=3))

    assert f"test:{user_id}:snapshot" not in kv_medium


@pytest.mark.asyncio
async def test_save_rejects_foreign_records(local_store: LocalStore, user_id: str, record_factory) -> None:
    snapshot = Snapshot(progress=[record_factory("someone-else")])

    with pytest.raises(ValidationFailure):
        await local_store.save(user_id, snapshot)


@pytest.mark.asyncio
async def test_plan_round_trip(local_store: LocalStore, kv_medium, user_id: str) -> None:
    """Test the saved plan is loaded back and its vocabulary kept in the snapshot."""
    plan = default_weekly_plan(1)

    await local_store.save_plan(user_id, plan)

    assert await local_store.load_latest_plan(user_id) == plan
    document = json.loads(kv_medium.get(f"test:{user_id}:snapshot"))
    assert [item["id"] for item in document["vocabulary"]] == ["v1", "v2", "v3", "v4", "v5"]


@pytest.mark.asyncio
async def test_history_is_append_only(local_store: LocalStore, user_id: str, now) -> None:
    first = HistoryEntry(date=now, type="practice", description="Práctica: Intro")
    second = HistoryEntry(date=now + timedelta(days=1), type="flashcards", description="Repaso")

    await local_store.append_history(user_id, first)
    await local_store.append_history(user_id, second)

    assert await local_store.load_history(user_id) == [first, second]

@pytest.mark.asyncio
async def test_profile_round_trip(local_store: LocalStore, user_id: str) -> None:
    profile = UserProfile(level="B1", context="Support desk", goal="Answer customer calls")
    assert await local_store.load_profile(user_id) is None

    await local_store.save_profile(user_id, profile)

    assert await local_store.load_profile(user_id) == profile
    assert (await local_store.load(user_id)).profile == profile


@pytest.mark.asyncio
async def test_save_vocabulary_keeps_ids_unique(local_store: LocalStore, user_id: str, record_factory, vocabulary_item) -> None:
    await local_store.upsert_progress(record_factory(user_id).with_vocabulary(vocabulary_item))

    await local_store.save_vocabulary(user_id, [vocabulary_item] + list(default_weekly_plan(1).new_vocabulary[:2]))

    snapshot = await local_store.load(user_id)
    assert [item.id for item in snapshot.vocabulary] == ["vocab-1", "v1", "v2"]



def test_open_store_modes(remote_medium) -> None:
    assert isinstance(open_store("local"), LocalStore)
    assert isinstance(open_store("remote", remote_medium=remote_medium), RemoteStore)
    with pytest.raises(ValueError):
        open_store("cloud")
