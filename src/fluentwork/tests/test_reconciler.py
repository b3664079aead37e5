"""Tests for the change reconciler."""
import asyncio
from datetime import timedelta
from typing import Optional

import pytest

from fluentwork.errors import StoreUnavailable
from fluentwork.models.records import ChangeType, VocabularyItem
from fluentwork.services.reconciler import ChangeReconciler, ReconcilerSubscription
from fluentwork.stores.base import VocabularyLookup
from fluentwork.stores.remote import PROGRESS_TABLE, RemoteStore


class SlowLookup(VocabularyLookup):
    """Lookup that blocks until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def get(self, item_id: str) -> Optional[VocabularyItem]:
        self.started.set()
        await self.release.wait()
        return None


class CountingLookup(VocabularyLookup):
    def __init__(self, item: VocabularyItem):
        self.item = item
        self.calls = 0

    async def get(self, item_id: str) -> Optional[VocabularyItem]:
        self.calls += 1
        return self.item if item_id == self.item.id else None


class FailingStore(RemoteStore):
    async def load_all(self, user_id):
        raise StoreUnavailable("connection reset", backend="remote")


def change_payload(event_type: str, new=None, old=None) -> dict:
    return {"eventType": event_type, "new": new or {}, "old": old or {}}


@pytest.fixture
def reconciler(remote_store, remote_medium, vocabulary_lookup) -> ChangeReconciler:
    return ChangeReconciler(remote_store, remote_medium, vocabulary_lookup)


@pytest.mark.asyncio
async def test_start_seeds_and_reports_initial(
    reconciler, remote_store, user_id, now, record_factory, vocabulary_item
) -> None:
    """Test the initial load is enriched, sorted and reported once."""
    await remote_store.save_vocabulary(user_id, [vocabulary_item])
    await remote_store.upsert_progress(record_factory(user_id, "vocab-1", next_review_date=now + timedelta(days=3)))
    await remote_store.upsert_progress(record_factory(user_id, "vocab-2", next_review_date=now))
    initial = []
    changes = []

    subscription = await reconciler.start(user_id, on_initial=initial.append, on_change=changes.append)

    [records] = initial
    assert [record.vocabulary_item_id for record in records] == ["vocab-2", "vocab-1"]
    assert records[1].vocabulary == vocabulary_item
    assert records[0].vocabulary is None
    assert changes == []
    await subscription.stop()


@pytest.mark.asyncio
async def test_own_writes_are_echoed(reconciler, remote_store, remote_medium, user_id, now, record_factory) -> None:
    """Test insert, update and delete notifications reach the collection."""
    changes = []
    subscription = await reconciler.start(user_id, on_change=changes.append)

    inserted = record_factory(user_id)
    await remote_store.upsert_progress(inserted)
    updated = record_factory(user_id, mastery_level=2, times_reviewed=2, times_correct=2, updated_at=now + timedelta(1))
    await remote_store.upsert_progress(updated)
    await remote_medium.delete(PROGRESS_TABLE, {"user_id": user_id, "vocabulary_id": "vocab-1"})

    assert [change.event_type for change in changes] == [ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE]
    assert changes[0].record == inserted
    assert changes[1].record == updated
    assert changes[1].previous == inserted
    assert changes[2].record is None
    assert subscription.records == []
    await subscription.stop()


@pytest.mark.asyncio
async def test_stale_update_is_ignored(reconciler, remote_store, user_id, now, record_factory) -> None:
    """Test a notification older than the held record does not replace it."""
    changes = []
    subscription = await reconciler.start(user_id, on_change=changes.append)
    newer = record_factory(user_id, mastery_level=3, times_reviewed=3, times_correct=3, updated_at=now + timedelta(hours=2))
    older = record_factory(user_id, mastery_level=1, updated_at=now + timedelta(hours=1))

    await subscription.handle(change_payload("UPDATE", newer.to_row()))
    await subscription.handle(change_payload("UPDATE", older.to_row()))

    assert subscription.get("vocab-1") == newer
    assert len(changes) == 1
    await subscription.stop()


@pytest.mark.asyncio
async def test_duplicate_notification_is_noop(reconciler, user_id, record_factory) -> None:
    changes = []
    subscription = await reconciler.start(user_id, on_change=changes.append)
    payload = change_payload("INSERT", record_factory(user_id).to_row())

    await subscription.handle(payload)
    await subscription.handle(payload)

    assert len(changes) == 1
    assert len(subscription.records) == 1
    await subscription.stop()


@pytest.mark.asyncio
async def test_update_for_unknown_key_is_insert(reconciler, user_id, record_factory) -> None:
    changes = []
    subscription = await reconciler.start(user_id, on_change=changes.append)

    await subscription.handle(change_payload("UPDATE", record_factory(user_id).to_row()))

    assert changes[0].event_type == ChangeType.INSERT
    await subscription.stop()


@pytest.mark.asyncio
async def test_delete_of_absent_key(reconciler, user_id, record_factory) -> None:
    """Test deleting something never held is a silent no-op."""
    changes = []
    subscription = await reconciler.start(user_id, on_change=changes.append)

    await subscription.handle(change_payload("DELETE", old=record_factory(user_id).to_row()))

    assert changes == []
    assert subscription.records == []
    await subscription.stop()


@pytest.mark.asyncio
async def test_deleted_record_is_not_resurrected(reconciler, user_id, now, record_factory) -> None:
    """Test a late insert no newer than the delete stays out."""
    subscription = await reconciler.start(user_id)
    record = record_factory(user_id)
    await subscription.handle(change_payload("INSERT", record.to_row()))
    await subscription.handle(change_payload("DELETE", old=record.to_row()))

    await subscription.handle(change_payload("INSERT", record.to_row()))
    assert subscription.records == []

    fresh = record_factory(user_id, updated_at=now + timedelta(minutes=1))
    await subscription.handle(change_payload("INSERT", fresh.to_row()))
    assert subscription.records == [fresh]
    await subscription.stop()


@pytest.mark.asyncio
async def test_partial_payload_is_merged(reconciler, user_id, now, record_factory) -> None:
    subscription = await reconciler.start(user_id)
    held = record_factory(user_id, mastery_level=2, times_reviewed=4, times_correct=3)
    await subscription.handle(change_payload("INSERT", held.to_row()))

    later = (now + timedelta(hours=1)).isoformat()
    await subscription.handle(change_payload(
        "UPDATE", {"user_id": user_id, "vocabulary_id": "vocab-1", "mastery_level": 3, "updated_at": later}
    ))

    record = subscription.get("vocab-1")
    assert record.mastery_level == 3
    assert record.times_reviewed == 4
    assert record.updated_at == now + timedelta(hours=1)
    await subscription.stop()


@pytest.mark.asyncio
async def test_payload_without_updated_at_is_dropped(reconciler, user_id, now, record_factory) -> None:
    """Test an unordered partial payload cannot overwrite a newer held record."""
    changes = []
    subscription = await reconciler.start(user_id, on_change=changes.append)
    held = record_factory(user_id, mastery_level=4, times_reviewed=5, times_correct=4, updated_at=now + timedelta(hours=5))
    await subscription.handle(change_payload("INSERT", held.to_row()))
    changes.clear()

    await subscription.handle(change_payload(
        "UPDATE", {"user_id": user_id, "vocabulary_id": "vocab-1", "mastery_level": 0}
    ))

    assert subscription.get("vocab-1") == held
    assert changes == []
    await subscription.stop()


@pytest.mark.asyncio
async def test_partial_payload_without_held_record_is_dropped(reconciler, user_id) -> None:
    changes = []
    subscription = await reconciler.start(user_id, on_change=changes.append)

    await subscription.handle(change_payload("INSERT", {"user_id": user_id, "vocabulary_id": "vocab-1"}))

    assert changes == []
    assert subscription.records == []
    await subscription.stop()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"eventType": "TRUNCATE", "new": {}},
        {"new": {"vocabulary_id": "vocab-1"}},
        {"eventType": "INSERT", "new": {"mastery_level": 2}},
    ],
)
async def test_malformed_notification_is_dropped(reconciler, user_id, payload) -> None:
    subscription = await reconciler.start(user_id)

    await subscription.handle(payload)

    assert subscription.records == []
    assert subscription.active
    await subscription.stop()


@pytest.mark.asyncio
async def test_other_users_rows_are_dropped(reconciler, user_id, record_factory) -> None:
    subscription = await reconciler.start(user_id)

    await subscription.handle(change_payload("INSERT", record_factory("someone-else").to_row()))

    assert subscription.records == []
    await subscription.stop()


@pytest.mark.asyncio
async def test_unknown_vocabulary_is_admitted(reconciler, remote_store, user_id, record_factory) -> None:
    """Test a record whose vocabulary cannot be resolved is kept without enrichment."""
    subscription = await reconciler.start(user_id)

    await remote_store.upsert_progress(record_factory(user_id, "not-in-catalog"))

    [record] = subscription.records
    assert record.vocabulary_item_id == "not-in-catalog"
    assert record.vocabulary is None
    await subscription.stop()


@pytest.mark.asyncio
async def test_vocabulary_is_resolved_once(remote_store, remote_medium, user_id, now, record_factory, vocabulary_item) -> None:
    lookup = CountingLookup(vocabulary_item)
    subscription = await ChangeReconciler(remote_store, remote_medium, lookup).start(user_id)

    await remote_store.upsert_progress(record_factory(user_id))
    await remote_store.upsert_progress(record_factory(user_id, mastery_level=2, times_reviewed=2, times_correct=2,
                                                      updated_at=now + timedelta(1)))

    assert subscription.get("vocab-1").vocabulary == vocabulary_item
    assert lookup.calls == 1
    await subscription.stop()


@pytest.mark.asyncio
async def test_stop_releases_channel_once(reconciler, remote_store, remote_medium, user_id, record_factory) -> None:
    """Test stop is idempotent and ends delivery."""
    changes = []
    subscription = await reconciler.start(user_id, on_change=changes.append)
    assert remote_medium.channel_count == 1

    await subscription.stop()
    await subscription.stop()
    await remote_store.upsert_progress(record_factory(user_id))

    assert remote_medium.channel_count == 0
    assert not subscription.active
    assert changes == []


@pytest.mark.asyncio
async def test_stop_during_lookup_suppresses_change(user_id, record_factory) -> None:
    """Test a notification whose lookup resolves after stop is not applied."""
    lookup = SlowLookup()
    changes = []
    subscription = ReconcilerSubscription(user_id, lookup, changes.append)

    task = asyncio.create_task(subscription.handle(change_payload("INSERT", record_factory(user_id).to_row())))
    await lookup.started.wait()
    await subscription.stop()
    lookup.release.set()
    await task

    assert subscription.records == []
    assert changes == []


@pytest.mark.asyncio
async def test_failed_initial_load_releases_channel(remote_medium, vocabulary_lookup, user_id) -> None:
    reconciler = ChangeReconciler(FailingStore(remote_medium), remote_medium, vocabulary_lookup)

    with pytest.raises(StoreUnavailable):
        await reconciler.start(user_id)

    assert remote_medium.channel_count == 0


@pytest.mark.asyncio
async def test_subscription_as_context_manager(reconciler, remote_medium, user_id) -> None:
    async with await reconciler.start(user_id) as subscription:
        assert subscription.active
        assert remote_medium.channel_count == 1

    assert remote_medium.channel_count == 0
