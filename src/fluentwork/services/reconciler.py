"""Reconciles remote change notifications into an in-memory progress collection.

Each vocabulary item of the subscribed user moves through
Absent -> Insert -> Present -> Update* -> Delete -> Absent. Notifications for
one item are ordered by ``updated_at``: anything older than the held record,
or than the item's deletion, is ignored. Items are independent of each other.

Usage:
    reconciler = ChangeReconciler(store, medium, lookup)
    subscription = await reconciler.start(user_id, on_initial, on_change)
    ...
    await subscription.stop()
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from fluentwork.errors import StoreUnavailable, ValidationFailure
from fluentwork.models.records import (
    ChangeNotification,
    ChangeType,
    ProgressRecord,
    VocabularyItem,
    merge_progress_payload,
    parse_timestamp,
)
from fluentwork.monitoring import dropped_notifications, reconciler_notifications, stale_notifications
from fluentwork.stores.base import ProgressStore, PushChannel, RemoteMedium, VocabularyLookup
from fluentwork.stores.remote import PROGRESS_TABLE

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciledChange:
    """A change that was applied to the collection."""
    event_type: ChangeType
    record: Optional[ProgressRecord]
    previous: Optional[ProgressRecord]


InitialCallback = Callable[[List[ProgressRecord]], None]
ChangeCallback = Callable[[ReconciledChange], None]


class ReconcilerSubscription:
    """Live, caller-owned view of one user's progress records."""

    def __init__(self, user_id: str, lookup: VocabularyLookup, on_change: Optional[ChangeCallback] = None):
        self.user_id = user_id
        self.lookup = lookup
        self.on_change = on_change
        self._records: Dict[str, ProgressRecord] = {}
        self._tombstones: Dict[str, datetime] = {}
        self._vocabulary: Dict[str, VocabularyItem] = {}
        self._channel: Optional[PushChannel] = None
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed

    @property
    def records(self) -> List[ProgressRecord]:
        """Get the held records, due-soonest first."""
        return sorted(self._records.values(), key=lambda record: record.next_review_date)

    def get(self, vocabulary_item_id: str) -> Optional[ProgressRecord]:
        return self._records.get(vocabulary_item_id)

    async def _attach(self, channel: PushChannel) -> None:
        if self._closed:
            await channel.close()
            return
        self._channel = channel

    async def stop(self) -> None:
        """Release the push channel. Safe to call any number of times."""
        if self._closed:
            return
        self._closed = True
        channel, self._channel = self._channel, None
        if channel is not None:
            await channel.close()
        logger.info(f"Stopped progress reconciliation for user {self.user_id}")

    async def __aenter__(self) -> "ReconcilerSubscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _resolve(self, item_id: str) -> Optional[VocabularyItem]:
        """Look up the vocabulary item, or None if it is unknown or the lookup fails."""
        if item_id in self._vocabulary:
            return self._vocabulary[item_id]
        try:
            item = await self.lookup.get(item_id)
        except Exception as e:
            logger.warning(f"Vocabulary lookup for {item_id} failed: {e}")
            return None
        if item is None:
            logger.warning(f"Vocabulary item {item_id} is unknown, keeping progress record without it")
            return None
        self._vocabulary[item_id] = item
        return item

    async def seed(self, records: Iterable[ProgressRecord]) -> None:
        """Admit the initial load without emitting change callbacks."""
        for record in records:
            vocabulary = record.vocabulary or await self._resolve(record.vocabulary_item_id)
            if self._closed:
                return
            self._admit(record.with_vocabulary(vocabulary), notify=False)

    async def handle(self, payload: Dict[str, Any]) -> None:
        """Apply one push-channel payload."""
        if self._closed:
            return
        try:
            notification = ChangeNotification.from_payload(payload)
        except ValidationFailure as e:
            self._drop(f"Malformed change notification: {e}")
            return
        item_id = notification.vocabulary_item_id
        if item_id is None:
            self._drop("Change notification without a vocabulary id")
            return

        if notification.event_type == ChangeType.DELETE:
            self._delete(item_id, notification.old)
            return
        if not (notification.new or {}).get("updated_at"):
            # Without its own timestamp the payload cannot be ordered
            self._drop(f"{notification.event_type.value} payload for {item_id} has no updated_at")
            return

        vocabulary = await self._resolve(item_id)
        if self._closed:
            # Stopped while the lookup was in flight
            return
        current = self._records.get(item_id)
        try:
            record = merge_progress_payload(notification.new or {}, current)
        except ValidationFailure as e:
            self._drop(f"Rejected {notification.event_type.value} payload for {item_id}: {e}")
            return
        if record.user_id != self.user_id:
            self._drop(f"Notification for user {record.user_id} on subscription of {self.user_id}")
            return
        self._admit(record.with_vocabulary(vocabulary or record.vocabulary), notify=True)

    def _drop(self, message: str) -> None:
        dropped_notifications.inc()
        logger.warning(message)

    def _admit(self, record: ProgressRecord, notify: bool) -> None:
        """Insert or update a record unless it is older than what is held."""
        item_id = record.vocabulary_item_id
        current = self._records.get(item_id)
        if current is not None and record.updated_at < current.updated_at:
            stale_notifications.inc()
            logger.debug(f"Ignoring stale update for {item_id}: {record.updated_at} < {current.updated_at}")
            return
        deleted_at = self._tombstones.get(item_id)
        if current is None and deleted_at is not None and record.updated_at <= deleted_at:
            stale_notifications.inc()
            logger.debug(f"Ignoring update for {item_id} older than its deletion")
            return
        if current is not None and record == current:
            if record.vocabulary is not None and current.vocabulary is None:
                self._records[item_id] = record
            return

        if record.vocabulary is None and current is not None:
            record = record.with_vocabulary(current.vocabulary)
        self._records[item_id] = record
        self._tombstones.pop(item_id, None)
        event_type = ChangeType.INSERT if current is None else ChangeType.UPDATE
        reconciler_notifications.labels(event_type=event_type.value).inc()
        if notify and self.on_change is not None:
            self.on_change(ReconciledChange(event_type, record, current))

    def _delete(self, item_id: str, old: Optional[Dict[str, Any]]) -> None:
        current = self._records.get(item_id)
        deleted_at = None
        if old and old.get("updated_at"):
            try:
                deleted_at = parse_timestamp(old["updated_at"])
            except ValidationFailure:
                deleted_at = None
        if deleted_at is None and current is not None:
            deleted_at = current.updated_at

        if current is None:
            # Already absent: remember the deletion so late duplicates stay out
            if deleted_at is not None:
                previous = self._tombstones.get(item_id)
                self._tombstones[item_id] = max(deleted_at, previous) if previous else deleted_at
            logger.debug(f"Delete for absent item {item_id} ignored")
            return
        if deleted_at is not None and deleted_at < current.updated_at:
            stale_notifications.inc()
            logger.debug(f"Ignoring stale delete for {item_id}")
            return

        del self._records[item_id]
        if deleted_at is not None:
            self._tombstones[item_id] = deleted_at
        reconciler_notifications.labels(event_type=ChangeType.DELETE.value).inc()
        if self.on_change is not None:
            self.on_change(ReconciledChange(ChangeType.DELETE, None, current))


class ChangeReconciler:
    """Starts caller-owned reconciliation subscriptions for remote mode."""

    def __init__(
        self,
        store: ProgressStore,
        medium: RemoteMedium,
        lookup: VocabularyLookup,
        table: str = PROGRESS_TABLE,
    ):
        """Initialize the reconciler with its store, push medium and vocabulary lookup."""
        self.store = store
        self.medium = medium
        self.lookup = lookup
        self.table = table

    async def start(
        self,
        user_id: str,
        on_initial: Optional[InitialCallback] = None,
        on_change: Optional[ChangeCallback] = None,
    ) -> ReconcilerSubscription:
        """Subscribe to the user's changes, then seed the collection with a full load.

        Subscribing first means no change committed during the initial load is
        missed; the ``updated_at`` ordering makes the overlap harmless.
        """
        subscription = ReconcilerSubscription(user_id, self.lookup, on_change)
        try:
            channel = await self.medium.subscribe(self.table, user_id, subscription.handle)
        except StoreUnavailable:
            raise
        except Exception as e:
            raise StoreUnavailable(f"Could not subscribe to {self.table}: {e}", backend="remote") from e
        await subscription._attach(channel)

        try:
            records = await self.store.load_all(user_id)
        except StoreUnavailable:
            await subscription.stop()
            raise
        await subscription.seed(records)

        if subscription.active:
            logger.info(f"Started progress reconciliation for user {user_id} with {len(records)} records")
            if on_initial is not None:
                on_initial(subscription.records)
        return subscription
