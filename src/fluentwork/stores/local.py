"""Local (offline) store over a key-value medium.

Each user has one snapshot document and one history document. A write is a
single ``set`` of a whole document, so a failed write leaves the previous
document in place.
"""
import json
import logging
from typing import Iterable, List, Optional

from fluentwork.config import settings
from fluentwork.errors import StoreUnavailable, ValidationFailure
from fluentwork.models.records import (
    HistoryEntry,
    ProgressRecord,
    Snapshot,
    UserProfile,
    VocabularyItem,
    WeeklyPlan,
)
from fluentwork.monitoring import store_errors, store_operations
from fluentwork.stores.base import KeyValueMedium, UserStore

logger = logging.getLogger(__name__)


class LocalStore(UserStore):
    """Single-writer store keeping whole-user documents in a key-value medium."""

    backend = "local"

    def __init__(self, medium: KeyValueMedium, key_prefix: Optional[str] = None):
        """Initialize the store with a key-value medium."""
        self.medium = medium
        self.key_prefix = key_prefix if key_prefix is not None else settings.store.local_key_prefix

    def _key(self, user_id: str, name: str) -> str:
        return f"{self.key_prefix}:{user_id}:{name}"

    def _read(self, key: str) -> Optional[str]:
        store_operations.labels(backend=self.backend, operation_type="get").inc()
        try:
            return self.medium.get(key)
        except Exception as e:
            store_errors.labels(backend=self.backend).inc()
            logger.error(f"Error reading {key} from local medium: {e}")
            raise StoreUnavailable(f"Local medium unreachable: {e}", backend=self.backend) from e

    def _write(self, key: str, value: str) -> None:
        store_operations.labels(backend=self.backend, operation_type="set").inc()
        try:
            self.medium.set(key, value)
        except Exception as e:
            store_errors.labels(backend=self.backend).inc()
            logger.error(f"Error writing {key} to local medium: {e}")
            raise StoreUnavailable(f"Local medium rejected write: {e}", backend=self.backend) from e

    def _read_json(self, key: str):
        raw = self._read(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            store_errors.labels(backend=self.backend).inc()
            raise StoreUnavailable(f"Corrupt document under {key}: {e}", backend=self.backend) from e

    async def load(self, user_id: str) -> Snapshot:
        """Get the user's full snapshot, empty if nothing was saved yet."""
        data = self._read_json(self._key(user_id, "snapshot"))
        if data is None:
            return Snapshot()
        try:
            return Snapshot.from_dict(data)
        except ValidationFailure as e:
            store_errors.labels(backend=self.backend).inc()
            raise StoreUnavailable(f"Corrupt snapshot for user {user_id}: {e}", backend=self.backend) from e

    async def save(self, user_id: str, snapshot: Snapshot) -> None:
        """Overwrite the user's snapshot wholesale."""
        for record in snapshot.progress:
            record.validate()
            if record.user_id != user_id:
                raise ValidationFailure(f"Record of user {record.user_id} cannot be saved for user {user_id}")
        self._write(self._key(user_id, "snapshot"), json.dumps(snapshot.to_dict()))
        logger.debug(f"Saved snapshot for user {user_id} ({len(snapshot.progress)} progress records)")

    async def load_all(self, user_id: str) -> List[ProgressRecord]:
        snapshot = await self.load(user_id)
        vocabulary = {item.id: item for item in snapshot.vocabulary}
        records = [record.with_vocabulary(vocabulary.get(record.vocabulary_item_id)) for record in snapshot.progress]
        return sorted(records, key=lambda record: record.next_review_date)

    async def upsert_progress(self, record: ProgressRecord) -> ProgressRecord:
        record.validate()
        snapshot = await self.load(record.user_id)
        snapshot.progress = [
            existing for existing in snapshot.progress
            if existing.vocabulary_item_id != record.vocabulary_item_id
        ]
        snapshot.progress.append(record)
        if record.vocabulary is not None:
            self._add_vocabulary(snapshot, [record.vocabulary])
        await self.save(record.user_id, snapshot)
        return record

    async def load_latest_plan(self, user_id: str) -> Optional[WeeklyPlan]:
        snapshot = await self.load(user_id)
        return snapshot.plan

    async def save_plan(self, user_id: str, plan: WeeklyPlan) -> None:
        snapshot = await self.load(user_id)
        snapshot.plan = plan
        self._add_vocabulary(snapshot, plan.new_vocabulary)
        await self.save(user_id, snapshot)

    async def load_profile(self, user_id: str) -> Optional[UserProfile]:
        snapshot = await self.load(user_id)
        return snapshot.profile

    async def save_profile(self, user_id: str, profile: UserProfile) -> None:
        snapshot = await self.load(user_id)
        snapshot.profile = profile
        await self.save(user_id, snapshot)

    async def save_vocabulary(self, user_id: str, items: Iterable[VocabularyItem]) -> None:
        snapshot = await self.load(user_id)
        self._add_vocabulary(snapshot, items)
        await self.save(user_id, snapshot)

    @staticmethod
    def _add_vocabulary(snapshot: Snapshot, items: Iterable[VocabularyItem]) -> None:
        known = {item.id for item in snapshot.vocabulary}
        for item in items:
            if item.id not in known:
                snapshot.vocabulary.append(item)
                known.add(item.id)

    async def load_history(self, user_id: str) -> List[HistoryEntry]:
        data = self._read_json(self._key(user_id, "history")) or []
        try:
            return [HistoryEntry.from_dict(entry) for entry in data]
        except ValidationFailure as e:
            store_errors.labels(backend=self.backend).inc()
            raise StoreUnavailable(f"Corrupt history for user {user_id}: {e}", backend=self.backend) from e

    async def append_history(self, user_id: str, entry: HistoryEntry) -> None:
        history = await self.load_history(user_id)
        history.append(entry)
        self._write(self._key(user_id, "history"), json.dumps([item.to_dict() for item in history]))
