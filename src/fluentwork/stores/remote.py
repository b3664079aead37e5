"""Remote store over a hosted relational medium."""
import logging
from typing import Any, Awaitable, Dict, Iterable, List, Optional, TypeVar

from fluentwork.errors import StoreUnavailable, ValidationFailure
from fluentwork.models.records import HistoryEntry, ProgressRecord, UserProfile, VocabularyItem, WeeklyPlan
from fluentwork.monitoring import store_errors, store_operations
from fluentwork.stores.base import RemoteMedium, UserStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROGRESS_TABLE = "vocabulary_progress"
PROGRESS_CONFLICT_KEY = ("user_id", "vocabulary_id")
VOCABULARY_TABLE = "vocabulary"
PLANS_TABLE = "weekly_plans"
HISTORY_TABLE = "progress_history"
PROFILES_TABLE = "profiles"


class RemoteStore(UserStore):
    """Upsert-by-key store. The medium defines per-row atomicity."""

    backend = "remote"

    def __init__(self, medium: RemoteMedium):
        """Initialize the store with a remote medium."""
        self.medium = medium

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a medium call, mapping any failure to StoreUnavailable."""
        store_operations.labels(backend=self.backend, operation_type=operation).inc()
        try:
            return await awaitable
        except StoreUnavailable:
            store_errors.labels(backend=self.backend).inc()
            raise
        except Exception as e:
            store_errors.labels(backend=self.backend).inc()
            logger.error(f"Remote {operation} failed: {e}")
            raise StoreUnavailable(f"Remote {operation} failed: {e}", backend=self.backend) from e

    async def load_all(self, user_id: str) -> List[ProgressRecord]:
        rows = await self._call(
            "select",
            self.medium.select(PROGRESS_TABLE, {"user_id": user_id}, order_by="next_review_date"),
        )
        records = []
        for row in rows:
            try:
                records.append(ProgressRecord.from_row(row))
            except ValidationFailure as e:
                logger.warning(f"Skipping malformed progress row for user {user_id}: {e}")
        return sorted(records, key=lambda record: record.next_review_date)

    async def upsert_progress(self, record: ProgressRecord) -> ProgressRecord:
        record.validate()
        row = await self._call(
            "upsert",
            self.medium.upsert(PROGRESS_TABLE, record.to_row(), on_conflict=PROGRESS_CONFLICT_KEY),
        )
        try:
            return ProgressRecord.from_row(row, vocabulary=record.vocabulary)
        except ValidationFailure as e:
            raise StoreUnavailable(f"Remote upsert returned an invalid row: {e}", backend=self.backend) from e

    async def save_vocabulary(self, user_id: str, items: Iterable[VocabularyItem]) -> None:
        """Upsert vocabulary items into the catalog."""
        for item in items:
            row = {
                "id": item.id,
                "user_id": user_id,
                "word": item.word,
                "translation": item.translation,
                "example": item.example,
                "category": item.category.value,
                "common_error": item.common_error,
            }
            await self._call("upsert", self.medium.upsert(VOCABULARY_TABLE, row, on_conflict=("id",)))

    async def load_profile(self, user_id: str) -> Optional[UserProfile]:
        rows = await self._call("select", self.medium.select(PROFILES_TABLE, {"user_id": user_id}, limit=1))
        return UserProfile.from_dict(rows[0]) if rows else None

    async def save_profile(self, user_id: str, profile: UserProfile) -> None:
        row = {"user_id": user_id, **profile.to_dict()}
        await self._call("upsert", self.medium.upsert(PROFILES_TABLE, row, on_conflict=("user_id",)))

    async def _latest_plan_row(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._call(
            "select",
            self.medium.select(PLANS_TABLE, {"user_id": user_id}, order_by="id", descending=True, limit=1),
        )
        return rows[0] if rows else None

    async def load_latest_plan(self, user_id: str) -> Optional[WeeklyPlan]:
        row = await self._latest_plan_row(user_id)
        if row is None:
            return None
        try:
            return WeeklyPlan.from_dict(row["data"])
        except ValidationFailure as e:
            raise StoreUnavailable(f"Corrupt plan for user {user_id}: {e}", backend=self.backend) from e

    async def save_plan(self, user_id: str, plan: WeeklyPlan) -> None:
        """Update the latest plan row, or insert one if the user has none."""
        row = await self._latest_plan_row(user_id)
        values: Dict[str, Any] = {"week_number": plan.week_number, "data": plan.to_dict()}
        if row is None:
            await self._call("insert", self.medium.insert(PLANS_TABLE, {"user_id": user_id, **values}))
        else:
            await self._call("update", self.medium.update(PLANS_TABLE, values, {"id": row["id"]}))

    async def load_history(self, user_id: str) -> List[HistoryEntry]:
        rows = await self._call(
            "select",
            self.medium.select(HISTORY_TABLE, {"user_id": user_id}, order_by="id"),
        )
        entries = []
        for row in rows:
            try:
                entries.append(HistoryEntry.from_dict(row))
            except ValidationFailure as e:
                logger.warning(f"Skipping malformed history row for user {user_id}: {e}")
        return entries

    async def append_history(self, user_id: str, entry: HistoryEntry) -> None:
        row = entry.to_dict()
        row["user_id"] = user_id
        row.setdefault("details", None)
        await self._call("insert", self.medium.insert(HISTORY_TABLE, row))
