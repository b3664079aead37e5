"""Capability interfaces for progress, plan and history persistence."""
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from fluentwork.models.records import HistoryEntry, ProgressRecord, UserProfile, VocabularyItem, WeeklyPlan

PushCallback = Callable[[Dict[str, Any]], Awaitable[None]]


class ProgressStore(ABC):
    """Per-item progress records keyed by (user_id, vocabulary_item_id)."""

    backend: str = "unknown"

    @abstractmethod
    async def load_all(self, user_id: str) -> List[ProgressRecord]:
        """Get all progress records of a user, due-soonest first."""

    @abstractmethod
    async def upsert_progress(self, record: ProgressRecord) -> ProgressRecord:
        """Insert or replace the record with the same key. Idempotent."""


class PlanStore(ABC):
    """Weekly plan persistence, sibling of ProgressStore."""

    @abstractmethod
    async def load_latest_plan(self, user_id: str) -> Optional[WeeklyPlan]:
        """Get the user's most recent weekly plan."""

    @abstractmethod
    async def save_plan(self, user_id: str, plan: WeeklyPlan) -> None:
        """Persist the plan wholesale, replacing the latest one."""


class HistoryStore(ABC):
    """Append-only activity history."""

    @abstractmethod
    async def load_history(self, user_id: str) -> List[HistoryEntry]:
        """Get the user's history in insertion order."""

    @abstractmethod
    async def append_history(self, user_id: str, entry: HistoryEntry) -> None:
        """Append one entry."""


class ProfileStore(ABC):
    """Onboarding profile persistence."""

    @abstractmethod
    async def load_profile(self, user_id: str) -> Optional[UserProfile]:
        """Get the user's profile, or None before onboarding."""

    @abstractmethod
    async def save_profile(self, user_id: str, profile: UserProfile) -> None:
        """Persist the profile, replacing any previous one."""


class CatalogStore(ABC):
    """Vocabulary catalog the progress records refer to."""

    @abstractmethod
    async def save_vocabulary(self, user_id: str, items: Iterable[VocabularyItem]) -> None:
        """Add items to the catalog, keyed by id."""


class UserStore(ProgressStore, PlanStore, HistoryStore, ProfileStore, CatalogStore):
    """Everything a practice session persists, behind one backend."""


class VocabularyLookup(ABC):
    """Resolves vocabulary ids into displayable items."""

    @abstractmethod
    async def get(self, item_id: str) -> Optional[VocabularyItem]:
        """Get an item by id, or None if it is unknown."""


class KeyValueMedium(ABC):
    """Process-local key -> string medium with no query capability."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Get the value stored under key."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""


class PushChannel(ABC):
    """Live subscription handle returned by RemoteMedium.subscribe."""

    @abstractmethod
    async def close(self) -> None:
        """Stop delivery and release the subscription."""


class RemoteMedium(ABC):
    """Hosted relational store: keyed upsert, ordered reads and push updates."""

    @abstractmethod
    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: Sequence[str]) -> Dict[str, Any]:
        """Insert the row or update the row matching the on_conflict columns."""

    @abstractmethod
    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new row."""

    @abstractmethod
    async def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> int:
        """Update matching rows and return how many changed."""

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Get rows matching the equality filters."""

    @abstractmethod
    async def subscribe(self, table: str, user_id: str, callback: PushCallback) -> PushChannel:
        """Deliver ``{eventType, new, old}`` payloads for the user's rows to callback."""
