"""Folds the practice history into session statistics."""
import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

from fluentwork.config import settings
from fluentwork.models.records import HistoryEntry, SessionStats

logger = logging.getLogger(__name__)


class SessionAggregator:
    """Maintains SessionStats incrementally as history entries arrive.

    ``append`` is the fast path and expects entries in chronological order: a
    day is counted when an entry's UTC date differs from the previous entry's.
    ``fold`` recounts distinct dates over a whole history and is the repair
    path when incremental state is in doubt.

    The elapsed time is an estimate (a fixed number of minutes per entry),
    not a measurement.
    """

    def __init__(self, minutes_per_entry: Optional[int] = None):
        self.minutes_per_entry = (
            minutes_per_entry if minutes_per_entry is not None else settings.learning.minutes_per_entry
        )
        self._reset()

    def _reset(self) -> None:
        self._days = 0
        self._last_date: Optional[date] = None
        self._entries = 0
        self._mistakes: Dict[str, None] = {}  # insertion-ordered set

    @property
    def stats(self) -> SessionStats:
        return SessionStats(
            total_days_practiced=self._days,
            mistakes=tuple(self._mistakes),
            entry_count=self._entries,
            elapsed_minutes=self._entries * self.minutes_per_entry,
        )

    def _add_mistake(self, text: Optional[str]) -> None:
        if text and text.strip():
            self._mistakes.setdefault(text, None)

    def _mistake_of(self, entry: HistoryEntry) -> Optional[str]:
        if entry.details is not None and not entry.details.is_correct:
            return entry.details.user_input
        return None

    def fold(self, history: Iterable[HistoryEntry]) -> SessionStats:
        """Recompute statistics from a full history, replacing incremental state."""
        self._reset()
        days = set()
        for entry in history:
            entry_date = entry.date.date()
            days.add(entry_date)
            self._last_date = entry_date
            self._entries += 1
            self._add_mistake(self._mistake_of(entry))
        self._days = len(days)
        logger.debug(f"Folded {self._entries} history entries over {self._days} days")
        return self.stats

    def append(self, entry: HistoryEntry, mistake: Optional[str] = None) -> SessionStats:
        """Add one entry (and optionally an extra mistake) to the statistics."""
        entry_date = entry.date.date()
        if entry_date != self._last_date:
            self._days += 1
        self._last_date = entry_date
        self._entries += 1
        self._add_mistake(self._mistake_of(entry))
        self._add_mistake(mistake)
        return self.stats

    def record_mistake(self, mistake: str) -> SessionStats:
        """Record a mistake that has no history entry of its own."""
        self._add_mistake(mistake)
        return self.stats

    def recent_mistakes(self, limit: Optional[int] = None) -> List[str]:
        """Get the most recently first-seen mistakes, oldest first."""
        limit = limit if limit is not None else settings.learning.recent_mistakes_limit
        mistakes = list(self._mistakes)
        return mistakes[-limit:] if limit > 0 else []
