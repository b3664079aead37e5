"""Mastery model: how a vocabulary item's retention state evolves after a review.

Every function here is pure. The caller supplies ``now``; nothing reads the
clock, so the schedule can be tested without mocking time.
"""
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from fluentwork.config import MAX_MASTERY_LEVEL, settings
from fluentwork.errors import ValidationFailure
from fluentwork.models.records import ProgressRecord, parse_timestamp


def interval_for(level: int, intervals: Optional[Sequence[int]] = None) -> timedelta:
    """Get the review interval for a mastery level."""
    intervals = intervals if intervals is not None else settings.learning.repetition_intervals
    level = min(max(level, 0), len(intervals) - 1)
    return timedelta(days=intervals[level])


def _initial_record(user_id: Optional[str], vocabulary_item_id: Optional[str], now: datetime) -> ProgressRecord:
    if not user_id or not vocabulary_item_id:
        raise ValidationFailure("user_id and vocabulary_item_id are required for a first review")
    return ProgressRecord(
        user_id=user_id,
        vocabulary_item_id=vocabulary_item_id,
        mastery_level=0,
        next_review_date=now,
        updated_at=now,
        times_reviewed=0,
        times_correct=0,
    )


def apply_outcome(
    record: Optional[ProgressRecord],
    is_correct: bool,
    now: datetime,
    *,
    user_id: Optional[str] = None,
    vocabulary_item_id: Optional[str] = None,
    intervals: Optional[Sequence[int]] = None,
) -> ProgressRecord:
    """Apply one review outcome and return the new record.

    A correct answer raises mastery by one level, a wrong one lowers it by one,
    always within ``[0, MAX_MASTERY_LEVEL]``. The next review is scheduled
    ``intervals[new_level]`` days after ``now``. Without a prior record the
    item starts at level 0 and ``user_id`` / ``vocabulary_item_id`` identify it.
    """
    now = parse_timestamp(now)
    if record is None:
        record = _initial_record(user_id, vocabulary_item_id, now)

    if is_correct:
        level = min(MAX_MASTERY_LEVEL, record.mastery_level + 1)
    else:
        level = max(0, record.mastery_level - 1)

    return replace(
        record,
        mastery_level=level,
        times_reviewed=record.times_reviewed + 1,
        times_correct=record.times_correct + (1 if is_correct else 0),
        next_review_date=now + interval_for(level, intervals),
        updated_at=now,
    )


def set_learned(
    record: Optional[ProgressRecord],
    learned: bool,
    now: datetime,
    *,
    user_id: Optional[str] = None,
    vocabulary_item_id: Optional[str] = None,
    intervals: Optional[Sequence[int]] = None,
) -> ProgressRecord:
    """Mark an item as learned (full mastery) or reset it to level 0.

    Review counters are left as they are; only the level and schedule change.
    """
    now = parse_timestamp(now)
    if record is None:
        record = _initial_record(user_id, vocabulary_item_id, now)
    level = MAX_MASTERY_LEVEL if learned else 0
    return replace(
        record,
        mastery_level=level,
        next_review_date=now + interval_for(level, intervals),
        updated_at=now,
    )


def is_answer_correct(user_input: str, target: str) -> bool:
    """Flashcard rule: exact match after trimming whitespace, ignoring case."""
    return user_input.strip().lower() == target.strip().lower()


def is_due(record: ProgressRecord, now: datetime) -> bool:
    return record.next_review_date <= parse_timestamp(now)


def review_queue(
    records: Iterable[ProgressRecord], now: datetime, limit: Optional[int] = None
) -> List[ProgressRecord]:
    """Get records due for review, due-soonest first."""
    due = sorted(
        (record for record in records if is_due(record, now)),
        key=lambda record: record.next_review_date,
    )
    return due[:limit] if limit is not None else due


def progress_summary(records: Iterable[ProgressRecord], total_vocabulary: int) -> Dict[str, int]:
    """Summarize progress for the dashboard.

    ``mastery_percentage`` is the summed mastery over the maximum reachable
    for the whole vocabulary, so unreviewed items count as level 0.
    """
    records = list(records)
    learned_words = sum(1 for record in records if record.learned)
    in_progress_words = sum(1 for record in records if not record.learned and record.mastery_level > 0)
    total_mastery = sum(record.mastery_level for record in records)
    max_mastery = max(total_vocabulary, 1) * MAX_MASTERY_LEVEL
    return {
        "total_words": total_vocabulary,
        "learned_words": learned_words,
        "in_progress_words": in_progress_words,
        "mastery_percentage": round(total_mastery / max_mastery * 100),
    }
