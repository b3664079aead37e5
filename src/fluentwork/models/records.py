"""Typed records for progress, history and plans, with their wire mappings.

Local snapshots use the camelCase document shape; remote progress rows use the
snake_case column names of the ``vocabulary_progress`` table.
"""
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from fluentwork.config import MAX_MASTERY_LEVEL
from fluentwork.errors import ValidationFailure

Timestamp = Union[str, datetime]

# Columns a remote progress row must carry to become a ProgressRecord
PROGRESS_ROW_FIELDS = (
    "user_id",
    "vocabulary_id",
    "mastery_level",
    "times_reviewed",
    "times_correct",
    "next_review_date",
    "updated_at",
)


def parse_timestamp(value: Timestamp) -> datetime:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise ValidationFailure(f"Invalid ISO-8601 timestamp: {value!r}") from e
    else:
        raise ValidationFailure(f"Timestamp must be str or datetime, got {type(value).__name__}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _as_int(value: Any, name: str) -> int:
    """Coerce an integral number, rejecting booleans and fractions."""
    if isinstance(value, bool):
        raise ValidationFailure(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValidationFailure(f"{name} must be an integer, got {value!r}")


def format_timestamp(value: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC string with a ``Z`` suffix.

    Microseconds are always written so that the strings sort chronologically.
    """
    return parse_timestamp(value).isoformat(timespec="microseconds").replace("+00:00", "Z")


class VocabularyCategory(str, Enum):
    """Category a vocabulary item belongs to."""
    GENERAL = "general"
    PROFESSIONAL = "professional"


class ChangeType(str, Enum):
    """Event types delivered by the remote push channel."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class VocabularyItem:
    """A generated vocabulary item. Immutable once created."""
    id: str
    word: str
    translation: str
    example: str = ""
    category: VocabularyCategory = VocabularyCategory.GENERAL
    common_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "word": self.word,
            "translation": self.translation,
            "example": self.example,
            "category": self.category.value,
        }
        if self.common_error:
            data["commonError"] = self.common_error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VocabularyItem":
        """Create an item from a document or row.

        Older local documents store the translation under ``spanish`` and
        remote rows use ``common_error``; both are accepted.
        """
        try:
            return cls(
                id=str(data["id"]),
                word=data["word"],
                translation=data.get("translation", data.get("spanish", "")),
                example=data.get("example") or "",
                category=VocabularyCategory(data.get("category") or VocabularyCategory.GENERAL.value),
                common_error=data.get("commonError", data.get("common_error")),
            )
        except (KeyError, ValueError) as e:
            raise ValidationFailure(f"Invalid vocabulary item: {e}") from e


@dataclass(frozen=True)
class ProgressRecord:
    """Retention state of one vocabulary item for one user.

    ``learned`` is derived from ``mastery_level`` and never stored on its own.
    ``vocabulary`` is display enrichment only and does not take part in
    equality, so two records with the same persisted state compare equal.
    """
    user_id: str
    vocabulary_item_id: str
    mastery_level: int
    next_review_date: datetime
    updated_at: datetime
    times_reviewed: int = 0
    times_correct: int = 0
    vocabulary: Optional[VocabularyItem] = field(default=None, compare=False, repr=False)

    @property
    def learned(self) -> bool:
        return self.mastery_level == MAX_MASTERY_LEVEL

    @property
    def key(self) -> Tuple[str, str]:
        return (self.user_id, self.vocabulary_item_id)

    def validate(self) -> "ProgressRecord":
        """Raise ValidationFailure if the record breaks an invariant."""
        if not self.user_id or not self.vocabulary_item_id:
            raise ValidationFailure("Progress record needs both user_id and vocabulary_item_id")
        for name in ("mastery_level", "times_reviewed", "times_correct"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationFailure(f"{name} must be an integer, got {value!r}")
        if not 0 <= self.mastery_level <= MAX_MASTERY_LEVEL:
            raise ValidationFailure(
                f"mastery_level must be an integer in [0, {MAX_MASTERY_LEVEL}], got {self.mastery_level!r}"
            )
        if self.times_reviewed < 0 or self.times_correct < 0:
            raise ValidationFailure("Review counters cannot be negative")
        if self.times_correct > self.times_reviewed:
            raise ValidationFailure(
                f"times_correct ({self.times_correct}) exceeds times_reviewed ({self.times_reviewed})"
            )
        return self

    def with_vocabulary(self, vocabulary: Optional[VocabularyItem]) -> "ProgressRecord":
        return replace(self, vocabulary=vocabulary)

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a remote ``vocabulary_progress`` row."""
        return {
            "user_id": self.user_id,
            "vocabulary_id": self.vocabulary_item_id,
            "mastery_level": self.mastery_level,
            "times_reviewed": self.times_reviewed,
            "times_correct": self.times_correct,
            "next_review_date": format_timestamp(self.next_review_date),
            "learned": self.learned,
            "updated_at": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any], vocabulary: Optional[VocabularyItem] = None) -> "ProgressRecord":
        missing = [name for name in PROGRESS_ROW_FIELDS if row.get(name) is None]
        if missing:
            raise ValidationFailure(f"Progress row is missing fields: {', '.join(missing)}")
        record = cls(
            user_id=str(row["user_id"]),
            vocabulary_item_id=str(row["vocabulary_id"]),
            mastery_level=_as_int(row["mastery_level"], "mastery_level"),
            times_reviewed=_as_int(row["times_reviewed"], "times_reviewed"),
            times_correct=_as_int(row["times_correct"], "times_correct"),
            next_review_date=parse_timestamp(row["next_review_date"]),
            updated_at=parse_timestamp(row["updated_at"]),
            vocabulary=vocabulary,
        )
        return record.validate()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase local document shape."""
        return {
            "userId": self.user_id,
            "vocabularyItemId": self.vocabulary_item_id,
            "masteryLevel": self.mastery_level,
            "timesReviewed": self.times_reviewed,
            "timesCorrect": self.times_correct,
            "nextReviewDate": format_timestamp(self.next_review_date),
            "learned": self.learned,
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressRecord":
        try:
            row = {
                "user_id": data["userId"],
                "vocabulary_id": data["vocabularyItemId"],
                "mastery_level": data["masteryLevel"],
                "times_reviewed": data.get("timesReviewed", 0),
                "times_correct": data.get("timesCorrect", 0),
                "next_review_date": data["nextReviewDate"],
                "updated_at": data["updatedAt"],
            }
        except KeyError as e:
            raise ValidationFailure(f"Progress document is missing field {e}") from e
        return cls.from_row(row)


def merge_progress_payload(
    payload: Dict[str, Any], base: Optional[ProgressRecord] = None
) -> ProgressRecord:
    """Merge a possibly partial remote payload onto the currently held record.

    Fields absent from the payload are taken from ``base``. If the result still
    lacks a required column, or its values break an invariant, the payload is
    rejected with ValidationFailure.
    """
    merged: Dict[str, Any] = base.to_row() if base is not None else {}
    merged.update({name: value for name, value in payload.items() if value is not None})
    if base is not None and (
        str(merged.get("user_id")) != base.user_id
        or str(merged.get("vocabulary_id")) != base.vocabulary_item_id
    ):
        raise ValidationFailure("Payload key does not match the record it updates")
    return ProgressRecord.from_row(merged, vocabulary=base.vocabulary if base else None)


@dataclass(frozen=True)
class PracticeAttempt:
    """Detail of one judged free-text practice attempt."""
    date: datetime
    scenario_title: str
    user_input: str
    corrected_text: str
    feedback_text: str
    is_correct: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": format_timestamp(self.date),
            "scenarioTitle": self.scenario_title,
            "userInput": self.user_input,
            "correctedEn": self.corrected_text,
            "feedbackEs": self.feedback_text,
            "isCorrect": self.is_correct,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PracticeAttempt":
        try:
            return cls(
                date=parse_timestamp(data["date"]),
                scenario_title=data.get("scenarioTitle", ""),
                user_input=data["userInput"],
                corrected_text=data.get("correctedEn", ""),
                feedback_text=data.get("feedbackEs", ""),
                is_correct=bool(data.get("isCorrect", False)),
            )
        except KeyError as e:
            raise ValidationFailure(f"Practice attempt is missing field {e}") from e


@dataclass(frozen=True)
class HistoryEntry:
    """Append-only activity record."""
    date: datetime
    type: str
    description: str
    details: Optional[PracticeAttempt] = None

    def __post_init__(self):
        # Day boundaries are UTC dates
        object.__setattr__(self, "date", parse_timestamp(self.date))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "date": format_timestamp(self.date),
            "type": self.type,
            "description": self.description,
        }
        if self.details is not None:
            data["details"] = self.details.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        details = data.get("details")
        try:
            return cls(
                date=parse_timestamp(data["date"]),
                type=data.get("type", "practice"),
                description=data.get("description", ""),
                details=PracticeAttempt.from_dict(details) if details else None,
            )
        except KeyError as e:
            raise ValidationFailure(f"History entry is missing field {e}") from e


@dataclass(frozen=True)
class SessionStats:
    """Statistics derived from the history stream. Never authoritative."""
    total_days_practiced: int = 0
    mistakes: Tuple[str, ...] = ()
    entry_count: int = 0
    elapsed_minutes: int = 0


@dataclass(frozen=True)
class PracticeScenario:
    title: str
    prompt: str
    context: str
    theory: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"title": self.title, "prompt": self.prompt, "context": self.context}
        if self.theory:
            data["theory"] = self.theory
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PracticeScenario":
        return cls(
            title=data.get("title", ""),
            prompt=data.get("prompt", ""),
            context=data.get("context", ""),
            theory=data.get("theory"),
        )


@dataclass(frozen=True)
class DailyGoal:
    """One day of a weekly plan. Only ``completed`` changes after creation."""
    day: str
    goal: str
    time: str
    practice_scenario: PracticeScenario
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "day": self.day,
            "goal": self.goal,
            "time": self.time,
            "completed": self.completed,
            "practiceScenario": self.practice_scenario.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DailyGoal":
        try:
            return cls(
                day=data["day"],
                goal=data.get("goal", ""),
                time=data.get("time", ""),
                completed=bool(data.get("completed", False)),
                practice_scenario=PracticeScenario.from_dict(data.get("practiceScenario") or {}),
            )
        except KeyError as e:
            raise ValidationFailure(f"Daily goal is missing field {e}") from e


@dataclass(frozen=True)
class WeeklyPlan:
    week_number: int
    main_focus: str
    grammar_focus: str
    daily_goals: Tuple[DailyGoal, ...] = ()
    new_vocabulary: Tuple[VocabularyItem, ...] = ()

    def goal_for(self, day: str) -> Optional[DailyGoal]:
        """Get the daily goal with the given day label."""
        return next((goal for goal in self.daily_goals if goal.day == day), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weekNumber": self.week_number,
            "mainFocus": self.main_focus,
            "grammarFocus": self.grammar_focus,
            "dailyGoals": [goal.to_dict() for goal in self.daily_goals],
            "newVocabulary": [item.to_dict() for item in self.new_vocabulary],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeeklyPlan":
        try:
            week_number = int(data["weekNumber"])
            plan = cls(
                week_number=week_number,
                main_focus=data.get("mainFocus", ""),
                grammar_focus=data.get("grammarFocus", ""),
                daily_goals=tuple(DailyGoal.from_dict(goal) for goal in data.get("dailyGoals") or []),
                new_vocabulary=tuple(VocabularyItem.from_dict(item) for item in data.get("newVocabulary") or []),
            )
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, ValidationFailure):
                raise
            raise ValidationFailure(f"Invalid weekly plan: {e}") from e
        if plan.week_number < 1:
            raise ValidationFailure(f"weekNumber must be at least 1, got {plan.week_number}")
        return plan


@dataclass(frozen=True)
class UserProfile:
    level: str
    context: str
    goal: str

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level, "context": self.context, "goal": self.goal}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        return cls(level=data.get("level", ""), context=data.get("context", ""), goal=data.get("goal", ""))


@dataclass
class Snapshot:
    """Whole-user document persisted by the local store."""
    profile: Optional[UserProfile] = None
    plan: Optional[WeeklyPlan] = None
    vocabulary: List[VocabularyItem] = field(default_factory=list)
    progress: List[ProgressRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile.to_dict() if self.profile else None,
            "plan": self.plan.to_dict() if self.plan else None,
            "vocabulary": [item.to_dict() for item in self.vocabulary],
            "progress": [record.to_dict() for record in self.progress],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        profile = data.get("profile")
        plan = data.get("plan")
        return cls(
            profile=UserProfile.from_dict(profile) if profile else None,
            plan=WeeklyPlan.from_dict(plan) if plan else None,
            vocabulary=[VocabularyItem.from_dict(item) for item in data.get("vocabulary") or []],
            progress=[ProgressRecord.from_dict(record) for record in data.get("progress") or []],
        )


@dataclass(frozen=True)
class ChangeNotification:
    """One push-channel delivery: ``{eventType, new, old}``."""
    event_type: ChangeType
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChangeNotification":
        try:
            event_type = ChangeType(str(payload.get("eventType", "")).upper())
        except ValueError as e:
            raise ValidationFailure(f"Unknown change event type: {payload.get('eventType')!r}") from e
        return cls(
            event_type=event_type,
            new=payload.get("new") or None,
            old=payload.get("old") or None,
        )

    @property
    def vocabulary_item_id(self) -> Optional[str]:
        for row in (self.new, self.old):
            if row and row.get("vocabulary_id") is not None:
                return str(row["vocabulary_id"])
        return None
