"""Database tables backing the SQL remote medium."""
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Integer,
    String,
    UniqueConstraint,
)

from fluentwork.models.base import Base, TimestampMixin


class Vocabulary(Base, TimestampMixin):
    """Vocabulary catalog row."""

    __tablename__ = "vocabulary"

    id = Column(String, primary_key=True)
    user_id = Column(String, index=True, nullable=True)
    word = Column(String, nullable=False)
    translation = Column(String, nullable=False)
    example = Column(String, default="")
    category = Column(String, default="general")
    common_error = Column(String, nullable=True)


class VocabularyProgress(Base, TimestampMixin):
    """Per-user progress of one vocabulary item."""

    __tablename__ = "vocabulary_progress"
    __table_args__ = (UniqueConstraint("user_id", "vocabulary_id", name="uq_progress_user_vocabulary"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    vocabulary_id = Column(String, nullable=False)
    mastery_level = Column(Integer, default=0, nullable=False)
    times_reviewed = Column(Integer, default=0, nullable=False)
    times_correct = Column(Integer, default=0, nullable=False)
    next_review_date = Column(String, nullable=False)  # ISO-8601, sorts chronologically
    learned = Column(Boolean, default=False, nullable=False)
    updated_at = Column(String, nullable=False)


class WeeklyPlanRow(Base, TimestampMixin):
    """Generated weekly plan, stored as its JSON document."""

    __tablename__ = "weekly_plans"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    week_number = Column(Integer, nullable=False)
    data = Column(JSON, nullable=False)


class ProgressHistory(Base, TimestampMixin):
    """Append-only activity history."""

    __tablename__ = "progress_history"

    id = Column(Integer, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    date = Column(String, nullable=False)
    type = Column(String, nullable=False)
    description = Column(String, nullable=False)
    details = Column(JSON, nullable=True)


class Profile(Base, TimestampMixin):
    """Onboarding profile."""

    __tablename__ = "profiles"

    user_id = Column(String, primary_key=True)
    level = Column(String, nullable=False)
    context = Column(String, nullable=False)
    goal = Column(String, nullable=False)


# Table name -> model
TABLES = {
    Vocabulary.__tablename__: Vocabulary,
    VocabularyProgress.__tablename__: VocabularyProgress,
    WeeklyPlanRow.__tablename__: WeeklyPlanRow,
    ProgressHistory.__tablename__: ProgressHistory,
    Profile.__tablename__: Profile,
}
