"""Test configuration."""
import os
from datetime import UTC, datetime

import pytest
from faker import Faker

# Set test environment before any imports
os.environ["ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Import after environment setup
from sqlalchemy.orm import sessionmaker

from fluentwork.models.base import init_db, make_engine
from fluentwork.models.records import ProgressRecord, VocabularyCategory, VocabularyItem
from fluentwork.stores.local import LocalStore
from fluentwork.stores.memory import InMemoryKeyValueMedium
from fluentwork.stores.remote import RemoteStore
from fluentwork.stores.sql import SqlRemoteMedium, SqlVocabularyLookup

fake = Faker()

NOW = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture
def now() -> datetime:
    """Fixed reference time."""
    return NOW


@pytest.fixture
def user_id() -> str:
    """Create a random user id."""
    return fake.uuid4()


@pytest.fixture
def session_factory() -> sessionmaker:
    """Create a fresh in-memory database for each test."""
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def remote_medium(session_factory: sessionmaker) -> SqlRemoteMedium:
    return SqlRemoteMedium(session_factory)


@pytest.fixture
def remote_store(remote_medium: SqlRemoteMedium) -> RemoteStore:
    return RemoteStore(remote_medium)


@pytest.fixture
def vocabulary_lookup(session_factory: sessionmaker) -> SqlVocabularyLookup:
    return SqlVocabularyLookup(session_factory)


@pytest.fixture
def kv_medium() -> InMemoryKeyValueMedium:
    return InMemoryKeyValueMedium()


@pytest.fixture
def local_store(kv_medium: InMemoryKeyValueMedium) -> LocalStore:
    return LocalStore(kv_medium, key_prefix="test")


@pytest.fixture
def vocabulary_item() -> VocabularyItem:
    """Create a test vocabulary item."""
    return VocabularyItem(
        id="vocab-1",
        word="deadline",
        translation="fecha límite",
        example="The deadline is next Friday.",
        category=VocabularyCategory.PROFESSIONAL,
    )


def make_record(user_id: str, item_id: str = "vocab-1", **overrides) -> ProgressRecord:
    """Build a valid progress record with overridable fields."""
    values = dict(
        user_id=user_id,
        vocabulary_item_id=item_id,
        mastery_level=1,
        next_review_date=NOW,
        updated_at=NOW,
        times_reviewed=1,
        times_correct=1,
    )
    values.update(overrides)
    return ProgressRecord(**values)


@pytest.fixture
def record_factory():
    """Get the progress record builder."""
    return make_record
