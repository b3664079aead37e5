"""SQLAlchemy implementation of the remote medium, with in-process push delivery."""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from fluentwork.errors import StoreUnavailable
from fluentwork.models.records import ChangeType, VocabularyItem
from fluentwork.models.tables import TABLES, Vocabulary
from fluentwork.stores.base import PushCallback, PushChannel, RemoteMedium, VocabularyLookup

logger = logging.getLogger(__name__)


def _serialize(obj: Any) -> Dict[str, Any]:
    """Convert an ORM row into a plain dict of its columns."""
    return {column.name: getattr(obj, column.name) for column in obj.__table__.columns}


class SqlPushChannel(PushChannel):
    """Subscription registered with a SqlRemoteMedium."""

    def __init__(self, medium: "SqlRemoteMedium", table: str, user_id: str, callback: PushCallback):
        self.medium = medium
        self.table = table
        self.user_id = user_id
        self.callback = callback
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.medium._unregister(self)
        logger.debug(f"Closed push channel {self.table}:{self.user_id}")


class SqlRemoteMedium(RemoteMedium):
    """Remote medium on a SQL database.

    Writes commit in one transaction per call. After a commit, every open
    channel subscribed to the table and the row's user receives an
    ``{eventType, new, old}`` payload, including the writer's own.
    """

    def __init__(self, session_factory: sessionmaker):
        """Initialize the medium with a session factory."""
        self.session_factory = session_factory
        self._channels: List[SqlPushChannel] = []

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise StoreUnavailable(f"Unknown table: {table}", backend="remote") from None

    def _write(self, work) -> Any:
        """Run work(db) in a transaction, rolling back on failure."""
        db: Session = self.session_factory()
        try:
            result = work(db)
            db.commit()
            return result
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailable(f"Database write failed: {e}", backend="remote") from e
        finally:
            db.close()

    async def upsert(self, table: str, row: Dict[str, Any], on_conflict: Sequence[str]) -> Dict[str, Any]:
        model = self._model(table)
        key = {column: row[column] for column in on_conflict}

        def work(db: Session) -> Tuple[Optional[Dict[str, Any]], Dict[str, Any]]:
            obj = db.query(model).filter_by(**key).first()
            old = _serialize(obj) if obj is not None else None
            if obj is None:
                obj = model(**row)
                db.add(obj)
            else:
                for name, value in row.items():
                    setattr(obj, name, value)
            db.flush()
            return old, _serialize(obj)

        old, new = self._write(work)
        await self._publish(table, ChangeType.UPDATE if old else ChangeType.INSERT, new, old)
        return new

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        model = self._model(table)

        def work(db: Session) -> Dict[str, Any]:
            obj = model(**row)
            db.add(obj)
            db.flush()
            return _serialize(obj)

        new = self._write(work)
        await self._publish(table, ChangeType.INSERT, new, None)
        return new

    async def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> int:
        model = self._model(table)

        def work(db: Session) -> List[Tuple[Dict[str, Any], Dict[str, Any]]]:
            changes = []
            for obj in db.query(model).filter_by(**filters).all():
                old = _serialize(obj)
                for name, value in values.items():
                    setattr(obj, name, value)
                db.flush()
                changes.append((old, _serialize(obj)))
            return changes

        changes = self._write(work)
        for old, new in changes:
            await self._publish(table, ChangeType.UPDATE, new, old)
        return len(changes)

    async def delete(self, table: str, filters: Dict[str, Any]) -> int:
        """Delete matching rows. Used by explicit data resets."""
        model = self._model(table)

        def work(db: Session) -> List[Dict[str, Any]]:
            removed = []
            for obj in db.query(model).filter_by(**filters).all():
                removed.append(_serialize(obj))
                db.delete(obj)
            return removed

        removed = self._write(work)
        for old in removed:
            await self._publish(table, ChangeType.DELETE, None, old)
        return len(removed)

    async def select(
        self,
        table: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        model = self._model(table)
        db: Session = self.session_factory()
        try:
            query = db.query(model).filter_by(**filters)
            if order_by is not None:
                column = getattr(model, order_by)
                query = query.order_by(column.desc() if descending else column.asc())
            if limit is not None:
                query = query.limit(limit)
            return [_serialize(obj) for obj in query.all()]
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Database read failed: {e}", backend="remote") from e
        finally:
            db.close()

    async def subscribe(self, table: str, user_id: str, callback: PushCallback) -> PushChannel:
        channel = SqlPushChannel(self, table, user_id, callback)
        self._channels.append(channel)
        logger.debug(f"Opened push channel {table}:{user_id}")
        return channel

    def _unregister(self, channel: SqlPushChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    async def _publish(
        self,
        table: str,
        event_type: ChangeType,
        new: Optional[Dict[str, Any]],
        old: Optional[Dict[str, Any]],
    ) -> None:
        row = new or old or {}
        payload = {"eventType": event_type.value, "new": new or {}, "old": old or {}}
        for channel in list(self._channels):
            if channel.closed or channel.table != table or str(row.get("user_id")) != channel.user_id:
                continue
            try:
                await channel.callback(payload)
            except Exception as e:
                logger.error(f"Push callback for {table}:{channel.user_id} failed: {e}")


class SqlVocabularyLookup(VocabularyLookup):
    """Resolves vocabulary ids against the ``vocabulary`` table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def get(self, item_id: str) -> Optional[VocabularyItem]:
        db: Session = self.session_factory()
        try:
            row = db.query(Vocabulary).filter(Vocabulary.id == item_id).first()
            return VocabularyItem.from_dict(_serialize(row)) if row is not None else None
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Vocabulary lookup failed: {e}", backend="remote") from e
        finally:
            db.close()
