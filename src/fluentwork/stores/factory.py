"""Selects the persistence backend once, at session start."""
import logging
from typing import Optional

from fluentwork.config import settings
from fluentwork.stores.base import KeyValueMedium, RemoteMedium, UserStore
from fluentwork.stores.local import LocalStore
from fluentwork.stores.memory import InMemoryKeyValueMedium
from fluentwork.stores.remote import RemoteStore

logger = logging.getLogger(__name__)


def open_store(
    mode: Optional[str] = None,
    *,
    kv_medium: Optional[KeyValueMedium] = None,
    remote_medium: Optional[RemoteMedium] = None,
) -> UserStore:
    """Create the store for the configured mode.

    Local mode defaults to an in-memory medium. Remote mode defaults to the
    SQL medium on the configured database.
    """
    mode = mode or settings.store.mode
    if mode == "local":
        logger.info("Using local store")
        return LocalStore(kv_medium if kv_medium is not None else InMemoryKeyValueMedium())
    if mode == "remote":
        if remote_medium is None:
            from fluentwork.models.base import SessionLocal, init_db
            from fluentwork.stores.sql import SqlRemoteMedium

            init_db()
            remote_medium = SqlRemoteMedium(SessionLocal)
        logger.info("Using remote store")
        return RemoteStore(remote_medium)
    raise ValueError(f"Unknown store mode: {mode}")
