from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .database import SessionLocal, db_session
from .errors import PersistenceFailure
from .models import StoreEntry

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Whole-value key/value persistence on top of the ``store_entries`` table.

    Reads never raise: a missing key, a database error or a value that cannot
    be decoded all come back as ``None``. Writes raise ``PersistenceFailure``
    so the caller decides whether to log and carry on.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[Any]:
        try:
            with db_session(self._session_factory) as session:
                record = session.get(StoreEntry, key)
                raw = record.value if record is not None else None
        except SQLAlchemyError:
            logger.exception("Failed to read %s from the store", key)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable value stored under %s", key)
            return None

    def set(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise PersistenceFailure(f"Value for {key} is not serialisable") from exc
        try:
            with db_session(self._session_factory) as session:
                record = session.get(StoreEntry, key)
                if record:
                    record.value = encoded
                else:
                    session.add(StoreEntry(key=key, value=encoded))
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Failed to write {key}") from exc

    def remove(self, key: str) -> None:
        try:
            with db_session(self._session_factory) as session:
                record = session.get(StoreEntry, key)
                if record is not None:
                    session.delete(record)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"Failed to remove {key}") from exc
