# app/services/storage.py
"""
Local key-value persistence.

KeyValueStore backends hold raw JSON text under string keys.
JSONRepository binds one key of a backend and exposes load()/save()/clear(),
which is all the Record Store and Session State ever see.
"""

import json
from datetime import datetime
from typing import Any, Optional, Protocol

from app.utils.logger import get_logger

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...


class SQLKeyValueStore:
    """Key-value rows in the kv_store table. One short-lived DB session per call."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def get(self, key: str) -> Optional[str]:
        from app.models.kv_entry import KeyValueEntry

        db = self._session_factory()
        try:
            entry = db.query(KeyValueEntry).filter(KeyValueEntry.key == key).first()
            return entry.value if entry else None
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        from app.models.kv_entry import KeyValueEntry

        db = self._session_factory()
        try:
            entry = db.query(KeyValueEntry).filter(KeyValueEntry.key == key).first()
            if entry:
                entry.value = value
                entry.updated_at = datetime.utcnow()
            else:
                db.add(KeyValueEntry(key=key, value=value, updated_at=datetime.utcnow()))
            db.commit()
        finally:
            db.close()

    def remove(self, key: str) -> None:
        from app.models.kv_entry import KeyValueEntry

        db = self._session_factory()
        try:
            db.query(KeyValueEntry).filter(KeyValueEntry.key == key).delete()
            db.commit()
        finally:
            db.close()


class MemoryKeyValueStore:
    """Process-local backend. Used in tests and with STORAGE_BACKEND=memory."""

    def __init__(self, initial: Optional[dict] = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class JSONRepository:
    """A single JSON document stored under one key."""

    def __init__(self, backend: KeyValueStore, key: str):
        self.backend = backend
        self.key = key

    def load(self) -> Any:
        """Return the decoded document, or None if the key is absent or unreadable."""
        raw = self.backend.get(self.key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.error(f"Stored value under '{self.key}' is not valid JSON — ignoring it")
            return None

    def save(self, snapshot: Any) -> None:
        self.backend.set(self.key, json.dumps(snapshot, ensure_ascii=False))

    def clear(self) -> None:
        self.backend.remove(self.key)
