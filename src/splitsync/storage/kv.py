"""
Key-value store for process-wide counters (feed quota, user activity).

The refresh policy only talks to the KeyValueStore protocol. Production
uses SqlKeyValueStore so counters survive restarts; tests pass an
InMemoryKeyValueStore whose lifetime is the test.
"""
import threading
from typing import Dict, Optional, Protocol

from sqlalchemy import delete
from sqlmodel import Session

from splitsync.models.feed import KeyValueEntry


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self, key: Optional[str] = None) -> None: ...


class InMemoryKeyValueStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def clear(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._data.clear()
            else:
                self._data.pop(key, None)


class SqlKeyValueStore:
    """KeyValueStore persisted in the `keyvalueentry` table."""

    def __init__(self, engine):
        self.engine = engine

    def get(self, key: str) -> Optional[str]:
        with Session(self.engine) as s:
            row = s.get(KeyValueEntry, key)
            return row.value if row else None

    def set(self, key: str, value: str) -> None:
        with Session(self.engine) as s:
            row = s.get(KeyValueEntry, key)
            if row is None:
                row = KeyValueEntry(key=key, value=value)
            else:
                row.value = value
            s.add(row)
            s.commit()

    def clear(self, key: Optional[str] = None) -> None:
        with Session(self.engine) as s:
            if key is None:
                s.execute(delete(KeyValueEntry))
            else:
                row = s.get(KeyValueEntry, key)
                if row is not None:
                    s.delete(row)
            s.commit()


def get_int(store: KeyValueStore, key: str, default: int = 0) -> int:
    raw = store.get(key)
    return int(raw) if raw is not None else default


def set_int(store: KeyValueStore, key: str, value: int) -> None:
    store.set(key, str(int(value)))
