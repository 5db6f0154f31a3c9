"""Anonymous session identity bound to a sliding inactivity window."""
from __future__ import annotations

import json
import logging
import secrets
import string
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

logger = logging.getLogger(__name__)

SESSION_KEY = "so_session"
ANON_ID_KEY = "so_anon_id"
SESSION_TIMEOUT_SECONDS = 30 * 60

_ALPHABET = string.digits + string.ascii_lowercase


class StorageUnavailable(Exception):
    """Raised by a storage backend that cannot be read or written."""


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...


class MemoryStorage:
    """Process-local key/value storage."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value


class JsonFileStorage:
    """Key/value storage persisted as a single JSON object on disk.

    An unreadable or malformed file reads as empty; failures to write raise
    ``StorageUnavailable``.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, str]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read {self._path}") from exc
        try:
            data = json.loads(raw)
        except ValueError:
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            items = self._load()
            items[key] = value
            try:
                self._path.write_text(json.dumps(items), encoding="utf-8")
            except OSError as exc:
                raise StorageUnavailable(f"Cannot write {self._path}") from exc


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ALPHABET[rem])
    return "".join(reversed(digits))


def _random_suffix(length: int = 9) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def new_session_id(now: float) -> str:
    return f"sess_{_base36(int(now * 1000))}_{_random_suffix()}"


def new_anon_id(now: float) -> str:
    return f"user_{int(now * 1000)}_{_random_suffix(11)}"


@dataclass(frozen=True)
class SessionToken:
    id: str
    last_seen_at: float
    is_new: bool
    persisted: bool = True


class SessionStore:
    """Derives or renews the anonymous session id for one browsing context.

    The persisted value is ``{"id": ..., "last_seen_at": <epoch seconds>}``.
    Every call refreshes ``last_seen_at``; once ``timeout_seconds`` have
    elapsed since the last refresh a new id is minted.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Callable[[], float] = time.time,
        timeout_seconds: float = SESSION_TIMEOUT_SECONDS,
        key: str = SESSION_KEY,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._timeout = timeout_seconds
        self._key = key
        self._lock = threading.Lock()

    def _read_state(self) -> Optional[SessionToken]:
        raw = self._storage.get_item(self._key)
        if not raw:
            return None
        try:
            data = json.loads(raw)
            session_id = data["id"]
            last_seen_at = float(data["last_seen_at"])
        except (ValueError, TypeError, KeyError):
            logger.debug("Discarding malformed session state %r", raw)
            return None
        if not isinstance(session_id, str) or not session_id:
            return None
        return SessionToken(id=session_id, last_seen_at=last_seen_at, is_new=False)

    def _write_state(self, session_id: str, now: float) -> None:
        self._storage.set_item(self._key, json.dumps({"id": session_id, "last_seen_at": now}))

    def ensure_session(self) -> SessionToken:
        now = self._clock()
        with self._lock:
            try:
                current = self._read_state()
                if current is not None and now - current.last_seen_at < self._timeout:
                    self._write_state(current.id, now)
                    return SessionToken(id=current.id, last_seen_at=now, is_new=False)
                session_id = new_session_id(now)
                self._write_state(session_id, now)
                return SessionToken(id=session_id, last_seen_at=now, is_new=True)
            except Exception as exc:
                logger.warning("Session storage unavailable, using ephemeral id: %s", exc)
                return SessionToken(id=new_session_id(now), last_seen_at=now, is_new=True, persisted=False)

    def ensure_session_id(self) -> str:
        return self.ensure_session().id

    def ensure_anon_id(self) -> str:
        """Return the long-lived anonymous visitor id, minting it on first use."""

        now = self._clock()
        with self._lock:
            try:
                anon_id = self._storage.get_item(ANON_ID_KEY)
                if anon_id:
                    return anon_id
                anon_id = new_anon_id(now)
                self._storage.set_item(ANON_ID_KEY, anon_id)
                return anon_id
            except Exception as exc:
                logger.warning("Anonymous id storage unavailable: %s", exc)
                return new_anon_id(now)
