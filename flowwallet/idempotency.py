"""Idempotency-key checking for POST requests, with several key stores."""

from __future__ import annotations

import enum
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol

from werkzeug.wrappers import Response

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class IdempotencyStoreType(enum.IntEnum):
    LOCAL = 0
    SHARED = 1
    REDIS = 2

    def __str__(self) -> str:
        return ("local", "shared", "redis")[self]


@dataclass(frozen=True)
class IdempotencyOptions:
    """Paths exempt from checking, and how long a key stays used (seconds)."""

    ignore_paths: tuple[str, ...] = ()
    expiry: float = 0.0


class _IdempotencyStore(Protocol):
    def get(self, key: str) -> bool: ...

    def set(self, key: str, expiry: float) -> None: ...


class LocalIdempotencyStore:
    """In-memory key store, mainly for testing."""

    def __init__(self, clock: Clock = time.time) -> None:
        self._keys: dict[str, float] = {}
        self._clock = clock
        self._lock = threading.Lock()

    def get(self, key: str) -> bool:
        """Tell whether the key is in use; expired keys are removed."""
        with self._lock:
            deadline = self._keys.get(key)
            if deadline is None:
                return False
            now = self._clock()
            if deadline > now:
                return True
            if deadline < now:
                del self._keys[key]
            return False

    def set(self, key: str, expiry: float) -> None:
        with self._lock:
            self._keys[key] = self._clock() + expiry


class RedisIdempotencyStore:
    """Key store on a Redis connection offering ``execute_command``."""

    def __init__(self, connection: Any, prefix: str = "idempotencykey") -> None:
        self.connection = connection
        self.prefix = prefix

    def _prefixed(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> bool:
        return bool(self.connection.execute_command("EXISTS", self._prefixed(key)))

    def set(self, key: str, expiry: float) -> None:
        """Store the key for ``expiry`` seconds; raise RuntimeError unless Redis replies OK."""
        reply = self.connection.execute_command("PSETEX", self._prefixed(key), int(expiry * 1000), 1)
        if not (reply is True or reply in ("OK", b"OK")):
            raise RuntimeError(f"failed to set key: {reply}")


_SCHEMA = """
CREATE TABLE IF NOT EXISTS idempotency_keys (
    key TEXT PRIMARY KEY,
    expiry_date REAL NOT NULL
);
"""


class SQLiteIdempotencyStore:
    """Key store in an SQLite table; expiry dates are epoch seconds."""

    def __init__(self, database: str = ":memory:", clock: Clock = time.time) -> None:
        self._conn = sqlite3.connect(database, check_same_thread=False)
        self._clock = clock
        self._lock = threading.Lock()
        with self._lock, self._conn:
            self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def get(self, key: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM idempotency_keys WHERE key = ? AND expiry_date > ?",
                (key, self._clock()),
            ).fetchone()
        return row is not None

    def set(self, key: str, expiry: float) -> None:
        """Create the key or move its expiry date."""
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO idempotency_keys (key, expiry_date) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET expiry_date = excluded.expiry_date",
                (key, self._clock() + expiry),
            )

    def prune(self) -> None:
        """Delete every expired key."""
        with self._lock, self._conn:
            self._conn.execute(
                "DELETE FROM idempotency_keys WHERE expiry_date < ?", (self._clock(),)
            )


def _error(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


class IdempotencyMiddleware:
    """WSGI middleware requiring a fresh Idempotency-Key on every POST."""

    def __init__(self, app: Callable, options: IdempotencyOptions, store: _IdempotencyStore) -> None:
        self.app = app
        self.options = options
        self.store = store

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
        if any(path.startswith(prefix) for prefix in self.options.ignore_paths):
            return self.app(environ, start_response)

        if environ.get("REQUEST_METHOD") != "POST":
            return self.app(environ, start_response)

        key = environ.get("HTTP_IDEMPOTENCY_KEY", "")
        if not key:
            return _error("Idempotency-Key header not found", 400)(environ, start_response)

        try:
            exists = self.store.get(key)
        except Exception as err:
            logger.warning(
                "Error while reading idempotency key from storage",
                extra={"error": str(err), "key": key},
            )
            return _error("Error while reading idempotency key", 500)(environ, start_response)

        # Only the key is stored, so a reused key conflicts whatever the payload.
        if exists:
            return _error(f"Idempotency-Key conflict, key: {key}", 409)(environ, start_response)

        try:
            self.store.set(key, self.options.expiry)
        except Exception as err:
            logger.warning(
                "Error while saving used idempotency key",
                extra={"error": str(err), "key": key},
            )
            return _error("Error while saving used idempotency key", 500)(environ, start_response)

        return self.app(environ, start_response)