"""Polls the chain for events and dispatches them to registered handlers."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from flowwallet.errors import is_chain_connection_error
from flowwallet.events import CHAIN_EVENT, Event
from flowwallet.flow_helpers import FlowClient

logger = logging.getLogger(__name__)

GetEventTypes = Callable[[], list[str]]


@dataclass
class ListenerStatus:
    """The listener's progress: the latest block height already handled."""

    id: int | None = None
    latest_height: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None


class LockError(Exception):
    """Raised when the listener status is locked by another listener."""

    def __init__(self, err: BaseException) -> None:
        super().__init__(str(err))
        self.err = err

    def __str__(self) -> str:
        return str(self.err)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _encode_time(value: datetime | None) -> str | None:
    return value.isoformat(timespec="microseconds") if value is not None else None


def _decode_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


_SCHEMA = """
CREATE TABLE IF NOT EXISTS chain_events_status (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    latest_height INTEGER NOT NULL DEFAULT 0
);
"""


class SQLiteStatusStore:
    """Keeps the listener status in SQLite, one exclusive transaction at a time."""

    def __init__(self, database: str = ":memory:") -> None:
        # timeout=0 makes a competing writer fail at once instead of waiting.
        self._conn = sqlite3.connect(
            database, timeout=0, isolation_level=None, check_same_thread=False
        )
        self._conn.row_factory = sqlite3.Row
        self._mutex = threading.Lock()
        with self._mutex:
            self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    def _first_or_create(self) -> ListenerStatus:
        row = self._conn.execute(
            "SELECT * FROM chain_events_status WHERE deleted_at IS NULL ORDER BY id LIMIT 1"
        ).fetchone()
        if row is not None:
            return ListenerStatus(
                id=row["id"],
                latest_height=row["latest_height"],
                created_at=_decode_time(row["created_at"]),
                updated_at=_decode_time(row["updated_at"]),
                deleted_at=_decode_time(row["deleted_at"]),
            )
        now = _now()
        cursor = self._conn.execute(
            "INSERT INTO chain_events_status (created_at, updated_at, latest_height) "
            "VALUES (?, ?, 0)",
            (_encode_time(now), _encode_time(now)),
        )
        return ListenerStatus(id=cursor.lastrowid, created_at=now, updated_at=now)

    def locked_status(self, fn: Callable[[ListenerStatus], Any]) -> None:
        """Run ``fn`` on the status inside a transaction and save the result.

        Raises LockError when another connection holds the status; any error
        raised by ``fn`` rolls the transaction back and propagates.
        """
        with self._mutex:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as err:
                if "locked" in str(err):
                    raise LockError(err) from err
                raise
            try:
                status = self._first_or_create()
                fn(status)
                status.updated_at = _now()
                self._conn.execute(
                    "UPDATE chain_events_status SET latest_height = ?, updated_at = ?, "
                    "deleted_at = ? WHERE id = ?",
                    (
                        status.latest_height,
                        _encode_time(status.updated_at),
                        _encode_time(status.deleted_at),
                        status.id,
                    ),
                )
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")


class _StatusStore(Protocol):
    def locked_status(self, fn: Callable[[ListenerStatus], Any]) -> None: ...


class _SystemService(Protocol):
    def is_halted(self) -> bool: ...

    def pause(self) -> None: ...


class Listener:
    """Periodically fetches new chain events and triggers them.

    ``interval`` is in seconds; at most ``max_blocks`` blocks past the last
    handled height are read per poll.
    """

    def __init__(
        self,
        client: FlowClient,
        store: _StatusStore,
        get_types: GetEventTypes,
        max_blocks: int,
        interval: float,
        starting_height: int = 0,
        *,
        system_service: _SystemService | None = None,
        event: Event = CHAIN_EVENT,
    ) -> None:
        self.client = client
        self.store = store
        self.get_types = get_types
        self.max_blocks = max_blocks
        self.interval = interval
        self.starting_height = starting_height
        self.system_service = system_service
        self.event = event
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> Listener:
        """Initialise the starting height and begin polling; later calls do nothing."""
        if self._thread is not None:
            return self

        try:
            self._init_height()
        except LockError:
            # Another listener is already handling the status.
            pass

        self._thread = threading.Thread(
            target=self._run_loop, name="chain-events-listener", daemon=True
        )
        self._thread.start()
        logger.debug("Started Flow event listener")
        return self

    def stop(self) -> None:
        """Stop polling and wait for the polling thread to finish."""
        logger.debug("Stopping Flow event listener")
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()

    def poll(self) -> None:
        """Handle one polling round; errors are logged, not raised."""
        try:
            halted = self._system_halted()
        except Exception as err:
            logger.warning("Could not get system settings from DB", extra={"error": str(err)})
            return
        if halted:
            logger.debug("System halted")
            return

        try:
            self.store.locked_status(self._advance)
        except Exception as err:
            if is_chain_connection_error(err):
                self._handle_connection_error()
                return
            logger.warning("Error while handling Flow events", extra={"error": str(err)})
            if "key not found" in str(err):
                logger.warning(
                    '"key not found" error indicates data is not available at this height, '
                    "please manually set correct starting height"
                )

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.poll()

    def _handle_connection_error(self) -> None:
        if self.system_service is None:
            logger.warning("Unable to connect to chain")
            return
        logger.warning("Unable to connect to chain, pausing system")
        try:
            self.system_service.pause()
        except Exception as err:
            logger.warning("Unable to pause system", extra={"error": str(err)})

    def _advance(self, status: ListenerStatus) -> None:
        latest = self.client.get_latest_block_header(True)
        if latest.height > status.latest_height:
            start = status.latest_height + 1
            end = min(latest.height, start + self.max_blocks)
            self._run(start, end)
            status.latest_height = end

    def _run(self, start: int, end: int) -> None:
        events: list[Any] = []
        for event_type in self.get_types():
            for block in self.client.get_events_for_height_range(event_type, start, end):
                events.extend(block.events)
        for event in events:
            self.event.trigger(event)

    def _init_height(self) -> None:
        def init(status: ListenerStatus) -> None:
            if self.starting_height > 0 and status.latest_height < self.starting_height - 1:
                status.latest_height = self.starting_height - 1
            if status.latest_height == 0:
                # Starting fresh: only the current spork's data is reachable,
                # so begin from the latest block.
                status.latest_height = self.client.get_latest_block_header(True).height

        self.store.locked_status(init)

    def _system_halted(self) -> bool:
        if self.system_service is not None:
            return self.system_service.is_halted()
        return False