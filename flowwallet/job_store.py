"""SQLite-backed storage for jobs."""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flowwallet.datastore import ListOptions, RecordNotFoundError
from flowwallet.jobs import Job, State


@dataclass(frozen=True)
class StatusQuery:
    state: State
    count: int


class JobNotAcceptableError(Exception):
    """Raised when a job cannot be accepted for execution."""

    def __init__(self, message: str = "error job is not acceptable") -> None:
        super().__init__(message)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _encode_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _decode_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


def is_acceptable(job: Job, accepted_grace_period: float) -> bool:
    """Tell whether a job may be accepted; the grace period is in seconds."""
    t_accepted = _now() - timedelta(seconds=accepted_grace_period)
    if job.state == State.ACCEPTED and job.updated_at is not None and job.updated_at > t_accepted:
        return False
    if job.state in (State.COMPLETE, State.FAILED):
        return False
    return True


_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL DEFAULT '',
    state TEXT NOT NULL DEFAULT 'INIT',
    error TEXT NOT NULL DEFAULT '',
    errors TEXT NOT NULL DEFAULT '[]',
    result TEXT NOT NULL DEFAULT '',
    transaction_id TEXT NOT NULL DEFAULT '',
    exec_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    attributes TEXT
);
CREATE INDEX IF NOT EXISTS idx_jobs_deleted_at ON jobs (deleted_at);
"""

_COLUMNS = (
    "id",
    "type",
    "state",
    "error",
    "errors",
    "result",
    "transaction_id",
    "exec_count",
    "created_at",
    "updated_at",
    "deleted_at",
    "attributes",
)

_INSERT = f"INSERT INTO jobs ({', '.join(_COLUMNS)}) VALUES ({', '.join('?' for _ in _COLUMNS)})"
_UPSERT = _INSERT + " ON CONFLICT(id) DO UPDATE SET " + ", ".join(
    f"{col} = excluded.{col}" for col in _COLUMNS if col != "id"
)


class SQLiteJobStore:
    """Stores jobs in SQLite; grace periods are given in seconds."""

    def __init__(self, database: str = ":memory:") -> None:
        self._conn = sqlite3.connect(database, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock, self._conn:
            self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        attributes = row["attributes"]
        return Job(
            id=uuid.UUID(row["id"]),
            type=row["type"],
            state=State(row["state"]),
            error=row["error"],
            errors=json.loads(row["errors"]),
            result=row["result"],
            transaction_id=row["transaction_id"],
            exec_count=row["exec_count"],
            created_at=_decode_time(row["created_at"]),
            updated_at=_decode_time(row["updated_at"]),
            deleted_at=_decode_time(row["deleted_at"]),
            attributes=json.loads(attributes) if attributes is not None else None,
        )

    @staticmethod
    def _params(job: Job) -> tuple:
        return (
            str(job.id),
            job.type,
            State(job.state).value,
            job.error,
            json.dumps(list(job.errors)),
            job.result,
            job.transaction_id,
            job.exec_count,
            _encode_time(job.created_at),
            _encode_time(job.updated_at),
            _encode_time(job.deleted_at),
            json.dumps(job.attributes) if job.attributes is not None else None,
        )

    def _fetch(self, job_id: uuid.UUID) -> Job:
        row = self._conn.execute(
            "SELECT * FROM jobs WHERE id = ? AND deleted_at IS NULL", (str(job_id),)
        ).fetchone()
        if row is None:
            raise RecordNotFoundError()
        return self._row_to_job(row)

    def _save(self, job: Job) -> None:
        now = _now()
        if job.id is None:
            job.id = uuid.uuid4()
        job.created_at = job.created_at or now
        job.updated_at = now
        self._conn.execute(_UPSERT, self._params(job))

    def jobs(self, options: ListOptions) -> list[Job]:
        """List jobs, newest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM jobs WHERE deleted_at IS NULL "
                "ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (options.limit, options.offset),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def job(self, job_id: uuid.UUID) -> Job:
        """Fetch one job, or raise RecordNotFoundError."""
        with self._lock:
            return self._fetch(job_id)

    def insert_job(self, job: Job) -> None:
        """Insert a new job, giving it a fresh id and timestamps."""
        now = _now()
        job.id = uuid.uuid4()
        job.created_at = job.created_at or now
        job.updated_at = job.updated_at or now
        with self._lock, self._conn:
            self._conn.execute(_INSERT, self._params(job))

    def update_job(self, job: Job) -> None:
        """Save every field of the job, inserting it when missing."""
        with self._lock, self._conn:
            self._save(job)

    def accept_job(self, job: Job, accepted_grace_period: float) -> None:
        """Mark a job accepted and bump its execution count.

        Raises JobNotAcceptableError when either the given or the stored
        copy of the job may not be accepted.
        """
        if not is_acceptable(job, accepted_grace_period):
            raise JobNotAcceptableError()
        with self._lock, self._conn:
            stored = self._fetch(job.id)
            if not is_acceptable(stored, accepted_grace_period):
                raise JobNotAcceptableError()
            job.state = State.ACCEPTED
            job.exec_count = stored.exec_count + 1
            self._save(job)

    def schedulable_jobs(
        self,
        accepted_grace_period: float,
        reschedulable_grace_period: float,
        options: ListOptions,
    ) -> list[Job]:
        """List jobs due to be (re)scheduled, newest first."""
        now = _now()
        t_accepted = _encode_time(now - timedelta(seconds=accepted_grace_period))
        t_reschedulable = _encode_time(now - timedelta(seconds=reschedulable_grace_period))
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM jobs WHERE "
                "((state IN (?, ?) AND updated_at < ?) OR (state IN (?, ?) AND updated_at < ?)) "
                "AND deleted_at IS NULL "
                "ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (
                    State.INIT.value,
                    State.ACCEPTED.value,
                    t_accepted,
                    State.ERROR.value,
                    State.NO_AVAILABLE_WORKERS.value,
                    t_reschedulable,
                    options.limit,
                    options.offset,
                ),
            ).fetchall()
        return [self._row_to_job(row) for row in rows]

    def status(self) -> list[StatusQuery]:
        """Count jobs per state."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT state, COUNT(*) AS count FROM jobs GROUP BY state"
            ).fetchall()
        return [StatusQuery(state=State(row["state"]), count=row["count"]) for row in rows]