"""Account model and its SQLite-backed store."""

from __future__ import annotations

import enum
import json
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from flowwallet.datastore import ListOptions, RecordNotFoundError


class AccountType(str, enum.Enum):
    CUSTODIAL = "custodial"
    NON_CUSTODIAL = "non-custodial"


@dataclass
class Account:
    address: str
    keys: list[dict[str, Any]] = field(default_factory=list)
    type: AccountType = AccountType.CUSTODIAL
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None

    def to_json(self) -> dict[str, Any]:
        """Return the account's public JSON representation."""
        return {
            "address": self.address,
            "keys": self.keys,
            "type": AccountType(self.type).value,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def _encode_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _decode_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


_SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    address TEXT PRIMARY KEY,
    keys TEXT NOT NULL DEFAULT '[]',
    type TEXT NOT NULL DEFAULT 'custodial',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_accounts_deleted_at ON accounts (deleted_at);
"""


class SQLiteAccountStore:
    """Stores accounts in SQLite; soft-deleted rows are hidden from reads."""

    def __init__(self, database: str = ":memory:") -> None:
        self._conn = sqlite3.connect(database, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock, self._conn:
            self._conn.executescript(_SCHEMA)

    def close(self) -> None:
        self._conn.close()

    @staticmethod
    def _row_to_account(row: sqlite3.Row, with_keys: bool) -> Account:
        return Account(
            address=row["address"],
            keys=json.loads(row["keys"]) if with_keys else [],
            type=AccountType(row["type"]),
            created_at=_decode_time(row["created_at"]),
            updated_at=_decode_time(row["updated_at"]),
            deleted_at=_decode_time(row["deleted_at"]),
        )

    def accounts(self, options: ListOptions) -> list[Account]:
        """List accounts, newest first, without their keys."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM accounts WHERE deleted_at IS NULL "
                "ORDER BY created_at DESC LIMIT ? OFFSET ?",
                (options.limit, options.offset),
            ).fetchall()
        return [self._row_to_account(row, with_keys=False) for row in rows]

    def account(self, address: str) -> Account:
        """Fetch one account with its keys, or raise RecordNotFoundError."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM accounts WHERE address = ? AND deleted_at IS NULL",
                (address,),
            ).fetchone()
        if row is None:
            raise RecordNotFoundError()
        return self._row_to_account(row, with_keys=True)

    def insert_account(self, account: Account) -> None:
        """Insert an account, filling in its timestamps when unset."""
        now = datetime.now(timezone.utc)
        account.created_at = account.created_at or now
        account.updated_at = account.updated_at or now
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT INTO accounts (address, keys, type, created_at, updated_at, deleted_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    account.address,
                    json.dumps(account.keys),
                    AccountType(account.type).value,
                    _encode_time(account.created_at),
                    _encode_time(account.updated_at),
                    _encode_time(account.deleted_at),
                ),
            )

    def hard_delete_account(self, account: Account) -> None:
        """Permanently delete an account regardless of its soft-delete state."""
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM accounts WHERE address = ?", (account.address,))