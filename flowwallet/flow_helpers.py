"""Convenience functions for interacting with the Flow blockchain."""

from __future__ import annotations

import binascii
import enum
import random
import re
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

from flowwallet.errors import RequestError

HEX_PREFIX = "0x"
ADDRESS_LENGTH = 8
IDENTIFIER_LENGTH = 32

_HEX_PAIRS = re.compile(r"(?:[0-9a-fA-F]{2})*")


class TransactionStatus(enum.IntEnum):
    UNKNOWN = 0
    PENDING = 1
    FINALIZED = 2
    EXECUTED = 3
    SEALED = 4
    EXPIRED = 5


@dataclass
class TransactionResult:
    status: TransactionStatus = TransactionStatus.UNKNOWN
    error: Exception | None = None
    events: list[Any] = field(default_factory=list)


@dataclass
class BlockHeader:
    id: str
    height: int = 0


class FlowClient(Protocol):
    """Access API operations the wallet relies on."""

    def execute_script_at_latest_block(self, script: bytes, arguments: list[Any]) -> Any: ...

    def get_account(self, address: str) -> Any: ...

    def get_account_at_latest_block(self, address: str) -> Any: ...

    def get_transaction(self, tx_id: str) -> Any: ...

    def get_transaction_result(self, tx_id: str) -> TransactionResult: ...

    def get_latest_block_header(self, is_sealed: bool) -> BlockHeader: ...

    def get_events_for_height_range(
        self, event_type: str, start_height: int, end_height: int
    ) -> list[Any]: ...

    def send_transaction(self, tx: Any) -> None: ...


class TransactionExpiredError(Exception):
    """Raised when a transaction expires before being sealed."""

    def __init__(self, result: TransactionResult) -> None:
        super().__init__("transaction expired")
        self.result = result


@dataclass
class Backoff:
    """Exponential backoff with optional jitter; durations are in seconds."""

    min: float = 0.1
    max: float = 60.0
    factor: float = 5.0
    jitter: bool = True
    attempt: int = 0
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def duration(self) -> float:
        """Return the next wait duration and advance the attempt counter."""
        attempt = self.attempt
        self.attempt += 1
        try:
            value = self.min * self.factor**attempt
        except OverflowError:
            return self.max
        if self.jitter:
            value = self.rng.random() * (value - self.min) + self.min
        return max(self.min, min(value, self.max))

    def reset(self) -> None:
        self.attempt = 0


def latest_block_id(client: FlowClient) -> str:
    """Return the identifier of the latest sealed block."""
    return client.get_latest_block_header(True).id


def wait_for_seal(client: FlowClient, tx_id: str, timeout: float) -> TransactionResult:
    """Poll until the transaction is sealed.

    Raises the transaction's own error, TransactionExpiredError when it
    expires, or TimeoutError once ``timeout`` seconds (if positive) pass.
    """
    backoff = Backoff()
    deadline = time.monotonic() + timeout if timeout > 0 else None

    while True:
        if deadline is not None and time.monotonic() >= deadline:
            raise TimeoutError(f"timed out waiting for transaction {tx_id} to be sealed")

        result = client.get_transaction_result(tx_id)
        if result.error is not None:
            raise result.error
        if result.status == TransactionStatus.EXPIRED:
            raise TransactionExpiredError(result)
        if result.status == TransactionStatus.SEALED:
            return result

        pause = backoff.duration()
        if deadline is not None:
            pause = min(pause, max(0.0, deadline - time.monotonic()))
        time.sleep(pause)


def send_and_wait(client: FlowClient, tx: Any, timeout: float) -> TransactionResult:
    """Send a transaction (an object with an ``id``) and wait for it to seal."""
    client.send_transaction(tx)
    return wait_for_seal(client, tx.id, timeout)


def hex_string(value: str) -> str:
    """Prefix a string with 0x unless it already carries the prefix."""
    if value.startswith(HEX_PREFIX):
        return value
    return f"{HEX_PREFIX}{value}"


def _address_bytes(address: bytes | str) -> bytes:
    if isinstance(address, str):
        trimmed = address.removeprefix(HEX_PREFIX)
        if len(trimmed) % 2 == 1:
            trimmed = "0" + trimmed
        address = bytes.fromhex(_HEX_PAIRS.match(trimmed).group())
    return bytes(address[-ADDRESS_LENGTH:]).rjust(ADDRESS_LENGTH, b"\0")


def format_address(address: bytes | str) -> str:
    """Render an address as 0x followed by the full 16 hex digits."""
    return hex_string(_address_bytes(address).hex())


def validate_transaction_id(tx_id: str) -> None:
    """Raise RequestError (400) unless tx_id is a canonical transaction id."""
    invalid = RequestError(400, f'not a valid transaction id: "{tx_id}"')
    try:
        raw = binascii.unhexlify(tx_id)
    except (binascii.Error, ValueError):
        raise invalid from None
    canonical = raw[:IDENTIFIER_LENGTH].ljust(IDENTIFIER_LENGTH, b"\0").hex()
    if tx_id != canonical:
        raise invalid