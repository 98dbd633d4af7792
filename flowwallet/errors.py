"""Errors shared across the application."""

from __future__ import annotations

import enum
import socket


class RequestError(Exception):
    """An error that maps directly onto an HTTP response status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        return self.message


class GrpcCode(enum.IntEnum):
    """gRPC status codes."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


class RPCError(Exception):
    """An error returned by the chain access API."""

    def __init__(self, code: GrpcCode, message: str = "") -> None:
        super().__init__(f"rpc error: code = {code.name} desc = {message}")
        self.code = code
        self.message = message


_NETWORK_ERRORS = (ConnectionError, TimeoutError, socket.gaierror, socket.herror)

_ACCESS_API_CONNECTION_CODES = frozenset(
    {
        GrpcCode.DEADLINE_EXCEEDED,
        GrpcCode.RESOURCE_EXHAUSTED,
        GrpcCode.INTERNAL,
        GrpcCode.UNAVAILABLE,
    }
)


def is_chain_connection_error(err: BaseException) -> bool:
    """Tell whether an error means the chain could not be reached."""
    if isinstance(err, _NETWORK_ERRORS):
        return True
    if isinstance(err, RPCError):
        return err.code in _ACCESS_API_CONNECTION_CODES
    return False