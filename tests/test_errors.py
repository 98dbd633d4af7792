import socket

import pytest

from flowwallet.errors import GrpcCode, RequestError, RPCError, is_chain_connection_error


@pytest.mark.parametrize(
    "err",
    [
        ConnectionRefusedError("NetError"),
        TimeoutError("NetError"),
        socket.gaierror("non-existent-address"),
        RPCError(GrpcCode.DEADLINE_EXCEEDED, "DeadlineExceeded"),
        RPCError(GrpcCode.RESOURCE_EXHAUSTED, "ResourceExhausted"),
        RPCError(GrpcCode.INTERNAL, "Internal"),
        RPCError(GrpcCode.UNAVAILABLE, "Unavailable"),
    ],
)
def test_connection_errors(err):
    assert is_chain_connection_error(err) is True


@pytest.mark.parametrize(
    "err",
    [
        Exception("not a connection error"),
        RPCError(GrpcCode.NOT_FOUND, "NotFound"),
        FileNotFoundError("missing"),
        RequestError(400, "bad"),
    ],
)
def test_non_connection_errors(err):
    assert is_chain_connection_error(err) is False


def test_request_error_carries_status():
    err = RequestError(404, "job not found")
    assert err.status_code == 404
    assert str(err) == "job not found"


def test_rpc_error_message_mentions_code():
    err = RPCError(GrpcCode.UNAVAILABLE, "Unavailable")
    assert "UNAVAILABLE" in str(err)
    assert err.code is GrpcCode.UNAVAILABLE