import logging

from werkzeug.test import Client
from werkzeug.wrappers import Response

from flowwallet.logging_middleware import LoggingMiddleware


def not_found_app(environ, start_response):
    return Response("not here", status=404)(environ, start_response)


def writing_app(environ, start_response):
    write = start_response("201 CREATED", [("Content-Type", "text/plain")])
    write(b"abc")
    return [b"de"]


def http_records(caplog):
    return [r for r in caplog.records if r.getMessage() == "HTTP request"]


def test_logs_request_details(caplog):
    caplog.set_level(logging.INFO, logger="flowwallet.logging_middleware")
    client = Client(LoggingMiddleware(not_found_app))
    response = client.get("/missing?page=2", headers={"User-Agent": "tester"})
    body = response.get_data()
    response.close()

    assert response.status_code == 404
    records = http_records(caplog)
    assert len(records) == 1
    record = records[0]
    assert record.method == "GET"
    assert record.path == "/missing?page=2"
    assert record.status == 404
    assert record.size == len(body)
    assert record.__dict__["user-agent"] == "tester"
    assert record.duration >= 0


def test_counts_bytes_from_write_callable(caplog):
    logger = logging.getLogger("custom.http")
    caplog.set_level(logging.INFO, logger="custom.http")
    client = Client(LoggingMiddleware(writing_app, logger=logger))
    response = client.post("/items")
    body = response.get_data()
    response.close()

    assert body == b"abcde"
    records = http_records(caplog)
    assert len(records) == 1
    assert records[0].name == "custom.http"
    assert records[0].status == 201
    assert records[0].size == len(body)
    assert records[0].method == "POST"