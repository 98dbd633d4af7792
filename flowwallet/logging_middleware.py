"""WSGI middleware that logs one line per HTTP request."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, Iterator
from urllib.parse import quote


class _Snooper:
    def __init__(self) -> None:
        self.status = 200
        self.size = 0
        self.start = time.monotonic()


class _LoggedBody:
    """Wraps a response body, counting bytes and logging once it is done."""

    def __init__(self, body: Iterable[bytes], snooper: _Snooper, on_done: Callable[[], None]) -> None:
        self._body = body
        self._snooper = snooper
        self._on_done = on_done
        self._done = False

    def _finish(self) -> None:
        if not self._done:
            self._done = True
            self._on_done()

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._body:
            self._snooper.size += len(chunk)
            yield chunk
        self._finish()

    def close(self) -> None:
        try:
            close = getattr(self._body, "close", None)
            if close is not None:
                close()
        finally:
            self._finish()


def _request_uri(environ: dict) -> str:
    uri = environ.get("REQUEST_URI") or environ.get("RAW_URI")
    if uri:
        return uri
    path = environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")
    uri = quote(path.encode("latin-1"), safe="/:@!$&'()*+,;=-._~")
    query = environ.get("QUERY_STRING", "")
    return f"{uri}?{query}" if query else uri


class LoggingMiddleware:
    """Logs method, path, client, status, size and duration of each request."""

    def __init__(self, app: Callable, logger: logging.Logger | None = None) -> None:
        self.app = app
        self.logger = logger or logging.getLogger(__name__)

    def __call__(self, environ: dict, start_response: Callable) -> Iterable[bytes]:
        snooper = _Snooper()

        def snooping_start_response(status: str, headers: list, exc_info: Any = None):
            snooper.status = int(status.split(" ", 1)[0])
            write = start_response(status, headers, exc_info)

            def snooping_write(data: bytes) -> Any:
                snooper.size += len(data)
                return write(data)

            return snooping_write

        body = self.app(environ, snooping_start_response)
        return _LoggedBody(body, snooper, lambda: self._log(environ, snooper))

    def _log(self, environ: dict, snooper: _Snooper) -> None:
        remote = environ.get("REMOTE_ADDR", "")
        if environ.get("REMOTE_PORT"):
            remote = f"{remote}:{environ['REMOTE_PORT']}"
        elapsed_us = int((time.monotonic() - snooper.start) * 1_000_000)
        fields = {
            "method": environ.get("REQUEST_METHOD", ""),
            "path": _request_uri(environ),
            "remote": remote,
            "user-agent": environ.get("HTTP_USER_AGENT", ""),
            "status": snooper.status,
            "size": snooper.size,
            "duration": elapsed_us / 1000,
        }
        self.logger.info("HTTP request", extra=fields)