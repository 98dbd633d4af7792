"""Shared HTTP response helpers and small standalone handlers."""

from __future__ import annotations

import dataclasses
import enum
import json
import logging
import uuid
from datetime import date, datetime
from typing import Any, Callable

from werkzeug.wrappers import Request, Response

from flowwallet.errors import RequestError

logger = logging.getLogger(__name__)

SYNC_QUERY_PARAMETER = "sync"

Handler = Callable[..., Response]


def _plain_error(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, content_type="text/plain; charset=utf-8")
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


def _json_default(value: Any) -> Any:
    if hasattr(value, "to_json"):
        return value.to_json()
    if hasattr(value, "to_json_response"):
        return value.to_json_response()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"cannot encode {type(value).__name__} as JSON")


def error_response(err: BaseException) -> Response:
    """Turn an error into a plain-text HTTP error response.

    RequestError carries its own status; "record not found" errors become
    404 and everything else 400.
    """
    logger.warning("Error while handling request", extra={"error": str(err)})
    if isinstance(err, RequestError):
        return _plain_error(str(err), err.status_code)
    if "record not found" in str(err):
        return _plain_error(str(err), 404)
    return _plain_error(str(err), 400)


def json_response(status: int, payload: Any) -> Response:
    """Encode the payload as a JSON response with the given status."""
    body = json.dumps(payload, default=_json_default) + "\n"
    return Response(body, status=status, content_type="application/json")


def plain_text_response(text: str) -> Response:
    """Return a 200 text/plain response with an explicit Content-Length."""
    data = text.encode("utf-8")
    response = Response(data, status=200, content_type="text/plain")
    response.headers["Content-Length"] = str(len(data))
    return response


def check_non_empty_body(request: Request) -> None:
    """Raise RequestError (400) when the request carries no body."""
    if not request.get_data(cache=True):
        raise RequestError(400, "empty body")


def health_ready(request: Request) -> Response:
    """Readiness probe: always 200."""
    return Response(status=200)


def liveness(get_liveness: Callable[[], Any]) -> Handler:
    """Build a handler that reports the value of ``get_liveness`` as JSON."""

    def handler(request: Request) -> Response:
        try:
            value = get_liveness()
        except Exception as err:
            return error_response(err)
        return json_response(200, value)

    return handler


def debug(repo_url: str, sha1ver: str, buildtime: str) -> Handler:
    """Build a handler that echoes the request and the build information."""

    def handler(request: Request, api_version: str = "") -> Response:
        uri = request.environ.get("SCRIPT_NAME", "") + request.path
        if request.query_string:
            uri += "?" + request.query_string.decode("latin-1")
        lines = [f"url: {request.method} {uri}", "Headers:"]

        names = dict.fromkeys(name for name, _ in request.headers.items() if name.lower() != "host")
        for name in names:
            values = request.headers.getlist(name)
            if not values:
                lines.append(name)
            elif len(values) == 1:
                lines.append(f"  {name}: {values[0]}")
            else:
                lines.append(f"  {name}:")
                lines.extend(f"    {value}" for value in values)

        lines.append("")
        lines.append(f"ver: {repo_url}/commit/{sha1ver}")
        lines.append(f"built on: {buildtime}")
        lines.append(f"api version called: {api_version}")
        return plain_text_response("\n".join(lines))

    return handler