"""HTTP handlers for jobs and accounts."""

from __future__ import annotations

import json
import re
from typing import Any

from werkzeug.wrappers import Request, Response

from flowwallet.account_service import AccountService
from flowwallet.errors import RequestError
from flowwallet.job_service import JobService
from flowwallet.web import check_non_empty_body, error_response, json_response

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def _atoi(value: str | None) -> int:
    """Parse a decimal integer, falling back to 0 for anything unparsable."""
    if value is None or not _INTEGER.fullmatch(value):
        return 0
    number = int(value)
    if not _INT64_MIN <= number <= _INT64_MAX:
        return 0
    return number


def _paging(request: Request) -> tuple[int, int]:
    return _atoi(request.values.get("limit")), _atoi(request.values.get("offset"))


def _decode_json(data: bytes) -> Any:
    """Decode the first JSON value in the data, ignoring anything after it."""
    text = data.decode("utf-8").lstrip(" \t\n\r")
    value, _ = json.JSONDecoder().raw_decode(text)
    return value


class JobsHandlers:
    """HTTP handlers for listing and inspecting jobs."""

    def __init__(self, service: JobService) -> None:
        self.service = service

    def list(self, request: Request) -> Response:
        """Return all jobs, honouring the limit and offset parameters."""
        limit, offset = _paging(request)
        try:
            jobs = self.service.list(limit, offset)
        except Exception as err:
            return error_response(err)
        return json_response(200, [job.to_json_response() for job in jobs])

    def details(self, request: Request, job_id: str) -> Response:
        """Return one job; the service validates the id."""
        try:
            job = self.service.details(job_id)
        except Exception as err:
            return error_response(err)
        return json_response(200, job.to_json_response())


class AccountsHandlers:
    """HTTP handlers for listing accounts and managing non-custodial ones."""

    def __init__(self, service: AccountService) -> None:
        self.service = service

    def list(self, request: Request) -> Response:
        """Return all accounts, honouring the limit and offset parameters."""
        limit, offset = _paging(request)
        try:
            accounts = self.service.list(limit, offset)
        except Exception as err:
            return error_response(err)
        return json_response(200, [account.to_json() for account in accounts])

    def add_non_custodial_account(self, request: Request) -> Response:
        """Add a non-custodial account from a JSON body holding its address."""
        try:
            check_non_empty_body(request)
        except RequestError as err:
            return error_response(err)

        invalid = RequestError(400, "invalid body")
        try:
            body = _decode_json(request.get_data(cache=True))
        except ValueError:
            return error_response(invalid)
        if body is None:
            body = {}
        if not isinstance(body, dict):
            return error_response(invalid)
        address = body.get("address")
        if address is None:
            address = ""
        if not isinstance(address, str):
            return error_response(invalid)

        try:
            account = self.service.add_non_custodial_account(address)
        except Exception as err:
            return error_response(err)
        return json_response(201, account.to_json())

    def delete_non_custodial_account(self, request: Request, address: str) -> Response:
        """Delete a non-custodial account; a missing one is not an error."""
        try:
            self.service.delete_non_custodial_account(address)
        except Exception as err:
            return error_response(err)
        return Response(status=200)