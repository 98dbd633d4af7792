"""Job lookups used by the HTTP handlers."""

from __future__ import annotations

import logging
import uuid

from flowwallet.datastore import RecordNotFoundError, parse_list_options
from flowwallet.errors import RequestError
from flowwallet.job_store import SQLiteJobStore
from flowwallet.jobs import Job

logger = logging.getLogger(__name__)


class JobService:
    """Read access to jobs for the HTTP API."""

    def __init__(self, store: SQLiteJobStore) -> None:
        self.store = store

    def list(self, limit: int, offset: int) -> list[Job]:
        """Return jobs from the datastore, newest first."""
        logger.debug("List jobs", extra={"limit": limit, "offset": offset})
        return self.store.jobs(parse_list_options(limit, offset))

    def details(self, job_id: str) -> Job:
        """Return one job; raise RequestError 400 or 404 on a bad or unknown id."""
        logger.debug("Job details", extra={"jobID": job_id})
        try:
            parsed = uuid.UUID(job_id)
        except (ValueError, TypeError, AttributeError):
            raise RequestError(400, "invalid job id") from None
        try:
            return self.store.job(parsed)
        except RecordNotFoundError:
            raise RequestError(404, "job not found") from None