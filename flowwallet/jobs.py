"""Job model and its JSON representations."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class State(str, enum.Enum):
    """Lifecycle state of a job."""

    INIT = "INIT"
    ACCEPTED = "ACCEPTED"
    NO_AVAILABLE_WORKERS = "NO_AVAILABLE_WORKERS"
    ERROR = "ERROR"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class Job:
    """A unit of asynchronous work tracked in the datastore."""

    type: str = ""
    state: State = State.INIT
    id: uuid.UUID | None = None
    error: str = ""
    errors: list[str] = field(default_factory=list)
    result: str = ""
    transaction_id: str = ""
    exec_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    # Whether to notify the admin (e.g. via webhook) once the job settles.
    should_send_notification: bool = False
    attributes: Any = None

    def to_json_response(self) -> dict[str, Any]:
        """Return the job's HTTP response representation."""
        return {
            "jobId": str(self.id) if self.id is not None else None,
            "type": self.type,
            "state": State(self.state).value,
            "error": self.error,
            "errors": list(self.errors),
            "result": self.result,
            "transactionId": self.transaction_id,
            "createdAt": _format_time(self.created_at),
            "updatedAt": _format_time(self.updated_at),
        }

    def log_fields(self) -> dict[str, Any]:
        """Return fields identifying this job in log records."""
        return {"jobID": str(self.id) if self.id is not None else None, "jobType": self.type}


@dataclass
class JobQueueStatus:
    """Number of jobs in each state."""

    jobs_init: int = 0
    jobs_not_accepted: int = 0
    jobs_accepted: int = 0
    jobs_errored: int = 0
    jobs_failed: int = 0
    jobs_completed: int = 0

    def to_json(self) -> dict[str, int]:
        return {
            "jobsInit": self.jobs_init,
            "jobsNotAccepted": self.jobs_not_accepted,
            "jobsAccepted": self.jobs_accepted,
            "jobsErrored": self.jobs_errored,
            "jobsFailed": self.jobs_failed,
            "jobsCompleted": self.jobs_completed,
        }