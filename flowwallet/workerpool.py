"""A pool of worker threads that execute jobs and reschedule them from the store."""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from flowwallet.datastore import ListOptions, parse_list_options
from flowwallet.errors import is_chain_connection_error
from flowwallet.job_store import StatusQuery
from flowwallet.jobs import Job, JobQueueStatus, State
from flowwallet.notification import SEND_JOB_STATUS_JOB_TYPE, NotificationConfig

# Maximum number of executions before an erroring job is considered failed.
DEFAULT_MAX_JOB_ERROR_COUNT = 10
# Poll the store for schedulable jobs this often (seconds).
DEFAULT_DB_JOB_POLL_INTERVAL = 30.0
# Grace period before re-scheduling INIT or ACCEPTED jobs whose processing
# was unexpectedly disrupted (seconds).
DEFAULT_ACCEPTED_GRACE_PERIOD = 180.0
# Grace period before re-scheduling ERROR or NO_AVAILABLE_WORKERS jobs (seconds).
DEFAULT_RESCHEDULABLE_GRACE_PERIOD = 60.0

_QUEUE_POLL = 0.05

Executor = Callable[[Job], None]


class InvalidJobTypeError(Exception):
    """Raised by an executor handed a job of a type it does not handle."""

    def __init__(self, message: str = "invalid job type") -> None:
        super().__init__(message)


class PermanentFailure(Exception):
    """An executor error after which the job must not be retried."""

    def __init__(self, message: str = "permanent failure") -> None:
        super().__init__(message)


def permanent_failure(err: BaseException) -> PermanentFailure:
    """Wrap an error so that the job fails permanently."""
    failure = PermanentFailure(f"permanent failure: {err}")
    failure.__cause__ = err
    return failure


@dataclass
class WorkerPoolStatus(JobQueueStatus):
    """Job counts per state together with the pool's dimensions."""

    capacity: int = 0
    worker_count: int = 0

    def to_json(self) -> dict[str, int]:
        data = super().to_json()
        data["poolCapacity"] = self.capacity
        data["workerCount"] = self.worker_count
        return data


class _JobStore(Protocol):
    def insert_job(self, job: Job) -> None: ...

    def update_job(self, job: Job) -> None: ...

    def accept_job(self, job: Job, accepted_grace_period: float) -> None: ...

    def schedulable_jobs(
        self,
        accepted_grace_period: float,
        reschedulable_grace_period: float,
        options: ListOptions,
    ) -> list[Job]: ...

    def status(self) -> list[StatusQuery]: ...


class _SystemService(Protocol):
    def is_halted(self) -> bool: ...

    def pause(self) -> None: ...


_STATUS_FIELDS = {
    State.INIT: "jobs_init",
    State.NO_AVAILABLE_WORKERS: "jobs_not_accepted",
    State.ACCEPTED: "jobs_accepted",
    State.ERROR: "jobs_errored",
    State.FAILED: "jobs_failed",
    State.COMPLETE: "jobs_completed",
}


class WorkerPool:
    """Runs registered executors for jobs on a fixed number of worker threads.

    Durations are given in seconds. A capacity of zero still lets one job wait
    in the queue.
    """

    def __init__(
        self,
        store: _JobStore,
        capacity: int,
        worker_count: int,
        *,
        notification_config: NotificationConfig | None = None,
        system_service: _SystemService | None = None,
        logger: logging.Logger | None = None,
        max_job_error_count: int = DEFAULT_MAX_JOB_ERROR_COUNT,
        db_job_poll_interval: float = DEFAULT_DB_JOB_POLL_INTERVAL,
        accepted_grace_period: float = DEFAULT_ACCEPTED_GRACE_PERIOD,
        reschedulable_grace_period: float = DEFAULT_RESCHEDULABLE_GRACE_PERIOD,
    ) -> None:
        self.store = store
        self.capacity = capacity
        self.worker_count = worker_count
        self.notification_config = notification_config or NotificationConfig()
        self.system_service = system_service
        self.logger = logger or logging.getLogger(__name__)
        self.max_job_error_count = max_job_error_count
        self.db_job_poll_interval = db_job_poll_interval
        self.accepted_grace_period = accepted_grace_period
        self.reschedulable_grace_period = reschedulable_grace_period

        self._queue: queue.Queue[Job] = queue.Queue(maxsize=max(capacity, 1))
        self._executors: dict[str, Executor] = {}
        self._stop_event = threading.Event()
        self._closed = threading.Event()
        self._threads: list[threading.Thread] = []
        self._started = False

        self.register_executor(SEND_JOB_STATUS_JOB_TYPE, self._execute_send_job_status)

    @property
    def queue_size(self) -> int:
        """Number of jobs waiting in the queue."""
        return self._queue.qsize()

    def register_executor(self, job_type: str, executor: Executor) -> None:
        """Use ``executor`` for jobs of ``job_type``, replacing any earlier one."""
        self._executors[job_type] = executor

    def create_job(self, job_type: str, transaction_id: str = "", attributes: Any = None) -> Job:
        """Create and store a new job ready for scheduling."""
        job = Job(
            type=job_type,
            state=State.INIT,
            transaction_id=transaction_id,
            attributes=attributes,
        )
        self.store.insert_job(job)
        return job

    def schedule(self, job: Job) -> None:
        """Try to queue the job at once; defer it in the store when the queue is full."""
        fields = self._fields(job, "WorkerPool.schedule")
        self.logger.debug("Scheduling job", extra=fields)

        if self._system_halted():
            # Leave the job for the store scheduler to pick up later.
            self.logger.debug("System halted", extra=fields)
            return

        if self._try_enqueue(job, block=False):
            self.logger.debug("Successfully scheduled job", extra=fields)
            return

        job.state = State.NO_AVAILABLE_WORKERS
        self.logger.debug("No available workers, deferring", extra=fields)
        self.store.update_job(job)

    def status(self) -> WorkerPoolStatus:
        """Count jobs per state and report the pool's dimensions."""
        status = WorkerPoolStatus(capacity=self.capacity, worker_count=self.worker_count)
        for row in self.store.status():
            name = _STATUS_FIELDS.get(row.state)
            if name is not None:
                setattr(status, name, row.count)
        return status

    def start(self) -> None:
        """Start the worker threads and the store scheduler; later calls do nothing."""
        if self._started:
            return
        self._started = True
        for index in range(self.worker_count):
            thread = threading.Thread(
                target=self._run_worker, name=f"job-worker-{index}", daemon=True
            )
            self._threads.append(thread)
            thread.start()
        scheduler = threading.Thread(
            target=self._run_db_scheduler, name="job-db-scheduler", daemon=True
        )
        self._threads.append(scheduler)
        scheduler.start()

    def stop(self, wait: bool = True) -> None:
        """Stop accepting jobs; workers drain the queue. Optionally wait for them."""
        self._stop_event.set()
        self._closed.set()
        if wait:
            for thread in self._threads:
                thread.join()

    def next_queued(self, timeout: float | None = None) -> Job:
        """Take the next job from the queue; raise queue.Empty after ``timeout``."""
        return self._queue.get(timeout=timeout)

    def process(self, job: Job) -> None:
        """Accept and execute one job, then store its outcome.

        Chain connection errors from the executor are raised so the job is
        returned to the pool untouched; store errors propagate as well.
        """
        fields = self._fields(job, "WorkerPool.process")

        if not self._accept(job):
            self.logger.info("Failed to accept job", extra=fields)
            return

        executor = self._executors.get(job.type)
        if executor is None:
            self.logger.warning(
                "Could not process job, no registered executor for type", extra=fields
            )
            job.state = State.NO_AVAILABLE_WORKERS
            self.store.update_job(job)
            return

        try:
            executor(job)
        except Exception as err:
            if is_chain_connection_error(err):
                raise
            if job.exec_count > self.max_job_error_count or isinstance(err, PermanentFailure):
                job.state = State.FAILED
            else:
                job.state = State.ERROR
            job.error = str(err)
            job.errors.append(str(err))
            self.logger.warning(
                "Job execution resulted with error", extra={**fields, "error": str(err)}
            )
        else:
            job.state = State.COMPLETE
            job.error = ""

        self.store.update_job(job)

        if (
            job.state in (State.FAILED, State.COMPLETE)
            and job.should_send_notification
            and self.notification_config.should_send_job_status()
        ):
            try:
                self._schedule_job_status_notification(job)
            except Exception as err:
                self.logger.warning(
                    "Could not schedule a status update notification for job",
                    extra={**fields, "error": str(err)},
                )

    def _fields(self, job: Job, function: str) -> dict[str, Any]:
        return {"package": "jobs", "function": function, **job.log_fields()}

    def _accept(self, job: Job) -> bool:
        try:
            self.store.accept_job(job, self.accepted_grace_period)
        except Exception as err:
            self.logger.warning(
                "Failed to accept job",
                extra={**self._fields(job, "WorkerPool.accept"), "error": str(err)},
            )
            return False
        return True

    def _system_halted(self) -> bool:
        if self.system_service is not None:
            return self.system_service.is_halted()
        return False

    def _try_enqueue(self, job: Job, block: bool) -> bool:
        if not block:
            if self._stop_event.is_set():
                return False
            try:
                self._queue.put_nowait(job)
            except queue.Full:
                return False
            return True
        while not self._stop_event.is_set():
            try:
                self._queue.put(job, timeout=_QUEUE_POLL)
            except queue.Full:
                continue
            return True
        return False

    def _run_worker(self) -> None:
        while True:
            try:
                job = self._queue.get(timeout=_QUEUE_POLL)
            except queue.Empty:
                if self._closed.is_set():
                    return
                continue
            try:
                self.process(job)
            except Exception as err:
                self._handle_critical_error(job, err)

    def _handle_critical_error(self, job: Job, err: Exception) -> None:
        fields = {**self._fields(job, "WorkerPool.worker"), "error": str(err)}
        if not is_chain_connection_error(err):
            self.logger.warning("Critical error while processing job", extra=fields)
            return
        if self.system_service is None:
            self.logger.warning("Unable to connect to chain", extra=fields)
            return
        self.logger.warning("Unable to connect to chain, pausing system", extra=fields)
        try:
            self.system_service.pause()
        except Exception as pause_err:
            self.logger.warning(
                "Unable to pause system", extra={**fields, "error": str(pause_err)}
            )

    def _run_db_scheduler(self) -> None:
        rest_time = 0.0
        while not self._stop_event.wait(max(rest_time, 0.0)):
            try:
                halted = self._system_halted()
            except Exception as err:
                self.logger.warning(
                    "Could not get system settings from DB", extra={"error": str(err)}
                )
                rest_time = self.db_job_poll_interval
                continue
            if halted:
                rest_time = self.db_job_poll_interval
                continue

            begin = time.monotonic()
            try:
                jobs = self.store.schedulable_jobs(
                    self.accepted_grace_period,
                    self.reschedulable_grace_period,
                    parse_list_options(0, 0),
                )
            except Exception as err:
                self.logger.warning(
                    "Could not fetch schedulable jobs from DB", extra={"error": str(err)}
                )
                continue

            for job in jobs:
                self._try_enqueue(job, block=True)

            rest_time = self.db_job_poll_interval - (time.monotonic() - begin)

    def _execute_send_job_status(self, job: Job) -> None:
        if job.type != SEND_JOB_STATUS_JOB_TYPE:
            raise InvalidJobTypeError()
        job.should_send_notification = False
        self.notification_config.send_job_status(job.result)

    def _schedule_job_status_notification(self, parent: Job) -> None:
        self.logger.debug(
            "Scheduling job status notification",
            extra=self._fields(parent, "WorkerPool.schedule_job_status_notification"),
        )
        job = self.create_job(SEND_JOB_STATUS_JOB_TYPE, "")
        # The notification content travels in the result of the new job.
        job.result = json.dumps(parent.to_json_response())
        self.store.update_job(job)
        self.schedule(job)