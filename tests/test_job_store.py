import time
import uuid
from datetime import datetime, timezone

import pytest

from flowwallet.datastore import ListOptions, RecordNotFoundError, parse_list_options
from flowwallet.job_store import (
    JobNotAcceptableError,
    SQLiteJobStore,
    StatusQuery,
    is_acceptable,
)
from flowwallet.jobs import Job, State


@pytest.fixture
def store():
    s = SQLiteJobStore()
    yield s
    s.close()


def test_insert_assigns_id_and_timestamps(store):
    job = Job(type="t", id=uuid.uuid4())
    given = job.id
    store.insert_job(job)
    assert job.id != given
    assert job.created_at is not None
    assert job.updated_at == job.created_at


def test_insert_and_fetch_round_trip(store):
    job = Job(type="account_create", transaction_id="tx", attributes={"a": [1, 2]})
    store.insert_job(job)
    fetched = store.job(job.id)
    assert fetched.id == job.id
    assert fetched.type == "account_create"
    assert fetched.state is State.INIT
    assert fetched.transaction_id == "tx"
    assert fetched.attributes == {"a": [1, 2]}
    assert fetched.created_at == job.created_at


def test_missing_job_raises(store):
    with pytest.raises(RecordNotFoundError):
        store.job(uuid.uuid4())


def test_jobs_listed_newest_first_with_paging(store):
    created = []
    for n in range(3):
        job = Job(type=f"t{n}")
        store.insert_job(job)
        created.append(job.id)
        time.sleep(0.002)
    listed = [j.id for j in store.jobs(parse_list_options(0, 0))]
    assert listed == list(reversed(created))
    page = [j.id for j in store.jobs(ListOptions(limit=1, offset=1))]
    assert page == [created[1]]


def test_update_job_persists_fields(store):
    job = Job(type="t")
    store.insert_job(job)
    job.state = State.ERROR
    job.error = "boom"
    job.errors.append("boom")
    job.result = "r"
    store.update_job(job)
    fetched = store.job(job.id)
    assert fetched.state is State.ERROR
    assert fetched.error == "boom"
    assert fetched.errors == ["boom"]
    assert fetched.result == "r"
    assert fetched.updated_at >= fetched.created_at


def test_update_job_inserts_unknown_job(store):
    job = Job(type="fresh")
    store.update_job(job)
    assert store.job(job.id).type == "fresh"


def test_accept_job_increments_exec_count(store):
    job = Job(type="t")
    store.insert_job(job)
    store.accept_job(job, 0)
    assert job.state is State.ACCEPTED
    assert job.exec_count == 1
    fetched = store.job(job.id)
    assert fetched.state is State.ACCEPTED
    assert fetched.exec_count == 1


def test_recently_accepted_job_is_not_acceptable(store):
    job = Job(type="t")
    store.insert_job(job)
    store.accept_job(job, 180)
    with pytest.raises(JobNotAcceptableError):
        store.accept_job(job, 180)


def test_stale_stored_copy_blocks_acceptance(store):
    job = Job(type="t")
    store.insert_job(job)
    stored = store.job(job.id)
    stored.state = State.COMPLETE
    store.update_job(stored)
    with pytest.raises(JobNotAcceptableError):
        store.accept_job(job, 180)
    assert job.state is State.INIT


def test_is_acceptable_rules():
    now = datetime.now(timezone.utc)
    assert is_acceptable(Job(state=State.INIT), 180) is True
    assert is_acceptable(Job(state=State.ACCEPTED, updated_at=now), 180) is False
    assert is_acceptable(Job(state=State.ACCEPTED, updated_at=now), -1) is True
    assert is_acceptable(Job(state=State.COMPLETE), 180) is False
    assert is_acceptable(Job(state=State.FAILED), 180) is False
    assert is_acceptable(Job(state=State.ERROR), 180) is True


def test_schedulable_jobs_respects_grace_periods(store):
    init_job = Job(type="init")
    store.insert_job(init_job)
    errored = Job(type="err", state=State.ERROR)
    store.insert_job(errored)
    done = Job(type="done", state=State.COMPLETE)
    store.insert_job(done)

    opts = parse_list_options(0, 0)
    assert store.schedulable_jobs(3600, 3600, opts) == []

    only_init = {j.id for j in store.schedulable_jobs(-1, 3600, opts)}
    assert only_init == {init_job.id}

    both = {j.id for j in store.schedulable_jobs(-1, -1, opts)}
    assert both == {init_job.id, errored.id}


def test_status_counts_per_state(store):
    for state in (State.INIT, State.INIT, State.FAILED):
        store.insert_job(Job(type="t", state=state))
    result = sorted(store.status(), key=lambda q: q.state.value)
    assert result == [StatusQuery(State.FAILED, 1), StatusQuery(State.INIT, 2)]