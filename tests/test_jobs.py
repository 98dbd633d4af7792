import json
import uuid
from datetime import datetime, timezone

from flowwallet.jobs import Job, JobQueueStatus, State


def test_to_json_response_carries_job_fields():
    job_id = uuid.uuid4()
    created = datetime(2022, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    job = Job(
        type="account_create",
        state=State.COMPLETE,
        id=job_id,
        error="",
        errors=["first", "second"],
        result="0x01",
        transaction_id="abc",
        created_at=created,
        updated_at=created,
    )
    res = job.to_json_response()
    assert res["jobId"] == str(job_id)
    assert res["type"] == "account_create"
    assert res["state"] == "COMPLETE"
    assert res["errors"] == ["first", "second"]
    assert res["result"] == "0x01"
    assert res["transactionId"] == "abc"
    assert datetime.fromisoformat(res["createdAt"]) == created


def test_to_json_response_is_json_serialisable_and_copies_errors():
    job = Job(type="t", id=uuid.uuid4(), errors=["e"])
    res = job.to_json_response()
    decoded = json.loads(json.dumps(res))
    assert decoded == res
    res["errors"].append("other")
    assert job.errors == ["e"]


def test_new_job_defaults_to_init_state():
    job = Job(type="x")
    assert job.state is State.INIT
    assert job.to_json_response()["state"] == "INIT"
    assert job.to_json_response()["createdAt"] is None


def test_log_fields_identify_job():
    job_id = uuid.uuid4()
    job = Job(type="send_job_status", id=job_id)
    assert job.log_fields() == {"jobID": str(job_id), "jobType": "send_job_status"}


def test_queue_status_json_keys():
    status = JobQueueStatus(jobs_init=1, jobs_failed=2)
    out = status.to_json()
    assert out["jobsInit"] == 1
    assert out["jobsFailed"] == 2
    assert set(out) == {
        "jobsInit",
        "jobsNotAccepted",
        "jobsAccepted",
        "jobsErrored",
        "jobsFailed",
        "jobsCompleted",
    }