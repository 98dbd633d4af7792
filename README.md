# flowwallet

Building blocks for a custodial wallet service on the Flow blockchain:
account storage, background jobs with retries and status webhooks, a chain
event listener that follows the chain block by block, and WSGI handlers and
middleware for an HTTP API. Storage is SQLite throughout.

## Modules

- `flowwallet.datastore` – `parse_list_options` and `ListOptions` for list
  paging, and `RecordNotFoundError`, raised by the stores for missing records.
- `flowwallet.errors` – `RequestError`, which carries an HTTP status code;
  `RPCError` with a `GrpcCode`; and `is_chain_connection_error`, true for
  network errors and for `RPCError`s with code `DEADLINE_EXCEEDED`,
  `RESOURCE_EXHAUSTED`, `INTERNAL` or `UNAVAILABLE`.
- `flowwallet.flow_helpers` – the `FlowClient` protocol, `latest_block_id`,
  `wait_for_seal` and `send_and_wait` (polling with an exponential `Backoff`,
  raising `TransactionExpiredError` or `TimeoutError`), and the helpers
  `hex_string`, `format_address` and `validate_transaction_id`.
- `flowwallet.events` – `Event`, whose handlers each run on their own thread
  when the event is triggered, with the shared `ACCOUNT_ADDED` and
  `CHAIN_EVENT` events and `AccountAddedPayload`.
- `flowwallet.accounts` – the `Account` model, `AccountType` and
  `SQLiteAccountStore` (soft-deleted accounts are hidden from reads).
- `flowwallet.account_service` – `AccountService`: list accounts, add and
  delete non-custodial accounts.
- `flowwallet.jobs` – the `Job` model, its `State`, and `JobQueueStatus`.
- `flowwallet.job_store` – `SQLiteJobStore`, `is_acceptable`, `StatusQuery`
  and `JobNotAcceptableError`.
- `flowwallet.job_service` – `JobService`, read access to jobs that raises
  `RequestError` 400 for a malformed id and 404 for an unknown one.
- `flowwallet.workerpool` – `WorkerPool`, which accepts, runs, retries and
  reports jobs on worker threads and reschedules stalled jobs from the store;
  `permanent_failure` marks an error after which a job is not retried.
- `flowwallet.notification` – `NotificationConfig`, which POSTs a finished
  job's status as JSON to a webhook, raising `WebhookError` on failure.
- `flowwallet.chain_events` – `Listener`, which polls the chain for events of
  the given types and triggers them, keeping its progress in
  `SQLiteStatusStore`.
- `flowwallet.web` – response helpers (`error_response`, `json_response`,
  `plain_text_response`, `check_non_empty_body`) and the `health_ready`,
  `liveness` and `debug` handlers.
- `flowwallet.api` – `JobsHandlers` and `AccountsHandlers`, werkzeug
  request handlers for the jobs and accounts endpoints.
- `flowwallet.idempotency` – `IdempotencyMiddleware`, which requires a fresh
  `Idempotency-Key` header on every POST, with `LocalIdempotencyStore`,
  `SQLiteIdempotencyStore` and `RedisIdempotencyStore`.
- `flowwallet.logging_middleware` – `LoggingMiddleware`, which logs method,
  path, client, status, size and duration of each request.

## Examples

Paging: a limit of zero means the default of 1000, a negative limit means no
limit.

```python
from flowwallet.datastore import parse_list_options

options = parse_list_options(0, 0)
assert (options.limit, options.offset) == (1000, 0)

options = parse_list_options(-5, 20)
assert (options.limit, options.offset) == (-1, 0)
```

Non-custodial accounts:

```python
from flowwallet.accounts import AccountType, SQLiteAccountStore
from flowwallet.account_service import AccountService

service = AccountService(SQLiteAccountStore())
account = service.add_non_custodial_account("1cf0e2f2f715450")
assert account.address == "0x1cf0e2f2f715450"
assert account.type is AccountType.NON_CUSTODIAL
assert [a.address for a in service.list(0, 0)] == ["0x1cf0e2f2f715450"]

service.delete_non_custodial_account("0x1cf0e2f2f715450")
assert service.list(0, 0) == []
```

Running a job directly through the pool:

```python
from flowwallet.job_store import SQLiteJobStore
from flowwallet.jobs import State
from flowwallet.workerpool import WorkerPool

pool = WorkerPool(SQLiteJobStore(), capacity=10, worker_count=2)

def execute(job):
    job.result = "done"

pool.register_executor("example", execute)
job = pool.create_job("example")
pool.process(job)
assert job.state is State.COMPLETE
```

`pool.start()` instead runs the workers and the store scheduler on threads;
`pool.schedule(job)` queues a job for them, and `pool.stop()` shuts them down.

Idempotency keys:

```python
from werkzeug.test import Client
from werkzeug.wrappers import Response

from flowwallet.idempotency import (
    IdempotencyMiddleware,
    IdempotencyOptions,
    LocalIdempotencyStore,
)

app = IdempotencyMiddleware(
    Response("ok"), IdempotencyOptions(expiry=60), LocalIdempotencyStore()
)
client = Client(app)
assert client.post("/", headers={"Idempotency-Key": "k1"}).status_code == 200
assert client.post("/", headers={"Idempotency-Key": "k1"}).status_code == 409
assert client.post("/").status_code == 400
```

## What this package does not do

- It has no concrete `FlowClient`: code that talks to the chain takes any
  object that provides the protocol's methods.
- It does not create custodial accounts on the chain, generate or encrypt
  keys, or build and sign transactions; `AccountService` only lists accounts
  and manages non-custodial ones.
- It has no HTTP server, routing table or command-line entry point; the
  handlers and middleware are meant to be wired into a WSGI application.
- It has no handlers for tokens, transactions, templates or system settings,
  and no configuration loading.
- Storage is SQLite only, with tables created on first use; there are no
  migrations and no other database back ends.

## Tests

The test suite uses pytest and is installed with the `test` extra.