import pytest
from werkzeug.test import Client
from werkzeug.wrappers import Response

from flowwallet.idempotency import (
    IdempotencyMiddleware,
    IdempotencyOptions,
    LocalIdempotencyStore,
    RedisIdempotencyStore,
    SQLiteIdempotencyStore,
)


def ok_app(environ, start_response):
    return Response("done")(environ, start_response)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeRedis:
    def __init__(self, reply="OK"):
        self.commands = []
        self.reply = reply
        self.keys = set()

    def execute_command(self, *args):
        self.commands.append(args)
        if args[0] == "EXISTS":
            return int(args[1] in self.keys)
        self.keys.add(args[1])
        return self.reply


class BrokenReadStore:
    def get(self, key):
        raise RuntimeError("down")

    def set(self, key, expiry):
        pass


class BrokenWriteStore:
    def get(self, key):
        return False

    def set(self, key, expiry):
        raise RuntimeError("down")


def make_client(store, ignore=()):
    middleware = IdempotencyMiddleware(
        ok_app, IdempotencyOptions(ignore_paths=ignore, expiry=60.0), store
    )
    return Client(middleware)


def test_get_requests_pass_through():
    response = make_client(LocalIdempotencyStore()).get("/x")
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "done"


def test_post_without_key_is_rejected():
    response = make_client(LocalIdempotencyStore()).post("/x")
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "Idempotency-Key header not found\n"


def test_repeated_key_conflicts():
    client = make_client(LocalIdempotencyStore())
    first = client.post("/x", headers={"Idempotency-Key": "key-1"})
    second = client.post("/x", headers={"Idempotency-Key": "key-1"})
    assert first.status_code == 200
    assert second.status_code == 409
    assert second.get_data(as_text=True) == "Idempotency-Key conflict, key: key-1\n"


def test_ignored_paths_skip_checks():
    client = make_client(LocalIdempotencyStore(), ignore=("/health",))
    response = client.post("/health/ready")
    assert response.status_code == 200


def test_store_read_error_returns_500():
    response = make_client(BrokenReadStore()).post("/x", headers={"Idempotency-Key": "k"})
    assert response.status_code == 500
    assert response.get_data(as_text=True) == "Error while reading idempotency key\n"


def test_store_write_error_returns_500():
    response = make_client(BrokenWriteStore()).post("/x", headers={"Idempotency-Key": "k"})
    assert response.status_code == 500
    assert response.get_data(as_text=True) == "Error while saving used idempotency key\n"


def test_local_store_expires_and_removes_keys():
    clock = FakeClock()
    store = LocalIdempotencyStore(clock=clock)
    store.set("k", 10)
    assert store.get("k") is True
    clock.now += 11
    assert store.get("k") is False
    clock.now -= 11
    assert store.get("k") is False


def test_sqlite_store_round_trip_and_update():
    clock = FakeClock()
    store = SQLiteIdempotencyStore(clock=clock)
    assert store.get("k") is False
    store.set("k", 10)
    assert store.get("k") is True
    clock.now += 15
    assert store.get("k") is False
    store.set("k", 10)
    assert store.get("k") is True
    store.close()


def test_sqlite_prune_removes_only_expired():
    clock = FakeClock()
    store = SQLiteIdempotencyStore(clock=clock)
    store.set("short", 10)
    store.set("long", 100)
    clock.now += 20
    store.prune()
    clock.now -= 15
    assert store.get("short") is False
    assert store.get("long") is True
    store.close()


def test_redis_store_commands():
    connection = FakeRedis()
    store = RedisIdempotencyStore(connection)
    store.set("abc", 1.5)
    assert connection.commands[-1] == ("PSETEX", "idempotencykey:abc", 1500, 1)
    assert store.get("abc") is True
    assert store.get("zzz") is False


def test_redis_store_set_failure():
    store = RedisIdempotencyStore(FakeRedis(reply="NOPE"))
    with pytest.raises(RuntimeError, match="failed to set key"):
        store.set("abc", 1.0)


def test_redis_store_through_middleware_conflicts():
    client = make_client(RedisIdempotencyStore(FakeRedis()))
    first = client.post("/x", headers={"Idempotency-Key": "key-2"})
    second = client.post("/x", headers={"Idempotency-Key": "key-2"})
    assert first.status_code == 200
    assert second.status_code == 409