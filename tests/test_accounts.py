import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from flowwallet.accounts import Account, AccountType, SQLiteAccountStore
from flowwallet.datastore import ListOptions, RecordNotFoundError


@pytest.fixture
def store():
    s = SQLiteAccountStore()
    yield s
    s.close()


def test_insert_and_fetch_round_trip(store):
    keys = [{"index": 0, "publicKey": "abcd", "value": ""}]
    account = Account(address="0x01cf0e2f2f715450", keys=keys, type=AccountType.NON_CUSTODIAL)
    store.insert_account(account)

    fetched = store.account("0x01cf0e2f2f715450")
    assert fetched.address == account.address
    assert fetched.keys == keys
    assert fetched.type is AccountType.NON_CUSTODIAL
    assert fetched.created_at == account.created_at


def test_default_type_is_custodial(store):
    store.insert_account(Account(address="0xaa"))
    assert store.account("0xaa").type is AccountType.CUSTODIAL


def test_missing_account_raises(store):
    with pytest.raises(RecordNotFoundError):
        store.account("0xdeadbeef")


def test_duplicate_insert_fails(store):
    store.insert_account(Account(address="0xbb"))
    with pytest.raises(sqlite3.IntegrityError):
        store.insert_account(Account(address="0xbb"))


def test_accounts_are_listed_newest_first_with_paging(store):
    base = datetime(2022, 1, 1, tzinfo=timezone.utc)
    addresses = ["0x01", "0x02", "0x03"]
    for offset, address in enumerate(addresses):
        store.insert_account(Account(address=address, created_at=base + timedelta(minutes=offset)))

    listed = [a.address for a in store.accounts(ListOptions(limit=-1, offset=0))]
    assert listed == list(reversed(addresses))

    page = [a.address for a in store.accounts(ListOptions(limit=1, offset=1))]
    assert page == [listed[1]]


def test_listed_accounts_omit_keys(store):
    store.insert_account(Account(address="0xcc", keys=[{"index": 0}]))
    listed = store.accounts(ListOptions())
    assert [a.keys for a in listed] == [[]]


def test_hard_delete(store):
    account = Account(address="0xdd")
    store.insert_account(account)
    store.hard_delete_account(account)
    with pytest.raises(RecordNotFoundError):
        store.account("0xdd")
    assert store.accounts(ListOptions()) == []


def test_to_json():
    created = datetime(2022, 2, 3, 4, 5, 6, tzinfo=timezone.utc)
    account = Account(
        address="0xee",
        type=AccountType.NON_CUSTODIAL,
        created_at=created,
        updated_at=created,
    )
    data = account.to_json()
    assert data["address"] == "0xee"
    assert data["type"] == "non-custodial"
    assert datetime.fromisoformat(data["createdAt"]) == created
    assert data["keys"] == []
    assert "deletedAt" not in data