"""Account management operations on top of the account store."""

from __future__ import annotations

import logging
from typing import Protocol

from flowwallet.accounts import Account, AccountType
from flowwallet.datastore import ListOptions, RecordNotFoundError, parse_list_options
from flowwallet.flow_helpers import hex_string

logger = logging.getLogger(__name__)


class _AccountStore(Protocol):
    def accounts(self, options: ListOptions) -> list[Account]: ...

    def account(self, address: str) -> Account: ...

    def insert_account(self, account: Account) -> None: ...

    def hard_delete_account(self, account: Account) -> None: ...


class AccountService:
    """Lists accounts and manages non-custodial ones."""

    def __init__(self, store: _AccountStore) -> None:
        self.store = store

    def list(self, limit: int, offset: int) -> list[Account]:
        """Return stored accounts, newest first."""
        return self.store.accounts(parse_list_options(limit, offset))

    def add_non_custodial_account(self, address: str) -> Account:
        """Store a non-custodial account for the address and return it."""
        logger.debug("Add non-custodial account", extra={"address": address})
        account = Account(address=hex_string(address), type=AccountType.NON_CUSTODIAL)
        self.store.insert_account(account)
        return account

    def delete_non_custodial_account(self, address: str) -> None:
        """Permanently delete a non-custodial account; a missing one is fine.

        Raises ValueError when the account is not non-custodial.
        """
        logger.debug("Delete non-custodial account", extra={"address": address})
        try:
            account = self.store.account(hex_string(address))
        except RecordNotFoundError:
            # Already gone.
            return
        if account.type != AccountType.NON_CUSTODIAL:
            raise ValueError("only non-custodial accounts supported")
        self.store.hard_delete_account(account)