"""In-memory ``LedgerClient`` for tests.

Every call is recorded. ``create_transaction`` deduplicates by ``import_id``
the way YNAB does: a repeated key is reported in ``duplicate_import_ids`` and
nothing new is stored.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable

from sms_ledger.errors import LedgerError
from sms_ledger.ledger import Account, CategoryGroup, NewTransaction, Payee, SaveResult


class FakeLedger:
    def __init__(
        self,
        *,
        accounts: Iterable[Account] = (),
        category_groups: Iterable[CategoryGroup] = (),
        payees: Iterable[Payee] = (),
        fail_listing: bool = False,
        fail_create_account: bool = False,
        reject: Callable[[NewTransaction], bool] | None = None,
    ) -> None:
        self.accounts = list(accounts)
        self.category_groups = list(category_groups)
        self.payees = list(payees)
        self.fail_listing = fail_listing
        self.fail_create_account = fail_create_account
        self.reject = reject

        self.list_calls: Counter[str] = Counter()
        self.created_accounts: list[dict[str, object]] = []
        # Every create_transaction call, duplicates and rejections included.
        self.transactions: list[NewTransaction] = []
        self.stored: dict[str, NewTransaction] = {}

    # ---- Reads ---------------------------------------------------------------

    def _listing(self, what: str) -> None:
        self.list_calls[what] += 1
        if self.fail_listing:
            raise LedgerError("ledger API unreachable", status_code=503)

    def list_accounts(self) -> list[Account]:
        self._listing("accounts")
        return list(self.accounts)

    def list_categories(self) -> list[CategoryGroup]:
        self._listing("categories")
        return list(self.category_groups)

    def list_payees(self) -> list[Payee]:
        self._listing("payees")
        return list(self.payees)

    # ---- Writes --------------------------------------------------------------

    def create_account(
        self, *, name: str, account_type: str = "checking", balance: int = 0
    ) -> Account:
        self.created_accounts.append({"name": name, "type": account_type, "balance": balance})
        if self.fail_create_account:
            raise LedgerError("ledger API error 400 Bad Request", status_code=400)
        account = Account(id=f"acct-new-{len(self.created_accounts)}", name=name, type=account_type)
        self.accounts.append(account)
        return account

    def create_transaction(self, tx: NewTransaction) -> SaveResult:
        self.transactions.append(tx)
        if self.reject is not None and self.reject(tx):
            raise LedgerError("ledger API error 400 Bad Request", status_code=400)
        if tx.import_id in self.stored:
            return SaveResult(duplicate_import_ids=[tx.import_id])
        self.stored[tx.import_id] = tx
        return SaveResult(transaction_ids=[f"tx-{len(self.stored)}"])

    @property
    def write_calls(self) -> int:
        return len(self.transactions) + len(self.created_accounts)
