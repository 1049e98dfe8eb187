from __future__ import annotations

from typing import Any

from receipt_reconciler.core.config import settings
from receipt_reconciler.core.logging import get_logger, log_event
from receipt_reconciler.core.models import utcnow
from receipt_reconciler.modules.ledger.client import LedgerProvider, quote

logger = get_logger(__name__)

ACCOUNT_KEYWORDS = ("job supplies", "job", "material", "supplies", "cost of goods")


def _has_keyword(account_name: str) -> bool:
    name = account_name.lower()
    return any(keyword in name for keyword in ACCOUNT_KEYWORDS)


def _like(value: str) -> str:
    return quote(f"%{value}%")


class EntityResolver:
    """Looks up (or creates) vendors, customers and accounts, caching every hit for the run."""

    def __init__(self, ledger: LedgerProvider) -> None:
        self.ledger = ledger
        self._vendors: dict[str, dict[str, Any]] = {}
        self._customers: dict[str, dict[str, Any]] = {}
        self._accounts: dict[str, dict[str, Any] | None] = {}
        self._credit_card_account: dict[str, Any] | None = None

    def clear(self) -> None:
        self._vendors.clear()
        self._customers.clear()
        self._accounts.clear()
        self._credit_card_account = None

    def find_or_create_vendor(self, name: str) -> dict[str, Any]:
        cached = self._vendors.get(name)
        if cached is not None:
            return cached

        rows = self.ledger.query("Vendor", f"DisplayName LIKE {_like(name)}")
        if rows:
            vendor = rows[0]
        else:
            vendor = self.ledger.create("Vendor", {"DisplayName": name})
            log_event(logger, "resolver.vendor.created", name=name, vendor_id=vendor.get("Id"))

        self._vendors[name] = vendor
        return vendor

    def find_or_create_customer(self, job_name: str) -> dict[str, Any]:
        cached = self._customers.get(job_name)
        if cached is not None:
            return cached

        rows = self.ledger.query("Customer", f"DisplayName LIKE {_like(job_name)}")
        if rows:
            customer = rows[0]
        else:
            customer = self.ledger.create(
                "Customer",
                {
                    "DisplayName": job_name,
                    "CompanyName": job_name,
                    "Job": True,
                    "BillWithParent": False,
                    "Notes": f"Auto-created by receipt reconciler on {utcnow().isoformat()}",
                },
            )
            log_event(
                logger, "resolver.customer.created", name=job_name, customer_id=customer.get("Id")
            )

        self._customers[job_name] = customer
        return customer

    def find_account(self, category: str | None = None) -> dict[str, Any] | None:
        """Expense account by name, then by keyword, then the first expense account."""
        search = category or settings.default_account_search
        if search in self._accounts:
            return self._accounts[search]

        rows = self.ledger.query(
            "Account", f"AccountType = 'Expense' AND Name LIKE {_like(search)}"
        )
        account = rows[0] if rows else None

        if account is None:
            expense_accounts = self.ledger.query("Account", "AccountType = 'Expense'")
            account = next(
                (a for a in expense_accounts if _has_keyword(str(a.get("Name") or ""))), None
            )
            if account is None and expense_accounts:
                account = expense_accounts[0]

        if account is None:
            log_event(logger, "resolver.account.missing", search=search)
        self._accounts[search] = account
        return account

    def find_credit_card_account(self) -> dict[str, Any] | None:
        if self._credit_card_account is not None:
            return self._credit_card_account
        rows = self.ledger.query("Account", "AccountType = 'Credit Card'")
        self._credit_card_account = rows[0] if rows else None
        return self._credit_card_account
