from __future__ import annotations

import time
from typing import Any

from sqlalchemy.orm import Session

from receipt_reconciler.core.errors import InvalidSyncTransition, LedgerError, ReconcilerError
from receipt_reconciler.core.logging import get_logger, log_event, log_exception, monotonic_ms
from receipt_reconciler.core.models import utcnow
from receipt_reconciler.core.storage import ObjectStorage
from receipt_reconciler.modules.extraction.fields import format_date
from receipt_reconciler.modules.ledger.client import LedgerProvider
from receipt_reconciler.modules.ledger.matcher import MatchResult, TransactionMatcher
from receipt_reconciler.modules.ledger.resolver import EntityResolver
from receipt_reconciler.modules.receipts.models import Receipt, SyncStatus
from receipt_reconciler.modules.receipts.service import (
    add_processing_note,
    advance_sync_status,
    can_transition,
    receipt_line_items,
)
from receipt_reconciler.modules.vendors.registry import get_vendor

logger = get_logger(__name__)

UNKNOWN_VENDOR = "Unknown Vendor"
SIGNATURE = "Receipt Reconciler"


def _ref(entity: dict[str, Any] | None) -> dict[str, str] | None:
    if not entity or entity.get("Id") is None:
        return None
    return {"value": str(entity["Id"])}


def build_expense_lines(receipt: Receipt) -> list[dict[str, Any]]:
    """One account-based line per item, or a single summary line when there are none."""
    billable = "Billable" if receipt.is_billable and receipt.ledger_customer_id else "NotBillable"
    detail: dict[str, Any] = {"BillableStatus": billable}
    if receipt.ledger_account_id:
        detail["AccountRef"] = {"value": receipt.ledger_account_id}
    if receipt.ledger_customer_id:
        detail["CustomerRef"] = {"value": receipt.ledger_customer_id}

    lines: list[dict[str, Any]] = []
    for item in receipt_line_items(receipt):
        amount = item.amount
        if amount is None:
            continue
        lines.append(
            {
                "DetailType": "AccountBasedExpenseLineDetail",
                "Amount": float(amount),
                "Description": item.description,
                "AccountBasedExpenseLineDetail": dict(detail),
            }
        )
    if lines:
        return lines

    display = receipt.vendor_display_name or UNKNOWN_VENDOR
    return [
        {
            "DetailType": "AccountBasedExpenseLineDetail",
            "Amount": float(receipt.total),
            "Description": f"{display} - {format_date(receipt.transaction_date)}",
            "AccountBasedExpenseLineDetail": dict(detail),
        }
    ]


def build_expense_payload(receipt: Receipt, *, payment_account_id: str) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "PaymentType": "CreditCard",
        "AccountRef": {"value": payment_account_id},
        "TxnDate": format_date(receipt.transaction_date),
        "TotalAmt": float(receipt.total),
        "Line": build_expense_lines(receipt),
        "PrivateNote": f"Imported by {SIGNATURE} - {receipt.id}",
    }
    if receipt.ledger_vendor_id:
        payload["EntityRef"] = {"value": receipt.ledger_vendor_id, "type": "Vendor"}
    return payload


def build_match_update(receipt: Receipt, transaction: dict[str, Any]) -> dict[str, Any]:
    """Sparse update tagging a matched purchase with the job, vendor and our note."""
    lines: list[dict[str, Any]] = []
    for line in transaction.get("Line") or []:
        line = dict(line)
        detail = line.get("AccountBasedExpenseLineDetail")
        if detail is not None and receipt.is_billable and receipt.ledger_customer_id:
            line["AccountBasedExpenseLineDetail"] = {
                **detail,
                "CustomerRef": {"value": receipt.ledger_customer_id},
                "BillableStatus": "Billable",
            }
        lines.append(line)

    note = f"{transaction.get('PrivateNote') or ''}\nMatched by {SIGNATURE} - {receipt.id}"
    payload: dict[str, Any] = {"Line": lines, "PrivateNote": note.strip()}
    if transaction.get("SyncToken") is not None:
        payload["SyncToken"] = transaction["SyncToken"]
    if receipt.ledger_vendor_id:
        payload["EntityRef"] = {"value": receipt.ledger_vendor_id, "type": "Vendor"}
    return payload


class SyncOrchestrator:
    def __init__(
        self,
        ledger: LedgerProvider,
        resolver: EntityResolver,
        matcher: TransactionMatcher,
        storage: ObjectStorage | None = None,
    ) -> None:
        self.ledger = ledger
        self.resolver = resolver
        self.matcher = matcher
        self.storage = storage

    def sync_receipt(self, session: Session, receipt: Receipt, *, redrive: bool = False) -> Receipt:
        current = SyncStatus(receipt.sync_status or SyncStatus.PENDING)
        if not can_transition(current, SyncStatus.ERROR, redrive=redrive):
            raise InvalidSyncTransition(
                f"Receipt {receipt.id} is {current.value} and cannot be synced"
            )

        start = time.monotonic()
        log_event(logger, "sync.receipt.start", receipt_id=str(receipt.id), redrive=redrive)
        try:
            if receipt.total is None or receipt.transaction_date is None:
                raise ReconcilerError("Receipt is missing a total or transaction date")

            self._resolve_entities(receipt)
            match = self.matcher.find(receipt)
            if match is not None:
                entity_id = self._apply_match(receipt, match, redrive=redrive)
            else:
                entity_id = self._create_expense(receipt, redrive=redrive)
            receipt.synced_at = utcnow()
            receipt.sync_error = None
            session.add(receipt)
            session.commit()
        except Exception as e:
            session.rollback()
            advance_sync_status(receipt, SyncStatus.ERROR, redrive=redrive)
            receipt.sync_error = str(e)
            add_processing_note(receipt, f"Sync failed: {e}")
            session.add(receipt)
            session.commit()
            log_exception(
                logger,
                "sync.receipt.error",
                receipt_id=str(receipt.id),
                error_type=type(e).__name__,
                duration_ms=monotonic_ms(start),
            )
            raise

        log_event(
            logger,
            f"sync.receipt.{receipt.sync_status.value}",
            receipt_id=str(receipt.id),
            ledger_entity_id=entity_id,
            duration_ms=monotonic_ms(start),
        )
        self._upload_attachment(session, receipt, entity_id)
        return receipt

    def _resolve_entities(self, receipt: Receipt) -> None:
        profile = get_vendor(receipt.vendor_id)
        vendor_name = (
            (profile.ledger_vendor_name if profile else None)
            or receipt.vendor_display_name
            or UNKNOWN_VENDOR
        )
        vendor = self.resolver.find_or_create_vendor(vendor_name)
        receipt.ledger_vendor_id = str(vendor["Id"]) if vendor.get("Id") is not None else None

        if receipt.job_name:
            customer = self.resolver.find_or_create_customer(receipt.job_name)
            ref = _ref(customer)
            receipt.ledger_customer_id = ref["value"] if ref else None

        account = _ref(self.resolver.find_account(receipt.category_name))
        receipt.ledger_account_id = account["value"] if account else None

    def _apply_match(self, receipt: Receipt, match: MatchResult, *, redrive: bool) -> str:
        transaction_id = match.candidate.transaction_id
        self.ledger.update(
            "Purchase", transaction_id, build_match_update(receipt, match.candidate.raw)
        )
        advance_sync_status(receipt, SyncStatus.MATCHED, redrive=redrive)
        receipt.ledger_transaction_id = transaction_id
        add_processing_note(receipt, f"Matched to existing transaction #{transaction_id}")
        return transaction_id

    def _create_expense(self, receipt: Receipt, *, redrive: bool) -> str:
        card_account = _ref(self.resolver.find_credit_card_account())
        if card_account is None:
            raise LedgerError("No credit card account found in the ledger")
        if receipt.ledger_account_id is None:
            raise LedgerError(f"No expense account found for {receipt.category_name!r}")

        expense = self.ledger.create(
            "Purchase", build_expense_payload(receipt, payment_account_id=card_account["value"])
        )
        expense_id = str(expense.get("Id"))
        advance_sync_status(receipt, SyncStatus.SYNCED, redrive=redrive)
        receipt.ledger_expense_id = expense_id
        add_processing_note(receipt, f"Created new expense #{expense_id}")
        return expense_id

    def _upload_attachment(self, session: Session, receipt: Receipt, entity_id: str) -> None:
        if self.storage is None:
            return
        attachment = next((a for a in receipt.attachments or [] if a.get("storage_key")), None)
        if attachment is None:
            return

        filename = attachment.get("filename") or "receipt"
        try:
            body = self.storage.get(key=attachment["storage_key"])
            self.ledger.upload_attachment(
                entity_type="Purchase",
                entity_id=entity_id,
                filename=filename,
                content_type=attachment.get("mime_type") or "application/octet-stream",
                body=body,
            )
        except Exception as e:  # noqa: BLE001
            log_exception(
                logger,
                "sync.attachment.error",
                receipt_id=str(receipt.id),
                ledger_entity_id=entity_id,
                filename=filename,
            )
            add_processing_note(receipt, f"Attachment upload failed: {e}")
        else:
            log_event(
                logger,
                "sync.attachment.uploaded",
                receipt_id=str(receipt.id),
                ledger_entity_id=entity_id,
                filename=filename,
            )
            add_processing_note(receipt, f"Attached {filename} to transaction #{entity_id}")
        session.add(receipt)
        session.commit()


def build_sync_orchestrator(
    ledger: LedgerProvider, *, storage: ObjectStorage | None = None
) -> SyncOrchestrator:
    """Fresh orchestrator with its own entity caches."""
    return SyncOrchestrator(ledger, EntityResolver(ledger), TransactionMatcher(ledger), storage)
