from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from receipt_reconciler.core.config import settings
from receipt_reconciler.core.errors import InvalidSyncTransition
from receipt_reconciler.core.logging import get_logger, log_event
from receipt_reconciler.core.models import utcnow
from receipt_reconciler.modules.extraction.parsers.base import LineItem, ParsedReceipt
from receipt_reconciler.modules.receipts.models import Receipt, SyncStatus
from receipt_reconciler.modules.vendors.registry import VendorProfile

logger = get_logger(__name__)

_FORWARD = frozenset({SyncStatus.MATCHED, SyncStatus.SYNCED, SyncStatus.ERROR})
_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.PENDING: _FORWARD,
    SyncStatus.MATCHED: frozenset(),
    SyncStatus.SYNCED: frozenset(),
    SyncStatus.ERROR: frozenset(),
}
_REDRIVE_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    **_TRANSITIONS,
    SyncStatus.ERROR: _FORWARD,
}


def can_transition(current: SyncStatus, target: SyncStatus, *, redrive: bool = False) -> bool:
    table = _REDRIVE_TRANSITIONS if redrive else _TRANSITIONS
    return target in table[current]


def advance_sync_status(receipt: Receipt, target: SyncStatus, *, redrive: bool = False) -> None:
    current = SyncStatus(receipt.sync_status or SyncStatus.PENDING)
    if not can_transition(current, target, redrive=redrive):
        raise InvalidSyncTransition(
            f"Receipt {receipt.id} cannot move from {current.value} to {target.value}"
        )
    receipt.sync_status = target
    log_event(
        logger,
        "receipt.status.changed",
        receipt_id=str(receipt.id),
        from_status=current.value,
        to_status=target.value,
        redrive=redrive,
    )


def add_processing_note(receipt: Receipt, message: str) -> None:
    # Reassign so the JSON column registers the change.
    receipt.processing_notes = [
        *(receipt.processing_notes or []),
        {"timestamp": utcnow().isoformat(), "message": message},
    ]


def receipt_line_items(receipt: Receipt) -> list[LineItem]:
    return [LineItem.from_dict(item) for item in receipt.line_items or []]


def create_receipt(
    session: Session,
    *,
    source_document_id: str,
    parsed: ParsedReceipt | None,
    vendor: VendorProfile | None = None,
    source_type: str = "email",
    source_subject: str | None = None,
    received_at: datetime | None = None,
    attachment_name: str | None = None,
    attachments: list[dict] | None = None,
    notes: list[str] | None = None,
) -> Receipt:
    receipt = Receipt(
        id=uuid.uuid4(),
        source_type=source_type,
        source_document_id=source_document_id,
        source_subject=source_subject,
        received_at=received_at,
        attachment_name=attachment_name,
        vendor_id=vendor.vendor_id if vendor else None,
        vendor_name=vendor.name if vendor else None,
        vendor_display_name=vendor.display_name if vendor else None,
        category_name=(vendor.category if vendor else None) or settings.default_category,
        attachments=list(attachments or []),
        sync_status=SyncStatus.PENDING,
        processing_notes=[],
        line_items=[],
    )
    if parsed is not None:
        receipt.transaction_date = parsed.transaction_date
        receipt.total = parsed.total
        receipt.subtotal = parsed.subtotal
        receipt.tax = parsed.tax
        receipt.shipping = parsed.shipping
        receipt.discount = parsed.discount
        receipt.payment_method = parsed.payment_method
        receipt.card_last4 = parsed.card_last4
        receipt.order_number = parsed.order_number
        receipt.invoice_number = parsed.invoice_number
        receipt.po_number = parsed.po_number
        receipt.job_name = parsed.job_name
        receipt.line_items = [item.to_dict() for item in parsed.line_items]
        receipt.confidence = parsed.confidence.value

    for message in notes or []:
        add_processing_note(receipt, message)

    session.add(receipt)
    session.commit()
    session.refresh(receipt)
    log_event(
        logger,
        "receipt.created",
        receipt_id=str(receipt.id),
        source_document_id=source_document_id,
        vendor_id=receipt.vendor_id,
        total=receipt.total,
        confidence=receipt.confidence,
    )
    return receipt


def get_receipt_by_source(session: Session, *, source_document_id: str) -> Receipt | None:
    return session.scalar(
        select(Receipt).where(Receipt.source_document_id == source_document_id)
    )


def get_receipt(session: Session, *, receipt_id: uuid.UUID) -> Receipt:
    receipt = session.scalar(select(Receipt).where(Receipt.id == receipt_id))
    if not receipt:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Receipt not found")
    return receipt


def list_receipts(
    session: Session, *, sync_status: SyncStatus | None = None, limit: int = 100
) -> list[Receipt]:
    stmt = select(Receipt).order_by(Receipt.created_at.desc()).limit(limit)
    if sync_status is not None:
        stmt = stmt.where(Receipt.sync_status == sync_status)
    return list(session.scalars(stmt))
