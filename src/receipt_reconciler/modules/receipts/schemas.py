from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from receipt_reconciler.modules.receipts.models import SyncStatus


class ProcessingNote(BaseModel):
    timestamp: str
    message: str


class ReceiptOut(BaseModel):
    id: uuid.UUID
    source_type: str
    source_document_id: str
    source_subject: str | None
    received_at: datetime | None
    attachment_name: str | None
    vendor_id: str | None
    vendor_display_name: str | None
    transaction_date: date | None
    total: Decimal | None
    subtotal: Decimal | None
    tax: Decimal | None
    shipping: Decimal | None
    payment_method: str | None
    card_last4: str | None
    order_number: str | None
    invoice_number: str | None
    po_number: str | None
    job_name: str | None
    category_name: str
    is_billable: bool
    line_items: list[dict]
    attachments: list[dict]
    confidence: str
    sync_status: SyncStatus
    ledger_transaction_id: str | None
    ledger_expense_id: str | None
    synced_at: datetime | None
    sync_error: str | None
    processing_notes: list[ProcessingNote]
    created_at: datetime
    updated_at: datetime
