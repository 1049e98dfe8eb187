from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from receipt_reconciler.core.models import Base, Timestamped, UUIDPrimaryKey, money_column


class SyncStatus(str, enum.Enum):
    PENDING = "pending"
    MATCHED = "matched"
    SYNCED = "synced"
    ERROR = "error"


class Receipt(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "receipts_receipt"

    source_type: Mapped[str] = mapped_column(String(20), default="email")
    source_document_id: Mapped[str] = mapped_column(String(200), unique=True, index=True)
    source_subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    attachment_name: Mapped[str | None] = mapped_column(String(300), nullable=True)

    vendor_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    vendor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    vendor_display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    ledger_vendor_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total: Mapped[Decimal | None] = money_column()
    subtotal: Mapped[Decimal | None] = money_column()
    tax: Mapped[Decimal | None] = money_column()
    shipping: Mapped[Decimal | None] = money_column()
    discount: Mapped[Decimal | None] = money_column()

    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    card_last4: Mapped[str | None] = mapped_column(String(4), nullable=True)

    order_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    po_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    job_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    ledger_customer_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    line_items: Mapped[list] = mapped_column(JSON, default=list)

    category_name: Mapped[str] = mapped_column(String(100), default="Materials & Supplies")
    ledger_account_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_billable: Mapped[bool] = mapped_column(Boolean, default=True)
    is_taxable: Mapped[bool] = mapped_column(Boolean, default=True)

    attachments: Mapped[list] = mapped_column(JSON, default=list)
    confidence: Mapped[str] = mapped_column(String(10), default="low")

    sync_status: Mapped[SyncStatus] = mapped_column(
        Enum(SyncStatus, native_enum=False), default=SyncStatus.PENDING, index=True
    )
    ledger_transaction_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ledger_expense_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    processing_notes: Mapped[list] = mapped_column(JSON, default=list)

    @property
    def reference_number(self) -> str | None:
        return self.order_number or self.invoice_number or self.po_number
