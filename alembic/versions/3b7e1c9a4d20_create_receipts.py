"""create receipts

Revision ID: 3b7e1c9a4d20
Revises:
Create Date: 2026-10-16

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7e1c9a4d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "receipts_receipt",
        sa.Column("source_type", sa.String(length=20), nullable=False),
        sa.Column("source_document_id", sa.String(length=200), nullable=False),
        sa.Column("source_subject", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attachment_name", sa.String(length=300), nullable=True),
        sa.Column("vendor_id", sa.String(length=50), nullable=True),
        sa.Column("vendor_name", sa.String(length=200), nullable=True),
        sa.Column("vendor_display_name", sa.String(length=200), nullable=True),
        sa.Column("ledger_vendor_id", sa.String(length=50), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=True),
        sa.Column("total", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("subtotal", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("tax", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("shipping", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("discount", sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column("payment_method", sa.String(length=30), nullable=True),
        sa.Column("card_last4", sa.String(length=4), nullable=True),
        sa.Column("order_number", sa.String(length=100), nullable=True),
        sa.Column("invoice_number", sa.String(length=100), nullable=True),
        sa.Column("po_number", sa.String(length=100), nullable=True),
        sa.Column("job_name", sa.String(length=200), nullable=True),
        sa.Column("ledger_customer_id", sa.String(length=50), nullable=True),
        sa.Column("line_items", sa.JSON(), nullable=False),
        sa.Column("category_name", sa.String(length=100), nullable=False),
        sa.Column("ledger_account_id", sa.String(length=50), nullable=True),
        sa.Column("is_billable", sa.Boolean(), nullable=False),
        sa.Column("is_taxable", sa.Boolean(), nullable=False),
        sa.Column("attachments", sa.JSON(), nullable=False),
        sa.Column("confidence", sa.String(length=10), nullable=False),
        sa.Column(
            "sync_status",
            sa.Enum(
                "PENDING",
                "MATCHED",
                "SYNCED",
                "ERROR",
                name="syncstatus",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("ledger_transaction_id", sa.String(length=50), nullable=True),
        sa.Column("ledger_expense_id", sa.String(length=50), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("processing_notes", sa.JSON(), nullable=False),
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_receipts_receipt_source_document_id"),
        "receipts_receipt",
        ["source_document_id"],
        unique=True,
    )
    op.create_index(op.f("ix_receipts_receipt_vendor_id"), "receipts_receipt", ["vendor_id"])
    op.create_index(op.f("ix_receipts_receipt_sync_status"), "receipts_receipt", ["sync_status"])


def downgrade() -> None:
    op.drop_index(op.f("ix_receipts_receipt_sync_status"), table_name="receipts_receipt")
    op.drop_index(op.f("ix_receipts_receipt_vendor_id"), table_name="receipts_receipt")
    op.drop_index(op.f("ix_receipts_receipt_source_document_id"), table_name="receipts_receipt")
    op.drop_table("receipts_receipt")
