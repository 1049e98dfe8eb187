from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from receipt_reconciler.core.errors import InvalidSyncTransition
from receipt_reconciler.modules.extraction.parsers.base import LineItem, ParsedReceipt
from receipt_reconciler.modules.receipts.models import Receipt, SyncStatus
from receipt_reconciler.modules.receipts.service import (
    add_processing_note,
    advance_sync_status,
    can_transition,
    create_receipt,
    get_receipt_by_source,
    list_receipts,
    receipt_line_items,
)


@pytest.mark.parametrize(
    ("current", "target", "redrive", "allowed"),
    [
        (SyncStatus.PENDING, SyncStatus.MATCHED, False, True),
        (SyncStatus.PENDING, SyncStatus.SYNCED, False, True),
        (SyncStatus.PENDING, SyncStatus.ERROR, False, True),
        (SyncStatus.PENDING, SyncStatus.PENDING, False, False),
        (SyncStatus.MATCHED, SyncStatus.SYNCED, False, False),
        (SyncStatus.MATCHED, SyncStatus.ERROR, True, False),
        (SyncStatus.SYNCED, SyncStatus.MATCHED, True, False),
        (SyncStatus.ERROR, SyncStatus.SYNCED, False, False),
        (SyncStatus.ERROR, SyncStatus.SYNCED, True, True),
        (SyncStatus.ERROR, SyncStatus.ERROR, True, True),
        (SyncStatus.ERROR, SyncStatus.PENDING, True, False),
    ],
)
def test_sync_status_transitions(current, target, redrive, allowed):
    assert can_transition(current, target, redrive=redrive) is allowed


def test_create_receipt_copies_parsed_fields(db, make_receipt):
    receipt = make_receipt(
        "m1",
        subtotal=Decimal("110.00"),
        line_items=[LineItem(description="Drill", total_price=Decimal("99.00"))],
        job_name="Smith Remodel",
    )

    stored = get_receipt_by_source(db, source_document_id="m1")
    assert stored.id == receipt.id
    assert stored.sync_status == SyncStatus.PENDING
    assert stored.vendor_id == "home-depot"
    assert stored.vendor_display_name == "The Home Depot"
    assert stored.category_name == "Materials & Supplies"
    assert stored.total == Decimal("119.76")
    assert stored.transaction_date == date(2025, 11, 23)
    assert stored.reference_number == "W123456789"
    assert stored.confidence == "high"
    assert stored.is_billable is True
    assert stored.job_name == "Smith Remodel"
    assert receipt_line_items(stored) == [
        LineItem(description="Drill", total_price=Decimal("99.00"))
    ]


def test_create_receipt_without_parse_is_pending_and_low(db):
    receipt = create_receipt(
        db, source_document_id="m2", parsed=None, notes=["Could not extract receipt data"]
    )

    assert receipt.sync_status == SyncStatus.PENDING
    assert receipt.confidence == "low"
    assert receipt.total is None
    assert receipt.vendor_id is None
    assert [n["message"] for n in receipt.processing_notes] == ["Could not extract receipt data"]


def test_vendor_category_is_used(make_receipt):
    receipt = make_receipt("m3", vendor_id="ced")
    assert receipt.category_name == "Electrical Supplies"


def test_advance_sync_status_enforces_table(make_receipt):
    receipt = make_receipt()

    advance_sync_status(receipt, SyncStatus.MATCHED)
    assert receipt.sync_status == SyncStatus.MATCHED

    with pytest.raises(InvalidSyncTransition):
        advance_sync_status(receipt, SyncStatus.SYNCED)
    with pytest.raises(InvalidSyncTransition):
        advance_sync_status(receipt, SyncStatus.ERROR, redrive=True)


def test_processing_notes_append_and_persist(db, make_receipt):
    from receipt_reconciler.core.db import SessionLocal

    receipt = make_receipt()
    add_processing_note(receipt, "first")
    add_processing_note(receipt, "second")
    db.add(receipt)
    db.commit()

    with SessionLocal() as other:
        reloaded = other.get(Receipt, receipt.id)
        assert [n["message"] for n in reloaded.processing_notes] == ["first", "second"]
        assert all(n["timestamp"] for n in reloaded.processing_notes)


def test_list_receipts_filters_by_status(db, make_receipt):
    pending = make_receipt("m1")
    errored = make_receipt("m2")
    advance_sync_status(errored, SyncStatus.ERROR)
    db.add(errored)
    db.commit()

    assert {r.id for r in list_receipts(db)} == {pending.id, errored.id}
    assert [r.id for r in list_receipts(db, sync_status=SyncStatus.ERROR)] == [errored.id]
    assert len(list_receipts(db, limit=1)) == 1


def test_parsed_receipt_reference_prefers_order_number():
    parsed = ParsedReceipt(order_number=None, invoice_number="INV-1", po_number="PO-9")
    assert parsed.reference_number == "INV-1"
