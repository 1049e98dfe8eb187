from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from receipt_reconciler.core.errors import (
    LedgerAuthError,
    LedgerError,
    SourceAuthError,
    SourceError,
)
from receipt_reconciler.modules.receipts.models import Receipt, SyncStatus

HOME_DEPOT_TEXT = (
    "Order #: W123456789\nOrder Date: 11/23/2025\nOrder Total: $119.76\nVISA **** 1234"
)
HOME_DEPOT_SENDER = "The Home Depot <order@homedepot.com>"


def _accounts(where):
    if "Credit Card" in where:
        return [{"Id": "40", "Name": "Company Card"}]
    return [{"Id": "3", "Name": "Job Supplies"}]


@pytest.fixture
def ledger(fake_ledger):
    fake_ledger.rows["Account"] = _accounts
    fake_ledger.rows["Vendor"] = [{"Id": "7", "DisplayName": "The Home Depot"}]
    return fake_ledger


@pytest.fixture
def make_pipeline(ledger, fake_ocr, tmp_path):
    from receipt_reconciler.core.storage import LocalObjectStorage
    from receipt_reconciler.modules.pipeline.service import PipelineOrchestrator

    storage = LocalObjectStorage(tmp_path / "storage")

    def _make(source):
        return PipelineOrchestrator(source, ledger, ocr_engine=fake_ocr, storage=storage)

    return _make


def _receipts() -> list[Receipt]:
    from receipt_reconciler.core.db import SessionLocal

    with SessionLocal() as session:
        return list(session.scalars(select(Receipt).order_by(Receipt.created_at)))


def _messages(receipt: Receipt) -> list[str]:
    return [n["message"] for n in receipt.processing_notes]


def test_cycle_creates_expense_for_new_receipt(make_pipeline, make_source, make_document, ledger):
    source = make_source([make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)])

    result = make_pipeline(source).run_cycle()

    assert (result.documents, result.receipts, result.synced, result.errors) == (1, 1, 1, 0)
    assert result.finished_at is not None
    assert source.marked == ["m1"]
    [receipt] = _receipts()
    assert receipt.source_document_id == "m1"
    assert receipt.vendor_id == "home-depot"
    assert receipt.total == Decimal("119.76")
    assert receipt.sync_status == SyncStatus.SYNCED
    assert "Parsed from text body (home-depot, high confidence)" in _messages(receipt)
    assert [c[0] for c in ledger.created] == ["Purchase"]


def test_cycle_matches_existing_transaction(make_pipeline, make_source, make_document, ledger):
    ledger.rows["Purchase"] = [
        {"Id": "555", "TxnDate": "2025-11-23", "TotalAmt": 119.76, "SyncToken": "0", "Line": []}
    ]
    source = make_source([make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)])

    result = make_pipeline(source).run_cycle()

    assert result.matched == 1
    assert _receipts()[0].ledger_transaction_id == "555"
    assert ledger.updated[0][1] == "555"


def test_already_processed_document_is_skipped(
    make_pipeline, make_source, make_document, make_receipt, ledger
):
    make_receipt("m1")
    source = make_source([make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)])

    result = make_pipeline(source).run_cycle()

    assert (result.documents, result.skipped, result.receipts) == (1, 1, 0)
    assert source.marked == ["m1"]
    assert len(_receipts()) == 1
    assert ledger.queries == []


def test_second_cycle_does_not_reprocess(make_pipeline, make_source, make_document):
    source = make_source([make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)])
    pipeline = make_pipeline(source)

    pipeline.run_cycle()
    second = pipeline.run_cycle()

    assert second.documents == 0
    assert len(_receipts()) == 1


def test_entity_lookups_are_cached_per_cycle_only(
    make_pipeline, make_source, make_document, ledger
):
    source = make_source(
        [
            make_document(doc_id, sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)
            for doc_id in ("m1", "m2")
        ]
    )
    pipeline = make_pipeline(source)

    def lookups(entity_type: str) -> int:
        return sum(1 for queried, _ in ledger.queries if queried == entity_type)

    first = pipeline.run_cycle()
    first_vendor, first_account = lookups("Vendor"), lookups("Account")
    source.documents["m3"] = make_document("m3", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)
    second = pipeline.run_cycle()

    assert (first.synced, second.synced) == (2, 1)
    assert first_vendor >= 1
    assert first_account >= 1
    assert lookups("Vendor") == 2 * first_vendor
    assert lookups("Account") == 2 * first_account


def test_undecodable_document_is_left_for_retry(
    make_pipeline, make_source, make_document, monkeypatch
):
    from receipt_reconciler.modules.extraction import decoders

    def broken_reader(stream):
        raise ValueError("EOF marker not found")

    monkeypatch.setattr(decoders, "PdfReader", broken_reader)
    source = make_source(
        [make_document("m1", attachments=(("r.pdf", "application/pdf", b"garbage"),))]
    )

    result = make_pipeline(source).run_cycle()

    assert (result.decode_errors, result.receipts, result.errors) == (1, 0, 0)
    assert source.marked == []
    assert _receipts() == []


def test_body_is_used_when_attachment_cannot_be_decoded(
    make_pipeline, make_source, make_document, monkeypatch
):
    from receipt_reconciler.modules.extraction import decoders

    def broken_reader(stream):
        raise ValueError("EOF marker not found")

    monkeypatch.setattr(decoders, "PdfReader", broken_reader)
    document = make_document(
        "m1",
        sender=HOME_DEPOT_SENDER,
        text=HOME_DEPOT_TEXT,
        attachments=(("r.pdf", "application/pdf", b"garbage"),),
    )

    result = make_pipeline(make_source([document])).run_cycle()

    assert result.synced == 1
    [receipt] = _receipts()
    assert receipt.attachment_name is None
    assert any(m.startswith("Could not decode pdf r.pdf") for m in _messages(receipt))
    assert receipt.attachments[0]["filename"] == "r.pdf"
    assert receipt.attachments[0]["storage_key"].endswith("/r.pdf")


def test_image_attachment_goes_through_ocr(
    make_pipeline, make_source, make_document, fake_ocr, ledger
):
    fake_ocr.text = HOME_DEPOT_TEXT
    document = make_document(
        "m1", sender=HOME_DEPOT_SENDER, attachments=(("photo.jpg", "image/jpeg", b"\xff\xd8"),)
    )

    result = make_pipeline(make_source([document])).run_cycle()

    assert fake_ocr.calls == 1
    assert result.synced == 1
    [receipt] = _receipts()
    assert receipt.attachment_name == "photo.jpg"
    assert ledger.uploads[0]["filename"] == "photo.jpg"
    assert ledger.uploads[0]["body"] == b"\xff\xd8"


def test_unparseable_document_is_kept_pending(make_pipeline, make_source, make_document, ledger):
    source = make_source([make_document("m1", text="Thanks for shopping with us!")])

    result = make_pipeline(source).run_cycle()

    assert (result.receipts, result.parse_misses, result.synced) == (1, 1, 0)
    assert source.marked == ["m1"]
    [receipt] = _receipts()
    assert receipt.sync_status == SyncStatus.PENDING
    assert receipt.total is None
    assert _messages(receipt)[-1] == "Missing total or transaction date; left pending for review"
    assert ledger.queries == []


def test_partial_parse_is_kept_pending(make_pipeline, make_source, make_document):
    source = make_source(
        [make_document("m1", sender=HOME_DEPOT_SENDER, text="Order Total: $5.00")]
    )

    result = make_pipeline(source).run_cycle()

    assert result.parse_misses == 1
    [receipt] = _receipts()
    assert receipt.total == Decimal("5.00")
    assert receipt.confidence == "low"
    assert receipt.sync_status == SyncStatus.PENDING


def test_sync_failure_is_counted_and_batch_continues(
    make_pipeline, make_source, make_document, ledger
):
    ledger.errors["create"] = LedgerError("Service unavailable", status_code=503)
    source = make_source(
        [
            make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT),
            make_document("m2", text="Thanks for shopping with us!"),
        ]
    )

    result = make_pipeline(source).run_cycle()

    assert (result.documents, result.errors, result.parse_misses) == (2, 1, 1)
    assert source.marked == ["m1", "m2"]
    statuses = {r.source_document_id: r.sync_status for r in _receipts()}
    assert statuses == {"m1": SyncStatus.ERROR, "m2": SyncStatus.PENDING}


def test_fetch_failure_leaves_document_unmarked(make_pipeline, make_source, make_document):
    source = make_source(
        [
            make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT),
            make_document("m2", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT),
        ]
    )
    source.fetch_errors["m1"] = SourceError("Gmail GET failed (500)")

    result = make_pipeline(source).run_cycle()

    assert (result.documents, result.errors, result.synced) == (2, 1, 1)
    assert source.marked == ["m2"]


def test_source_auth_failure_aborts_cycle(make_pipeline, make_source):
    source = make_source()
    source.list_error = SourceAuthError("Gmail rejected credentials (401)")

    result = make_pipeline(source).run_cycle()

    assert result.aborted is True
    assert result.documents == 0


def test_ledger_auth_failure_aborts_remaining_documents(
    make_pipeline, make_source, make_document, ledger
):
    ledger.errors["query"] = LedgerAuthError("Ledger rejected credentials (401)")
    source = make_source(
        [
            make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT),
            make_document("m2", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT),
        ]
    )

    result = make_pipeline(source).run_cycle()

    assert result.aborted is True
    assert (result.documents, result.errors) == (1, 1)
    assert source.fetched == ["m1"]
    assert source.marked == ["m1"]
    assert _receipts()[0].sync_status == SyncStatus.ERROR


def test_overlapping_cycle_is_skipped(make_pipeline, make_source, make_document):
    source = make_source([make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)])
    pipeline = make_pipeline(source)

    assert pipeline._run_lock.acquire(blocking=False)
    try:
        assert pipeline.running is True
        assert pipeline.run_cycle() is None
    finally:
        pipeline._run_lock.release()

    assert source.fetched == []
    assert pipeline.status()["runs"] == 0


def test_status_accumulates_totals(make_pipeline, make_source, make_document):
    source = make_source([make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)])
    pipeline = make_pipeline(source)

    result = pipeline.run_cycle()
    pipeline.run_cycle()
    status = pipeline.status()

    assert status["running"] is False
    assert status["runs"] == 2
    assert status["totals"]["documents"] == 1
    assert status["totals"]["synced"] == 1
    assert status["last_result"]["documents"] == 0
    assert result.to_dict()["run_id"] == result.run_id


def test_shutdown_stops_future_cycles(make_pipeline, make_source, make_document, fake_ocr):
    source = make_source([make_document("m1", sender=HOME_DEPOT_SENDER, text=HOME_DEPOT_TEXT)])
    pipeline = make_pipeline(source)

    pipeline.shutdown()

    assert fake_ocr.terminated is True
    assert pipeline.run_cycle() is None
    assert pipeline.status()["shutdown_requested"] is True
    assert source.fetched == []
