from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

# Set env before any receipt_reconciler imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.receipt_reconciler_test.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_storage_test")
os.environ.setdefault("API_TOKEN", "")
os.environ.setdefault("PIPELINE_LOCK_BACKEND", "thread")


@pytest.fixture(autouse=True)
def _reset_db_and_storage() -> None:
    import receipt_reconciler.core.storage as storage_mod
    import receipt_reconciler.models  # noqa: F401
    from receipt_reconciler.core.db import engine
    from receipt_reconciler.core.models import Base

    storage_mod._storage = None

    storage_path = Path(os.environ["LOCAL_STORAGE_PATH"])
    if storage_path.exists():
        shutil.rmtree(storage_path)

    # Reset DB schema
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


class FakeLedger:
    """In-memory ledger. `rows` maps entity type to rows or to a callable of the WHERE clause."""

    def __init__(self) -> None:
        self.rows: dict[str, object] = {}
        self.errors: dict[str, Exception] = {}
        self.queries: list[tuple[str, str | None]] = []
        self.created: list[tuple[str, dict]] = []
        self.updated: list[tuple[str, str, dict]] = []
        self.uploads: list[dict] = []
        self._next_id = 100

    def _raise_if(self, op: str) -> None:
        if op in self.errors:
            raise self.errors[op]

    def query(self, entity_type, where=None, *, max_results=1000):
        self.queries.append((entity_type, where))
        self._raise_if("query")
        rows = self.rows.get(entity_type, [])
        if callable(rows):
            rows = rows(where)
        return [dict(r) for r in rows]

    def create(self, entity_type, payload):
        self._raise_if("create")
        self._next_id += 1
        entity = {**payload, "Id": str(self._next_id)}
        self.created.append((entity_type, payload))
        return entity

    def update(self, entity_type, entity_id, payload):
        self._raise_if("update")
        self.updated.append((entity_type, entity_id, payload))
        return {**payload, "Id": entity_id}

    def upload_attachment(self, *, entity_type, entity_id, filename, content_type, body):
        self._raise_if("upload")
        self.uploads.append(
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "filename": filename,
                "content_type": content_type,
                "body": body,
            }
        )
        return {"Id": "900"}


class FakeSource:
    def __init__(self, documents=()) -> None:
        self.documents = {d.document_id: d for d in documents}
        self.marked: list[str] = []
        self.fetch_errors: dict[str, Exception] = {}
        self.list_error: Exception | None = None
        self.fetched: list[str] = []

    def list_unprocessed(self):
        if self.list_error is not None:
            raise self.list_error
        return [d.ref for d in self.documents.values() if d.document_id not in self.marked]

    def fetch(self, ref):
        self.fetched.append(ref.document_id)
        if ref.document_id in self.fetch_errors:
            raise self.fetch_errors[ref.document_id]
        return self.documents[ref.document_id]

    def mark_processed(self, ref):
        self.marked.append(ref.document_id)


class FakeOcrEngine:
    def __init__(self, text: str = "", confidence: float = 90.0) -> None:
        self.text = text
        self.confidence = confidence
        self.calls = 0
        self.terminated = False

    def recognize(self, body: bytes):
        from receipt_reconciler.modules.extraction.decoders import OcrResult

        self.calls += 1
        return OcrResult(text=self.text, confidence=self.confidence)

    def terminate(self) -> None:
        self.terminated = True


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def fake_ocr() -> FakeOcrEngine:
    return FakeOcrEngine()


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def make_document():
    from receipt_reconciler.modules.sources.base import (
        DocumentRef,
        SourceAttachment,
        SourceDocument,
    )

    def _make(
        document_id: str,
        *,
        sender: str | None = None,
        subject: str | None = None,
        text: str | None = None,
        html: str | None = None,
        attachments: tuple[tuple[str, str, bytes], ...] = (),
    ) -> SourceDocument:
        return SourceDocument(
            ref=DocumentRef(document_id=document_id),
            sender=sender,
            subject=subject,
            text=text,
            html=html,
            attachments=tuple(
                SourceAttachment(filename=f, mime_type=m, body=b) for f, m, b in attachments
            ),
        )

    return _make


@pytest.fixture
def db():
    from receipt_reconciler.core.db import SessionLocal

    with SessionLocal() as session:
        yield session


@pytest.fixture
def make_receipt(db):
    from datetime import date
    from decimal import Decimal

    from receipt_reconciler.modules.extraction.parsers.base import Confidence, ParsedReceipt
    from receipt_reconciler.modules.receipts.service import create_receipt
    from receipt_reconciler.modules.vendors.registry import get_vendor

    def _make(document_id: str = "m1", *, vendor_id: str | None = "home-depot", **fields):
        values = {
            "total": Decimal("119.76"),
            "transaction_date": date(2025, 11, 23),
            "order_number": "W123456789",
            "card_last4": "1234",
            "payment_method": "VISA",
            "confidence": Confidence.HIGH,
            "parser": "home-depot",
        }
        values.update(fields)
        return create_receipt(
            db,
            source_document_id=document_id,
            parsed=ParsedReceipt(**values),
            vendor=get_vendor(vendor_id),
        )

    return _make
