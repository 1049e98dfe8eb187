from __future__ import annotations

import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from functools import partial
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from receipt_reconciler.core.db import SessionLocal
from receipt_reconciler.core.errors import AuthenticationError, DecodeError
from receipt_reconciler.core.logging import (
    bind_context,
    get_logger,
    log_context,
    log_event,
    log_exception,
    monotonic_ms,
    unbind_context,
)
from receipt_reconciler.core.models import utcnow
from receipt_reconciler.core.storage import ObjectStorage, attachment_key, get_storage
from receipt_reconciler.modules.extraction.decoders import (
    OcrEngine,
    decode_html,
    decode_image,
    decode_pdf,
    decode_text,
)
from receipt_reconciler.modules.extraction.parsers.base import ParsedReceipt
from receipt_reconciler.modules.extraction.service import parse
from receipt_reconciler.modules.ledger.client import LedgerProvider, QuickBooksLedger
from receipt_reconciler.modules.pipeline.lock import CycleLock, build_cycle_lock
from receipt_reconciler.modules.receipts.models import Receipt, SyncStatus
from receipt_reconciler.modules.receipts.service import (
    add_processing_note,
    create_receipt,
    get_receipt_by_source,
)
from receipt_reconciler.modules.sources.base import DocumentRef, SourceDocument, SourceProvider
from receipt_reconciler.modules.sources.gmail import GmailSource
from receipt_reconciler.modules.sync.service import SyncOrchestrator, build_sync_orchestrator
from receipt_reconciler.modules.vendors.registry import VendorProfile, detect_vendor

logger = get_logger(__name__)

_COUNTERS = (
    "documents",
    "receipts",
    "matched",
    "synced",
    "errors",
    "parse_misses",
    "skipped",
    "decode_errors",
)


@dataclass
class PipelineRunResult:
    run_id: str
    started_at: datetime
    finished_at: datetime | None = None
    documents: int = 0
    receipts: int = 0
    matched: int = 0
    synced: int = 0
    errors: int = 0
    parse_misses: int = 0
    skipped: int = 0
    decode_errors: int = 0
    aborted: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


@dataclass
class Extraction:
    parsed: ParsedReceipt | None = None
    attachment_name: str | None = None
    notes: list[str] = field(default_factory=list)


class PipelineOrchestrator:
    """Runs reconciliation cycles: source documents in, ledger transactions out.

    At most one cycle runs at a time: the thread lock covers this process and the
    optional `cycle_lock` covers every process sharing it. A trigger that arrives while a
    cycle is in flight returns None without waiting.
    """

    def __init__(
        self,
        source: SourceProvider,
        ledger: LedgerProvider,
        *,
        ocr_engine: OcrEngine | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
        storage: ObjectStorage | None = None,
        cycle_lock: CycleLock | None = None,
    ) -> None:
        self.source = source
        self.ledger = ledger
        self.ocr_engine = ocr_engine or OcrEngine()
        self.session_factory = session_factory
        self.storage = storage
        self.cycle_lock = cycle_lock
        self._run_lock = threading.Lock()
        self._shutdown = threading.Event()
        self._state_lock = threading.Lock()
        self._last_run_at: datetime | None = None
        self._last_result: PipelineRunResult | None = None
        self._runs = 0
        self._totals = dict.fromkeys(_COUNTERS, 0)

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def status(self) -> dict[str, Any]:
        with self._state_lock:
            return {
                "running": self.running,
                "shutdown_requested": self._shutdown.is_set(),
                "runs": self._runs,
                "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
                "last_result": self._last_result.to_dict() if self._last_result else None,
                "totals": dict(self._totals),
            }

    def shutdown(self) -> None:
        self._shutdown.set()
        self.ocr_engine.terminate()
        log_event(logger, "pipeline.shutdown", running=self.running)

    def run_cycle(self) -> PipelineRunResult | None:
        if self._shutdown.is_set():
            log_event(logger, "pipeline.cycle.skipped", reason="shutdown")
            return None
        if not self._run_lock.acquire(blocking=False):
            log_event(logger, "pipeline.cycle.skipped", reason="in_progress")
            return None
        if self.cycle_lock is not None and not self.cycle_lock.acquire():
            self._run_lock.release()
            log_event(logger, "pipeline.cycle.skipped", reason="held_elsewhere")
            return None

        result = PipelineRunResult(run_id=uuid.uuid4().hex, started_at=utcnow())
        tokens = bind_context(pipeline_run_id=result.run_id)
        start = time.monotonic()
        log_event(logger, "pipeline.cycle.start")
        try:
            self._run(result)
            return result
        finally:
            result.finished_at = utcnow()
            self._record(result)
            log_event(
                logger,
                "pipeline.cycle.finish",
                duration_ms=monotonic_ms(start),
                aborted=result.aborted,
                **{name: getattr(result, name) for name in _COUNTERS},
            )
            unbind_context(tokens)
            if self.cycle_lock is not None:
                self.cycle_lock.release()
            self._run_lock.release()

    def _run(self, result: PipelineRunResult) -> None:
        sync = build_sync_orchestrator(self.ledger, storage=self.storage)

        try:
            refs = self.source.list_unprocessed()
        except AuthenticationError:
            result.aborted = True
            log_exception(logger, "pipeline.cycle.aborted", stage="list")
            return

        for ref in refs:
            if self._shutdown.is_set():
                log_event(
                    logger, "pipeline.cycle.interrupted", remaining=len(refs) - result.documents
                )
                break
            if self.cycle_lock is not None and not self.cycle_lock.extend():
                result.aborted = True
                log_event(logger, "pipeline.cycle.aborted", stage="lock")
                break
            result.documents += 1
            with log_context(document_id=ref.document_id):
                try:
                    self._process_document(ref, sync, result)
                except AuthenticationError:
                    result.errors += 1
                    result.aborted = True
                    log_exception(logger, "pipeline.cycle.aborted", stage="document")
                    break
                except Exception:  # noqa: BLE001
                    result.errors += 1
                    log_exception(logger, "pipeline.document.error")

    def _process_document(
        self, ref: DocumentRef, sync: SyncOrchestrator, result: PipelineRunResult
    ) -> None:
        document = self.source.fetch(ref)

        with self.session_factory() as session:
            if get_receipt_by_source(session, source_document_id=ref.document_id) is not None:
                result.skipped += 1
                log_event(logger, "pipeline.document.duplicate", document_id=ref.document_id)
                self._mark_processed(ref)
                return

            vendor = detect_vendor(document.sender, document.subject, document.snippet)
            log_event(
                logger,
                "pipeline.document.start",
                document_id=ref.document_id,
                vendor_id=vendor.vendor_id if vendor else None,
                attachments=len(document.attachments),
            )
            try:
                extraction = self.extract(document, vendor)
            except DecodeError:
                result.decode_errors += 1
                log_exception(logger, "pipeline.document.decode_error", document_id=ref.document_id)
                return

            parsed = extraction.parsed
            receipt = create_receipt(
                session,
                source_document_id=ref.document_id,
                parsed=parsed,
                vendor=vendor,
                source_type=document.source_type,
                source_subject=document.subject,
                received_at=document.received_at,
                attachment_name=extraction.attachment_name,
                notes=extraction.notes,
            )
            result.receipts += 1
            try:
                self._store_attachments(session, receipt, document)
                if parsed is None or not parsed.is_actionable:
                    result.parse_misses += 1
                    add_processing_note(
                        receipt, "Missing total or transaction date; left pending for review"
                    )
                    session.add(receipt)
                    session.commit()
                    log_event(logger, "pipeline.document.parse_miss", receipt_id=str(receipt.id))
                    return

                try:
                    sync.sync_receipt(session, receipt)
                except AuthenticationError:
                    raise
                except Exception:  # noqa: BLE001
                    result.errors += 1
                    return
                if receipt.sync_status == SyncStatus.MATCHED:
                    result.matched += 1
                elif receipt.sync_status == SyncStatus.SYNCED:
                    result.synced += 1
            finally:
                self._mark_processed(ref)

    def extract(self, document: SourceDocument, vendor: VendorProfile | None) -> Extraction:
        """Try PDF attachments, image attachments, the HTML body, then the text body.

        The first actionable parse wins; otherwise the first partial one is kept.
        DecodeError is raised only when nothing parsed and some candidate failed to decode.
        """
        extraction = Extraction()
        decode_error: DecodeError | None = None

        for kind, filename, decode in self._candidates(document):
            try:
                artifact = decode()
            except DecodeError as e:
                decode_error = e
                extraction.notes.append(f"Could not decode {kind} {filename or 'body'}: {e}")
                continue

            parsed = parse(artifact, vendor)
            if parsed is None:
                continue
            if extraction.parsed is None or (
                parsed.is_actionable and not extraction.parsed.is_actionable
            ):
                extraction.parsed = parsed
                extraction.attachment_name = filename
                label = f"{kind} {filename}" if filename else f"{kind} body"
                extraction.notes.append(
                    f"Parsed from {label} ({parsed.parser}, {parsed.confidence.value} confidence)"
                )
            if parsed.is_actionable:
                break

        if extraction.parsed is None:
            if decode_error is not None:
                raise decode_error
            extraction.notes.append("Could not extract receipt data from document")
        return extraction

    def _candidates(self, document: SourceDocument) -> list[tuple[str, str | None, Callable]]:
        attachments = document.attachments
        out: list[tuple[str, str | None, Callable]] = [
            ("pdf", a.filename, partial(decode_pdf, a.body)) for a in attachments if a.kind == "pdf"
        ]
        out += [
            ("image", a.filename, partial(decode_image, a.body, engine=self.ocr_engine))
            for a in attachments
            if a.kind == "image"
        ]
        if document.html:
            out.append(("html", None, partial(decode_html, document.html)))
        if document.text:
            out.append(("text", None, partial(decode_text, document.text)))
        return out

    def _store_attachments(
        self, session: Session, receipt: Receipt, document: SourceDocument
    ) -> None:
        storage = self.storage
        stored: list[dict[str, Any]] = []
        for attachment in document.attachments:
            if attachment.kind is None:
                continue
            entry: dict[str, Any] = {
                "type": attachment.kind,
                "filename": attachment.filename,
                "mime_type": attachment.mime_type,
                "size": attachment.size,
                "storage_key": None,
            }
            if storage is not None:
                key = attachment_key(receipt_id=str(receipt.id), filename=attachment.filename)
                try:
                    storage.put(
                        key=key, body=attachment.body, content_type=attachment.mime_type
                    )
                    entry["storage_key"] = key
                except Exception as e:  # noqa: BLE001
                    log_exception(
                        logger,
                        "pipeline.attachment.store_error",
                        receipt_id=str(receipt.id),
                        filename=attachment.filename,
                    )
                    add_processing_note(receipt, f"Could not store {attachment.filename}: {e}")
            stored.append(entry)
        if stored:
            receipt.attachments = stored
            session.add(receipt)
            session.commit()

    def _mark_processed(self, ref: DocumentRef) -> None:
        try:
            self.source.mark_processed(ref)
        except Exception:  # noqa: BLE001
            log_exception(logger, "pipeline.document.mark_failed", document_id=ref.document_id)

    def _record(self, result: PipelineRunResult) -> None:
        with self._state_lock:
            self._runs += 1
            self._last_run_at = result.finished_at
            self._last_result = result
            for name in _COUNTERS:
                self._totals[name] += getattr(result, name)


_pipeline: PipelineOrchestrator | None = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> PipelineOrchestrator:
    global _pipeline  # noqa: PLW0603
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = PipelineOrchestrator(
                GmailSource(),
                QuickBooksLedger(),
                ocr_engine=OcrEngine(),
                storage=get_storage(),
                cycle_lock=build_cycle_lock(),
            )
        return _pipeline


def shutdown_pipeline() -> None:
    with _pipeline_lock:
        if _pipeline is not None:
            _pipeline.shutdown()
