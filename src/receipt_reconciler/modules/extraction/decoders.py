from __future__ import annotations

import re
import threading
import time
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from io import BytesIO
from itertools import islice
from typing import Literal

from bs4 import BeautifulSoup
from pypdf import PdfReader

from receipt_reconciler.core.config import settings
from receipt_reconciler.core.errors import DecodeError
from receipt_reconciler.core.logging import get_logger, log_event, log_exception, monotonic_ms
from receipt_reconciler.modules.extraction.fields import (
    find_all_amounts,
    find_all_dates,
    parse_currency,
)

logger = get_logger(__name__)

SourceKind = Literal["pdf", "html", "text", "image"]
Table = tuple[tuple[str, ...], ...]

_LABELED_AMOUNT_PATTERNS = {
    "total": re.compile(r"(?<!sub\s)(?<!sub)\b(?:order\s*)?total[:\s]*\$?([\d,]+\.?\d*)", re.I),
    "subtotal": re.compile(r"sub\s*total[:\s]*\$?([\d,]+\.?\d*)", re.I),
    "tax": re.compile(r"(?:sales\s*)?\btax[:\s]*\$?([\d,]+\.?\d*)", re.I),
    "shipping": re.compile(r"shipping(?:\s*&\s*handling)?[:\s]*\$?([\d,]+\.?\d*)", re.I),
}

_REF = r"((?=[\w\-]*\d)\w[\w\-]*)"

_ORDER_INFO_PATTERNS = {
    "order_number": re.compile(r"order\s*(?:#|number|no\.?)\s*:?\s*" + _REF, re.I),
    "invoice_number": re.compile(r"invoice\s*(?:#|number|no\.?)\s*:?\s*" + _REF, re.I),
    "card_last4": re.compile(r"(?:visa|mastercard|amex|discover|card)[^\d]*(\d{4})", re.I),
}


@dataclass(frozen=True)
class DecodedArtifact:
    text: str
    source_kind: SourceKind
    tables: tuple[Table, ...] = ()
    amounts: tuple[Decimal, ...] = ()
    labeled_amounts: dict[str, Decimal] = field(default_factory=dict)
    candidate_dates: tuple[date, ...] = ()
    order_info: dict[str, str] = field(default_factory=dict)
    ocr_confidence: float | None = None
    markup: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True)
class OcrResult:
    text: str
    confidence: float


def _clean_text(text: str) -> str:
    return text.replace("\u202f", " ").replace("\xa0", " ")


def decode_pdf(body: bytes, *, max_pages: int | None = None) -> DecodedArtifact:
    limit = max_pages if max_pages is not None else settings.pdf_max_pages
    start = time.monotonic()
    try:
        reader = PdfReader(BytesIO(body))
        texts = [
            _clean_text(page.extract_text() or "") for page in islice(reader.pages, limit)
        ]
    except Exception as e:  # noqa: BLE001
        log_event(
            logger,
            "decode.pdf.failure",
            byte_size=len(body),
            error_type=type(e).__name__,
            duration_ms=monotonic_ms(start),
        )
        raise DecodeError(f"Unreadable PDF: {e}") from e

    text = "\n".join(texts).strip()
    log_event(
        logger,
        "decode.pdf.success",
        page_count=len(texts),
        text_length=len(text),
        duration_ms=monotonic_ms(start),
    )
    return decode_text(text, source_kind="pdf")


def decode_text(text: str, *, source_kind: SourceKind = "text") -> DecodedArtifact:
    text = _clean_text(text or "")
    return DecodedArtifact(
        text=text,
        source_kind=source_kind,
        amounts=tuple(find_all_amounts(text)),
        labeled_amounts=_labeled_amounts(text),
        candidate_dates=tuple(find_all_dates(text)),
        order_info=_order_info(text),
    )


def decode_html(markup: str) -> DecodedArtifact:
    soup = BeautifulSoup(markup or "", "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()

    tables = tuple(t for t in (_table_rows(table) for table in soup.find_all("table")) if t)

    body = soup.body or soup
    lines = [re.sub(r"\s+", " ", ln).strip() for ln in body.get_text("\n").splitlines()]
    text = "\n".join(ln for ln in lines if ln)
    text = _clean_text(text)

    return DecodedArtifact(
        text=text,
        source_kind="html",
        tables=tables,
        amounts=tuple(find_all_amounts(text, require_symbol=True)),
        labeled_amounts=_labeled_amounts(text),
        candidate_dates=tuple(find_all_dates(text)),
        order_info=_order_info(text),
        markup=markup,
    )


def table_text(table: Table) -> str:
    return "\n".join(" ".join(cell for cell in row if cell) for row in table)


def _table_rows(table) -> Table:
    rows: list[tuple[str, ...]] = []
    for tr in table.find_all("tr"):
        cells = tr.find_all(["td", "th"])
        if not cells:
            continue
        rows.append(tuple(re.sub(r"\s+", " ", c.get_text(" ")).strip() for c in cells))
    return tuple(rows)


def _labeled_amounts(text: str) -> dict[str, Decimal]:
    out: dict[str, Decimal] = {}
    for label, pattern in _LABELED_AMOUNT_PATTERNS.items():
        m = pattern.search(text)
        if not m:
            continue
        amount = parse_currency(m.group(1))
        if amount is not None:
            out[label] = amount
    return out


def _order_info(text: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, pattern in _ORDER_INFO_PATTERNS.items():
        m = pattern.search(text)
        if m:
            out[key] = m.group(1)
    return out


class OcrEngine:
    """Tesseract wrapper. The binary is checked on first use, not at import."""

    def __init__(self, *, enabled: bool | None = None, lang: str | None = None) -> None:
        self.enabled = settings.enable_ocr if enabled is None else enabled
        self.lang = lang or settings.tesseract_lang
        self._lock = threading.Lock()
        self._backend = None
        self._available: bool | None = None

    @property
    def initialized(self) -> bool:
        return self._available is not None

    def _ensure(self):
        with self._lock:
            if self._available is None:
                import pytesseract

                try:
                    pytesseract.get_tesseract_version()
                    self._available = True
                except pytesseract.TesseractNotFoundError:
                    self._available = False
                self._backend = pytesseract if self._available else None
                log_event(logger, "ocr.engine.init", available=self._available, lang=self.lang)
            return self._backend

    def recognize(self, body: bytes) -> OcrResult:
        if not self.enabled:
            return OcrResult(text="", confidence=0.0)

        from PIL import Image, UnidentifiedImageError

        try:
            image = Image.open(BytesIO(body))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise DecodeError(f"Unreadable image: {e}") from e

        backend = self._ensure()
        if backend is None:
            return OcrResult(text="", confidence=0.0)

        start = time.monotonic()
        try:
            if image.mode not in {"RGB", "L"}:
                image = image.convert("RGB")
            data = backend.image_to_data(image, lang=self.lang, output_type=backend.Output.DICT)
        except Exception:  # noqa: BLE001
            log_exception(logger, "ocr.recognize.failure", byte_size=len(body))
            return OcrResult(text="", confidence=0.0)

        text, confidence = _ocr_text_and_confidence(data)
        log_event(
            logger,
            "ocr.recognize.success",
            text_length=len(text),
            confidence=confidence,
            duration_ms=monotonic_ms(start),
        )
        return OcrResult(text=text, confidence=confidence)

    def terminate(self) -> None:
        with self._lock:
            if self._available is not None:
                log_event(logger, "ocr.engine.terminate")
            self._backend = None
            self._available = None


def _ocr_text_and_confidence(data: dict) -> tuple[str, float]:
    """Rebuild line-broken text from image_to_data output and average word confidence."""
    lines: dict[tuple[int, int, int], list[str]] = {}
    confidences: list[float] = []
    words = data.get("text") or []
    for i, word in enumerate(words):
        word = (word or "").strip()
        if not word:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)
        try:
            conf = float(data["conf"][i])
        except (TypeError, ValueError):
            continue
        if conf >= 0:
            confidences.append(conf)
    text = "\n".join(" ".join(ws) for _, ws in sorted(lines.items()))
    confidence = round(sum(confidences) / len(confidences), 1) if confidences else 0.0
    return text, confidence


def decode_image(body: bytes, *, engine: OcrEngine) -> DecodedArtifact:
    result = engine.recognize(body)
    text = result.text
    if result.confidence < settings.ocr_min_confidence:
        log_event(
            logger,
            "ocr.recognize.low_confidence",
            confidence=result.confidence,
            threshold=settings.ocr_min_confidence,
        )
        text = ""
    return replace(decode_text(text, source_kind="image"), ocr_confidence=result.confidence)
