from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from receipt_reconciler.core.logging import get_logger, log_event
from receipt_reconciler.modules.extraction.decoders import DecodedArtifact
from receipt_reconciler.modules.extraction.fields import (
    detect_payment_method,
    extract_job_name,
    first_amount,
    first_date,
    first_match,
    parse_currency,
    quantize_cents,
)

logger = get_logger(__name__)

MAX_LINE_ITEMS = 50

# Pattern fragments shared by the vendor layouts.
AMOUNT = r"\$?([\d,]+\.?\d*)"
PRICE = r"\$?([\d,]+\.\d{2})"
BARE_TOTAL = r"(?<!sub\s)(?<!sub)\btotal"
NUMERIC_DATE = r"(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})"
SLASH_DATE = r"(\d{1,2}/\d{1,2}/\d{2,4})"
WORD_DATE = r"([A-Za-z]{3,9}\.?\s+\d{1,2},?\s*\d{4})"
REFERENCE = r"((?=[\w\-]*\d)\w[\w\-]*)"

_PRICE_CELL_RE = re.compile(PRICE)
_QTY_CELL_RE = re.compile(r"^(?:qty:?\s*)?(\d+)$", re.I)

SUMMARY_LINE_RE = re.compile(
    r"^\s*(?:order\s+|grand\s+|invoice\s+|sales\s+|estimated\s+|merchandise\s+|items?\s+)?"
    r"(?:sub\s*total|total|tax|shipping|discount|amount\s+due|balance\s+due)\b",
    re.I,
)


class Confidence(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {Confidence.LOW: 0, Confidence.MEDIUM: 1, Confidence.HIGH: 2}


@dataclass
class LineItem:
    description: str
    quantity: int = 1
    unit_price: Decimal | None = None
    total_price: Decimal | None = None
    sku: str | None = None

    @property
    def amount(self) -> Decimal | None:
        if self.total_price is not None:
            return self.total_price
        if self.unit_price is not None:
            return quantize_cents(self.unit_price * (self.quantity or 1))
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price) if self.unit_price is not None else None,
            "total_price": str(self.total_price) if self.total_price is not None else None,
            "sku": self.sku,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        return cls(
            description=str(data.get("description") or ""),
            quantity=int(data.get("quantity") or 1),
            unit_price=parse_currency(data.get("unit_price")),
            total_price=parse_currency(data.get("total_price")),
            sku=data.get("sku"),
        )


@dataclass
class ParsedReceipt:
    total: Decimal | None = None
    subtotal: Decimal | None = None
    tax: Decimal | None = None
    shipping: Decimal | None = None
    discount: Decimal | None = None
    transaction_date: date | None = None
    order_number: str | None = None
    invoice_number: str | None = None
    po_number: str | None = None
    account_number: str | None = None
    store_number: str | None = None
    card_last4: str | None = None
    payment_method: str | None = None
    job_name: str | None = None
    line_items: list[LineItem] = field(default_factory=list)
    confidence: Confidence = Confidence.LOW
    parser: str | None = None

    @property
    def reference_number(self) -> str | None:
        return self.order_number or self.invoice_number or self.po_number

    @property
    def is_actionable(self) -> bool:
        return self.total is not None and self.transaction_date is not None


def vendor_confidence(result: ParsedReceipt) -> Confidence:
    if result.total is not None and result.transaction_date is not None:
        if result.reference_number:
            return Confidence.HIGH
        return Confidence.MEDIUM
    return Confidence.LOW


def generic_confidence(result: ParsedReceipt) -> Confidence:
    score = 0
    if result.total is not None:
        score += 2
    if result.transaction_date is not None:
        score += 2
    if result.reference_number:
        score += 1
    if result.card_last4:
        score += 1
    if result.line_items:
        score += 1
    if score >= 5:
        return Confidence.HIGH
    if score >= 3:
        return Confidence.MEDIUM
    return Confidence.LOW


def is_summary_line(text: str) -> bool:
    return bool(SUMMARY_LINE_RE.match(text))


@dataclass(frozen=True)
class RowShape:
    """A line-item layout: a per-line regex plus the LineItem field each group feeds."""

    pattern: re.Pattern[str]
    fields: tuple[str, ...]

    def build(self, m: re.Match[str]) -> LineItem | None:
        values = dict(zip(self.fields, m.groups()))
        description = re.sub(r"\s+", " ", (values.get("description") or "")).strip()
        if not description or is_summary_line(description):
            return None
        quantity = int(values["quantity"]) if values.get("quantity") else 1
        unit_price = parse_currency(values.get("unit_price"))
        total_price = parse_currency(values.get("total_price"))
        if total_price is None and unit_price is not None:
            total_price = quantize_cents(unit_price * quantity)
        if total_price is None and unit_price is None:
            return None
        sku = (values.get("sku") or "").strip() or None
        return LineItem(
            description=description[:100],
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            sku=sku,
        )


def row_shape(pattern: str, *fields: str, flags: int = 0) -> RowShape:
    return RowShape(pattern=re.compile(pattern, flags), fields=fields)


def extract_rows(
    text: str, shapes: tuple[RowShape, ...], *, limit: int = MAX_LINE_ITEMS
) -> list[LineItem]:
    items: list[LineItem] = []
    for line in (text or "").splitlines():
        if not line.strip() or is_summary_line(line):
            continue
        for shape in shapes:
            m = shape.pattern.search(line)
            if not m:
                continue
            item = shape.build(m)
            if item is not None:
                items.append(item)
            break
        if len(items) >= limit:
            break
    return items


def table_line_items(
    tables,
    *,
    min_description: int = 5,
    max_description: int = 100,
    skip_header: bool = False,
    limit: int = MAX_LINE_ITEMS,
) -> list[LineItem]:
    """Rows with a price cell and a description cell; a bare integer cell is the quantity."""
    items: list[LineItem] = []
    for table in tables:
        rows = table[1:] if skip_header else table
        for row in rows:
            if len(row) < 2:
                continue
            description: str | None = None
            price: Decimal | None = None
            quantity = 1
            for cell in row:
                m = _PRICE_CELL_RE.search(cell)
                if m:
                    price = parse_currency(m.group(1))
                    continue
                q = _QTY_CELL_RE.match(cell)
                if q:
                    quantity = int(q.group(1))
                    continue
                if min_description < len(cell) < max_description:
                    description = cell
            if description and price is not None and not is_summary_line(description):
                items.append(
                    LineItem(description=description, quantity=quantity, total_price=price)
                )
            if len(items) >= limit:
                return items
    return items


def compile_patterns(*sources: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(s, re.I) for s in sources)


class VendorParser:
    """Regex-cascade parser for a single vendor's receipt layout.

    Subclasses declare ordered pattern tuples per field; the first pattern that
    matches and yields a usable value wins. Row shapes are tried per line.
    """

    vendor_id: str = ""
    name: str = "vendor"

    total_patterns: tuple[re.Pattern[str], ...] = ()
    subtotal_patterns: tuple[re.Pattern[str], ...] = compile_patterns(
        r"sub\s*total[:\s]*\$?([\d,]+\.?\d*)"
    )
    tax_patterns: tuple[re.Pattern[str], ...] = compile_patterns(
        r"(?:sales\s*)?\btax[:\s]*\$?([\d,]+\.?\d*)"
    )
    shipping_patterns: tuple[re.Pattern[str], ...] = ()
    date_patterns: tuple[re.Pattern[str], ...] = ()
    order_patterns: tuple[re.Pattern[str], ...] = ()
    invoice_patterns: tuple[re.Pattern[str], ...] = ()
    po_patterns: tuple[re.Pattern[str], ...] = ()
    account_patterns: tuple[re.Pattern[str], ...] = ()
    store_patterns: tuple[re.Pattern[str], ...] = ()
    # One group = last four digits; two groups = (card brand, last four digits).
    card_patterns: tuple[re.Pattern[str], ...] = compile_patterns(
        r"(visa|mastercard|amex|discover)[^\d]*(\d{4})"
    )
    row_shapes: tuple[RowShape, ...] = ()

    def parse(self, text: str) -> ParsedReceipt | None:
        return self.finish(self.extract(text or ""))

    def parse_html(self, markup: str, artifact: DecodedArtifact) -> ParsedReceipt | None:
        return self.parse(artifact.text)

    def extract(self, text: str) -> ParsedReceipt:
        result = ParsedReceipt(parser=self.name)
        result.total = first_amount(self.total_patterns, text)
        result.subtotal = first_amount(self.subtotal_patterns, text)
        result.tax = first_amount(self.tax_patterns, text)
        result.shipping = first_amount(self.shipping_patterns, text)
        result.transaction_date = first_date(self.date_patterns, text)
        result.order_number = first_match(self.order_patterns, text)
        result.invoice_number = first_match(self.invoice_patterns, text)
        result.po_number = first_match(self.po_patterns, text)
        result.account_number = first_match(self.account_patterns, text)
        result.store_number = first_match(self.store_patterns, text)
        self.extract_card(text, result)
        result.job_name = extract_job_name(text)
        result.line_items = self.extract_line_items(text)
        return result

    def extract_card(self, text: str, result: ParsedReceipt) -> None:
        for pattern in self.card_patterns:
            m = pattern.search(text)
            if not m:
                continue
            if m.lastindex and m.lastindex >= 2:
                result.payment_method = m.group(1).upper()
                result.card_last4 = m.group(2)
            else:
                result.card_last4 = m.group(1)
            break
        if not result.payment_method:
            result.payment_method = detect_payment_method(text)

    def extract_line_items(self, text: str) -> list[LineItem]:
        return extract_rows(text, self.row_shapes)

    def finish(self, result: ParsedReceipt) -> ParsedReceipt | None:
        result.confidence = vendor_confidence(result)
        if result.total is None and not result.line_items:
            return None
        log_event(
            logger,
            "parser.vendor.extracted",
            parser=self.name,
            total=result.total,
            line_items=len(result.line_items),
            confidence=result.confidence.value,
        )
        return result
