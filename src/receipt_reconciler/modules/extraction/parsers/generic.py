from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import Mapping

from receipt_reconciler.core.logging import get_logger, log_event
from receipt_reconciler.modules.extraction.decoders import DecodedArtifact
from receipt_reconciler.modules.extraction.fields import (
    detect_payment_method,
    extract_card_last4,
    extract_job_name,
    find_all_amounts,
    find_all_dates,
    parse_currency,
    parse_date,
)
from receipt_reconciler.modules.extraction.parsers.base import (
    AMOUNT,
    BARE_TOTAL,
    MAX_LINE_ITEMS,
    NUMERIC_DATE,
    PRICE,
    REFERENCE,
    ParsedReceipt,
    extract_rows,
    generic_confidence,
    row_shape,
    table_line_items,
)
from receipt_reconciler.modules.vendors.registry import VendorProfile

logger = get_logger(__name__)

DEFAULT_EXTRACTORS: Mapping[str, re.Pattern[str]] = {
    "total": re.compile(r"(?:order\s*|grand\s*)?" + BARE_TOTAL + r"[:\s]*" + AMOUNT, re.I),
    "date": re.compile(r"(?:date|ordered?)[:\s]*" + NUMERIC_DATE, re.I),
    "order_number": re.compile(
        r"(?:order|confirmation)\s*(?:#|number|no\.?)?[:\s]*" + REFERENCE, re.I
    ),
    "invoice_number": re.compile(r"invoice\s*(?:#|number|no\.?)?[:\s]*" + REFERENCE, re.I),
    "card_last4": re.compile(r"(?:card|visa|mastercard|amex|discover)[^\d]*(\d{4})", re.I),
}

_PRICED_LINE = (row_shape(r"^(.+?)\s+" + PRICE + r"\s*$", "description", "total_price"),)


def largest_amount(text: str) -> Decimal | None:
    """The grand total is numerically dominant in nearly every receipt layout."""
    amounts = [a for a in find_all_amounts(text) if a > 0]
    return max(amounts) if amounts else None


def most_recent_date(candidates) -> date | None:
    """Receipts print order, ship and delivery dates; the transaction is the latest."""
    if isinstance(candidates, str):
        candidates = find_all_dates(candidates)
    dates = [d for d in candidates if d is not None]
    return max(dates) if dates else None


def _extractors(vendor: VendorProfile | None) -> Mapping[str, re.Pattern[str]]:
    """A profile's hints replace the defaults wholesale; absent keys are simply not searched."""
    if vendor is None or not vendor.extractors:
        return DEFAULT_EXTRACTORS
    return vendor.extractors


def _search(pattern: re.Pattern[str] | None, text: str) -> str | None:
    if pattern is None:
        return None
    m = pattern.search(text)
    if m and m.group(1):
        return m.group(1).strip()
    return None


class GenericParser:
    name = "generic"

    def parse(self, text: str, vendor: VendorProfile | None = None) -> ParsedReceipt | None:
        text = text or ""
        extractors = _extractors(vendor)
        result = ParsedReceipt(parser=self.name)

        result.total = parse_currency(_search(extractors.get("total"), text))
        if result.total is None:
            result.total = largest_amount(text)

        result.transaction_date = parse_date(_search(extractors.get("date"), text))
        if result.transaction_date is None:
            result.transaction_date = most_recent_date(text)

        result.order_number = _search(extractors.get("order_number"), text)
        result.invoice_number = _search(extractors.get("invoice_number"), text)
        result.card_last4 = _search(extractors.get("card_last4"), text) or extract_card_last4(
            text
        )
        result.payment_method = detect_payment_method(text)
        result.job_name = extract_job_name(text)
        result.line_items = extract_rows(text, _PRICED_LINE, limit=MAX_LINE_ITEMS)
        return self._finish(result, vendor)

    def parse_html(
        self, markup: str, artifact: DecodedArtifact, vendor: VendorProfile | None = None
    ) -> ParsedReceipt | None:
        result = ParsedReceipt(parser=self.name)
        labeled = artifact.labeled_amounts

        result.total = labeled.get("total")
        if result.total is None:
            positive = [a for a in artifact.amounts if a > 0]
            result.total = max(positive) if positive else None
        result.subtotal = labeled.get("subtotal")
        result.tax = labeled.get("tax")
        result.shipping = labeled.get("shipping")
        result.transaction_date = most_recent_date(artifact.candidate_dates)

        result.order_number = artifact.order_info.get("order_number")
        result.invoice_number = artifact.order_info.get("invoice_number")
        result.card_last4 = artifact.order_info.get("card_last4")
        result.payment_method = detect_payment_method(artifact.text)
        result.job_name = extract_job_name(artifact.text)
        result.line_items = table_line_items(artifact.tables, min_description=3, skip_header=True)

        if not result.is_actionable:
            return self.parse(artifact.text, vendor)
        return self._finish(result, vendor)

    def _finish(self, result: ParsedReceipt, vendor: VendorProfile | None) -> ParsedReceipt | None:
        result.confidence = generic_confidence(result)
        if not result.is_actionable:
            log_event(
                logger,
                "parser.generic.miss",
                vendor_id=vendor.vendor_id if vendor else None,
                has_total=result.total is not None,
                has_date=result.transaction_date is not None,
            )
            return None
        log_event(
            logger,
            "parser.generic.extracted",
            vendor_id=vendor.vendor_id if vendor else None,
            total=result.total,
            line_items=len(result.line_items),
            confidence=result.confidence.value,
        )
        return result
