from __future__ import annotations

import re
from decimal import Decimal

from receipt_reconciler.modules.extraction.decoders import DecodedArtifact, table_text
from receipt_reconciler.modules.extraction.fields import parse_currency
from receipt_reconciler.modules.extraction.parsers.base import (
    AMOUNT,
    BARE_TOTAL,
    PRICE,
    SLASH_DATE,
    WORD_DATE,
    ParsedReceipt,
    VendorParser,
    compile_patterns,
    row_shape,
    table_line_items,
)

_TABLE_TOTAL_RE = re.compile(r"(?:order\s*)?" + BARE_TOTAL + r"[:\s]*" + AMOUNT, re.I)


class LowesParser(VendorParser):
    vendor_id = "lowes"
    name = "lowes"

    total_patterns = compile_patterns(
        r"order\s*total[:\s]*" + AMOUNT,
        BARE_TOTAL + r"\s*(?:amount)?[:\s]*" + AMOUNT,
        r"grand\s*total[:\s]*" + AMOUNT,
    )
    subtotal_patterns = compile_patterns(r"(?:merchandise\s*)?sub\s*total[:\s]*" + AMOUNT)
    tax_patterns = compile_patterns(r"(?:estimated\s*)?(?:sales\s*)?\btax[:\s]*" + AMOUNT)
    date_patterns = compile_patterns(
        r"order\s*(?:date|placed)[:\s]*" + WORD_DATE,
        r"(?:date|placed)[:\s]*" + SLASH_DATE,
        SLASH_DATE,
    )
    order_patterns = compile_patterns(r"order\s*(?:#|number)?[:\s]*(\d{9,})")
    store_patterns = compile_patterns(r"store\s*(?:#|number)?[:\s]*(\d+)")
    card_patterns = compile_patterns(
        r"(?:card\s*)?ending\s*in\s*(\d{4})",
        r"(visa|mastercard|amex|discover)[^\d]*(\d{4})",
    )
    row_shapes = (
        row_shape(
            r"^(?:item\s*#?\s*)?(\d+)?\s*(.{3,50}?)\s+(\d+)\s+" + PRICE,
            "sku",
            "description",
            "quantity",
            "total_price",
            flags=re.I,
        ),
    )

    def parse_html(self, markup: str, artifact: DecodedArtifact) -> ParsedReceipt | None:
        result = self.extract(artifact.text)

        table_total = self._table_total(artifact)
        if table_total is not None:
            result.total = table_total
        elif result.total is None:
            result.total = artifact.labeled_amounts.get("total")

        if result.transaction_date is None and artifact.candidate_dates:
            result.transaction_date = artifact.candidate_dates[0]
        result.order_number = result.order_number or artifact.order_info.get("order_number")
        result.card_last4 = result.card_last4 or artifact.order_info.get("card_last4")

        table_items = table_line_items(artifact.tables)
        if table_items:
            result.line_items = table_items
        return self.finish(result)

    def _table_total(self, artifact: DecodedArtifact) -> Decimal | None:
        # The summary table is usually last, so later tables win.
        found: Decimal | None = None
        for table in artifact.tables:
            m = _TABLE_TOTAL_RE.search(table_text(table))
            if m:
                amount = parse_currency(m.group(1))
                if amount is not None:
                    found = amount
        return found
