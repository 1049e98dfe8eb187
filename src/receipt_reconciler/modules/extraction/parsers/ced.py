from __future__ import annotations

import re

from receipt_reconciler.modules.extraction.fields import parse_currency
from receipt_reconciler.modules.extraction.parsers.base import (
    AMOUNT,
    BARE_TOTAL,
    MAX_LINE_ITEMS,
    NUMERIC_DATE,
    PRICE,
    REFERENCE,
    LineItem,
    VendorParser,
    compile_patterns,
    extract_rows,
    is_summary_line,
    row_shape,
)

# Invoice lines that only describe a quantity of common electrical stock.
_ELECTRICAL_ROWS = compile_patterns(
    r"(\d+)\s*(?:ft|feet|')\s+(.+?wire.+?)\s+" + PRICE,
    r"(\d+)\s+(?:box|boxes)\s+(.+?)\s+" + PRICE,
    r"(\d+)\s+(.+?breaker.+?)\s+" + PRICE,
)


class CedParser(VendorParser):
    vendor_id = "ced"
    name = "ced"

    total_patterns = compile_patterns(
        r"(?:invoice\s*)?" + BARE_TOTAL + r"[:\s]*" + AMOUNT,
        r"amount\s*due[:\s]*" + AMOUNT,
        r"balance\s*due[:\s]*" + AMOUNT,
    )
    subtotal_patterns = compile_patterns(r"(?:merchandise\s*)?sub\s*total[:\s]*" + AMOUNT)
    date_patterns = compile_patterns(
        r"invoice\s*date[:\s]*" + NUMERIC_DATE,
        r"date[:\s]*" + NUMERIC_DATE,
        NUMERIC_DATE,
    )
    invoice_patterns = compile_patterns(r"invoice\s*(?:#|number|no\.?)?[:\s]*" + REFERENCE)
    po_patterns = compile_patterns(
        r"(?:\bp\.?o\.?(?![a-z])|purchase\s*order)\s*(?:#|number)?[:\s]*" + REFERENCE
    )
    account_patterns = compile_patterns(r"account\s*(?:#|number)?[:\s]*(\d+)")
    row_shapes = (
        # part number, description, qty, unit, extended
        row_shape(
            r"^\s*(\w{3,15})\s+(.{10,50}?)\s+(\d+)\s+" + PRICE + r"\s+" + PRICE,
            "sku",
            "description",
            "quantity",
            "unit_price",
            "total_price",
        ),
        row_shape(
            r"^\s*(.{10,50}?)\s+(\d+)\s+@?\s*" + PRICE,
            "description",
            "quantity",
            "unit_price",
        ),
    )

    def extract_line_items(self, text: str) -> list[LineItem]:
        items = extract_rows(text, self.row_shapes)
        for line in (text or "").splitlines():
            if len(items) >= MAX_LINE_ITEMS:
                break
            if is_summary_line(line) or any(s.pattern.search(line) for s in self.row_shapes):
                continue
            for pattern in _ELECTRICAL_ROWS:
                m = pattern.search(line)
                if not m:
                    continue
                price = parse_currency(m.group(3))
                if price is not None:
                    items.append(
                        LineItem(
                            description=f"{m.group(1)} {m.group(2).strip()}",
                            quantity=int(m.group(1)),
                            total_price=price,
                        )
                    )
                break
        return items
