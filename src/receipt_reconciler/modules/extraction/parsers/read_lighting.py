from __future__ import annotations

from receipt_reconciler.modules.extraction.parsers.alpha_supply import (
    SUPPLY_HOUSE_PO,
    SUPPLY_HOUSE_ROWS,
)
from receipt_reconciler.modules.extraction.parsers.base import (
    AMOUNT,
    BARE_TOTAL,
    NUMERIC_DATE,
    REFERENCE,
    VendorParser,
    compile_patterns,
)


class ReadLightingParser(VendorParser):
    vendor_id = "read-lighting"
    name = "read-lighting"

    total_patterns = compile_patterns(
        r"(?:invoice\s*)?" + BARE_TOTAL + r"[:\s]*" + AMOUNT,
        r"amount\s*due[:\s]*" + AMOUNT,
        r"grand\s*total[:\s]*" + AMOUNT,
        r"balance\s*due[:\s]*" + AMOUNT,
    )
    date_patterns = compile_patterns(
        r"invoice\s*date[:\s]*" + NUMERIC_DATE,
        r"date[:\s]*" + NUMERIC_DATE,
        NUMERIC_DATE,
    )
    invoice_patterns = compile_patterns(
        r"\b(?:invoice|inv)\s*(?:#|number|no\.?)?[:\s]*" + REFERENCE
    )
    order_patterns = compile_patterns(r"order\s*(?:#|number)?[:\s]*" + REFERENCE)
    po_patterns = SUPPLY_HOUSE_PO
    row_shapes = SUPPLY_HOUSE_ROWS
