from __future__ import annotations

from receipt_reconciler.modules.extraction.parsers.base import (
    AMOUNT,
    BARE_TOTAL,
    NUMERIC_DATE,
    PRICE,
    REFERENCE,
    RowShape,
    VendorParser,
    compile_patterns,
    row_shape,
)

SUPPLY_HOUSE_ROWS: tuple[RowShape, ...] = (
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
        "total_price",
    ),
    row_shape(r"^\s*(.{5,60}?)\s+" + PRICE + r"\s*$", "description", "total_price"),
)

SUPPLY_HOUSE_PO = compile_patterns(
    r"(?:\bp\.?o\.?(?![a-z])|purchase\s*order)\s*(?:#|number)?[:\s]*" + REFERENCE
)


class AlphaSupplyParser(VendorParser):
    vendor_id = "alpha-supply"
    name = "alpha-supply"

    total_patterns = compile_patterns(
        r"(?:invoice\s*)?" + BARE_TOTAL + r"[:\s]*" + AMOUNT,
        r"amount\s*due[:\s]*" + AMOUNT,
        r"balance\s*due[:\s]*" + AMOUNT,
        r"grand\s*total[:\s]*" + AMOUNT,
    )
    date_patterns = compile_patterns(
        r"invoice\s*date[:\s]*" + NUMERIC_DATE,
        r"date[:\s]*" + NUMERIC_DATE,
        NUMERIC_DATE,
    )
    invoice_patterns = compile_patterns(
        r"\b(?:invoice|inv)\s*(?:#|number|no\.?)?[:\s]*" + REFERENCE
    )
    po_patterns = SUPPLY_HOUSE_PO
    account_patterns = compile_patterns(r"account\s*(?:#|number)?[:\s]*(\d+)")
    row_shapes = SUPPLY_HOUSE_ROWS
