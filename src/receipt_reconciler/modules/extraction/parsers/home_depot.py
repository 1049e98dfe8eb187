from __future__ import annotations

from receipt_reconciler.modules.extraction.parsers.base import (
    AMOUNT,
    BARE_TOTAL,
    PRICE,
    REFERENCE,
    SLASH_DATE,
    VendorParser,
    compile_patterns,
    row_shape,
)


class HomeDepotParser(VendorParser):
    vendor_id = "home-depot"
    name = "home-depot"

    total_patterns = compile_patterns(
        r"order\s*total[:\s]*" + AMOUNT,
        r"grand\s*total[:\s]*" + AMOUNT,
        BARE_TOTAL + r"[:\s]*" + AMOUNT,
    )
    date_patterns = compile_patterns(
        r"order\s*date[:\s]*" + SLASH_DATE,
        r"date[:\s]*" + SLASH_DATE,
        SLASH_DATE,
    )
    order_patterns = compile_patterns(r"order\s*(?:#|number|no\.?)\s*:?\s*" + REFERENCE)
    store_patterns = compile_patterns(r"store\s*(?:#|number)?[:\s]*(\d+)")
    row_shapes = (
        # 1003456  2x4 STUD 8FT  12  $47.64
        row_shape(
            r"^\s*(\d{6,8})\s+(.+?)\s+(\d+)\s+" + PRICE,
            "sku",
            "description",
            "quantity",
            "total_price",
        ),
        # DECK SCREWS 2 @ $9.98 $19.96
        row_shape(
            r"^\s*(.+?)\s+(\d+)\s+@\s*" + PRICE + r"\s+" + PRICE,
            "description",
            "quantity",
            "unit_price",
            "total_price",
        ),
    )
