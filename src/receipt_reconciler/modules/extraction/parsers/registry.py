from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from receipt_reconciler.modules.extraction.parsers.alpha_supply import AlphaSupplyParser
from receipt_reconciler.modules.extraction.parsers.amazon import AmazonParser
from receipt_reconciler.modules.extraction.parsers.base import VendorParser
from receipt_reconciler.modules.extraction.parsers.ced import CedParser
from receipt_reconciler.modules.extraction.parsers.generic import GenericParser
from receipt_reconciler.modules.extraction.parsers.home_depot import HomeDepotParser
from receipt_reconciler.modules.extraction.parsers.lowes import LowesParser
from receipt_reconciler.modules.extraction.parsers.read_lighting import ReadLightingParser

# Ace Hardware has no dedicated layout and is handled by the generic parser.
VENDOR_PARSERS: Mapping[str, VendorParser] = MappingProxyType(
    {
        p.vendor_id: p
        for p in (
            HomeDepotParser(),
            LowesParser(),
            AmazonParser(),
            CedParser(),
            AlphaSupplyParser(),
            ReadLightingParser(),
        )
    }
)

GENERIC_PARSER = GenericParser()


def parser_for(vendor_id: str | None) -> VendorParser | None:
    if not vendor_id:
        return None
    return VENDOR_PARSERS.get(vendor_id)
