from __future__ import annotations

import time

from receipt_reconciler.core.logging import get_logger, log_event, log_exception, monotonic_ms
from receipt_reconciler.modules.extraction.decoders import (
    DecodedArtifact,
    OcrEngine,
    decode_html,
    decode_image,
    decode_pdf,
    decode_text,
)
from receipt_reconciler.modules.extraction.parsers.base import ParsedReceipt
from receipt_reconciler.modules.extraction.parsers.registry import GENERIC_PARSER, parser_for
from receipt_reconciler.modules.vendors.registry import VendorProfile

logger = get_logger(__name__)


def parse(artifact: DecodedArtifact, vendor: VendorProfile | None = None) -> ParsedReceipt | None:
    """Route a decoded artifact to the vendor's parser, falling back to the generic one."""
    vendor_id = vendor.vendor_id if vendor else None
    if artifact.is_empty:
        log_event(
            logger,
            "parse.skip.empty_text",
            source_kind=artifact.source_kind,
            vendor_id=vendor_id,
        )
        return None

    start = time.monotonic()
    specific = parser_for(vendor_id)
    if specific is not None:
        try:
            if artifact.source_kind == "html":
                result = specific.parse_html(artifact.markup or "", artifact)
            else:
                result = specific.parse(artifact.text)
        except Exception:  # noqa: BLE001
            # Vendor layout failures fall through to the generic parser.
            log_exception(
                logger, "parse.vendor.error", vendor_id=vendor_id, source_kind=artifact.source_kind
            )
            result = None
        if result is not None:
            log_event(
                logger,
                "parse.vendor.accepted",
                vendor_id=vendor_id,
                source_kind=artifact.source_kind,
                confidence=result.confidence.value,
                duration_ms=monotonic_ms(start),
            )
            return result
        log_event(logger, "parse.vendor.declined", vendor_id=vendor_id)

    if artifact.source_kind == "html":
        result = GENERIC_PARSER.parse_html(artifact.markup or "", artifact, vendor)
    else:
        result = GENERIC_PARSER.parse(artifact.text, vendor)
    log_event(
        logger,
        "parse.generic.finish",
        vendor_id=vendor_id,
        source_kind=artifact.source_kind,
        parsed=result is not None,
        confidence=result.confidence.value if result else None,
        duration_ms=monotonic_ms(start),
    )
    return result


def parse_pdf(body: bytes, vendor: VendorProfile | None = None) -> ParsedReceipt | None:
    return parse(decode_pdf(body), vendor)


def parse_html(markup: str, vendor: VendorProfile | None = None) -> ParsedReceipt | None:
    return parse(decode_html(markup), vendor)


def parse_text(text: str, vendor: VendorProfile | None = None) -> ParsedReceipt | None:
    return parse(decode_text(text), vendor)


def parse_image(
    body: bytes, vendor: VendorProfile | None = None, *, engine: OcrEngine
) -> ParsedReceipt | None:
    return parse(decode_image(body, engine=engine), vendor)
