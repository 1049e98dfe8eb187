from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal, Mapping

ReceiptFormat = Literal["pdf", "html", "text"]


@dataclass(frozen=True)
class VendorProfile:
    vendor_id: str
    name: str
    display_name: str
    detection_patterns: tuple[re.Pattern[str], ...]
    receipt_format: ReceiptFormat
    ledger_vendor_name: str
    category: str
    extractors: Mapping[str, re.Pattern[str]] = field(default_factory=dict)

    def matches(self, haystack: str) -> bool:
        return any(p.search(haystack) for p in self.detection_patterns)


def _patterns(*sources: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(s, re.I) for s in sources)


def _extractors(**sources: str) -> Mapping[str, re.Pattern[str]]:
    return MappingProxyType({k: re.compile(v, re.I) for k, v in sources.items()})


_AMOUNT = r"\$?([\d,]+\.?\d*)"
_TOTAL = r"(?<!sub\s)(?<!sub)\btotal"
_SLASH_DATE = r"(\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})"
_REF = r"((?=[\w\-]*\d)\w[\w\-]*)"

# Declaration order is detection priority: the first profile with a matching pattern wins.
VENDORS: tuple[VendorProfile, ...] = (
    VendorProfile(
        vendor_id="home-depot",
        name="Home Depot",
        display_name="The Home Depot",
        detection_patterns=_patterns(r"homedepot\.com", r"home\s*depot", r"order@homedepot"),
        receipt_format="pdf",
        ledger_vendor_name="The Home Depot",
        category="Materials & Supplies",
        extractors=_extractors(
            total=rf"(?:order\s*total|grand\s*total|{_TOTAL})[:\s]*{_AMOUNT}",
            date=rf"(?:order\s*date|date)[:\s]*{_SLASH_DATE}",
            order_number=r"order\s*(?:#|number|no\.?)\s*:?\s*" + _REF,
            card_last4=r"(?:visa|mastercard|amex|discover)[^\d]*(\d{4})",
        ),
    ),
    VendorProfile(
        vendor_id="lowes",
        name="Lowes",
        display_name="Lowe's",
        detection_patterns=_patterns(r"lowes\.com", r"lowe'?s", r"receipt@lowes"),
        receipt_format="html",
        ledger_vendor_name="Lowe's",
        category="Materials & Supplies",
        extractors=_extractors(
            total=rf"(?:order\s*total|{_TOTAL})[:\s]*{_AMOUNT}",
            date=_SLASH_DATE,
            order_number=r"order\s*(?:#|number|no\.?)?\s*:?\s*(\d{6,})",
            card_last4=r"ending\s*in\s*(\d{4})",
        ),
    ),
    VendorProfile(
        vendor_id="amazon",
        name="Amazon",
        display_name="Amazon.com",
        detection_patterns=_patterns(
            r"amazon\.com", r"auto-confirm@amazon", r"ship-confirm@amazon"
        ),
        receipt_format="html",
        ledger_vendor_name="Amazon.com",
        category="Materials & Supplies",
        extractors=_extractors(
            total=rf"(?:order\s*total|grand\s*total)[:\s]*{_AMOUNT}",
            date=r"(?:order\s*placed|ordered\s*on)[:\s]*(\w+\s+\d{1,2},?\s*\d{4})",
            order_number=r"order\s*(?:#|number)?\s*:?\s*(\d{3}-\d{7}-\d{7})",
            card_last4=r"ending\s*in\s*(\d{4})",
        ),
    ),
    VendorProfile(
        vendor_id="ced",
        name="CED",
        display_name="Consolidated Electrical Distributors",
        detection_patterns=_patterns(r"ced\.com", r"cedcareers", r"consolidated\s*electrical"),
        receipt_format="pdf",
        ledger_vendor_name="CED",
        category="Electrical Supplies",
        extractors=_extractors(
            total=rf"(?:{_TOTAL}|amount\s*due)[:\s]*{_AMOUNT}",
            date=rf"(?:invoice\s*date|date)[:\s]*{_SLASH_DATE}",
            invoice_number=r"invoice\s*(?:#|number|no\.?)?\s*:?\s*" + _REF,
        ),
    ),
    VendorProfile(
        vendor_id="ace-hardware",
        name="Ace Hardware",
        display_name="Ace Hardware",
        detection_patterns=_patterns(r"acehardware\.com", r"ace\s*hardware"),
        receipt_format="html",
        ledger_vendor_name="Ace Hardware",
        category="Materials & Supplies",
        extractors=_extractors(
            total=rf"{_TOTAL}[:\s]*{_AMOUNT}",
            date=_SLASH_DATE,
        ),
    ),
    VendorProfile(
        vendor_id="alpha-supply",
        name="Alpha Supply",
        display_name="Alpha Supply",
        detection_patterns=_patterns(r"alpha\s*supply", r"alphasupply", r"@alphasupply\."),
        receipt_format="pdf",
        ledger_vendor_name="Alpha Supply",
        category="Electrical Supplies",
        extractors=_extractors(
            total=rf"(?:invoice\s*total|amount\s*due|{_TOTAL})[:\s]*{_AMOUNT}",
            date=rf"(?:invoice\s*date|date)[:\s]*{_SLASH_DATE}",
            invoice_number=r"(?:invoice|inv)\s*(?:#|number|no\.?)?\s*:?\s*" + _REF,
            order_number=r"\b(?:order\s*#?|p\.?o\.?)[:\s]*" + _REF,
            card_last4=r"(?:card|visa|mastercard|amex)[^\d]*(\d{4})",
        ),
    ),
    VendorProfile(
        vendor_id="read-lighting",
        name="Read Lighting",
        display_name="Read Lighting",
        detection_patterns=_patterns(
            r"read\s*lighting", r"readlighting", r"\brlt\b", r"@readlighting\."
        ),
        receipt_format="pdf",
        ledger_vendor_name="Read Lighting",
        category="Electrical Supplies",
        extractors=_extractors(
            total=rf"(?:grand\s*total|amount\s*due|{_TOTAL})[:\s]*{_AMOUNT}",
            date=rf"(?:invoice\s*date|date)[:\s]*{_SLASH_DATE}",
            invoice_number=r"(?:invoice|inv)\s*(?:#|number|no\.?)?\s*:?\s*" + _REF,
            order_number=r"\b(?:order\s*#?|p\.?o\.?)[:\s]*" + _REF,
            card_last4=r"(?:card|visa|mastercard|amex)[^\d]*(\d{4})",
        ),
    ),
)

_BY_ID: Mapping[str, VendorProfile] = MappingProxyType({v.vendor_id: v for v in VENDORS})


def detect_vendor(
    sender: str | None, subject: str | None = None, snippet: str | None = None
) -> VendorProfile | None:
    haystack = " ".join([sender or "", subject or "", snippet or ""]).lower()
    for vendor in VENDORS:
        if vendor.matches(haystack):
            return vendor
    return None


def get_vendor(vendor_id: str | None) -> VendorProfile | None:
    if not vendor_id:
        return None
    return _BY_ID.get(vendor_id)


def all_ledger_vendor_names() -> list[str]:
    return [v.ledger_vendor_name for v in VENDORS]


def search_keywords() -> list[str]:
    """Phrases used to pre-filter a mailbox for receipt-like messages."""
    keywords = [v.name.lower() for v in VENDORS]
    keywords += ["lowe's", "receipt", "order confirmation", "invoice", "your order"]
    return list(dict.fromkeys(keywords))
