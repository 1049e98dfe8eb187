from __future__ import annotations

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENTS = Decimal("0.01")

_DATE_FORMATS = (
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%Y-%m-%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%m/%d/%y",
    "%m-%d-%y",
)

_DATE_SCAN_RE = re.compile(
    r"\b("
    r"\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}/\d{1,2}/\d{2,4}"
    r"|\d{1,2}-\d{1,2}-\d{2,4}"
    r"|[A-Za-z]{3,9}\.?\s+\d{1,2},?\s*\d{4}"
    r")\b"
)

_AMOUNT_RE = re.compile(r"\$?([\d,]+\.\d{2})\b")
_DOLLAR_AMOUNT_RE = re.compile(r"\$\s?([\d,]+\.\d{2})\b")

_CARD_LAST4_PATTERNS = (
    re.compile(r"ending\s*in\s*(\d{4})", re.I),
    re.compile(r"\*+\s?(\d{4})"),
    re.compile(r"x+(\d{4})", re.I),
    re.compile(r"(\d{4})$"),
)

_JOB_NAME_PATTERNS = (
    re.compile(r"(?:job|project|customer)[:\s]+([^\n\r,]+)", re.I),
    re.compile(
        r"(?:for|re)[:\s]+([^\n\r,]+(?:remodel|renovation|install|repair|house|home))", re.I
    ),
)

# Checked in order; "american express" must not be claimed by a later generic match.
_PAYMENT_METHODS = (
    ("VISA", re.compile(r"\bvisa\b", re.I)),
    ("MASTERCARD", re.compile(r"\bmaster\s*card\b", re.I)),
    ("AMEX", re.compile(r"\bamex\b|\bamerican\s+express\b", re.I)),
    ("DISCOVER", re.compile(r"\bdiscover\b", re.I)),
    ("DEBIT", re.compile(r"\bdebit\b", re.I)),
    ("CASH", re.compile(r"\bcash\b", re.I)),
    ("CHECK", re.compile(r"\bcheck\s*(?:#|no\.?|number)?\s*\d+|\bpaid\s+by\s+check\b", re.I)),
)


def quantize_cents(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def parse_currency(value: str | int | float | Decimal | None) -> Decimal | None:
    """Turn "$1,234.56" style text (or a number) into a cents-quantized Decimal."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        try:
            return quantize_cents(Decimal(str(value)))
        except InvalidOperation:
            return None

    cleaned = re.sub(r"[$,\s]", "", str(value))
    m = re.match(r"-?(?:\d+\.?\d*|\.\d+)", cleaned)
    if not m:
        return None
    try:
        return quantize_cents(Decimal(m.group(0)))
    except InvalidOperation:
        return None


def parse_date(value: str | date | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    raw = re.sub(r"\s+", " ", str(value)).strip()
    if not raw:
        return None
    raw = re.sub(r"\s*,\s*", ", ", raw)
    raw = re.sub(r"^([A-Za-z]{3,9})\.", r"\1", raw)

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue

    # ISO timestamps ("2025-11-23T10:15:00Z") and similar.
    m = re.match(r"(\d{4}-\d{2}-\d{2})[T ]", raw)
    if m:
        try:
            return date.fromisoformat(m.group(1))
        except ValueError:
            return None
    return None


def format_date(value: date | None) -> str | None:
    return value.isoformat() if value else None


def extract_card_last4(text: str | None) -> str | None:
    if not text:
        return None
    for pattern in _CARD_LAST4_PATTERNS:
        m = pattern.search(text)
        if m:
            return m.group(1)
    return None


def extract_job_name(text: str | None) -> str | None:
    if not text:
        return None
    for pattern in _JOB_NAME_PATTERNS:
        m = pattern.search(text)
        if m:
            name = m.group(1).strip()
            if name:
                return name
    return None


def normalize_vendor_name(name: str | None) -> str | None:
    if not name:
        return None
    collapsed = re.sub(r"\s+", " ", name.strip())
    return re.sub(r"[^\w\s\-']", "", collapsed)


def detect_payment_method(text: str | None) -> str | None:
    if not text:
        return None
    for label, pattern in _PAYMENT_METHODS:
        if pattern.search(text):
            return label
    return None


def find_all_amounts(text: str, *, require_symbol: bool = False) -> list[Decimal]:
    pattern = _DOLLAR_AMOUNT_RE if require_symbol else _AMOUNT_RE
    amounts: list[Decimal] = []
    for m in pattern.finditer(text or ""):
        amount = parse_currency(m.group(1))
        if amount is not None:
            amounts.append(amount)
    return amounts


def find_all_dates(text: str) -> list[date]:
    """Every parseable date in source order, first occurrence only."""
    seen: set[date] = set()
    out: list[date] = []
    for m in _DATE_SCAN_RE.finditer(text or ""):
        d = parse_date(m.group(1))
        if d and d not in seen:
            seen.add(d)
            out.append(d)
    return out


def first_match(patterns, text: str, *, group: int = 1) -> str | None:
    for pattern in patterns:
        m = pattern.search(text)
        if m and m.group(group):
            return m.group(group).strip()
    return None


def first_amount(patterns, text: str) -> Decimal | None:
    """First pattern whose first match parses as money wins."""
    for pattern in patterns:
        m = pattern.search(text)
        if not m:
            continue
        amount = parse_currency(m.group(1))
        if amount is not None:
            return amount
    return None


def first_date(patterns, text: str) -> date | None:
    for pattern in patterns:
        m = pattern.search(text)
        if not m:
            continue
        d = parse_date(m.group(1))
        if d is not None:
            return d
    return None
