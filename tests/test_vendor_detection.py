from __future__ import annotations

import pytest

from receipt_reconciler.modules.vendors.registry import (
    VENDORS,
    all_ledger_vendor_names,
    detect_vendor,
    get_vendor,
    search_keywords,
)


@pytest.mark.parametrize(
    ("sender", "subject", "expected"),
    [
        ("HomeDepot <order@homedepot.com>", "Your receipt", "home-depot"),
        ("Lowe's <receipt@lowes.com>", None, "lowes"),
        ("auto-confirm@amazon.com", "Your Amazon.com order", "amazon"),
        ("billing@ced.com", "Invoice 1001", "ced"),
        ("noreply@acehardware.com", None, "ace-hardware"),
        ("ar@alphasupply.net", "Invoice", "alpha-supply"),
        ("orders@readlighting.com", None, "read-lighting"),
        ("someone@example.com", "RLT invoice attached", "read-lighting"),
    ],
)
def test_detect_vendor_by_sender_and_subject(sender, subject, expected):
    vendor = detect_vendor(sender, subject)
    assert vendor is not None
    assert vendor.vendor_id == expected


def test_detect_vendor_uses_registry_order_on_ambiguity():
    # Mentions both; Home Depot is declared first.
    vendor = detect_vendor("deals@example.com", "Home Depot beats Lowe's prices")
    assert vendor.vendor_id == "home-depot"


def test_detect_vendor_checks_snippet_and_returns_none_for_unknown():
    assert detect_vendor(None, None, "Thanks for shopping at The Home Depot").vendor_id == (
        "home-depot"
    )
    assert detect_vendor("friend@example.com", "Lunch?") is None
    # "rlt" only matches as a whole word.
    assert detect_vendor("worlton@example.com", "Hello") is None


def test_registry_lookups():
    assert [v.vendor_id for v in VENDORS] == [
        "home-depot",
        "lowes",
        "amazon",
        "ced",
        "ace-hardware",
        "alpha-supply",
        "read-lighting",
    ]
    assert get_vendor("ced").category == "Electrical Supplies"
    assert get_vendor("nope") is None
    assert get_vendor(None) is None
    assert "Lowe's" in all_ledger_vendor_names()
    keywords = search_keywords()
    assert "home depot" in keywords
    assert "receipt" in keywords
    assert len(keywords) == len(set(keywords))
