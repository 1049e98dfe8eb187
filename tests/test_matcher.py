from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from receipt_reconciler.modules.ledger.matcher import (
    MatchCandidate,
    TransactionMatcher,
    find_best_match,
    score_candidate,
)

TXN_DATE = date(2025, 11, 23)


def _purchase(txn_id: str, total, txn_date: str = "2025-11-23", cc: str | None = None) -> dict:
    raw = {"Id": txn_id, "TxnDate": txn_date, "TotalAmt": total, "SyncToken": "0"}
    if cc:
        raw["Credit"] = {"CCDetail": {"CCNumber": cc}}
    return raw


def test_candidate_from_purchase():
    candidate = MatchCandidate.from_purchase(
        {**_purchase("55", 119.76, cc="************1234"), "EntityRef": {"value": "7"}}
    )
    assert candidate.transaction_id == "55"
    assert candidate.total == Decimal("119.76")
    assert candidate.txn_date == TXN_DATE
    assert candidate.card_last4 == "1234"
    assert candidate.vendor_ref == "7"


def test_exact_match_scores_amount_date_and_card():
    candidate = MatchCandidate.from_purchase(_purchase("55", "119.76", cc="4111111111111234"))

    score = score_candidate(
        candidate, total=Decimal("119.76"), transaction_date=TXN_DATE, card_last4="1234"
    )

    assert score == 180


def test_near_misses_score_lower():
    close = MatchCandidate.from_purchase(_purchase("1", "119.80", txn_date="2025-11-24"))
    far = MatchCandidate.from_purchase(_purchase("2", "122.00", txn_date="2025-11-26"))

    assert score_candidate(close, total=Decimal("119.76"), transaction_date=TXN_DATE) == 100
    assert score_candidate(far, total=Decimal("119.76"), transaction_date=TXN_DATE) == 20


def test_day_delta_is_symmetric():
    before = MatchCandidate.from_purchase(_purchase("1", "10.00", txn_date="2025-11-22"))
    after = MatchCandidate.from_purchase(_purchase("2", "10.00", txn_date="2025-11-24"))

    assert score_candidate(before, total=Decimal("10.00"), transaction_date=TXN_DATE) == 120
    assert score_candidate(after, total=Decimal("10.00"), transaction_date=TXN_DATE) == 120


def test_below_threshold_is_rejected():
    far = MatchCandidate.from_purchase(_purchase("2", "122.00", txn_date="2025-11-26"))

    assert find_best_match([far], total=Decimal("119.76"), transaction_date=TXN_DATE) is None


def test_best_score_wins_and_ties_keep_first():
    first = MatchCandidate.from_purchase(_purchase("1", "50.00"))
    second = MatchCandidate.from_purchase(_purchase("2", "50.00"))
    better = MatchCandidate.from_purchase(_purchase("3", "50.00", cc="9999"))

    tie = find_best_match([first, second], total=Decimal("50.00"), transaction_date=TXN_DATE)
    assert tie.candidate.transaction_id == "1"
    assert tie.score == 130

    best = find_best_match(
        [first, second, better],
        total=Decimal("50.00"),
        transaction_date=TXN_DATE,
        card_last4="9999",
    )
    assert best.candidate.transaction_id == "3"
    assert best.score == 180


def test_matcher_queries_the_date_window(fake_ledger):
    fake_ledger.rows["Purchase"] = [_purchase("55", "119.76", cc="1234")]
    matcher = TransactionMatcher(fake_ledger, window_days=3, threshold=80)
    receipt = SimpleNamespace(total=Decimal("119.76"), transaction_date=TXN_DATE, card_last4="1234")

    result = matcher.find(receipt)

    assert fake_ledger.queries == [
        ("Purchase", "TxnDate >= '2025-11-20' AND TxnDate <= '2025-11-26'")
    ]
    assert result.candidate.transaction_id == "55"
    assert result.score == 180
    assert result.candidate.raw["SyncToken"] == "0"


def test_matcher_skips_query_without_total_or_date(fake_ledger):
    matcher = TransactionMatcher(fake_ledger)

    no_total = SimpleNamespace(total=None, transaction_date=TXN_DATE, card_last4=None)
    no_date = SimpleNamespace(total=Decimal("1.00"), transaction_date=None, card_last4=None)

    assert matcher.find(no_total) is None
    assert matcher.find(no_date) is None
    assert fake_ledger.queries == []


def test_matcher_defaults_come_from_settings(fake_ledger, monkeypatch):
    from receipt_reconciler.core.config import settings

    monkeypatch.setattr(settings, "match_window_days", 5)
    monkeypatch.setattr(settings, "match_threshold", 150)
    matcher = TransactionMatcher(fake_ledger)
    fake_ledger.rows["Purchase"] = [_purchase("55", "119.76")]

    receipt = SimpleNamespace(total=Decimal("119.76"), transaction_date=TXN_DATE, card_last4=None)

    assert matcher.window_days == 5
    assert matcher.find(receipt) is None
    assert fake_ledger.queries[0][1] == "TxnDate >= '2025-11-18' AND TxnDate <= '2025-11-28'"
