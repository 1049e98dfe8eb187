from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Protocol

from receipt_reconciler.core.config import settings
from receipt_reconciler.core.logging import get_logger, log_event, monotonic_ms
from receipt_reconciler.modules.extraction.fields import parse_currency, parse_date
from receipt_reconciler.modules.ledger.client import LedgerProvider, quote

logger = get_logger(__name__)


class Matchable(Protocol):
    total: Decimal | None
    transaction_date: date | None
    card_last4: str | None


@dataclass(frozen=True)
class MatchCandidate:
    transaction_id: str
    txn_date: date | None
    total: Decimal | None
    vendor_ref: str | None = None
    card_last4: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_purchase(cls, raw: dict[str, Any]) -> MatchCandidate:
        cc_number = ((raw.get("Credit") or {}).get("CCDetail") or {}).get("CCNumber")
        return cls(
            transaction_id=str(raw.get("Id")),
            txn_date=parse_date(raw.get("TxnDate")),
            total=parse_currency(raw.get("TotalAmt")),
            vendor_ref=(raw.get("EntityRef") or {}).get("value"),
            card_last4=str(cc_number)[-4:] if cc_number else None,
            raw=raw,
        )


@dataclass(frozen=True)
class MatchResult:
    candidate: MatchCandidate
    score: int


def score_candidate(
    candidate: MatchCandidate,
    *,
    total: Decimal,
    transaction_date: date,
    card_last4: str | None = None,
) -> int:
    score = 0

    if candidate.total is not None:
        delta = abs(candidate.total - total)
        if delta == 0:
            score += 100
        elif delta < Decimal("0.10"):
            score += 80
        elif delta < Decimal("1.00"):
            score += 50
        elif delta < Decimal("5.00"):
            score += 20

    if candidate.txn_date is not None:
        days = abs((candidate.txn_date - transaction_date).days)
        if days == 0:
            score += 30
        elif days <= 1:
            score += 20

    if card_last4 and candidate.card_last4 and candidate.card_last4 == card_last4:
        score += 50

    return score


def find_best_match(
    candidates: Iterable[MatchCandidate],
    *,
    total: Decimal,
    transaction_date: date,
    card_last4: str | None = None,
    threshold: int = 80,
) -> MatchResult | None:
    """Highest score wins; on a tie the first candidate seen is kept."""
    best: MatchCandidate | None = None
    best_score = 0
    for candidate in candidates:
        score = score_candidate(
            candidate, total=total, transaction_date=transaction_date, card_last4=card_last4
        )
        if score > best_score:
            best, best_score = candidate, score
    if best is None or best_score < threshold:
        return None
    return MatchResult(candidate=best, score=best_score)


class TransactionMatcher:
    def __init__(
        self,
        ledger: LedgerProvider,
        *,
        window_days: int | None = None,
        threshold: int | None = None,
    ) -> None:
        self.ledger = ledger
        self.window_days = settings.match_window_days if window_days is None else window_days
        self.threshold = settings.match_threshold if threshold is None else threshold

    def candidates(self, transaction_date: date) -> list[MatchCandidate]:
        start = transaction_date - timedelta(days=self.window_days)
        end = transaction_date + timedelta(days=self.window_days)
        rows = self.ledger.query(
            "Purchase",
            f"TxnDate >= {quote(start.isoformat())} AND TxnDate <= {quote(end.isoformat())}",
        )
        return [MatchCandidate.from_purchase(row) for row in rows]

    def find(self, receipt: Matchable) -> MatchResult | None:
        if receipt.total is None or receipt.transaction_date is None:
            return None

        start = time.monotonic()
        candidates = self.candidates(receipt.transaction_date)
        result = find_best_match(
            candidates,
            total=Decimal(receipt.total),
            transaction_date=receipt.transaction_date,
            card_last4=receipt.card_last4,
            threshold=self.threshold,
        )
        log_event(
            logger,
            "match.search.finish",
            candidate_count=len(candidates),
            matched=result is not None,
            transaction_id=result.candidate.transaction_id if result else None,
            score=result.score if result else None,
            duration_ms=monotonic_ms(start),
        )
        return result
