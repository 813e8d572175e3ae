"""Duplicate detection against the existing ledger.

Each normalized transaction is compared with ledger entries of the same
group. Candidates must match the amount exactly and fall inside the date
window; they are scored on three weighted signals:

- Amount: exact match required (gate, full weight)
- Date: linear decay with distance inside the window
- Description: best of edit-distance ratio and token overlap

Only the best candidate decides the verdict.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from ..config import DuplicateConfig
from ..errors import DuplicateDetectionError
from ..schemas.transactions import (
    DuplicateMatch,
    DuplicateVerdict,
    NormalizedTransaction,
    SignalScore,
)

if TYPE_CHECKING:
    from ..state_store.base import ExistingEntry, LedgerStore

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")


def normalize_text(text: str | None) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    if not text:
        return ""
    return " ".join(_PUNCTUATION.sub(" ", text.lower()).split())


def levenshtein_ratio(a: str, b: str) -> float:
    """Similarity in [0, 1] from the Levenshtein edit distance."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (char_a != char_b),
                )
            )
        previous = current
    return 1.0 - previous[-1] / len(a)


def token_overlap(a: str, b: str) -> float:
    """Jaccard overlap of the word sets of a and b."""
    words_a, words_b = set(a.split()), set(b.split())
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def description_similarity(a: str | None, b: str | None) -> float:
    """Similarity of two free-text descriptions in [0, 1]."""
    norm_a, norm_b = normalize_text(a), normalize_text(b)
    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    return max(levenshtein_ratio(norm_a, norm_b), token_overlap(norm_a, norm_b))


@dataclass(frozen=True)
class DuplicateSummary:
    """Counts of verdicts in one preview."""

    unique: int = 0
    needs_review: int = 0
    auto_skip: int = 0
    errors: int = 0


def summarize_verdicts(verdicts: list[DuplicateVerdict]) -> DuplicateSummary:
    return DuplicateSummary(
        unique=sum(1 for v in verdicts if not v.auto_skip and not v.needs_review),
        needs_review=sum(1 for v in verdicts if v.needs_review),
        auto_skip=sum(1 for v in verdicts if v.auto_skip),
        errors=sum(1 for v in verdicts if v.error),
    )


class DuplicateDetector:
    """Scores normalized transactions against existing ledger entries."""

    WEIGHT_AMOUNT = 0.40
    WEIGHT_DATE = 0.30
    WEIGHT_DESCRIPTION = 0.30

    def __init__(self, config: DuplicateConfig | None = None) -> None:
        self.config = config or DuplicateConfig()

    def detect(
        self,
        transactions: list[NormalizedTransaction],
        ledger: LedgerStore,
        group_id: str,
    ) -> list[DuplicateVerdict]:
        """Produce one verdict per transaction, in order.

        A store failure for one transaction yields a conservative verdict
        carrying the error; it never stops the batch.
        """
        verdicts = [self.check(tx, ledger, group_id) for tx in transactions]
        summary = summarize_verdicts(verdicts)
        logger.info(
            "Duplicate check: %d unique, %d need review, %d auto-skipped, %d errors",
            summary.unique,
            summary.needs_review,
            summary.auto_skip,
            summary.errors,
        )
        return verdicts

    def check(
        self,
        transaction: NormalizedTransaction,
        ledger: LedgerStore,
        group_id: str,
    ) -> DuplicateVerdict:
        """Verdict for a single transaction."""
        try:
            candidates = self._candidates(transaction, ledger, group_id)
        except DuplicateDetectionError as e:
            logger.warning("Duplicate lookup failed for %s: %s", transaction.source_ref, e)
            return DuplicateVerdict.none(error=str(e))

        return self.evaluate(transaction, candidates, group_id)

    def _candidates(
        self,
        transaction: NormalizedTransaction,
        ledger: LedgerStore,
        group_id: str,
    ) -> list[ExistingEntry]:
        window = timedelta(days=self.config.date_window_days)
        try:
            return ledger.query_candidates(
                (transaction.date - window, transaction.date + window),
                transaction.amount,
                group_id,
            )
        except Exception as e:
            raise DuplicateDetectionError(f"Duplicate check failed: {e}") from e

    def evaluate(
        self,
        transaction: NormalizedTransaction,
        candidates: list[ExistingEntry],
        group_id: str | None = None,
    ) -> DuplicateVerdict:
        """Score candidates and derive the verdict from the best one."""
        matches = [
            match
            for match in (self.score(transaction, entry, group_id) for entry in candidates)
            if match is not None
        ]
        if not matches:
            return DuplicateVerdict.none()

        matches.sort(key=lambda m: (-m.confidence, m.entry_id))
        best = matches[0]
        flagged = [m for m in matches if m.confidence >= self.config.review_threshold]

        auto_skip = best.confidence >= self.config.auto_skip_threshold
        needs_review = (
            self.config.review_threshold <= best.confidence < self.config.auto_skip_threshold
        )
        if flagged:
            logger.debug(
                "%s matches entry %s (confidence %.2f: %s)",
                transaction.source_ref,
                best.entry_id,
                best.confidence,
                ", ".join(best.reasons),
            )

        return DuplicateVerdict(
            has_duplicates=bool(flagged),
            duplicate_count=len(flagged),
            highest_confidence=best.confidence,
            auto_skip=auto_skip,
            needs_review=needs_review,
            best_match=best,
        )

    def score(
        self,
        transaction: NormalizedTransaction,
        entry: ExistingEntry,
        group_id: str | None = None,
    ) -> DuplicateMatch | None:
        """Score one ledger entry, or None if it is not a candidate at all."""
        if group_id is not None and entry.group_id is not None and entry.group_id != group_id:
            return None
        if entry.currency and entry.currency != transaction.currency:
            return None

        amount = self._score_amount(transaction, entry)
        if amount.score == 0.0:
            return None

        date_signal = self._score_date(transaction, entry)
        if date_signal.score == 0.0:
            return None

        description = self._score_description(transaction, entry)
        if description.score < self.config.description_floor:
            return None

        signals = (amount, date_signal, description)
        confidence = sum(s.weighted_score for s in signals)
        confidence = round(min(1.0, max(0.0, confidence)), 4)
        return DuplicateMatch(entry_id=entry.entry_id, confidence=confidence, signals=signals)

    def _score_amount(
        self, transaction: NormalizedTransaction, entry: ExistingEntry
    ) -> SignalScore:
        # Exact match only, no partial credit
        if transaction.amount == entry.amount:
            return SignalScore(
                signal="amount",
                score=1.0,
                weight=self.WEIGHT_AMOUNT,
                detail=f"exact: {transaction.amount}",
            )
        return SignalScore(
            signal="amount",
            score=0.0,
            weight=self.WEIGHT_AMOUNT,
            detail=f"mismatch: {transaction.amount} vs {entry.amount}",
        )

    def _score_date(
        self, transaction: NormalizedTransaction, entry: ExistingEntry
    ) -> SignalScore:
        days_diff = abs((transaction.date - entry.date).days)
        window = self.config.date_window_days

        if days_diff == 0:
            return SignalScore(signal="date", score=1.0, weight=self.WEIGHT_DATE, detail="same day")
        if days_diff <= window:
            return SignalScore(
                signal="date",
                score=1.0 - days_diff / (window + 1),
                weight=self.WEIGHT_DATE,
                detail=f"{days_diff} days",
            )
        return SignalScore(
            signal="date", score=0.0, weight=self.WEIGHT_DATE, detail=f">{window} days"
        )

    def _score_description(
        self, transaction: NormalizedTransaction, entry: ExistingEntry
    ) -> SignalScore:
        similarity = description_similarity(transaction.description, entry.description)
        if similarity == 1.0:
            detail = "exact"
        elif similarity == 0.0:
            detail = "no match"
        else:
            detail = f"similarity {similarity:.2f}"
        return SignalScore(
            signal="description",
            score=similarity,
            weight=self.WEIGHT_DESCRIPTION,
            detail=detail,
        )
