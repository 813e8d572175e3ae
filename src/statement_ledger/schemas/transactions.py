"""
Records flowing through the import pipeline.

RawRecord -> NormalizedTransaction -> (DuplicateVerdict, CategorySuggestion).
All records are frozen; derived records are recomputed on every preview.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any


@dataclass(frozen=True)
class ColumnRoles:
    """Column index per field role for a RawRecord (None = not present)."""

    date: int | None = None
    description: int | None = None
    amount: int | None = None
    debit: int | None = None
    credit: int | None = None
    currency: int | None = None
    balance: int | None = None

    @property
    def has_amount(self) -> bool:
        return self.amount is not None or self.debit is not None or self.credit is not None

    @property
    def is_usable(self) -> bool:
        """Date, description and some amount column are all known."""
        return self.date is not None and self.description is not None and self.has_amount

    def max_index(self) -> int:
        indexes = [i for i in vars(self).values() if i is not None]
        return max(indexes) if indexes else -1


# Layout produced by normalize_to_raw: date, description, debit, currency
CANONICAL_ROLES = ColumnRoles(date=0, description=1, debit=2, currency=3)


@dataclass(frozen=True)
class RawRecord:
    """One row/block from a source file, before interpretation."""

    fields: tuple[str, ...]
    roles: ColumnRoles
    line_number: int  # 1-based line in the file, or line within the page
    page: int | None = None  # 1-based PDF page
    source: str = "csv"
    ref: str | None = None  # Explicit source reference, overrides the derived one

    def get(self, role: str) -> str | None:
        """Return the raw value for a role, or None when absent/empty."""
        index = getattr(self.roles, role)
        if index is None or index >= len(self.fields):
            return None
        value = self.fields[index].strip()
        return value or None

    @property
    def source_ref(self) -> str:
        """Opaque pointer back to this record for diagnostics."""
        if self.ref is not None:
            return self.ref
        if self.page is not None:
            return f"{self.source}:p{self.page}:l{self.line_number}"
        return f"{self.source}:l{self.line_number}"

    @property
    def text(self) -> str:
        return " | ".join(self.fields)


@dataclass(frozen=True)
class ParseError:
    """A file- or row-level problem. Non-fatal unless `fatal` is set."""

    message: str
    line_number: int | None = None
    page: int | None = None
    raw: str | None = None
    fatal: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "line_number": self.line_number,
            "page": self.page,
            "raw": self.raw,
            "fatal": self.fatal,
        }

    def __str__(self) -> str:
        where = []
        if self.page is not None:
            where.append(f"page {self.page}")
        if self.line_number is not None:
            where.append(f"line {self.line_number}")
        prefix = f"{', '.join(where)}: " if where else ""
        return f"{prefix}{self.message}"


@dataclass(frozen=True)
class NormalizedTransaction:
    """Canonical transaction. amount > 0 is money the user spent."""

    date: date
    description: str
    amount: Decimal
    currency: str
    source_ref: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": str(self.amount),
            "currency": self.currency,
            "source_ref": self.source_ref,
        }


@dataclass(frozen=True)
class SignalScore:
    """Individual signal contribution to a duplicate confidence."""

    signal: str
    score: float
    weight: float
    detail: str

    @property
    def weighted_score(self) -> float:
        return self.score * self.weight


@dataclass(frozen=True)
class DuplicateMatch:
    """One existing ledger entry that may be the same transaction."""

    entry_id: str
    confidence: float
    signals: tuple[SignalScore, ...] = ()

    @property
    def reasons(self) -> list[str]:
        return [f"{s.signal} ({s.detail})" for s in self.signals if s.score > 0.5]


@dataclass(frozen=True)
class DuplicateVerdict:
    """Duplicate assessment for one transaction."""

    has_duplicates: bool = False
    duplicate_count: int = 0
    highest_confidence: float = 0.0
    auto_skip: bool = False
    needs_review: bool = False
    best_match: DuplicateMatch | None = None
    error: str | None = None

    @classmethod
    def none(cls, error: str | None = None) -> DuplicateVerdict:
        """Conservative verdict: nothing flagged."""
        return cls(error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_duplicates": self.has_duplicates,
            "duplicate_count": self.duplicate_count,
            "highest_confidence": self.highest_confidence,
            "auto_skip": self.auto_skip,
            "needs_review": self.needs_review,
            "best_match_id": self.best_match.entry_id if self.best_match else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class CategoryAlternative:
    category: str
    confidence: float


class SuggestionSource:
    ALIAS = "alias"
    RULE = "rule"
    DEFAULT = "default"


@dataclass(frozen=True)
class CategorySuggestion:
    """Proposed category for one transaction."""

    category: str
    confidence: float
    reasoning: str | None = None
    alternatives: tuple[CategoryAlternative, ...] = ()
    below_threshold: bool = False
    source: str = SuggestionSource.RULE
    alias_key: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "alternatives": [
                {"category": alt.category, "confidence": alt.confidence}
                for alt in self.alternatives
            ],
            "below_threshold": self.below_threshold,
            "source": self.source,
            "error": self.error,
        }


@dataclass(frozen=True)
class StatementMetadata:
    """Statement-level facts found while parsing."""

    parser: str = ""
    bank_name: str | None = None
    account_number: str | None = None
    period_start: str | None = None
    period_end: str | None = None
    currency: str | None = None
    template: str | None = None
    page_count: int | None = None
    notes: tuple[str, ...] = ()


@dataclass
class ParseOutcome:
    """Result of parsing one file."""

    records: list[RawRecord] = field(default_factory=list)
    errors: list[ParseError] = field(default_factory=list)
    requires_image_fallback: bool = False
    metadata: StatementMetadata = field(default_factory=StatementMetadata)

    @property
    def has_fatal_error(self) -> bool:
        return any(e.fatal for e in self.errors)
