"""
Ledger entry payload builder.

Core Invariants:
- Sum of split shares equals the entry amount
- The last share absorbs rounding differences
- All amounts are positive (amount = money the payer spent)
- Same input -> same output (deterministic)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import ImportConfig, SplitRule
    from .transactions import NormalizedTransaction

logger = logging.getLogger(__name__)

# Rounding precision for currency amounts
CURRENCY_PRECISION = Decimal("0.01")


class SplitValidationError(Exception):
    """Raised when split shares don't add up."""

    pass


@dataclass(frozen=True)
class SplitShare:
    """One participant's part of an expense."""

    participant: str
    amount: Decimal


@dataclass
class LedgerEntry:
    """An expense entry ready to be written to the ledger."""

    group_id: str
    date: date
    description: str
    amount: Decimal
    currency: str
    category: str
    payer: str
    splits: list[SplitShare] = field(default_factory=list)
    external_id: str | None = None
    import_batch_id: str | None = None
    source_ref: str | None = None

    def validate(self) -> list[str]:
        """Validate the entry.

        Returns:
            List of validation errors (empty if valid).
        """
        errors: list[str] = []
        if self.amount <= 0:
            errors.append(f"Amount must be positive, got {self.amount}")
        if not self.description.strip():
            errors.append("Description is empty")
        if self.splits:
            split_sum = sum(s.amount for s in self.splits)
            if split_sum != self.amount:
                errors.append(f"Split sum ({split_sum}) != total ({self.amount})")
        return errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON document stored by ledger backends."""
        return {
            "group_id": self.group_id,
            "date": self.date.isoformat(),
            "description": self.description,
            "amount": str(self.amount.quantize(CURRENCY_PRECISION)),
            "currency": self.currency,
            "category": self.category,
            "payer": self.payer,
            "splits": [
                {"participant": s.participant, "amount": str(s.amount)} for s in self.splits
            ],
            "external_id": self.external_id,
            "import_batch_id": self.import_batch_id,
            "source_ref": self.source_ref,
        }


def build_split_shares(amount: Decimal, rule: SplitRule, payer: str) -> list[SplitShare]:
    """Divide an amount according to a split rule.

    Each share is rounded down to the cent; the last share absorbs the
    remainder so the sum always equals the amount.

    Raises:
        SplitValidationError: If the rule cannot be applied
    """
    amount = amount.quantize(CURRENCY_PRECISION, rounding=ROUND_HALF_UP)

    if rule.type == "custom":
        weights = [(name, Decimal(str(pct)) / Decimal(100)) for name, pct in rule.shares]
    else:
        participants = list(rule.participants) or [payer]
        weight = Decimal(1) / Decimal(len(participants))
        weights = [(name, weight) for name in participants]

    if not weights:
        raise SplitValidationError("Split rule has no participants")

    shares: list[SplitShare] = []
    allocated = Decimal("0")
    for name, weight in weights[:-1]:
        part = (amount * weight).quantize(CURRENCY_PRECISION, rounding=ROUND_DOWN)
        shares.append(SplitShare(participant=name, amount=part))
        allocated += part

    last_name = weights[-1][0]
    remainder = amount - allocated
    if remainder < 0:
        raise SplitValidationError(f"Split shares exceed total {amount}")
    shares.append(SplitShare(participant=last_name, amount=remainder))

    return shares


def build_ledger_entry(
    transaction: NormalizedTransaction,
    category: str,
    config: ImportConfig,
    external_id: str | None = None,
    import_batch_id: str | None = None,
) -> LedgerEntry:
    """Build the ledger entry for a selected transaction.

    Raises:
        SplitValidationError: If the resulting entry is inconsistent
    """
    entry = LedgerEntry(
        group_id=config.ledger_group_id,
        date=transaction.date,
        description=transaction.description,
        amount=transaction.amount,
        currency=transaction.currency,
        category=category,
        payer=config.default_payer,
        splits=build_split_shares(transaction.amount, config.split_rule, config.default_payer),
        external_id=external_id,
        import_batch_id=import_batch_id,
        source_ref=transaction.source_ref,
    )

    errors = entry.validate()
    if errors:
        raise SplitValidationError(f"Invalid ledger entry: {'; '.join(errors)}")

    logger.debug(
        "Built ledger entry %s: %s %s (%d splits)",
        external_id,
        entry.amount,
        entry.currency,
        len(entry.splits),
    )
    return entry
