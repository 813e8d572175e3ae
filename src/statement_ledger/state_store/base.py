"""
Store interfaces used by the import pipeline.

The orchestrator only depends on these protocols; the SQLite StateStore and
the HTTP LedgerClient both implement LedgerStore.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..schemas.ledger_entry import LedgerEntry


class AliasExistsError(Exception):
    """Raised when an alias already exists for a merchant key."""

    pass


@dataclass(frozen=True)
class ExistingEntry:
    """A ledger entry as seen by duplicate detection."""

    entry_id: str
    date: date
    amount: Decimal
    description: str
    currency: str | None = None
    group_id: str | None = None


@dataclass(frozen=True)
class AliasMatch:
    """Result of an alias lookup. category may be None."""

    category: str | None
    alias_name: str


@dataclass(frozen=True)
class AliasRecord:
    """A stored merchant alias."""

    id: int
    merchant_key: str
    original_text: str
    alias_name: str
    category: str | None
    usage_count: int
    created_at: str
    updated_at: str | None = None


@runtime_checkable
class LedgerStore(Protocol):
    """Where committed entries live."""

    def query_candidates(
        self,
        date_range: tuple[date, date],
        amount: Decimal,
        group_id: str,
    ) -> list[ExistingEntry]:
        """Entries of group_id with this amount inside date_range (inclusive)."""
        ...

    def insert(self, entry: LedgerEntry) -> str:
        """Write one entry and return its id."""
        ...

    def delete(self, entry_id: str) -> None:
        """Delete one entry. Deleting a missing entry is not an error."""
        ...


@runtime_checkable
class MerchantAliasStore(Protocol):
    """User-defined merchant aliases, keyed by normalized description."""

    def lookup(self, normalized_description: str) -> AliasMatch | None: ...

    def create(
        self,
        original_merchant_text: str,
        alias_name: str,
        category: str | None = None,
    ) -> AliasRecord: ...

    def record_usage(self, merchant_key: str) -> None: ...

    def list_aliases(self, limit: int = 50) -> list[AliasRecord]: ...

    def delete_alias(self, alias_id: int) -> bool: ...
