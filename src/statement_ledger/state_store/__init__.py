"""
State Store (SQLite-based).

Lightweight persistent DB for:
- Ledger entries (local ledger backend)
- Merchant aliases used by category suggestions

Store protocols consumed by the pipeline live in base.
"""

from .base import (
    AliasExistsError,
    AliasMatch,
    AliasRecord,
    ExistingEntry,
    LedgerStore,
    MerchantAliasStore,
)
from .sqlite_store import StateStore

__all__ = [
    "AliasExistsError",
    "AliasMatch",
    "AliasRecord",
    "ExistingEntry",
    "LedgerStore",
    "MerchantAliasStore",
    "StateStore",
]
