"""
Canonical records for the import pipeline.

These schemas are the only models passed between modules.
"""

from .fingerprint import (
    EXTERNAL_ID_PREFIX,
    HASH_PREFIX_LENGTH,
    compute_file_hash,
    compute_transaction_hash,
    generate_entry_external_id,
)
from .ledger_entry import (
    LedgerEntry,
    SplitShare,
    SplitValidationError,
    build_ledger_entry,
    build_split_shares,
)
from .session import (
    ImportResult,
    ImportSession,
    ImportSummary,
    OutcomeStatus,
    SessionState,
    TransactionOutcome,
)
from .transactions import (
    CANONICAL_ROLES,
    CategoryAlternative,
    CategorySuggestion,
    ColumnRoles,
    DuplicateMatch,
    DuplicateVerdict,
    NormalizedTransaction,
    ParseError,
    ParseOutcome,
    RawRecord,
    SignalScore,
    StatementMetadata,
    SuggestionSource,
)

__all__ = [
    # Fingerprints
    "EXTERNAL_ID_PREFIX",
    "HASH_PREFIX_LENGTH",
    "compute_file_hash",
    "compute_transaction_hash",
    "generate_entry_external_id",
    # Ledger entries
    "LedgerEntry",
    "SplitShare",
    "SplitValidationError",
    "build_ledger_entry",
    "build_split_shares",
    # Sessions
    "ImportResult",
    "ImportSession",
    "ImportSummary",
    "OutcomeStatus",
    "SessionState",
    "TransactionOutcome",
    # Transactions
    "CANONICAL_ROLES",
    "CategoryAlternative",
    "CategorySuggestion",
    "ColumnRoles",
    "DuplicateMatch",
    "DuplicateVerdict",
    "NormalizedTransaction",
    "ParseError",
    "ParseOutcome",
    "RawRecord",
    "SignalScore",
    "StatementMetadata",
    "SuggestionSource",
]
