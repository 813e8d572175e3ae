"""
Deterministic identifiers for imported statements and ledger entries.

External ID format for imported entries: stmt:{file_hash[:16]}:{index}:{tx_hash[:16]}
- file_hash = SHA256 of the uploaded statement bytes
- index = position of the transaction in the parsed statement
- tx_hash = SHA256(amount|date|group|description)

The index is part of the id, so two identical rows in one statement (or a
duplicate the user chose to import anyway) still get distinct ids.
"""

import hashlib
from datetime import date
from decimal import Decimal

EXTERNAL_ID_PREFIX = "stmt"
EXTERNAL_ID_SEPARATOR = ":"
HASH_PREFIX_LENGTH = 16


def _normalize_amount(amount: Decimal | str | float) -> str:
    """Normalize amount to 2 decimal places for hashing."""
    if isinstance(amount, str):
        amount = Decimal(amount.strip())
    elif isinstance(amount, float):
        amount = Decimal(str(amount))
    elif not isinstance(amount, Decimal):
        raise ValueError(f"amount must be Decimal, str, or float, got: {type(amount)}")

    return f"{amount:.2f}"


def _normalize_string(value: str | None) -> str:
    """Lowercase, trim and collapse whitespace."""
    if not value:
        return ""
    return " ".join(value.split()).lower()


def compute_file_hash(file_bytes: bytes) -> str:
    """
    Compute SHA256 hash of file bytes.

    Args:
        file_bytes: Raw file content

    Returns:
        64-character lowercase hex string
    """
    return hashlib.sha256(file_bytes).hexdigest()


def compute_transaction_hash(
    amount: Decimal | str | float,
    tx_date: date | str,
    group_id: str | None = None,
    description: str | None = None,
) -> str:
    """
    Compute a deterministic hash for a transaction's core fields.

    Args:
        amount: Transaction amount
        tx_date: Transaction date (date or YYYY-MM-DD)
        group_id: Account-group the entry belongs to
        description: Transaction description

    Returns:
        64-character lowercase hex SHA256 hash
    """
    normalized_date = tx_date.isoformat() if isinstance(tx_date, date) else tx_date.strip()
    # Pipe separator to avoid collisions
    canonical = "|".join(
        [
            _normalize_amount(amount),
            normalized_date,
            _normalize_string(group_id),
            _normalize_string(description),
        ]
    )

    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def generate_entry_external_id(
    file_hash: str,
    index: int,
    amount: Decimal | str | float,
    tx_date: date | str,
    group_id: str | None = None,
    description: str | None = None,
) -> str:
    """
    Generate the external_id stored on an imported ledger entry.

    Raises:
        ValueError: If file_hash is too short or index is negative
    """
    if len(file_hash) < HASH_PREFIX_LENGTH:
        raise ValueError(f"file_hash must be at least {HASH_PREFIX_LENGTH} chars")
    if index < 0:
        raise ValueError(f"index must be >= 0, got: {index}")

    tx_hash = compute_transaction_hash(amount, tx_date, group_id, description)
    return EXTERNAL_ID_SEPARATOR.join(
        [
            EXTERNAL_ID_PREFIX,
            file_hash[:HASH_PREFIX_LENGTH],
            str(index),
            tx_hash[:HASH_PREFIX_LENGTH],
        ]
    )
