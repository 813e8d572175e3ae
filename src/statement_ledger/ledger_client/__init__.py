"""
Remote ledger API client.

Handles:
- Candidate lookup for duplicate detection
- Entry creation and deletion
- Retries with backoff
"""

from .client import LedgerAPIError, LedgerClient, LedgerClientError, LedgerConnectionError

__all__ = [
    "LedgerAPIError",
    "LedgerClient",
    "LedgerClientError",
    "LedgerConnectionError",
]
