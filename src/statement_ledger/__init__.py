"""
Bank/card statement → Preview (duplicates + categories) → Shared expense ledger

A deterministic, testable pipeline that turns CSV and PDF statements into
split ledger entries, flags likely duplicates against the existing ledger,
suggests categories, and commits a user-approved selection all-or-nothing.
"""

__version__ = "0.1.0"
