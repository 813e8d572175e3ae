"""Duplicate detection against the existing ledger."""

from .duplicates import (
    DuplicateDetector,
    DuplicateSummary,
    description_similarity,
    levenshtein_ratio,
    normalize_text,
    summarize_verdicts,
    token_overlap,
)

__all__ = [
    "DuplicateDetector",
    "DuplicateSummary",
    "description_similarity",
    "levenshtein_ratio",
    "normalize_text",
    "summarize_verdicts",
    "token_overlap",
]
