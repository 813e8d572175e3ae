"""Category suggestion from merchant aliases and keyword rules."""

from .defaults import DEFAULT_CATEGORIES, DEFAULT_CATEGORY_KEY, DEFAULT_CATEGORY_KEYWORDS
from .suggester import (
    CategorySuggester,
    KeywordScore,
    SuggestionSummary,
    normalize_merchant,
    summarize_suggestions,
)

__all__ = [
    "DEFAULT_CATEGORIES",
    "DEFAULT_CATEGORY_KEY",
    "DEFAULT_CATEGORY_KEYWORDS",
    "CategorySuggester",
    "KeywordScore",
    "SuggestionSummary",
    "normalize_merchant",
    "summarize_suggestions",
]
