"""Category suggestions for imported transactions.

Two steps, first hit wins:

1. Merchant alias lookup on the normalized description. A known alias bound
   to an allowed category is returned at confidence 1.0.
2. Keyword rules. Each category scores its best keyword hit (exact 1.0,
   whole word 0.6, substring 0.3) plus 0.1 per additional hit, capped at 1.0.

Suggestions below the confidence threshold fall back to the run's default
category and are marked below_threshold.
"""

from __future__ import annotations

import logging
import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from ..config import CategoryConfig, ImportConfig
from ..errors import CategorySuggestionError
from ..schemas.transactions import (
    CategoryAlternative,
    CategorySuggestion,
    NormalizedTransaction,
    SuggestionSource,
)
from .defaults import DEFAULT_CATEGORY_KEYWORDS

if TYPE_CHECKING:
    from ..state_store.base import AliasMatch, MerchantAliasStore

logger = logging.getLogger(__name__)

SCORE_EXACT = 1.0
SCORE_WORD = 0.6
SCORE_SUBSTRING = 0.3
SCORE_EXTRA_HIT = 0.1


def normalize_merchant(text: str | None) -> str:
    """Normalize merchant text for alias keys and keyword matching.

    "WHL FDS #12345" -> "whl fds 12345"
    """
    if not text:
        return ""
    return " ".join(re.sub(r"[^a-z0-9]+", " ", text.lower()).split())


@dataclass
class KeywordScore:
    category: str
    confidence: float
    keywords: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SuggestionSummary:
    """Confidence distribution of a batch of suggestions."""

    total: int
    high: int  # > 0.7
    medium: int  # 0.4 - 0.7
    low: int  # < 0.4
    by_category: dict[str, int]


def summarize_suggestions(suggestions: Iterable[CategorySuggestion]) -> SuggestionSummary:
    items = list(suggestions)
    return SuggestionSummary(
        total=len(items),
        high=sum(1 for s in items if s.confidence > 0.7),
        medium=sum(1 for s in items if 0.4 <= s.confidence <= 0.7),
        low=sum(1 for s in items if s.confidence < 0.4),
        by_category=dict(Counter(s.category for s in items)),
    )


class CategorySuggester:
    """Suggests a category per transaction from aliases and keyword rules."""

    def __init__(
        self,
        alias_store: MerchantAliasStore | None = None,
        config: CategoryConfig | None = None,
        rules: dict[str, list[str]] | None = None,
    ) -> None:
        """
        Args:
            alias_store: Merchant alias lookups; step 1 is skipped without one
            config: Thresholds and custom keywords
            rules: Keyword rules per category, replacing the built-in ones
        """
        self.alias_store = alias_store
        self.config = config or CategoryConfig()
        base = DEFAULT_CATEGORY_KEYWORDS if rules is None else rules
        self._rules: dict[str, list[str]] = {}
        for category, keywords in base.items():
            for keyword in keywords:
                self.add_custom_keyword(category, keyword)
        for category, keywords in self.config.custom_keywords.items():
            for keyword in keywords:
                self.add_custom_keyword(category, keyword)

    @property
    def rules(self) -> dict[str, list[str]]:
        return {category: list(keywords) for category, keywords in self._rules.items()}

    def add_custom_keyword(self, category: str, keyword: str) -> bool:
        """Add a keyword rule. Returns False if it was already present."""
        normalized = normalize_merchant(keyword)
        if not normalized:
            return False
        keywords = self._rules.setdefault(category.lower(), [])
        if normalized in keywords:
            return False
        keywords.append(normalized)
        return True

    def learn_from_history(self, history: Iterable[tuple[str, str]]) -> int:
        """Add exact-description rules from past (description, category) pairs.

        When a description was filed under several categories the most
        frequent one wins. Returns the number of rules added.
        """
        seen: dict[str, Counter] = defaultdict(Counter)
        for description, category in history:
            key = normalize_merchant(description)
            if key and category:
                seen[key][category] += 1

        added = 0
        for key, counts in seen.items():
            category = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[0][0]
            if self.add_custom_keyword(category, key):
                added += 1
        logger.debug("Learned %d description rules from history", added)
        return added

    def suggest_all(
        self,
        transactions: list[NormalizedTransaction],
        config: ImportConfig,
    ) -> list[CategorySuggestion]:
        """One suggestion per transaction, in order."""
        suggestions = [self.suggest(tx.description, config) for tx in transactions]
        summary = summarize_suggestions(suggestions)
        logger.info(
            "Category suggestions: %d high, %d medium, %d low confidence",
            summary.high,
            summary.medium,
            summary.low,
        )
        return suggestions

    def suggest(self, description: str, config: ImportConfig) -> CategorySuggestion:
        """Suggest a category for one description.

        An alias store failure yields the default category, below threshold,
        with the error recorded.
        """
        key = normalize_merchant(description)
        if not key:
            return self._default(config, reasoning="Empty description")

        alias: AliasMatch | None = None
        if self.alias_store is not None:
            try:
                alias = self._lookup_alias(key)
            except CategorySuggestionError as e:
                logger.warning("Alias lookup failed for %r: %s", key, e.__cause__)
                return self._default(config, error=str(e))

        if alias is not None and alias.category and config.allows_category(alias.category):
            return CategorySuggestion(
                category=alias.category,
                confidence=1.0,
                reasoning=f"Matched merchant alias '{alias.alias_name}'",
                source=SuggestionSource.ALIAS,
                alias_key=key,
            )

        text = key
        if alias is not None:
            # Alias without a usable category still names the merchant
            text = f"{normalize_merchant(alias.alias_name)} {key}"

        return self._from_rules(text, config)

    def _lookup_alias(self, key: str) -> AliasMatch | None:
        try:
            return self.alias_store.lookup(key)
        except Exception as e:
            raise CategorySuggestionError(f"Alias lookup failed: {e}") from e

    def score(self, text: str, categories: Iterable[str]) -> list[KeywordScore]:
        """Score normalized text against the rules of each category.

        Returns non-zero scores sorted by confidence, then category key.
        """
        scores: list[KeywordScore] = []
        for category in categories:
            hits: list[tuple[float, str]] = []
            for keyword in self._rules.get(category.lower(), []):
                hit = self._keyword_hit(text, keyword)
                if hit:
                    hits.append((hit, keyword))
            if not hits:
                continue
            hits.sort(key=lambda h: (-h[0], h[1]))
            confidence = hits[0][0] + SCORE_EXTRA_HIT * (len(hits) - 1)
            scores.append(
                KeywordScore(
                    category=category,
                    confidence=round(min(confidence, 1.0), 4),
                    keywords=[keyword for _, keyword in hits],
                )
            )
        scores.sort(key=lambda s: (-s.confidence, s.category))
        return scores

    @staticmethod
    def _keyword_hit(text: str, keyword: str) -> float:
        if text == keyword:
            return SCORE_EXACT
        if re.search(rf"\b{re.escape(keyword)}\b", text):
            return SCORE_WORD
        if keyword in text:
            return SCORE_SUBSTRING
        return 0.0

    def _from_rules(self, text: str, config: ImportConfig) -> CategorySuggestion:
        categories = list(config.available_categories) or sorted(self._rules)
        scores = self.score(text, categories)
        threshold = self.config.confidence_threshold

        if not scores or scores[0].confidence < threshold:
            alternatives = tuple(
                CategoryAlternative(s.category, s.confidence)
                for s in scores
                if s.category != config.default_category_key
            )[: self.config.max_alternatives]
            reasoning = "No keyword rule matched" if not scores else (
                f"Best keyword match {scores[0].category!r} "
                f"({scores[0].confidence:.2f}) is below {threshold:.2f}"
            )
            return self._default(config, reasoning=reasoning, alternatives=alternatives)

        best = scores[0]
        alternatives = tuple(
            CategoryAlternative(s.category, s.confidence) for s in scores[1:]
        )[: self.config.max_alternatives]
        return CategorySuggestion(
            category=best.category,
            confidence=best.confidence,
            reasoning=f"Matched keywords: {', '.join(best.keywords)}",
            alternatives=alternatives,
            below_threshold=False,
            source=SuggestionSource.RULE,
        )

    @staticmethod
    def _default(
        config: ImportConfig,
        reasoning: str | None = None,
        alternatives: tuple[CategoryAlternative, ...] = (),
        error: str | None = None,
    ) -> CategorySuggestion:
        return CategorySuggestion(
            category=config.default_category_key,
            confidence=0.0,
            reasoning=reasoning,
            alternatives=alternatives,
            below_threshold=True,
            source=SuggestionSource.DEFAULT,
            error=error,
        )
