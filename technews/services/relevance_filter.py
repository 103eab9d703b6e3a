# technews/services/relevance_filter.py
"""
Keyword relevance filter.

Pure and deterministic: the same title, body and keyword table always give
the same score and the same matched keywords. No I/O, never raises.

score = sum over matched keywords of location_weight * category_weight

A keyword found in the title counts once at the title weight; it is not
counted again for the body. Keywords found only in the body count at the
body weight.
"""

import logging
import re
import unicodedata
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache

from technews.keywords import TECH_KEYWORDS

logger = logging.getLogger(__name__)

# Keywords shorter than this must match on word boundaries ("AI" must not match "mail")
SHORT_KEYWORD_LENGTH = 4

DEFAULT_CATEGORY_WEIGHTS = {
    "companies": 2.0,
    "themes": 1.5,
    "terms": 1.0,
}


@dataclass(frozen=True)
class FilterConfig:
    """Scoring weights and threshold."""

    min_score: float = 2.0
    title_weight: float = 3.0
    body_weight: float = 1.0
    category_weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_CATEGORY_WEIGHTS))
    default_category_weight: float = 1.0

    def weight_for(self, category: str) -> float:
        return self.category_weights.get(category, self.default_category_weight)


DEFAULT_FILTER_CONFIG = FilterConfig()


@dataclass
class MatchResult:
    """Outcome of scoring one item, kept for observability and tuning."""

    matched: bool
    score: float
    matched_keywords: list[str] = field(default_factory=list)
    matched_categories: list[str] = field(default_factory=list)
    title_matches: list[str] = field(default_factory=list)
    body_matches: list[str] = field(default_factory=list)

    def describe(self) -> str:
        """Compact text stored as the filter event's detail."""
        keywords = ", ".join(self.matched_keywords) or "none"
        return f"score={self.score:g} keywords=[{keywords}]"


def normalize_text(text: str | None) -> str:
    """Lowercase and strip accents (NFD decomposition, combining marks removed)."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


@lru_cache(maxsize=1024)
def _keyword_pattern(keyword: str) -> re.Pattern | None:
    normalized = normalize_text(keyword).strip()
    if not normalized:
        return None
    if len(normalized) < SHORT_KEYWORD_LENGTH:
        return re.compile(rf"\b{re.escape(normalized)}\b")
    return re.compile(re.escape(normalized))


def contains_keyword(normalized_text: str, keyword: str) -> bool:
    """Check an already-normalized text for `keyword`."""
    if not normalized_text:
        return False
    pattern = _keyword_pattern(keyword)
    return bool(pattern and pattern.search(normalized_text))


def match_article(
    title: str | None,
    body: str | None,
    keywords: Mapping[str, Sequence[str]] = TECH_KEYWORDS,
    config: FilterConfig = DEFAULT_FILTER_CONFIG,
) -> MatchResult:
    """Score one item against the keyword table."""
    norm_title = normalize_text(title)
    norm_body = normalize_text(body)

    score = 0.0
    title_matches: list[str] = []
    body_matches: list[str] = []
    categories: list[str] = []

    for category, words in keywords.items():
        category_weight = config.weight_for(category)
        hit = False
        for keyword in words:
            if contains_keyword(norm_title, keyword):
                score += config.title_weight * category_weight
                title_matches.append(keyword)
                hit = True
            elif contains_keyword(norm_body, keyword):
                score += config.body_weight * category_weight
                body_matches.append(keyword)
                hit = True
        if hit:
            categories.append(category)

    return MatchResult(
        matched=score >= config.min_score,
        score=score,
        matched_keywords=list(dict.fromkeys(title_matches + body_matches)),
        matched_categories=categories,
        title_matches=list(dict.fromkeys(title_matches)),
        body_matches=list(dict.fromkeys(body_matches)),
    )


@dataclass
class FilterBatch:
    """Split of a batch into matched and rejected items, with per-item results."""

    matched: list = field(default_factory=list)
    rejected: list = field(default_factory=list)
    results: dict[str, MatchResult] = field(default_factory=dict)


def filter_items(
    items: Iterable,
    keywords: Mapping[str, Sequence[str]] = TECH_KEYWORDS,
    config: FilterConfig = DEFAULT_FILTER_CONFIG,
) -> FilterBatch:
    """Score a batch of items (anything with id, title and body attributes)."""
    batch = FilterBatch()
    for item in items:
        result = match_article(item.title, item.body, keywords, config)
        batch.results[item.id] = result
        (batch.matched if result.matched else batch.rejected).append(item)

    logger.debug(
        f"Filtered {len(batch.results)} items: {len(batch.matched)} matched, {len(batch.rejected)} rejected",
        extra={"event": "filter_batch", "items_processed": len(batch.results)},
    )
    return batch
