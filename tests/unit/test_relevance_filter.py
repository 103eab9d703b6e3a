"""
Unit tests for the keyword relevance filter.
"""

from types import SimpleNamespace

import pytest

from technews.keywords import TECH_KEYWORDS
from technews.services.relevance_filter import (
    FilterConfig,
    contains_keyword,
    filter_items,
    match_article,
    normalize_text,
)

SIMPLE_KEYWORDS = {
    "companies": ("NVIDIA",),
    "themes": ("AI",),
    "terms": ("chip",),
}


class TestNormalization:
    def test_lowercase_and_accents_stripped(self):
        assert normalize_text("Cybersécurité et Réalité Augmentée") == "cybersecurite et realite augmentee"

    def test_none(self):
        assert normalize_text(None) == ""

    def test_short_keyword_requires_word_boundary(self):
        assert contains_keyword(normalize_text("New AI chip"), "AI")
        assert not contains_keyword(normalize_text("Check your email"), "AI")
        assert not contains_keyword(normalize_text("Trade fair in Paris"), "AI")

    def test_long_keyword_matches_substring(self):
        assert contains_keyword(normalize_text("Les semi-conducteurs européens"), "semi-conducteurs")
        assert contains_keyword(normalize_text("chips shortage"), "chip")

    def test_accent_insensitive_keyword(self):
        assert contains_keyword(normalize_text("la cybersecurite progresse"), "cybersécurité")


class TestMatchArticle:
    """Tests for match_article scoring."""

    def test_title_hits_weighted_by_category(self):
        """NVIDIA (2), AI (1.5) and chip (1) in the title: 3*2 + 3*1.5 + 3*1."""
        result = match_article("NVIDIA unveils new AI chip", "", SIMPLE_KEYWORDS)

        assert result.score == pytest.approx(13.5)
        assert result.matched is True
        assert result.matched_keywords == ["NVIDIA", "AI", "chip"]
        assert result.title_matches == ["NVIDIA", "AI", "chip"]
        assert result.body_matches == []
        assert result.matched_categories == ["companies", "themes", "terms"]

    def test_two_title_keywords(self):
        keywords = {"companies": ("NVIDIA",), "themes": ("AI",)}

        result = match_article("NVIDIA unveils new AI chip", "", keywords)

        assert result.score == pytest.approx(10.5)
        assert result.matched_categories == ["companies", "themes"]

    def test_default_table_scores_title(self):
        result = match_article("NVIDIA unveils new AI chip", "")

        assert result.score == pytest.approx(13.5)
        assert result.title_matches == ["NVIDIA", "AI", "chip"]

    def test_no_tech_keyword_scores_zero(self):
        result = match_article(
            "Central bank holds rates steady",
            "The monetary policy committee kept its benchmark rate unchanged, citing inflation.",
        )

        assert result.score == 0
        assert result.matched is False
        assert result.matched_keywords == []
        assert result.describe() == "score=0 keywords=[none]"

    def test_body_hit_uses_body_weight(self):
        result = match_article("Résultats trimestriels", "Le groupe NVIDIA a dépassé les attentes.", SIMPLE_KEYWORDS)

        assert result.score == pytest.approx(2.0)
        assert result.body_matches == ["NVIDIA"]
        assert result.matched is True

    def test_keyword_in_title_and_body_counted_once(self):
        result = match_article("NVIDIA record", "NVIDIA NVIDIA NVIDIA", SIMPLE_KEYWORDS)

        assert result.score == pytest.approx(6.0)
        assert result.body_matches == []

    def test_threshold_is_inclusive(self):
        config = FilterConfig(min_score=2.0)
        result = match_article("Résultats", "NVIDIA", SIMPLE_KEYWORDS, config)
        assert result.score == pytest.approx(2.0)
        assert result.matched is True

        strict = FilterConfig(min_score=2.5)
        assert match_article("Résultats", "NVIDIA", SIMPLE_KEYWORDS, strict).matched is False

    def test_unknown_category_uses_default_weight(self):
        result = match_article("Quantum computing leap", "", {"emerging": ("quantum",)})
        assert result.score == pytest.approx(3.0)

    def test_deterministic(self):
        title = "Microsoft et OpenAI renforcent leur partenariat dans le cloud"
        body = "L'intelligence artificielle générative tire la croissance d'Azure."

        first = match_article(title, body)
        second = match_article(title, body)

        assert first == second
        assert first.matched is True

    def test_default_table_french_article(self):
        result = match_article(
            "STMicroelectronics relève ses prévisions",
            "Le fabricant de semi-conducteurs profite de la demande en puces pour l'IA.",
        )

        assert "STMicroelectronics" in result.title_matches
        assert "IA" in result.body_matches
        assert result.matched is True

    def test_empty_inputs(self):
        result = match_article(None, None, TECH_KEYWORDS)
        assert result.score == 0
        assert result.matched is False


class TestFilterItems:
    def test_split_batch(self):
        items = [
            SimpleNamespace(id="a", title="NVIDIA unveils new AI chip", body=""),
            SimpleNamespace(id="b", title="Central bank holds rates steady", body=""),
        ]

        batch = filter_items(items, SIMPLE_KEYWORDS)

        assert [i.id for i in batch.matched] == ["a"]
        assert [i.id for i in batch.rejected] == ["b"]
        assert batch.results["a"].score == pytest.approx(13.5)
