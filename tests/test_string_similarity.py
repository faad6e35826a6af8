"""Tests for keyword similarity helpers."""

import pytest

from jd_organizer.utils.string_similarity import StringSimilarity, extract_keywords, split_tokens


class TestStringSimilarity:

    @pytest.mark.parametrize("a,b,expected", [
        ("invoice", "Invoice", 1.0),
        ("photo", "photos", 0.8),
        ("abc", "xyz", 0.0),
        ("", "", 1.0),
    ])
    def test_keyword_similarity(self, a, b, expected):
        assert StringSimilarity.keyword_similarity(a, b) == pytest.approx(expected)

    def test_character_overlap(self):
        # {a, b, c} vs {b, c, d}: 2 shared of 4
        assert StringSimilarity.keyword_similarity("abc", "bcd") == pytest.approx(0.5)

    def test_best_match_uses_strict_threshold(self):
        assert StringSimilarity.best_match("photo", ["invoice", "photos"], 0.7) == ("photos", 0.8)
        assert StringSimilarity.best_match("photo", ["photos"], 0.8) is None


class TestKeywordExtraction:

    def test_split_tokens(self):
        assert split_tokens("Tax-Return_2024 final.v2") == ["tax", "return", "2024", "final", "v2"]

    def test_extract_keywords_drops_extension_and_short_words(self):
        assert extract_keywords("my_tax-return.2024.pdf") == ["tax", "return", "2024"]
        assert extract_keywords("Invoice ACME.pdf", min_length=5) == ["invoice"]
