"""
Unit tests for string similarity scoring.

Tests Levenshtein distance and each tier of the category label score.
"""

import pytest

from draw_reconciliation.matching.similarity import (
    StringSimilarityScorer, levenshtein_distance, fuzzy_match_score
)


class TestLevenshteinDistance:
    """Test cases for edit distance."""

    def setup_method(self):
        self.scorer = StringSimilarityScorer()

    def test_classic_example(self):
        """kitten -> sitting takes three edits."""
        assert self.scorer.levenshtein_distance("kitten", "sitting") == 3

    def test_identical_strings(self):
        assert self.scorer.levenshtein_distance("framing", "framing") == 0

    def test_empty_strings(self):
        assert self.scorer.levenshtein_distance("", "") == 0
        assert self.scorer.levenshtein_distance("", "abc") == 3
        assert self.scorer.levenshtein_distance("abcd", "") == 4

    def test_symmetric(self):
        pairs = [("kitten", "sitting"), ("flaw", "lawn"), ("drywall", "dry wall"), ("", "roof")]
        for a, b in pairs:
            assert self.scorer.levenshtein_distance(a, b) == self.scorer.levenshtein_distance(b, a)

    def test_transposition_counts_as_two(self):
        assert self.scorer.levenshtein_distance("elecrtical", "electrical") == 2

    def test_module_level_shortcut(self):
        assert levenshtein_distance("kitten", "sitting") == 3


class TestFuzzyMatchScore:
    """Test cases for the tiered similarity score."""

    def setup_method(self):
        self.scorer = StringSimilarityScorer()

    def test_identical_labels_score_one(self):
        for label in ["Framing", "Framing Labor", "HVAC rough-in"]:
            assert self.scorer.score(label, label) == 1.0

    def test_exact_match_ignores_case_and_whitespace(self):
        result = self.scorer.compare("  Plumbing ", "plumbing")

        assert result.score == 1.0
        assert result.tier == 'exact'

    def test_containment(self):
        result = self.scorer.compare("Plumbing", "Plumbing Rough-In")

        assert result.score == 0.9
        assert result.tier == 'containment'

    def test_containment_is_symmetric(self):
        assert self.scorer.score("Plumbing Rough-In", "Plumbing") == 0.9

    def test_punctuated_label_hits_token_tier(self):
        result = self.scorer.compare("Framing Labor", "Framing - Labor")

        assert result.tier == 'token'
        assert 0.65 <= result.score <= 0.9
        assert result.score == pytest.approx(0.9)

    def test_reordered_words_hit_token_tier(self):
        result = self.scorer.compare("Labor Framing", "Framing Labor")

        assert result.tier == 'token'
        assert result.score == pytest.approx(0.9)

    def test_partial_word_overlap(self):
        """One of two words on each side matches: overlap 0.5."""
        result = self.scorer.compare("Framing Labor", "Framing Materials")

        assert result.tier == 'token'
        assert result.score == pytest.approx(0.65 + 0.5 * 0.25)

    def test_single_character_typo_matches_as_token(self):
        result = self.scorer.compare("Framng", "Framing")

        assert result.tier == 'token'

    def test_typo_tier(self):
        result = self.scorer.compare("Elecrtical", "Electrical")

        assert result.tier == 'typo'
        assert result.score == pytest.approx(0.8 * 0.8)

    def test_unrelated_labels_score_zero(self):
        result = self.scorer.compare("Plumbing", "Roofing")

        assert result.score == 0.0
        assert result.tier == 'none'

    def test_empty_inputs_score_zero(self):
        assert self.scorer.score("", "Framing") == 0.0
        assert self.scorer.score("Framing", "") == 0.0
        assert self.scorer.score("", "") == 0.0
        assert self.scorer.score(None, "Framing") == 0.0
        assert self.scorer.score("   ", "Framing") == 0.0

    def test_scores_stay_in_unit_interval(self):
        labels = ["Framing", "Framing Labor", "Plumbing", "Elecrtical", "Electrical", "Site Work", "Roof"]
        for a in labels:
            for b in labels:
                assert 0.0 <= self.scorer.score(a, b) <= 1.0

    def test_compare_result_to_dict(self):
        data = self.scorer.compare("Roof", "Roofing").to_dict()

        assert data == {
            'input_value': "Roof",
            'target_value': "Roofing",
            'score': 0.9,
            'tier': 'containment'
        }

    def test_module_level_shortcut(self):
        assert fuzzy_match_score("Framing", "framing") == 1.0
