"""
Category matching for budget import and invoice preview.

Provides the tiered string similarity scorer and the budget category matcher
built on it.
"""

from .similarity import StringSimilarityScorer, SimilarityResult, levenshtein_distance, fuzzy_match_score
from .category_matcher import CategoryMatcher, CategoryMatch, find_best_budget_match

__all__ = [
    "StringSimilarityScorer",
    "SimilarityResult",
    "levenshtein_distance",
    "fuzzy_match_score",
    "CategoryMatcher",
    "CategoryMatch",
    "find_best_budget_match"
]
