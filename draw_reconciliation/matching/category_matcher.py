"""
Budget category matching for import and preview flows.

Given one uncategorized label (from a draw spreadsheet or an invoice line)
and the project's budget lines, picks the budget whose canonical or
builder-supplied name scores best above a threshold.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from draw_reconciliation.models import BudgetLine
from .similarity import StringSimilarityScorer

import logging
logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.6


@dataclass
class CategoryMatch:
    """Best budget found for a label."""
    budget: BudgetLine
    score: float
    matched_on: str  # 'builder_category_raw' or 'category'

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the {budget, score} payload used by the preview flow."""
        return {
            'budget': self.budget.to_dict(),
            'score': self.score,
            'matched_on': self.matched_on
        }


class CategoryMatcher:
    """
    Matches free-text category labels to budget lines.

    Pure computation over the candidates it is handed: no store access and
    no exceptions for a missing match.
    """

    def __init__(self, scorer: Optional[StringSimilarityScorer] = None,
                 default_threshold: float = DEFAULT_MATCH_THRESHOLD):
        """
        Initialize category matcher.

        Args:
            scorer: Similarity scorer to use (a fresh one if None)
            default_threshold: Minimum score a candidate must reach
        """
        self.logger = logging.getLogger(f"{__name__}.CategoryMatcher")
        self.scorer = scorer or StringSimilarityScorer()
        self.default_threshold = default_threshold

    def score_candidate(self, label: str, candidate: BudgetLine) -> CategoryMatch:
        """Score a label against both names of one budget line."""
        raw_score = self.scorer.score(label, candidate.builder_category_raw or '')
        canonical_score = self.scorer.score(label, candidate.category)
        if raw_score > canonical_score:
            return CategoryMatch(candidate, raw_score, 'builder_category_raw')
        return CategoryMatch(candidate, canonical_score, 'category')

    def find_best_match(self, label: str, candidates: Optional[Iterable[BudgetLine]],
                        threshold: Optional[float] = None) -> Optional[CategoryMatch]:
        """
        Find the best budget line for a label.

        Candidates are scored in input order; a later candidate replaces the
        current best only with a strictly higher score, so ties keep the
        first one seen.

        Args:
            label: Category label to match
            candidates: Budget lines to choose from
            threshold: Minimum score (uses default if None)

        Returns:
            CategoryMatch, or None when nothing reaches the threshold
        """
        if threshold is None:
            threshold = self.default_threshold

        best: Optional[CategoryMatch] = None
        for candidate in candidates or []:
            match = self.score_candidate(label, candidate)
            if match.score >= threshold and (best is None or match.score > best.score):
                best = match

        if best is None:
            self.logger.debug(f"No budget match for '{label}' (threshold: {threshold})")
        else:
            self.logger.debug(f"Matched '{label}' to budget {best.budget.id} "
                              f"'{best.budget.category}' = {best.score:.3f}")
        return best

    def match_all(self, labels: Iterable[str], candidates: List[BudgetLine],
                  threshold: Optional[float] = None) -> Dict[str, Optional[CategoryMatch]]:
        """
        Match many labels against the same candidate list.

        Returns:
            Mapping of label to its best match (or None)
        """
        results = {label: self.find_best_match(label, candidates, threshold) for label in labels}
        matched = sum(1 for match in results.values() if match is not None)
        self.logger.info(f"Matched {matched}/{len(results)} category labels to budgets")
        return results


def find_best_budget_match(category: str, budgets: Optional[Iterable[BudgetLine]],
                           threshold: float = DEFAULT_MATCH_THRESHOLD) -> Optional[CategoryMatch]:
    """Convenience wrapper around CategoryMatcher.find_best_match."""
    return CategoryMatcher().find_best_match(category, budgets, threshold)
