"""
Unit tests for budget category matching.
"""

from decimal import Decimal

from draw_reconciliation.models import BudgetLine
from draw_reconciliation.matching import CategoryMatcher, find_best_budget_match


def make_budget(budget_id, category, raw=None):
    return BudgetLine(id=budget_id, category=category, project_id="proj-1",
                      builder_category_raw=raw, current_amount=Decimal("10000"))


class TestCategoryMatcher:
    """Test cases for CategoryMatcher."""

    def setup_method(self):
        self.matcher = CategoryMatcher()
        self.budgets = [
            make_budget("b-framing", "Framing"),
            make_budget("b-plumbing", "Plumbing", raw="Plumbing Rough Work"),
            make_budget("b-electrical", "Electrical"),
            make_budget("b-roof", "Roofing"),
        ]

    def test_exact_match_wins(self):
        match = self.matcher.find_best_match("Plumbing", self.budgets)

        assert match is not None
        assert match.budget.id == "b-plumbing"
        assert match.score == 1.0
        assert match.matched_on == 'category'

    def test_builder_raw_label_is_considered(self):
        match = self.matcher.find_best_match("plumbing rough work", self.budgets)

        assert match.budget.id == "b-plumbing"
        assert match.score == 1.0
        assert match.matched_on == 'builder_category_raw'

    def test_typo_match_above_threshold(self):
        match = self.matcher.find_best_match("Elecrtical", self.budgets)

        assert match.budget.id == "b-electrical"
        assert match.score >= 0.6

    def test_no_candidate_reaches_threshold(self):
        assert self.matcher.find_best_match("Landscaping", self.budgets) is None

    def test_threshold_is_respected(self):
        # Typo tier scores 0.64 for this pair
        assert self.matcher.find_best_match("Elecrtical", self.budgets, threshold=0.7) is None
        assert self.matcher.find_best_match("Elecrtical", self.budgets, threshold=0.6) is not None

    def test_best_candidate_selected(self):
        """Containment (0.9) beats a partial word overlap (0.775)."""
        budgets = [
            make_budget("b-materials", "Framing Materials"),
            make_budget("b-labor", "Framing Labor Costs"),
        ]

        match = self.matcher.find_best_match("Framing Labor", budgets)

        assert match.budget.id == "b-labor"
        assert match.score == 0.9

    def test_ties_keep_first_candidate(self):
        budgets = [make_budget("first", "Roofing"), make_budget("second", "Roofing")]

        match = self.matcher.find_best_match("roofing", budgets)

        assert match.budget.id == "first"

    def test_empty_inputs(self):
        assert self.matcher.find_best_match("", self.budgets) is None
        assert self.matcher.find_best_match("Framing", []) is None
        assert self.matcher.find_best_match("Framing", None) is None

    def test_default_threshold_from_constructor(self):
        strict = CategoryMatcher(default_threshold=0.95)

        assert strict.find_best_match("Plumbing", self.budgets) is not None
        assert strict.find_best_match("Roof", self.budgets) is None

    def test_match_all(self):
        results = self.matcher.match_all(["Framing", "Roof", "Landscaping"], self.budgets)

        assert results["Framing"].budget.id == "b-framing"
        assert results["Roof"].budget.id == "b-roof"
        assert results["Landscaping"] is None

    def test_match_to_dict(self):
        data = self.matcher.find_best_match("Framing", self.budgets).to_dict()

        assert data['score'] == 1.0
        assert data['budget']['id'] == "b-framing"
        assert data['budget']['category'] == "Framing"
        assert data['matched_on'] == 'category'


class TestFindBestBudgetMatch:
    """Test cases for the module-level convenience function."""

    def test_uses_default_threshold(self):
        budgets = [make_budget("b-1", "Site Work")]

        match = find_best_budget_match("site work", budgets)

        assert match.budget.id == "b-1"

    def test_returns_none_without_match(self):
        assert find_best_budget_match("Framing", [make_budget("b-1", "Painting")]) is None
