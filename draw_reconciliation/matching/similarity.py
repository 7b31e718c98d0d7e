"""
String similarity scoring for budget category labels.

Provides Levenshtein edit distance and a tiered similarity score tuned for
short, human-entered category names ("Framing Labor", "Framing - Labor",
"Framng labor"). Cheap tiers (exact, containment, token overlap) decide most
comparisons before the character-level typo check runs.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List

import logging
logger = logging.getLogger(__name__)

# Separators between words in category labels
TOKEN_SPLIT_PATTERN = re.compile(r'[\s\-_,&]+')

EXACT_SCORE = 1.0
CONTAINMENT_SCORE = 0.9
TOKEN_BASE_SCORE = 0.65
TOKEN_SCORE_SPAN = 0.25
TOKEN_MIN_OVERLAP = 0.5
TYPO_MAX_LENGTH = 30
TYPO_MIN_SIMILARITY = 0.7
TYPO_SCALE = 0.8


@dataclass
class SimilarityResult:
    """Score for one comparison together with the tier that produced it."""
    input_value: str
    target_value: str
    score: float
    tier: str  # 'empty', 'exact', 'containment', 'token', 'typo', 'none'

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'input_value': self.input_value,
            'target_value': self.target_value,
            'score': self.score,
            'tier': self.tier
        }


class StringSimilarityScorer:
    """
    Scores how closely two free-text labels refer to the same category.

    Scores fall in [0, 1]:
        1.0        exact match after lowercasing and trimming
        0.9        one label contains the other
        0.65-0.9   enough words overlap (reordered or punctuated differently)
        0.56-0.8   short labels within a few typos of each other
        0.0        anything else
    """

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.StringSimilarityScorer")

    def levenshtein_distance(self, a: str, b: str) -> int:
        """
        Calculate Levenshtein distance between two strings.

        Args:
            a: First string
            b: Second string

        Returns:
            Minimum number of single-character insertions, deletions and
            substitutions needed to turn `a` into `b`
        """
        # Rows walk b, columns walk a
        matrix = [[0] * (len(a) + 1) for _ in range(len(b) + 1)]
        for i in range(len(b) + 1):
            matrix[i][0] = i
        for j in range(len(a) + 1):
            matrix[0][j] = j

        for i in range(1, len(b) + 1):
            for j in range(1, len(a) + 1):
                if b[i - 1] == a[j - 1]:
                    matrix[i][j] = matrix[i - 1][j - 1]
                else:
                    matrix[i][j] = min(
                        matrix[i - 1][j - 1] + 1,  # substitution
                        matrix[i][j - 1] + 1,      # insertion
                        matrix[i - 1][j] + 1       # deletion
                    )

        return matrix[len(b)][len(a)]

    def normalize(self, text: str) -> str:
        """Lowercase and trim a label."""
        if not text:
            return ""
        return text.lower().strip()

    def tokenize(self, normalized: str) -> List[str]:
        """Split a normalized label into words, dropping single characters."""
        return [word for word in TOKEN_SPLIT_PATTERN.split(normalized) if len(word) > 1]

    def _tokens_match(self, left: str, right: str) -> bool:
        return left in right or right in left or self.levenshtein_distance(left, right) <= 1

    def compare(self, input_value: str, target_value: str) -> SimilarityResult:
        """
        Score two labels and report which tier decided the score.

        Args:
            input_value: Label being matched (e.g. a draw line category)
            target_value: Candidate label (e.g. a budget category)

        Returns:
            SimilarityResult with score in [0, 1]
        """
        a = self.normalize(input_value)
        b = self.normalize(target_value)

        if not a or not b:
            return SimilarityResult(input_value, target_value, 0.0, 'empty')

        if a == b:
            return SimilarityResult(input_value, target_value, EXACT_SCORE, 'exact')

        if a in b or b in a:
            return SimilarityResult(input_value, target_value, CONTAINMENT_SCORE, 'containment')

        a_words = self.tokenize(a)
        b_words = self.tokenize(b)
        if a_words and b_words:
            matched_a = sum(1 for aw in a_words if any(self._tokens_match(aw, bw) for bw in b_words))
            matched_b = sum(1 for bw in b_words if any(self._tokens_match(bw, aw) for aw in a_words))
            word_score = (matched_a + matched_b) / (len(a_words) + len(b_words))
            if word_score >= TOKEN_MIN_OVERLAP:
                score = TOKEN_BASE_SCORE + word_score * TOKEN_SCORE_SPAN
                return SimilarityResult(input_value, target_value, score, 'token')

        if len(a) < TYPO_MAX_LENGTH and len(b) < TYPO_MAX_LENGTH:
            distance = self.levenshtein_distance(a, b)
            similarity = 1 - distance / max(len(a), len(b))
            if similarity >= TYPO_MIN_SIMILARITY:
                return SimilarityResult(input_value, target_value, similarity * TYPO_SCALE, 'typo')

        return SimilarityResult(input_value, target_value, 0.0, 'none')

    def score(self, input_value: str, target_value: str) -> float:
        """
        Fuzzy match score between two labels.

        Args:
            input_value: Label being matched
            target_value: Candidate label

        Returns:
            Similarity score (1.0 = same category, 0.0 = unrelated)
        """
        result = self.compare(input_value, target_value)
        self.logger.debug(f"Similarity ({result.tier}): '{input_value}' vs '{target_value}' = {result.score:.3f}")
        return result.score


_default_scorer = StringSimilarityScorer()


def levenshtein_distance(a: str, b: str) -> int:
    """Module-level shortcut for StringSimilarityScorer.levenshtein_distance."""
    return _default_scorer.levenshtein_distance(a, b)


def fuzzy_match_score(input_value: str, target_value: str) -> float:
    """Module-level shortcut for StringSimilarityScorer.score."""
    return _default_scorer.score(input_value, target_value)
