"""
Near-duplicate detection for merging extraction attempts.

The default detector is a token-overlap heuristic. It is order dependent:
a candidate is compared against everything accumulated so far, so the
same set of attempts can merge differently if confidence ordering changes.
"""
from abc import ABC, abstractmethod
from typing import List, Set


def tokenize(text: str) -> List[str]:
    """Lower-cased whitespace tokens."""
    return (text or "").lower().split()


class DuplicateDetector(ABC):
    """Decides whether a candidate text adds nothing to the accumulated text."""

    @abstractmethod
    def is_duplicate(self, accumulated: str, candidate: str) -> bool:
        ...


class TokenOverlapDetector(DuplicateDetector):
    """
    A candidate is a duplicate when more than `threshold` of its tokens
    already appear in the accumulated token set.

    Accepted trade-offs: reordered or lightly edited duplicates can slip
    through, and short snippets that legitimately overlap get dropped.
    """

    def __init__(self, threshold: float = 0.5):
        self.threshold = threshold

    def is_duplicate(self, accumulated: str, candidate: str) -> bool:
        known: Set[str] = set(tokenize(accumulated))
        tokens = tokenize(candidate)
        if not tokens:
            # Blank candidate carries no new information
            return True

        matches = sum(1 for token in tokens if token in known)
        return matches > len(tokens) * self.threshold
