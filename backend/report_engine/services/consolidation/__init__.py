"""
Extraction consolidation.

Chooses or merges among competing extraction attempts for one document.
"""
from .duplicate_detection import DuplicateDetector, TokenOverlapDetector, tokenize
from .selector import ExtractionSelector, MERGE_LENGTH_THRESHOLD, MAX_MERGE_CANDIDATES

__all__ = [
    "DuplicateDetector",
    "TokenOverlapDetector",
    "tokenize",
    "ExtractionSelector",
    "MERGE_LENGTH_THRESHOLD",
    "MAX_MERGE_CANDIDATES",
]
