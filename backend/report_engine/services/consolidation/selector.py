"""
Extraction Selector

Picks or merges the best text among competing extraction attempts
for one source document, and writes the consolidated summary back
onto the owning credit report.

Extraction attempts are read-only here. The only writes are the
single-row report update and the consolidation metadata upsert.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...exceptions import PayloadValidationError, StoreError
from ...models.db_models import (
    ConsolidationMetadataDB, ConsolidationStatus, ConsolidationStrategy,
    CreditReportDB, ExtractionResultDB,
)
from ...models.report_graph import ConsolidationResult
from .duplicate_detection import DuplicateDetector, TokenOverlapDetector


logger = logging.getLogger(__name__)

# Base text shorter than this is topped up from lower-confidence attempts
MERGE_LENGTH_THRESHOLD = 1000
# Best attempt plus at most two more
MAX_MERGE_CANDIDATES = 3
MERGE_SEPARATOR = "\n\n"

# Below this confidence a re-consolidation is flagged for a human
REVIEW_CONFIDENCE_THRESHOLD = 0.7
MAJORITY_VOTE_CONFIDENCE_CAP = 0.95
MANUAL_REVIEW_CONFIDENCE = 0.5

COMMON_REPORT_KEYWORDS = ["credit report", "personal information", "account number", "payment history"]


class ExtractionSelector:
    """
    Consolidates extraction attempts for a report.

    Usage:
        selector = ExtractionSelector(db)
        best = selector.select_best(report_id)
        text = selector.merge(report_id)
        selector.persist_consolidation(report_id, text, best.confidence)
    """

    def __init__(self, db: Session, duplicate_detector: Optional[DuplicateDetector] = None):
        self.db = db
        self.duplicate_detector = duplicate_detector or TokenOverlapDetector()

    # =========================================================================
    # READS
    # =========================================================================

    def get_attempts(self, report_id: str) -> List[ExtractionResultDB]:
        """
        All attempts for a report, highest confidence first.
        Ties keep the order the attempts were recorded in.
        """
        try:
            rows = self.db.query(ExtractionResultDB).filter(
                ExtractionResultDB.report_id == report_id
            ).order_by(ExtractionResultDB.created_at.asc()).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load extraction results for {report_id}: {e}")
            raise StoreError.from_sqlalchemy(e, operation="select_extractions")

        # sorted() is stable, so equal confidences stay in recorded order
        return sorted(rows, key=lambda r: -(r.confidence_score or 0.0))

    def select_best(self, report_id: str) -> Optional[ConsolidationResult]:
        """Highest-confidence attempt, or None when the report has no attempts."""
        attempts = self.get_attempts(report_id)
        if not attempts:
            logger.warning(f"No extraction results found for report {report_id}")
            return None

        best = attempts[0]
        return ConsolidationResult(
            text=best.extracted_text or "",
            confidence=best.confidence_score,
            method=best.extraction_method,
        )

    def merge(self, report_id: str) -> str:
        """
        Merge attempts into one text.

        The best attempt is the base. When it is shorter than
        MERGE_LENGTH_THRESHOLD, the next attempts (up to MAX_MERGE_CANDIDATES
        in total) are appended unless they are near-duplicates of the text
        accumulated so far.
        """
        attempts = self.get_attempts(report_id)
        if not attempts:
            return ""

        merged = attempts[0].extracted_text or ""
        if len(merged) >= MERGE_LENGTH_THRESHOLD or len(attempts) == 1:
            return merged

        for attempt in attempts[1:MAX_MERGE_CANDIDATES]:
            candidate = attempt.extracted_text or ""
            if self.duplicate_detector.is_duplicate(merged, candidate):
                logger.info(f"Skipping duplicate {attempt.extraction_method} extraction for report {report_id}")
                continue
            merged += MERGE_SEPARATOR + candidate

        return merged

    def compare(self, report_id: str) -> Dict[str, Any]:
        """Attempts plus the patterns they share and the conflicts between them."""
        attempts = self.get_attempts(report_id)
        comparison = {"similarities": [], "differences": []}
        if len(attempts) >= 2:
            comparison["similarities"] = _find_common_patterns(attempts)
            comparison["differences"] = _find_conflicts(attempts)

        return {
            "results": [_attempt_summary(a) for a in attempts],
            "comparison": comparison,
        }

    # =========================================================================
    # WRITES
    # =========================================================================

    def persist_consolidation(self, report_id: str, text: str, confidence: float) -> bool:
        """
        Write the consolidated text onto the owning report in one update.

        Returns False when no report has this id. Store failures raise.
        """
        if confidence is None or not 0.0 <= confidence <= 1.0:
            raise PayloadValidationError(f"confidence must be between 0 and 1, got {confidence}")

        try:
            updated = self.db.query(CreditReportDB).filter(
                CreditReportDB.id == report_id
            ).update(
                {
                    CreditReportDB.raw_text: text,
                    CreditReportDB.consolidation_confidence: confidence,
                    CreditReportDB.consolidation_status: ConsolidationStatus.COMPLETED.value,
                    CreditReportDB.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to save consolidation for report {report_id}: {e}")
            raise StoreError.from_sqlalchemy(e, operation="save_consolidation")

        return updated > 0

    def reconsolidate(self, report_id: str, strategy: ConsolidationStrategy) -> Dict[str, Any]:
        """
        Re-run consolidation with an explicit strategy.

        Records the outcome in consolidation_metadata and writes the chosen
        text back onto the report.
        """
        attempts = self.get_attempts(report_id)
        if not attempts:
            raise PayloadValidationError(f"No extraction results found for report {report_id}")

        strategy = ConsolidationStrategy(strategy)
        primary = attempts[0]

        if strategy == ConsolidationStrategy.HIGHEST_CONFIDENCE:
            text = primary.extracted_text or ""
            confidence = primary.confidence_score
        elif strategy == ConsolidationStrategy.MAJORITY_VOTE:
            by_length = sorted(attempts, key=lambda a: len(a.extracted_text or ""))
            text = by_length[len(by_length) // 2].extracted_text or ""
            mean = sum(a.confidence_score for a in attempts) / len(attempts)
            confidence = min(MAJORITY_VOTE_CONFIDENCE_CAP, mean)
        else:
            # Best text as a placeholder until someone reviews it
            text = primary.extracted_text or ""
            confidence = MANUAL_REVIEW_CONFIDENCE

        conflicts = _find_conflicts(attempts)
        requires_review = strategy == ConsolidationStrategy.MANUAL_REVIEW or confidence < REVIEW_CONFIDENCE_THRESHOLD

        try:
            metadata = self.db.query(ConsolidationMetadataDB).filter(
                ConsolidationMetadataDB.report_id == report_id
            ).first()
            if metadata is None:
                metadata = ConsolidationMetadataDB(id=str(uuid4()), report_id=report_id)
                self.db.add(metadata)

            metadata.primary_source = primary.extraction_method
            metadata.consolidation_strategy = strategy.value
            metadata.confidence_level = confidence
            metadata.field_sources = {
                "strategy_used": strategy.value,
                "total_sources": len(attempts),
                "methods_available": [a.extraction_method for a in attempts],
            }
            metadata.conflict_count = len(conflicts)
            metadata.requires_human_review = requires_review
            metadata.consolidation_notes = f"Re-consolidated using {strategy.value} strategy"
            metadata.processed_at = datetime.utcnow()

            self.db.query(CreditReportDB).filter(CreditReportDB.id == report_id).update(
                {
                    CreditReportDB.raw_text: text,
                    CreditReportDB.consolidation_confidence: confidence,
                    CreditReportDB.consolidation_status: ConsolidationStatus.COMPLETED.value,
                    CreditReportDB.primary_extraction_method: primary.extraction_method,
                    CreditReportDB.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Re-consolidation of report {report_id} failed: {e}")
            raise StoreError.from_sqlalchemy(e, operation="reconsolidate")

        logger.info(
            f"Re-consolidated report {report_id} with {strategy.value}: "
            f"confidence={confidence:.2f}, conflicts={len(conflicts)}"
        )

        return {
            "consolidated_text": text,
            "confidence": confidence,
            "primary_method": primary.extraction_method,
            "requires_human_review": requires_review,
        }


# =============================================================================
# HELPERS
# =============================================================================

def _attempt_summary(attempt: ExtractionResultDB) -> Dict[str, Any]:
    text = attempt.extracted_text or ""
    return {
        "id": attempt.id,
        "extraction_method": attempt.extraction_method,
        "confidence_score": attempt.confidence_score,
        "character_count": attempt.character_count if attempt.character_count is not None else len(text),
        "word_count": attempt.word_count if attempt.word_count is not None else len(text.split()),
    }


def _find_common_patterns(attempts: List[ExtractionResultDB]) -> List[str]:
    patterns = []
    for keyword in COMMON_REPORT_KEYWORDS:
        if all(keyword in (a.extracted_text or "").lower() for a in attempts):
            patterns.append(f"All extractions contain: {keyword}")
    return patterns


def _find_conflicts(attempts: List[ExtractionResultDB]) -> List[Dict[str, Any]]:
    """Flag a text-length conflict when lengths spread by more than 50%."""
    if len(attempts) < 2:
        return []

    lengths = [len(a.extracted_text or "") for a in attempts]
    shortest, longest = min(lengths), max(lengths)
    if shortest == 0:
        spread_exceeded = longest > 0
    else:
        spread_exceeded = (longest - shortest) / shortest > 0.5

    if not spread_exceeded:
        return []

    return [{
        "field": "Text Length",
        "values": [
            {
                "method": a.extraction_method,
                "value": f"{length} characters",
                "confidence": a.confidence_score,
            }
            for a, length in zip(attempts, lengths)
        ],
    }]
