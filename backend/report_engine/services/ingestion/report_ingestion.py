"""
Report Ingestion

Scraper run → raw row + normalized report graph.

Normalization runs before anything is written, so a malformed payload
never leaves a raw row behind. The writes themselves are best-effort:
a store failure part way through keeps what was already committed, and
re-sending the same run converges through the upserts.
"""
from typing import Any, Dict, Optional
import logging

from sqlalchemy.orm import Session

from ...exceptions import PayloadValidationError
from ..normalization import ReportNormalizer
from ..persistence import NormalizedReportStore, parse_collected_at


logger = logging.getLogger(__name__)


class ReportIngestionService:
    """
    Usage:
        result = ReportIngestionService(db).ingest(run_id, user_id, collected_at, payload)
    """

    def __init__(self, db: Session, normalizer: Optional[ReportNormalizer] = None):
        self.db = db
        self.normalizer = normalizer or ReportNormalizer()
        self.store = NormalizedReportStore(db)

    def ingest(
        self,
        run_id: Optional[str],
        user_id: Optional[str],
        collected_at: Any,
        payload: Any,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        """
        Normalize and persist one scraper run.

        With dry_run nothing is written; the normalized report is returned
        for inspection.

        Raises:
            PayloadValidationError: missing runId/userId or malformed payload
            StoreError: a write was rejected
        """
        if not isinstance(payload, dict):
            raise PayloadValidationError("payload must be an object")

        normalized = self.normalizer.normalize(payload, run_id=run_id, user_id=user_id, collected_at=collected_at)
        if not normalized.user_id:
            raise PayloadValidationError("userId is required")

        counts = normalized.report.accounts.counts()
        result = {
            "ok": True,
            "runId": normalized.run_id,
            "dryRun": dry_run,
            "counts": {"scores": len(normalized.report.scores), "accounts": counts},
        }

        if dry_run:
            logger.info(f"Dry run for {normalized.run_id}: nothing written")
            result["normalized"] = normalized.to_report_json()
            return result

        # One timestamp for the raw row and every normalized row of the run
        normalized.collected_at = parse_collected_at(normalized.collected_at)
        self.store.save_raw(normalized.run_id, normalized.user_id, payload, collected_at=normalized.collected_at)
        result["written"] = self.store.save_normalized(normalized.user_id, normalized)

        logger.info(f"Ingested run {normalized.run_id} for user {normalized.user_id}")
        return result
