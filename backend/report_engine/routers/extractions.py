"""
Report Engine - Extraction Consolidation API Router

Inspect extraction attempts for an uploaded document and write the
consolidated text back onto its credit report.
"""
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import ReportEngineError
from ..models.db_models import ConsolidationStrategy
from ..services.consolidation import ExtractionSelector
from .errors import http_error, not_found

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/extractions", tags=["extractions"])


# =============================================================================
# PYDANTIC MODELS FOR API
# =============================================================================

class ComparisonResponse(BaseModel):
    results: List[Dict[str, Any]]
    comparison: Dict[str, List[Any]]


class BestExtractionResponse(BaseModel):
    text: str
    confidence: float
    method: str


class MergedTextResponse(BaseModel):
    report_id: str
    text: str


class ConsolidateRequest(BaseModel):
    merge: bool = True


class ConsolidateResponse(BaseModel):
    report_id: str
    method: str
    confidence: float
    character_count: int
    merged: bool


class ReconsolidateRequest(BaseModel):
    strategy: ConsolidationStrategy = ConsolidationStrategy.HIGHEST_CONFIDENCE


class ReconsolidateResponse(BaseModel):
    consolidated_text: str
    confidence: float
    primary_method: str
    requires_human_review: bool


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/{report_id}", response_model=ComparisonResponse)
def compare_extractions(report_id: str, db: Session = Depends(get_db)):
    """All attempts for a report, with shared patterns and conflicts."""
    try:
        return ExtractionSelector(db).compare(report_id)
    except ReportEngineError as e:
        raise http_error(e)


@router.get("/{report_id}/best", response_model=BestExtractionResponse)
def get_best_extraction(report_id: str, db: Session = Depends(get_db)):
    try:
        best = ExtractionSelector(db).select_best(report_id)
    except ReportEngineError as e:
        raise http_error(e)

    if best is None:
        raise not_found(f"No extraction results for report {report_id}")
    return BestExtractionResponse(text=best.text, confidence=best.confidence, method=best.method)


@router.get("/{report_id}/merged", response_model=MergedTextResponse)
def get_merged_text(report_id: str, db: Session = Depends(get_db)):
    try:
        text = ExtractionSelector(db).merge(report_id)
    except ReportEngineError as e:
        raise http_error(e)
    return MergedTextResponse(report_id=report_id, text=text)


@router.post("/{report_id}/consolidate", response_model=ConsolidateResponse)
def consolidate(report_id: str, request: Optional[ConsolidateRequest] = None, db: Session = Depends(get_db)):
    """
    Pick the best attempt (merged with others when it is short) and save
    it onto the credit report.
    """
    request = request or ConsolidateRequest()
    selector = ExtractionSelector(db)
    try:
        best = selector.select_best(report_id)
        if best is None:
            raise not_found(f"No extraction results for report {report_id}")

        text = selector.merge(report_id) if request.merge else best.text
        if not selector.persist_consolidation(report_id, text, best.confidence):
            raise not_found(f"Credit report {report_id} not found")
    except ReportEngineError as e:
        raise http_error(e)

    logger.info(f"Consolidated report {report_id} from {best.method} ({len(text)} chars)")
    return ConsolidateResponse(
        report_id=report_id,
        method=best.method,
        confidence=best.confidence,
        character_count=len(text),
        merged=text != best.text,
    )


@router.post("/{report_id}/reconsolidate", response_model=ReconsolidateResponse)
def reconsolidate(report_id: str, request: ReconsolidateRequest, db: Session = Depends(get_db)):
    try:
        return ExtractionSelector(db).reconsolidate(report_id, request.strategy)
    except ReportEngineError as e:
        raise http_error(e)
