"""
Report Engine - Credit Reports API Router

Scraper ingestion and the read API over normalized reports.
"""
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import PayloadValidationError, ReportEngineError
from ..models.db_models import AccountCategory
from ..services.ingestion import ReportIngestionService
from ..services.persistence import NormalizedReportStore, raw_response
from ..services.persistence.report_store import DEFAULT_PAGE_LIMIT
from .errors import http_error, not_found

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credit-reports", tags=["credit-reports"])


# =============================================================================
# PYDANTIC MODELS FOR API
# =============================================================================

class IngestRequest(BaseModel):
    run_id: Optional[str] = Field(default=None, alias="runId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    collected_at: Optional[str] = Field(default=None, alias="collectedAt")
    payload: Any = None
    dry_run: bool = Field(default=False, alias="dryRun")


class IngestResponse(BaseModel):
    ok: bool
    runId: str
    dryRun: bool
    counts: Dict[str, Any]
    written: Optional[Dict[str, int]] = None
    normalized: Optional[Dict[str, Any]] = None


class LatestReportResponse(BaseModel):
    runId: Optional[str] = None
    collectedAt: Optional[str] = None
    version: str = "v1"
    report: Optional[Dict[str, Any]] = None
    counts: Optional[Dict[str, Any]] = None


class AccountsPageResponse(BaseModel):
    items: List[Dict[str, Any]]
    nextCursor: Optional[str] = None


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/ingest", response_model=IngestResponse, response_model_exclude_none=True)
def ingest_report(request: IngestRequest, db: Session = Depends(get_db)):
    """Normalize and store one scraper run. Re-sending the same runId overwrites it."""
    try:
        return ReportIngestionService(db).ingest(
            run_id=request.run_id,
            user_id=request.user_id,
            collected_at=request.collected_at,
            payload=request.payload,
            dry_run=request.dry_run,
        )
    except ReportEngineError as e:
        logger.error(f"Ingest failed for run {request.run_id}: [{e.code}] {e}")
        raise http_error(e)


@router.get("/latest", response_model=LatestReportResponse, response_model_exclude_none=True)
def get_latest_report(
    run_id: Optional[str] = Query(default=None, alias="runId"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    db: Session = Depends(get_db),
):
    """Normalized report for a run, or the latest one for a user."""
    store = NormalizedReportStore(db)
    try:
        if run_id:
            report = store.fetch_latest_normalized(run_id)
            if report is None:
                raise not_found("Report not found")
            return report

        if not user_id:
            raise PayloadValidationError("runId or userId is required")

        report = store.fetch_latest_for_user(user_id)
    except ReportEngineError as e:
        raise http_error(e)

    if report is None:
        return LatestReportResponse(
            counts={"accounts": {c.value: 0 for c in AccountCategory}},
        )
    return report


@router.get("/latest-raw")
def get_latest_raw(
    run_id: Optional[str] = Query(default=None, alias="runId"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    db: Session = Depends(get_db),
):
    """Raw scraper payload for a run, or the latest one for a user."""
    try:
        row = NormalizedReportStore(db).fetch_raw(run_id=run_id, user_id=user_id)
    except ReportEngineError as e:
        raise http_error(e)

    if row is None:
        raise not_found("Raw report not found")
    return raw_response(row)


@router.get("/accounts", response_model=AccountsPageResponse)
def list_accounts(
    category: Optional[str] = None,
    limit: int = DEFAULT_PAGE_LIMIT,
    cursor: Optional[str] = None,
    user_id: Optional[str] = Query(default=None, alias="userId"),
    db: Session = Depends(get_db),
):
    """One page of accounts in a category, newest first. limit is clamped to 1-200."""
    try:
        page = NormalizedReportStore(db).list_accounts(category, limit=limit, cursor=cursor, user_id=user_id)
    except ReportEngineError as e:
        raise http_error(e)

    return AccountsPageResponse(items=page["items"], nextCursor=page["next_cursor"])
