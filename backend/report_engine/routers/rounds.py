"""
Report Engine - Dispute Rounds API Router
"""
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import ReportEngineError
from ..services.rounds import RoundService, round_response
from .errors import http_error, not_found

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rounds", tags=["rounds"])


# =============================================================================
# PYDANTIC MODELS FOR API
# =============================================================================

class CreateRoundRequest(BaseModel):
    customer_id: str
    source: Optional[str] = None


class RoundResponse(BaseModel):
    id: str
    customer_id: str
    round_number: int
    status: str
    source: Optional[str] = None
    created_at: Optional[str] = None
    sent_at: Optional[str] = None
    deleted_at: Optional[str] = None


class SnapshotRequest(BaseModel):
    normalized: Dict[str, Any] = {}
    raw: Any = None


class SnapshotResponse(BaseModel):
    round_id: str
    counts: Dict[str, int]
    missing_bureaus: List[str]


class DeleteRoundResponse(BaseModel):
    ok: bool
    round_id: str
    status: str
    deleted_at: Optional[str] = None
    cascade: Dict[str, int]
    failed: List[str]


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("", response_model=RoundResponse)
def create_round(request: CreateRoundRequest, db: Session = Depends(get_db)):
    try:
        round_ = RoundService(db).create_round(request.customer_id, source=request.source)
    except ReportEngineError as e:
        raise http_error(e)
    return round_response(round_)


@router.get("/{round_id}", response_model=RoundResponse)
def get_round(round_id: str, db: Session = Depends(get_db)):
    try:
        round_ = RoundService(db).get_round(round_id)
    except ReportEngineError as e:
        raise http_error(e)
    if round_ is None:
        raise not_found("Round not found")
    return round_response(round_)


@router.post("/{round_id}/save", response_model=RoundResponse)
def save_round(round_id: str, db: Session = Depends(get_db)):
    try:
        round_ = RoundService(db).save_round(round_id)
    except ReportEngineError as e:
        raise http_error(e)
    if round_ is None:
        raise not_found("Round not found")
    return round_response(round_)


@router.post("/{round_id}/send", response_model=RoundResponse)
def send_round(round_id: str, db: Session = Depends(get_db)):
    try:
        round_ = RoundService(db).mark_sent(round_id)
    except ReportEngineError as e:
        raise http_error(e)
    if round_ is None:
        raise not_found("Round not found")
    return round_response(round_)


@router.put("/{round_id}/snapshot", response_model=SnapshotResponse)
def load_snapshot(round_id: str, request: SnapshotRequest, db: Session = Depends(get_db)):
    """Replace the round's child rows with a normalized snapshot."""
    try:
        result = RoundService(db).load_snapshot(round_id, request.normalized, raw=request.raw)
    except ReportEngineError as e:
        raise http_error(e)
    if result is None:
        raise not_found("Round not found")
    return result


@router.delete("/{round_id}", response_model=DeleteRoundResponse)
def delete_round(round_id: str, remove_raw: bool = False, db: Session = Depends(get_db)):
    """
    Soft-delete a round and purge its child rows.

    Succeeds once the round is marked deleted; child categories that fail
    to purge are listed under "failed".
    """
    try:
        result = RoundService(db).delete_round(round_id, remove_raw=remove_raw)
    except ReportEngineError as e:
        raise http_error(e)
    if result is None:
        raise not_found("Round not found")
    return result
