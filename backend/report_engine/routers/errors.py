"""
Engine errors → HTTPException.

Error bodies are {"code": ..., "message": ...} under FastAPI's "detail".
"""
from fastapi import HTTPException

from ..exceptions import (
    PayloadValidationError, ReportEngineError, RoundLimitError, RoundTransitionError, StoreError,
)


STATUS_BY_ERROR = (
    (PayloadValidationError, 400),
    (RoundLimitError, 400),
    (RoundTransitionError, 409),
    (StoreError, 500),
)


def http_error(exc: ReportEngineError) -> HTTPException:
    status = 500
    for error_type, error_status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status = error_status
            break
    return HTTPException(status_code=status, detail={"code": exc.code, "message": str(exc)})


def not_found(message: str) -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "E_NOT_FOUND", "message": message})
