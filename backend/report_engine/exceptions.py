"""
Report Engine - Error Taxonomy

Validation and storage errors reach the caller.
Absence is modelled as None by the services, never raised.
"""
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError


class ReportEngineError(Exception):
    """Base class for all engine errors."""
    code = "E_UNEXPECTED"


class PayloadValidationError(ReportEngineError):
    """Raised when a top-level payload is malformed or misses its natural key."""
    code = "E_SCHEMA_INVALID"


class StoreError(ReportEngineError):
    """Raised when the store rejects a read or write. Carries the store's message verbatim."""
    code = "E_DB_UPSERT"

    def __init__(self, message: str, operation: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        if code:
            self.code = code

    @classmethod
    def from_sqlalchemy(
        cls, exc: SQLAlchemyError, operation: Optional[str] = None, code: Optional[str] = None
    ) -> "StoreError":
        # DBAPI errors wrap the driver exception; its text is what the store said
        orig = getattr(exc, "orig", None)
        message = str(orig) if orig is not None else str(exc)
        return cls(message, operation=operation, code=code)


class RoundTransitionError(ReportEngineError):
    """Raised when a round status transition is invalid."""
    code = "E_INVALID_TRANSITION"


class RoundLimitError(ReportEngineError):
    """Raised when a case already has the maximum number of active rounds."""
    code = "E_ROUND_LIMIT"
