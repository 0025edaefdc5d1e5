"""
Report persistence.

Batch upserts of raw and normalized reports, plus the read API.
"""
from .report_store import (
    NormalizedReportStore, account_fingerprint, account_response, parse_collected_at,
    raw_response, report_response,
)

__all__ = [
    "NormalizedReportStore",
    "account_fingerprint",
    "account_response",
    "parse_collected_at",
    "raw_response",
    "report_response",
]
