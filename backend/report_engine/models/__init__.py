"""Report Engine - Data Models"""
from .report_graph import (
    # Enums
    Bureau,
    # Consolidation output
    ConsolidationResult,
    # Normalized report graph
    NormalizedScore, NormalizedAccount, NormalizedInquiry, ConsumerStatement,
    AccountBuckets, ReportGraph, NormalizedReport,
)
from .db_models import AccountCategory, ConsolidationStatus, ConsolidationStrategy
from .round_models import RoundStatus

__all__ = [
    "Bureau", "AccountCategory", "ConsolidationStatus", "ConsolidationStrategy", "RoundStatus",
    "ConsolidationResult",
    "NormalizedScore", "NormalizedAccount", "NormalizedInquiry", "ConsumerStatement",
    "AccountBuckets", "ReportGraph", "NormalizedReport",
]
