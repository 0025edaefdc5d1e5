"""
Report Engine - Canonical Report Graph

The only structures the normalizer hands to the persistence layer.
Raw scraper payloads are never read again downstream of normalization.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .db_models import AccountCategory


# =============================================================================
# ENUMS
# =============================================================================

class Bureau(str, Enum):
    TRANSUNION = "transunion"
    EXPERIAN = "experian"
    EQUIFAX = "equifax"


DAYS_LATE_BUCKETS = ("30", "60", "90")


# =============================================================================
# CONSOLIDATION OUTPUT
# =============================================================================

@dataclass
class ConsolidationResult:
    """Best (or merged) text for one source document."""
    text: str
    confidence: float
    method: str


# =============================================================================
# NORMALIZED REPORT GRAPH
# =============================================================================

@dataclass
class NormalizedScore:
    bureau: str
    score: Optional[int] = None
    status: Optional[str] = None
    position: Optional[int] = None  # Ordinal within the bureau's group for this run


@dataclass
class NormalizedAccount:
    """One tradeline as one bureau reported it. Every absent field is an explicit None."""
    category: AccountCategory
    bureau: Optional[str] = None
    creditor: Optional[str] = None
    account_number_mask: Optional[str] = None

    # Date-only text (YYYY-MM-DD)
    opened_on: Optional[str] = None
    reported_on: Optional[str] = None
    last_activity_on: Optional[str] = None
    closed_on: Optional[str] = None
    last_payment_on: Optional[str] = None

    # Pass-through numerics
    balance: Any = None
    high_balance: Any = None
    credit_limit: Any = None
    past_due: Any = None
    payment_amount: Any = None
    term_length_months: Any = None

    account_type: Optional[str] = None
    payment_frequency: Optional[str] = None
    account_rating: Optional[str] = None
    account_status: Optional[str] = None
    payment_status: Optional[str] = None
    dispute_status: Optional[str] = None
    status: Optional[str] = None
    description: Optional[str] = None

    remarks: List[Any] = field(default_factory=list)
    two_year_history: Any = field(default_factory=dict)
    days_late_7y: Dict[str, Any] = field(default_factory=lambda: {b: 0 for b in DAYS_LATE_BUCKETS})

    position: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NormalizedInquiry:
    inquirer_name: Optional[str] = None
    inquiry_date: Optional[str] = None
    bureau: Optional[str] = None
    position: int = 1


@dataclass
class ConsumerStatement:
    bureau: Optional[str] = None
    statement: Optional[str] = None


@dataclass
class AccountBuckets:
    real_estate: List[NormalizedAccount] = field(default_factory=list)
    revolving: List[NormalizedAccount] = field(default_factory=list)
    other: List[NormalizedAccount] = field(default_factory=list)

    def bucket(self, category: AccountCategory) -> List[NormalizedAccount]:
        if category == AccountCategory.REAL_ESTATE:
            return self.real_estate
        if category == AccountCategory.REVOLVING:
            return self.revolving
        return self.other

    def flatten(self) -> List[NormalizedAccount]:
        """All accounts in bucket order: real estate, revolving, other."""
        return [*self.real_estate, *self.revolving, *self.other]

    def counts(self) -> Dict[str, int]:
        return {
            AccountCategory.REAL_ESTATE.value: len(self.real_estate),
            AccountCategory.REVOLVING.value: len(self.revolving),
            AccountCategory.OTHER.value: len(self.other),
        }


@dataclass
class ReportGraph:
    scores: List[NormalizedScore] = field(default_factory=list)
    accounts: AccountBuckets = field(default_factory=AccountBuckets)
    inquiries: List[NormalizedInquiry] = field(default_factory=list)
    consumer_statements: List[ConsumerStatement] = field(default_factory=list)
    personal_information: List[Any] = field(default_factory=list)
    addresses: List[Any] = field(default_factory=list)
    collections: List[Any] = field(default_factory=list)
    public_records: List[Any] = field(default_factory=list)


@dataclass
class NormalizedReport:
    """
    Canonical form of one scraper run.

    run_id is the natural key; collected_at and version are carried verbatim
    from the payload. Ingestion resolves collected_at to a naive UTC
    datetime once, before anything is written.
    """
    run_id: str
    user_id: Optional[str] = None
    collected_at: Any = None
    version: str = "v1"
    report: ReportGraph = field(default_factory=ReportGraph)

    def flattened_accounts(self) -> List[NormalizedAccount]:
        return self.report.accounts.flatten()

    def to_report_json(self) -> Dict[str, Any]:
        """Wire shape stored in normalized_credit_reports.report_json."""
        graph = self.report
        return {
            "scores": [_score_json(s) for s in graph.scores],
            "accounts": {
                AccountCategory.REAL_ESTATE.value: [_account_json(a) for a in graph.accounts.real_estate],
                AccountCategory.REVOLVING.value: [_account_json(a) for a in graph.accounts.revolving],
                AccountCategory.OTHER.value: [_account_json(a) for a in graph.accounts.other],
            },
            "inquiries": [
                {
                    "inquirer_name": i.inquirer_name,
                    "inquiry_date": i.inquiry_date,
                    "bureau": i.bureau,
                    "position": i.position,
                }
                for i in graph.inquiries
            ],
            "consumerStatements": [
                {"bureau": c.bureau, "statement": c.statement} for c in graph.consumer_statements
            ],
            "personalInformation": list(graph.personal_information),
            "addresses": list(graph.addresses),
            "collections": list(graph.collections),
            "publicRecords": list(graph.public_records),
        }


def _score_json(score: NormalizedScore) -> Dict[str, Any]:
    return {
        "bureau": score.bureau,
        "score": score.score,
        "status": score.status,
        "position": score.position,
    }


def _account_json(account: NormalizedAccount) -> Dict[str, Any]:
    data = {
        name: getattr(account, name)
        for name in account.__dataclass_fields__
        if name not in ("category", "payload")
    }
    data["category"] = account.category.value
    return data
