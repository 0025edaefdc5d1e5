"""
Schema-tolerant access to scraper payloads.

Scraper output changes shape between versions and after partial failures.
Every lookup goes through PayloadNode so a missing or mistyped field
degrades to a default instead of raising. The field aliases the scraper
has used over time are listed once, here.
"""
from datetime import date, datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple
import re

from bs4 import BeautifulSoup

from ...models.report_graph import Bureau


# =============================================================================
# FIELD ALIASES
# =============================================================================

RUN_ID_KEYS = ("runId", "run_id")
USER_ID_KEYS = ("userId", "user_id")
COLLECTED_AT_KEYS = ("collectedAt", "collected_at")
VERSION_KEYS = ("version",)
REPORT_KEYS = ("report", "creditReport")
CAPTURED_LISTS_KEYS = ("capturedLists", "captured_lists")

SCORE_LIST_KEYS = ("scores", "creditScores")
ACCOUNTS_KEYS = ("accounts",)
REAL_ESTATE_KEYS = ("realEstate", "real_estate")
REVOLVING_KEYS = ("revolving",)
OTHER_KEYS = ("other",)
INQUIRY_LIST_KEYS = ("inquiries",)
STATEMENT_LIST_KEYS = ("consumerStatements", "consumer_statements")
PERSONAL_INFO_KEYS = ("personalInformation", "personal_information")
ADDRESS_LIST_KEYS = ("addresses",)
COLLECTION_LIST_KEYS = ("collections",)
PUBLIC_RECORD_LIST_KEYS = ("publicRecords", "public_records")

SCORE_FIELDS = {
    "bureau": ("bureau", "Bureau", "source", "provider"),
    "score": ("score", "Score", "value", "creditScore"),
    "status": ("status", "Status"),
    "position": ("position",),
}

ACCOUNT_FIELDS = {
    "bureau": ("bureau", "Bureau"),
    "creditor": ("creditor", "Creditor", "creditor_name", "creditorName", "name"),
    "account_number_mask": ("account_number_mask", "mask", "account", "accountNumber", "account_number"),
    "opened_on": ("opened_on", "opened", "date opened", "dateOpened", "open_date"),
    "reported_on": ("reported_on", "reported", "last reported", "lastReportedDate"),
    "last_activity_on": ("last_activity_on", "last active", "lastActivityDate"),
    "closed_on": ("closed_on", "closed", "date closed", "dateClosed"),
    "last_payment_on": ("last_payment_on", "last payment", "lastPaymentDate"),
    "balance": ("balance", "Balance", "current_balance", "currentBalance"),
    "high_balance": ("high_balance", "highest_balance", "highBalance"),
    "credit_limit": ("credit_limit", "limit", "creditLimit"),
    "past_due": ("past_due", "past_due_amount", "pastDue"),
    "payment_amount": ("payment_amount", "monthly_payment", "monthlyPayment"),
    "term_length_months": ("term_length_months", "term_length"),
    "account_type": ("account_type", "accountType", "type"),
    "payment_frequency": ("payment_frequency",),
    "account_rating": ("account_rating",),
    "account_status": ("account_status", "accountStatus"),
    "payment_status": ("payment_status", "paymentStatus"),
    "dispute_status": ("dispute_status",),
    "status": ("status", "Status"),
    "description": ("description", "comments"),
    "remarks": ("remarks", "Remarks"),
    "two_year_history": ("two_year_history", "twoYearHistory", "payment_history"),
    "days_late_7y": ("days_late_7y", "daysLate7y"),
    "position": ("position",),
}

INQUIRY_FIELDS = {
    "inquirer_name": ("inquirer_name", "creditor", "creditorName", "subscriber", "name"),
    "inquiry_date": ("inquiry_date", "date", "inquiryDate"),
    "bureau": ("bureau", "Bureau", "source"),
}

STATEMENT_FIELDS = {
    "bureau": ("bureau", "Bureau"),
    "statement": ("statement", "Statement"),
}

_BUREAU_PATTERN = re.compile(r"experian|equifax|trans\s*union", re.IGNORECASE)
_DIGITS = re.compile(r"[^0-9]")


# =============================================================================
# PAYLOAD NODE
# =============================================================================

class PayloadNode:
    """Read-only wrapper over one value in a loosely structured JSON tree."""

    __slots__ = ("value",)

    def __init__(self, value: Any):
        self.value = value

    @property
    def is_object(self) -> bool:
        return isinstance(self.value, dict)

    @property
    def is_list(self) -> bool:
        return isinstance(self.value, list)

    def child(self, *keys: str) -> "PayloadNode":
        """First key present (and not None) wins. Missing → node wrapping None."""
        if self.is_object:
            for key in keys:
                if self.value.get(key) is not None:
                    return PayloadNode(self.value[key])
        return PayloadNode(None)

    def first(self, keys: Iterable[str], default: Any = None) -> Any:
        """First alias with a non-empty value, else default."""
        if not self.is_object:
            return default
        for key in keys:
            value = self.value.get(key)
            if value is not None and value != "":
                return value
        return default

    def text(self, keys: Iterable[str], default: Optional[str] = None) -> Optional[str]:
        value = self.first(keys)
        if value is None:
            return default
        value = str(value).strip()
        return value or default

    def items(self) -> List["PayloadNode"]:
        """Children of a list node; anything else has no items."""
        if not self.is_list:
            return []
        return [PayloadNode(v) for v in self.value]

    def as_list(self) -> List[Any]:
        return list(self.value) if self.is_list else []

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.value) if self.is_object else {}

    def named_lists(self) -> Iterator[Tuple[str, "PayloadNode"]]:
        """
        Scraper captured lists as (lower-cased name, items node).

        Accepts both {"Name": [...]} and [{"name": "Name", "items": [...]}].
        """
        if self.is_object:
            for name, items in self.value.items():
                yield str(name).lower(), PayloadNode(items)
        elif self.is_list:
            for entry in self.items():
                yield str(entry.first(("name",), "")).lower(), entry.child("items")


# =============================================================================
# VALUE COERCION
# =============================================================================

def truncate_date(value: Any) -> Optional[str]:
    """Date-only text: the first 10 characters. Null and blank stay None."""
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()[:10]
    text = str(value).strip()
    if not text:
        return None
    return text[:10]


def canonical_bureau(value: Any) -> Optional[str]:
    """Lower-case bureau name when recognisable, the raw text otherwise."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    match = _BUREAU_PATTERN.search(text)
    if not match:
        return text
    name = re.sub(r"\s+", "", match.group(0)).lower()
    return Bureau(name).value


def coerce_score(value: Any) -> Optional[int]:
    """Scores arrive as ints, floats or strings like '712*'."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    digits = _DIGITS.sub("", str(value))
    return int(digits) if digits else None


def coerce_position(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def strip_html(value: Any) -> Optional[str]:
    if value is None:
        return None
    return BeautifulSoup(str(value), "html.parser").get_text().strip()
