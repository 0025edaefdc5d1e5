"""
Report Normalizer

Maps one raw scraper payload (one per run) into the canonical report graph:
header metadata, bureau scores and categorised tradeline accounts.

Only a malformed top level fails the call. Everything nested degrades
to None / empty defaults.
"""
from typing import Any, Dict, List, Optional, Set
import logging

from ...exceptions import PayloadValidationError
from ...models.db_models import AccountCategory
from ...models.report_graph import (
    DAYS_LATE_BUCKETS, AccountBuckets, ConsumerStatement, NormalizedAccount,
    NormalizedInquiry, NormalizedReport, NormalizedScore, ReportGraph,
)
from .payload import (
    ACCOUNT_FIELDS, ACCOUNTS_KEYS, ADDRESS_LIST_KEYS, CAPTURED_LISTS_KEYS, COLLECTED_AT_KEYS,
    COLLECTION_LIST_KEYS, INQUIRY_FIELDS, INQUIRY_LIST_KEYS, OTHER_KEYS, PERSONAL_INFO_KEYS,
    PUBLIC_RECORD_LIST_KEYS, REAL_ESTATE_KEYS, REPORT_KEYS, REVOLVING_KEYS, RUN_ID_KEYS,
    SCORE_FIELDS, SCORE_LIST_KEYS, STATEMENT_FIELDS, STATEMENT_LIST_KEYS, USER_ID_KEYS,
    VERSION_KEYS, PayloadNode, canonical_bureau, coerce_position, coerce_score, strip_html,
    truncate_date,
)


logger = logging.getLogger(__name__)

DEFAULT_VERSION = "v1"
UNKNOWN_BUREAU = "unknown"

DATE_FIELDS = ("opened_on", "reported_on", "last_activity_on", "closed_on", "last_payment_on")
NUMERIC_FIELDS = ("balance", "high_balance", "credit_limit", "past_due", "payment_amount", "term_length_months")
TEXT_FIELDS = (
    "creditor", "account_number_mask", "account_type", "payment_frequency", "account_rating",
    "account_status", "payment_status", "dispute_status", "status", "description",
)

_CATEGORY_KEYS = (
    (AccountCategory.REAL_ESTATE, REAL_ESTATE_KEYS),
    (AccountCategory.REVOLVING, REVOLVING_KEYS),
    (AccountCategory.OTHER, OTHER_KEYS),
)


def normalize(
    raw_payload: Any,
    run_id: Optional[str] = None,
    user_id: Optional[str] = None,
    collected_at: Optional[str] = None,
) -> NormalizedReport:
    """
    Normalize a raw scraper payload.

    Envelope arguments win over the same fields inside the payload.

    Raises:
        PayloadValidationError: payload is not an object, or no run id
    """
    return ReportNormalizer().normalize(raw_payload, run_id=run_id, user_id=user_id, collected_at=collected_at)


class ReportNormalizer:
    """
    Raw scraper payload → NormalizedReport.

    Two source layouts are understood:
    - a pre-shaped report: report.scores / report.accounts.{realEstate,revolving,other}
    - scraper captured lists: capturedLists named "... score ...", "real estate ...", etc.
    Both may be present; their items are combined.
    """

    def normalize(
        self,
        raw_payload: Any,
        run_id: Optional[str] = None,
        user_id: Optional[str] = None,
        collected_at: Optional[str] = None,
    ) -> NormalizedReport:
        if not isinstance(raw_payload, dict):
            raise PayloadValidationError("payload must be an object")

        root = PayloadNode(raw_payload)
        run_id = (run_id or "").strip() or root.text(RUN_ID_KEYS)
        if not run_id:
            raise PayloadValidationError("runId is required")

        body = root.child(*REPORT_KEYS)
        if not body.is_object:
            body = root

        graph = ReportGraph()
        self._extract_scores(body.child(*SCORE_LIST_KEYS), graph)
        self._extract_accounts(body.child(*ACCOUNTS_KEYS), graph)
        self._extract_inquiries(body.child(*INQUIRY_LIST_KEYS), graph)
        self._extract_statements(body.child(*STATEMENT_LIST_KEYS), graph)

        captured = root.child(*CAPTURED_LISTS_KEYS)
        if captured.value is None:
            captured = body.child(*CAPTURED_LISTS_KEYS)
        self._extract_captured_lists(captured, graph)

        graph.personal_information = body.child(*PERSONAL_INFO_KEYS).as_list()
        graph.addresses = body.child(*ADDRESS_LIST_KEYS).as_list()
        graph.collections = body.child(*COLLECTION_LIST_KEYS).as_list()
        graph.public_records = body.child(*PUBLIC_RECORD_LIST_KEYS).as_list()

        self._assign_score_positions(graph.scores)

        report = NormalizedReport(
            run_id=run_id,
            user_id=user_id or root.text(USER_ID_KEYS),
            collected_at=collected_at or root.first(COLLECTED_AT_KEYS),
            version=root.text(VERSION_KEYS, DEFAULT_VERSION),
            report=graph,
        )

        counts = graph.accounts.counts()
        logger.info(
            f"Normalized run {run_id}: {len(graph.scores)} scores, "
            f"{sum(counts.values())} accounts {counts}"
        )
        return report

    # =========================================================================
    # SCORES
    # =========================================================================

    def _extract_scores(self, scores: PayloadNode, graph: ReportGraph) -> None:
        for item in scores.items():
            score = self._normalize_score(item)
            if score is not None:
                graph.scores.append(score)

    def _normalize_score(self, item: PayloadNode) -> Optional[NormalizedScore]:
        if not item.is_object:
            logger.warning(f"Skipping non-object score entry: {item.value!r}")
            return None

        return NormalizedScore(
            bureau=canonical_bureau(item.first(SCORE_FIELDS["bureau"])) or UNKNOWN_BUREAU,
            score=coerce_score(item.first(SCORE_FIELDS["score"])),
            status=item.text(SCORE_FIELDS["status"]),
            # Settled per bureau in _assign_score_positions
            position=coerce_position(item.first(SCORE_FIELDS["position"])),
        )

    @staticmethod
    def _assign_score_positions(scores: List[NormalizedScore]) -> None:
        """
        Give every score a position unique within its bureau group.

        A positive source position is kept when no earlier score of the
        same bureau claimed it. Every other score takes the lowest free
        1-based ordinal of its bureau, in list order.
        """
        taken: Dict[str, Set[int]] = {}
        pending: List[NormalizedScore] = []
        for score in scores:
            used = taken.setdefault(score.bureau, set())
            if score.position is not None and score.position > 0 and score.position not in used:
                used.add(score.position)
                continue
            if score.position is not None:
                logger.warning(
                    f"Score position {score.position} for {score.bureau} is invalid or taken, reassigning"
                )
            pending.append(score)

        for score in pending:
            used = taken[score.bureau]
            ordinal = 1
            while ordinal in used:
                ordinal += 1
            used.add(ordinal)
            score.position = ordinal

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    def _extract_accounts(self, accounts: PayloadNode, graph: ReportGraph) -> None:
        for category, keys in _CATEGORY_KEYS:
            self._extend_bucket(accounts.child(*keys), category, graph.accounts)

    def _extend_bucket(self, items: PayloadNode, category: AccountCategory, buckets: AccountBuckets) -> None:
        bucket = buckets.bucket(category)
        for item in items.items():
            if not item.is_object:
                logger.warning(f"Skipping non-object {category.value} account entry")
                continue
            bucket.append(self._normalize_account(item, category, len(bucket) + 1))

    def _normalize_account(self, item: PayloadNode, category: AccountCategory, ordinal: int) -> NormalizedAccount:
        fields: Dict[str, Any] = {}

        for name in TEXT_FIELDS:
            fields[name] = item.text(ACCOUNT_FIELDS[name])
        for name in DATE_FIELDS:
            fields[name] = truncate_date(item.first(ACCOUNT_FIELDS[name]))
        for name in NUMERIC_FIELDS:
            fields[name] = item.first(ACCOUNT_FIELDS[name])

        position = coerce_position(item.first(ACCOUNT_FIELDS["position"]))

        return NormalizedAccount(
            category=category,
            bureau=canonical_bureau(item.first(ACCOUNT_FIELDS["bureau"])),
            remarks=_remarks(item.first(ACCOUNT_FIELDS["remarks"])),
            two_year_history=_history(item.first(ACCOUNT_FIELDS["two_year_history"])),
            days_late_7y=_days_late(item.first(ACCOUNT_FIELDS["days_late_7y"])),
            position=position if position is not None else ordinal,
            payload=item.as_dict(),
            **fields,
        )

    # =========================================================================
    # INQUIRIES / STATEMENTS
    # =========================================================================

    def _extract_inquiries(self, inquiries: PayloadNode, graph: ReportGraph) -> None:
        for item in inquiries.items():
            if not item.is_object:
                continue
            graph.inquiries.append(NormalizedInquiry(
                inquirer_name=item.text(INQUIRY_FIELDS["inquirer_name"]),
                inquiry_date=truncate_date(item.first(INQUIRY_FIELDS["inquiry_date"])),
                bureau=canonical_bureau(item.first(INQUIRY_FIELDS["bureau"])),
                position=len(graph.inquiries) + 1,
            ))

    def _extract_statements(self, statements: PayloadNode, graph: ReportGraph) -> None:
        for item in statements.items():
            if not item.is_object:
                continue
            graph.consumer_statements.append(ConsumerStatement(
                bureau=canonical_bureau(item.first(STATEMENT_FIELDS["bureau"])),
                statement=strip_html(item.first(STATEMENT_FIELDS["statement"])),
            ))

    # =========================================================================
    # SCRAPER CAPTURED LISTS
    # =========================================================================

    def _extract_captured_lists(self, captured: PayloadNode, graph: ReportGraph) -> None:
        for name, items in captured.named_lists():
            if "score" in name:
                self._extract_scores(items, graph)
            elif name.startswith("real estate"):
                self._extend_bucket(items, AccountCategory.REAL_ESTATE, graph.accounts)
            elif name.startswith("revolving"):
                self._extend_bucket(items, AccountCategory.REVOLVING, graph.accounts)
            elif name.startswith("other"):
                self._extend_bucket(items, AccountCategory.OTHER, graph.accounts)
            elif name.startswith("consumer stateme"):
                self._extract_statements(items, graph)
            elif name.startswith("inquir"):
                self._extract_inquiries(items, graph)


# =============================================================================
# FIELD DEFAULTS
# =============================================================================

def _remarks(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    return [value]


def _history(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return value
    return {}


def _days_late(value: Any) -> Dict[str, Any]:
    """Counts for the 30/60/90 buckets. Missing buckets are 0; other keys are dropped."""
    result: Dict[str, Any] = {bucket: 0 for bucket in DAYS_LATE_BUCKETS}
    if isinstance(value, dict):
        for key, count in value.items():
            bucket = str(key).strip()
            if bucket in result and count is not None:
                result[bucket] = count
    return result
