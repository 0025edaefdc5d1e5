"""
Normalized Report Store

Idempotent writes of the raw payload and the normalized report graph,
and the read API over them.

Writes are batch upserts keyed on natural keys (run id, score position,
account fingerprint), so re-ingesting a run overwrites instead of
duplicating. save_normalized is three separate commits: a failure part
way through leaves the earlier writes in place.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4
import hashlib
import logging

from dateutil import parser as date_parser
from sqlalchemy import and_, or_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...exceptions import PayloadValidationError, StoreError
from ...models.db_models import (
    AccountCategory, NormalizedCreditAccountDB, NormalizedCreditReportDB,
    NormalizedCreditScoreDB, RawCreditReportDB,
)
from ...models.report_graph import NormalizedAccount, NormalizedReport


logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 50
MIN_PAGE_LIMIT = 1
MAX_PAGE_LIMIT = 200
CURSOR_SEPARATOR = "|"

# Columns an upsert never overwrites on conflict
_IMMUTABLE_COLUMNS = ("id", "created_at")

_ACCOUNT_COLUMNS = (
    "category", "bureau", "creditor", "account_number_mask",
    "opened_on", "reported_on", "last_activity_on", "closed_on", "last_payment_on",
    "balance", "high_balance", "credit_limit", "past_due", "payment_amount", "term_length_months",
    "account_type", "payment_frequency", "account_rating", "account_status",
    "payment_status", "dispute_status", "status", "description",
    "remarks", "two_year_history", "days_late_7y", "position", "payload",
)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


# =============================================================================
# KEYS & TIMESTAMPS
# =============================================================================

def parse_collected_at(value: Any) -> datetime:
    """
    Collection timestamp as naive UTC.

    Accepts datetimes and ISO-ish strings. Missing or unparseable values
    fall back to now.
    """
    if isinstance(value, datetime):
        parsed = value
    elif value is None or str(value).strip() == "":
        return datetime.utcnow()
    else:
        try:
            parsed = date_parser.parse(str(value))
        except (ValueError, OverflowError):
            logger.warning(f"Unparseable collectedAt {value!r}, using current time")
            return datetime.utcnow()

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def account_fingerprint(user_id: str, account: NormalizedAccount) -> str:
    """
    Stable identity of an account for one user.

    (user_id, bureau, creditor, account_number_mask, opened_on). When
    opened_on is missing the bucket and source position are added, so
    distinct undated accounts of one creditor do not collapse into one row.
    """
    parts = [
        user_id,
        account.bureau or "",
        (account.creditor or "").lower(),
        account.account_number_mask or "",
        account.opened_on or "",
    ]
    if not account.opened_on:
        parts += [account.category.value, str(account.position or "")]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


# =============================================================================
# STORE
# =============================================================================

class NormalizedReportStore:
    """
    Persistence for scraped reports.

    Usage:
        store = NormalizedReportStore(db)
        store.save_raw(run_id, user_id, payload)
        store.save_normalized(user_id, normalized)
        latest = store.fetch_latest(run_id)
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # WRITES
    # =========================================================================

    def save_raw(
        self,
        run_id: str,
        user_id: str,
        raw_payload: Dict[str, Any],
        collected_at: Any = None,
    ) -> None:
        """Upsert the raw payload on run_id."""
        if not run_id:
            raise PayloadValidationError("runId is required")
        if not user_id:
            raise PayloadValidationError("userId is required")

        now = datetime.utcnow()
        self._upsert(
            RawCreditReportDB,
            [{
                "id": str(uuid4()),
                "run_id": run_id,
                "user_id": user_id,
                "collected_at": parse_collected_at(collected_at),
                "raw_json": raw_payload,
                "created_at": now,
                "updated_at": now,
            }],
            conflict_keys=("run_id",),
            operation="upsert_raw",
        )
        logger.info(f"Saved raw payload for run {run_id}")

    def save_normalized(self, user_id: Optional[str], report: NormalizedReport) -> Dict[str, int]:
        """
        Upsert header, scores and accounts.

        Each of the three writes commits on its own and is skipped when it
        has nothing to write. The first failure raises StoreError; writes
        already committed stay.

        Returns:
            Rows written per table
        """
        user_id = user_id or report.user_id
        if not user_id:
            raise PayloadValidationError("userId is required")
        if not report.run_id:
            raise PayloadValidationError("runId is required")

        collected_at = parse_collected_at(report.collected_at)
        now = datetime.utcnow()
        written = {"report": 0, "scores": 0, "accounts": 0}

        # Step 1: header
        written["report"] = self._upsert(
            NormalizedCreditReportDB,
            [{
                "id": str(uuid4()),
                "run_id": report.run_id,
                "user_id": user_id,
                "collected_at": collected_at,
                "version": report.version,
                "report_json": report.to_report_json(),
                "created_at": now,
                "updated_at": now,
            }],
            conflict_keys=("run_id",),
            operation="upsert_report",
        )

        # Step 2: scores
        score_rows = [
            {
                "id": str(uuid4()),
                "user_id": user_id,
                "run_id": report.run_id,
                "bureau": score.bureau,
                "score": score.score,
                "status": score.status,
                "position": score.position if score.position is not None else i + 1,
                "collected_at": collected_at,
                "created_at": now,
                "updated_at": now,
            }
            for i, score in enumerate(report.report.scores)
        ]
        written["scores"] = self._upsert(
            NormalizedCreditScoreDB,
            score_rows,
            conflict_keys=("user_id", "run_id", "bureau", "position"),
            operation="upsert_scores",
        )

        # Step 3: accounts, all buckets flattened
        account_rows = []
        for account in report.flattened_accounts():
            row = {name: getattr(account, name) for name in _ACCOUNT_COLUMNS}
            row.update({
                "id": str(uuid4()),
                "user_id": user_id,
                "run_id": report.run_id,
                "category": account.category.value,
                "account_fingerprint": account_fingerprint(user_id, account),
                "collected_at": collected_at,
                "created_at": now,
                "updated_at": now,
            })
            account_rows.append(row)
        written["accounts"] = self._upsert(
            NormalizedCreditAccountDB,
            account_rows,
            conflict_keys=("account_fingerprint",),
            operation="upsert_accounts",
        )

        logger.info(f"Saved normalized run {report.run_id}: {written}")
        return written

    def _upsert(
        self,
        model,
        rows: List[Dict[str, Any]],
        conflict_keys: Sequence[str],
        operation: str,
    ) -> int:
        """
        INSERT ... ON CONFLICT DO UPDATE for a batch, committed on its own.

        Rows sharing a conflict key are collapsed first (last one wins);
        a single statement may not touch the same row twice.
        """
        rows = _dedupe(rows, conflict_keys)
        if not rows:
            return 0

        dialect = self.db.get_bind().dialect.name
        insert = _DIALECT_INSERTS.get(dialect)
        if insert is None:
            raise StoreError(f"Upsert is not supported on dialect {dialect}", operation=operation)

        stmt = insert(model).values(rows)
        update_columns = {
            name: stmt.excluded[name]
            for name in rows[0]
            if name not in _IMMUTABLE_COLUMNS and name not in conflict_keys
        }
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_keys), set_=update_columns)

        try:
            self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{operation} failed on {model.__tablename__}: {e}")
            raise StoreError.from_sqlalchemy(e, operation=operation)

        return len(rows)

    # =========================================================================
    # READS
    # =========================================================================

    def fetch_latest(self, run_id: str) -> Optional[NormalizedCreditReportDB]:
        """Normalized report header for a run, or None."""
        return self._select(
            lambda: self.db.query(NormalizedCreditReportDB).filter(
                NormalizedCreditReportDB.run_id == run_id
            ).first(),
            operation="select_report",
        )

    def fetch_latest_normalized(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Read-API shape {runId, collectedAt, version, report}, or None."""
        row = self.fetch_latest(run_id)
        if row is None:
            return None
        return report_response(row)

    def fetch_latest_for_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Most recently collected report for a user with per-category account counts."""
        row = self._select(
            lambda: self.db.query(NormalizedCreditReportDB).filter(
                NormalizedCreditReportDB.user_id == user_id
            ).order_by(NormalizedCreditReportDB.collected_at.desc()).first(),
            operation="select_report",
        )
        if row is None:
            return None

        response = report_response(row)
        response["counts"] = {"accounts": self.count_accounts(user_id)}
        return response

    def count_accounts(self, user_id: str) -> Dict[str, int]:
        counts = {}
        for category in AccountCategory:
            counts[category.value] = self._select(
                lambda: self.db.query(NormalizedCreditAccountDB).filter(
                    NormalizedCreditAccountDB.user_id == user_id,
                    NormalizedCreditAccountDB.category == category.value,
                ).count(),
                operation="count_accounts",
            )
        return counts

    def list_accounts(
        self,
        category: str,
        limit: Optional[int] = DEFAULT_PAGE_LIMIT,
        cursor: Any = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        One page of accounts in a category, newest collection first.

        Rows are ordered by (collected_at, id) descending. next_cursor is
        "<collected_at>|<id>" of the last row; pass it back to continue
        after that row. A bare timestamp cursor is an exclusive upper bound
        on collected_at.
        """
        if not category:
            raise PayloadValidationError("category is required")
        try:
            category = AccountCategory(category).value
        except ValueError:
            raise PayloadValidationError(f"Unknown account category: {category}")

        limit = min(max(int(limit if limit is not None else DEFAULT_PAGE_LIMIT), MIN_PAGE_LIMIT), MAX_PAGE_LIMIT)

        query = self.db.query(NormalizedCreditAccountDB).filter(
            NormalizedCreditAccountDB.category == category
        )
        if user_id:
            query = query.filter(NormalizedCreditAccountDB.user_id == user_id)
        if cursor:
            bound, last_id = _parse_cursor(cursor)
            if last_id is None:
                query = query.filter(NormalizedCreditAccountDB.collected_at < bound)
            else:
                query = query.filter(or_(
                    NormalizedCreditAccountDB.collected_at < bound,
                    and_(
                        NormalizedCreditAccountDB.collected_at == bound,
                        NormalizedCreditAccountDB.id < last_id,
                    ),
                ))

        rows = self._select(
            lambda: query.order_by(
                NormalizedCreditAccountDB.collected_at.desc(),
                NormalizedCreditAccountDB.id.desc(),
            ).limit(limit).all(),
            operation="select_accounts",
        )

        return {
            "items": [account_response(r) for r in rows],
            "next_cursor": f"{_isoformat(rows[-1].collected_at)}{CURSOR_SEPARATOR}{rows[-1].id}" if rows else None,
        }

    def fetch_raw(self, run_id: Optional[str] = None, user_id: Optional[str] = None) -> Optional[RawCreditReportDB]:
        """Raw payload for a run, or the user's most recent one."""
        if not run_id and not user_id:
            raise PayloadValidationError("runId or userId is required")

        def query():
            q = self.db.query(RawCreditReportDB)
            if run_id:
                return q.filter(RawCreditReportDB.run_id == run_id).first()
            return q.filter(RawCreditReportDB.user_id == user_id).order_by(
                RawCreditReportDB.collected_at.desc()
            ).first()

        return self._select(query, operation="select_raw")

    def _select(self, run, operation: str):
        try:
            return run()
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}")
            raise StoreError.from_sqlalchemy(e, operation=operation, code="E_DB_SELECT")


# =============================================================================
# HELPERS
# =============================================================================

def _parse_cursor(cursor: Any) -> Tuple[datetime, Optional[str]]:
    """Split a page cursor into its naive UTC timestamp and the optional row id."""
    if isinstance(cursor, datetime):
        bound, last_id = cursor, None
    else:
        text, _, last_id = str(cursor).partition(CURSOR_SEPARATOR)
        try:
            bound = date_parser.parse(text)
        except (ValueError, OverflowError):
            raise PayloadValidationError(f"Invalid cursor: {cursor}")
        last_id = last_id or None
    if bound.tzinfo is not None:
        bound = bound.astimezone(timezone.utc).replace(tzinfo=None)
    return bound, last_id


def _dedupe(rows: Iterable[Dict[str, Any]], keys: Sequence[str]) -> List[Dict[str, Any]]:
    """Collapse rows with equal conflict keys, keeping the last one in first-seen order."""
    collapsed: Dict[tuple, Dict[str, Any]] = {}
    for row in rows:
        collapsed[tuple(row.get(k) for k in keys)] = row
    return list(collapsed.values())


def report_response(row: NormalizedCreditReportDB) -> Dict[str, Any]:
    return {
        "runId": row.run_id,
        "collectedAt": _isoformat(row.collected_at),
        "version": row.version,
        "report": row.report_json,
    }


def account_response(row: NormalizedCreditAccountDB) -> Dict[str, Any]:
    data = {name: getattr(row, name) for name in _ACCOUNT_COLUMNS}
    data.update({
        "id": row.id,
        "user_id": row.user_id,
        "run_id": row.run_id,
        "collected_at": _isoformat(row.collected_at),
    })
    return data


def raw_response(row: RawCreditReportDB) -> Dict[str, Any]:
    return {
        "runId": row.run_id,
        "userId": row.user_id,
        "collectedAt": _isoformat(row.collected_at),
        "raw": row.raw_json,
    }
