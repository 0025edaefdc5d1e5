"""
Tests for the normalized report store.

Upserts are idempotent on their natural keys; save_normalized is three
separate commits, so a failing later write leaves the earlier ones.
"""
import pytest
from datetime import datetime
from unittest.mock import patch

from sqlalchemy.exc import IntegrityError

from report_engine.exceptions import PayloadValidationError, StoreError
from report_engine.models.db_models import (
    NormalizedCreditAccountDB, NormalizedCreditReportDB, NormalizedCreditScoreDB, RawCreditReportDB,
)
from report_engine.services.normalization import normalize
from report_engine.services.persistence import NormalizedReportStore, parse_collected_at


def make_report(run_id="run-1", collected_at="2024-03-05T10:00:00Z", scores=None, accounts=None):
    payload = {
        "runId": run_id,
        "userId": "user-1",
        "collectedAt": collected_at,
        "report": {
            "scores": scores if scores is not None else [
                {"bureau": "TransUnion", "score": 701},
                {"bureau": "Experian", "score": 688},
            ],
            "accounts": accounts if accounts is not None else {
                "realEstate": [{"creditor": "Mortgage Co", "bureau": "Equifax", "opened_on": "2015-06-01"}],
                "revolving": [
                    {"creditor": "Card Co", "bureau": "Experian", "opened_on": "2019-01-01", "balance": 100},
                    {"creditor": "Card Co", "bureau": "Experian", "balance": 50},
                    {"creditor": "Card Co", "bureau": "Experian", "balance": 75},
                ],
                "other": [],
            },
        },
    }
    return normalize(payload)


@pytest.fixture
def store(db):
    return NormalizedReportStore(db)


# =============================================================================
# TEST: RAW
# =============================================================================

class TestSaveRaw:

    def test_upsert_on_run_id(self, db, store):
        store.save_raw("run-1", "user-1", {"v": 1}, "2024-03-05T10:00:00Z")
        store.save_raw("run-1", "user-1", {"v": 2}, "2024-03-05T10:00:00Z")

        rows = db.query(RawCreditReportDB).all()
        assert len(rows) == 1
        assert rows[0].raw_json == {"v": 2}

    def test_requires_user(self, store):
        with pytest.raises(PayloadValidationError):
            store.save_raw("run-1", None, {})

    def test_fetch_raw_by_run_and_user(self, store):
        store.save_raw("run-old", "user-1", {"v": "old"}, "2024-01-01T00:00:00Z")
        store.save_raw("run-new", "user-1", {"v": "new"}, "2024-02-01T00:00:00Z")

        assert store.fetch_raw(run_id="run-old").raw_json == {"v": "old"}
        assert store.fetch_raw(user_id="user-1").run_id == "run-new"
        assert store.fetch_raw(run_id="missing") is None


# =============================================================================
# TEST: NORMALIZED
# =============================================================================

class TestSaveNormalized:

    def test_writes_header_scores_and_accounts(self, db, store):
        written = store.save_normalized("user-1", make_report())

        assert written == {"report": 1, "scores": 2, "accounts": 4}
        assert db.query(NormalizedCreditReportDB).count() == 1
        assert db.query(NormalizedCreditScoreDB).count() == 2
        assert db.query(NormalizedCreditAccountDB).count() == 4

    def test_category_is_stored(self, db, store):
        store.save_normalized("user-1", make_report())

        categories = sorted(a.category for a in db.query(NormalizedCreditAccountDB).all())
        assert categories == ["realEstate", "revolving", "revolving", "revolving"]

    def test_undated_accounts_do_not_collide(self, db, store):
        store.save_normalized("user-1", make_report())

        balances = sorted(
            a.balance for a in db.query(NormalizedCreditAccountDB).filter(
                NormalizedCreditAccountDB.opened_on.is_(None),
                NormalizedCreditAccountDB.category == "revolving",
            ).all()
        )
        assert balances == [50, 75]

    def test_score_upsert_is_idempotent_and_last_write_wins(self, db, store):
        store.save_normalized("user-1", make_report(scores=[{"bureau": "Experian", "score": 650}]))
        store.save_normalized("user-1", make_report(scores=[{"bureau": "Experian", "score": 700}]))

        rows = db.query(NormalizedCreditScoreDB).all()
        assert len(rows) == 1
        assert rows[0].score == 700

    def test_same_bureau_scores_with_mixed_positions_all_stored(self, db, store):
        report = make_report(scores=[
            {"bureau": "Experian", "score": 700, "position": 2},
            {"bureau": "Experian", "score": 650},
        ])

        written = store.save_normalized("user-1", report)

        rows = db.query(NormalizedCreditScoreDB).order_by(NormalizedCreditScoreDB.position).all()
        assert written["scores"] == 2
        assert [(r.position, r.score) for r in rows] == [(1, 650), (2, 700)]

    def test_repeated_source_positions_all_stored(self, db, store):
        report = make_report(scores=[
            {"bureau": "Experian", "score": 600, "position": 1},
            {"bureau": "Experian", "score": 610, "position": 1},
        ])

        store.save_normalized("user-1", report)

        rows = db.query(NormalizedCreditScoreDB).order_by(NormalizedCreditScoreDB.position).all()
        assert [r.score for r in rows] == [600, 610]

    def test_duplicate_keys_within_batch_collapse(self, db, store):
        report = make_report(scores=[
            {"bureau": "Experian", "score": 600},
            {"bureau": "Experian", "score": 610},
        ])
        report.report.scores[1].position = report.report.scores[0].position

        store.save_normalized("user-1", report)

        rows = db.query(NormalizedCreditScoreDB).all()
        assert [r.score for r in rows] == [610]

    def test_account_upsert_is_idempotent(self, db, store):
        store.save_normalized("user-1", make_report())
        store.save_normalized("user-1", make_report(run_id="run-2"))

        rows = db.query(NormalizedCreditAccountDB).all()
        assert len(rows) == 4
        assert {r.run_id for r in rows} == {"run-2"}

    def test_empty_batches_are_skipped(self, db, store):
        written = store.save_normalized("user-1", make_report(scores=[], accounts={}))

        assert written == {"report": 1, "scores": 0, "accounts": 0}
        assert db.query(NormalizedCreditScoreDB).count() == 0

    def test_failure_after_header_keeps_header(self, db, store):
        original = store._upsert

        def failing_upsert(model, rows, conflict_keys, operation):
            if model is NormalizedCreditScoreDB:
                raise StoreError("permission denied for table normalized_credit_scores", operation=operation)
            return original(model, rows, conflict_keys, operation)

        with patch.object(store, "_upsert", side_effect=failing_upsert):
            with pytest.raises(StoreError) as exc_info:
                store.save_normalized("user-1", make_report())

        assert "permission denied" in exc_info.value.message
        assert db.query(NormalizedCreditReportDB).count() == 1
        assert db.query(NormalizedCreditScoreDB).count() == 0
        assert db.query(NormalizedCreditAccountDB).count() == 0

    def test_store_rejection_carries_store_message(self, db, store):
        with patch.object(db, "execute", side_effect=IntegrityError("INSERT", {}, Exception("duplicate key"))):
            with pytest.raises(StoreError) as exc_info:
                store.save_normalized("user-1", make_report())

        assert exc_info.value.message == "duplicate key"
        assert exc_info.value.operation == "upsert_report"

    def test_requires_user(self, store):
        report = make_report()
        report.user_id = None

        with pytest.raises(PayloadValidationError):
            store.save_normalized(None, report)


# =============================================================================
# TEST: READS
# =============================================================================

class TestFetchLatest:

    def test_unknown_run_returns_none(self, store):
        assert store.fetch_latest("missing") is None
        assert store.fetch_latest_normalized("missing") is None

    def test_read_api_shape(self, store):
        store.save_normalized("user-1", make_report())

        latest = store.fetch_latest_normalized("run-1")

        assert latest["runId"] == "run-1"
        assert latest["collectedAt"] == "2024-03-05T10:00:00"
        assert latest["version"] == "v1"
        assert len(latest["report"]["scores"]) == 2

    def test_latest_for_user_with_counts(self, store):
        store.save_normalized("user-1", make_report(run_id="run-old", collected_at="2024-01-01T00:00:00Z"))
        store.save_normalized("user-1", make_report(run_id="run-new", collected_at="2024-02-01T00:00:00Z"))

        latest = store.fetch_latest_for_user("user-1")

        assert latest["runId"] == "run-new"
        assert latest["counts"] == {"accounts": {"realEstate": 1, "revolving": 3, "other": 0}}

    def test_latest_for_unknown_user(self, store):
        assert store.fetch_latest_for_user("nobody") is None


class TestListAccounts:

    def _seed(self, store):
        for day in (1, 2, 3):
            store.save_normalized("user-1", make_report(
                run_id=f"run-{day}",
                collected_at=f"2024-01-0{day}T00:00:00Z",
                scores=[],
                accounts={"revolving": [{"creditor": f"Card {day}", "opened_on": f"2020-01-0{day}"}]},
            ))

    def test_newest_first_with_cursor(self, store):
        self._seed(store)

        first = store.list_accounts("revolving", limit=2)
        second = store.list_accounts("revolving", limit=2, cursor=first["next_cursor"])

        assert [a["creditor"] for a in first["items"]] == ["Card 3", "Card 2"]
        assert first["next_cursor"].startswith("2024-01-02T00:00:00|")
        assert [a["creditor"] for a in second["items"]] == ["Card 1"]

    def test_cursor_pages_through_one_run(self, store):
        store.save_normalized("user-1", make_report(
            scores=[],
            accounts={"revolving": [
                {"creditor": f"Card {n}", "opened_on": f"2020-01-0{n}"} for n in range(1, 6)
            ]},
        ))

        seen = []
        cursor = None
        for _ in range(5):
            page = store.list_accounts("revolving", limit=2, cursor=cursor)
            if not page["items"]:
                break
            seen.extend(a["creditor"] for a in page["items"])
            cursor = page["next_cursor"]

        assert sorted(seen) == [f"Card {n}" for n in range(1, 6)]

    def test_plain_timestamp_cursor_is_exclusive(self, store):
        self._seed(store)

        page = store.list_accounts("revolving", cursor="2024-01-02T00:00:00Z")

        assert [a["creditor"] for a in page["items"]] == ["Card 1"]

    def test_invalid_cursor_rejected(self, store):
        with pytest.raises(PayloadValidationError):
            store.list_accounts("revolving", cursor="not-a-date|abc")

    def test_limit_is_clamped(self, store):
        self._seed(store)

        assert len(store.list_accounts("revolving", limit=0)["items"]) == 1
        assert len(store.list_accounts("revolving", limit=1000)["items"]) == 3

    def test_empty_page_has_no_cursor(self, store):
        assert store.list_accounts("other") == {"items": [], "next_cursor": None}

    def test_category_required(self, store):
        with pytest.raises(PayloadValidationError):
            store.list_accounts(None)
        with pytest.raises(PayloadValidationError):
            store.list_accounts("mortgages")


class TestParseCollectedAt:

    def test_offset_converted_to_naive_utc(self):
        assert parse_collected_at("2024-03-05T12:00:00+02:00") == datetime(2024, 3, 5, 10, 0, 0)

    def test_missing_falls_back_to_now(self):
        before = datetime.utcnow()
        assert parse_collected_at(None) >= before
