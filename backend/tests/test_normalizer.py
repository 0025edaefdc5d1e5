"""
Tests for the report normalizer and the payload decoder.
"""
import pytest

from report_engine.exceptions import PayloadValidationError
from report_engine.models.db_models import AccountCategory
from report_engine.services.normalization import PayloadNode, normalize, truncate_date
from report_engine.services.normalization.payload import canonical_bureau, coerce_score, strip_html


def make_payload(**overrides):
    payload = {
        "runId": "run-1",
        "userId": "user-1",
        "collectedAt": "2024-03-05T10:15:00Z",
        "version": "v2",
        "report": {
            "scores": [
                {"bureau": "TransUnion", "score": 701},
                {"bureau": "Experian", "score": "688"},
                {"bureau": "Equifax", "score": 695, "status": "ok"},
            ],
            "accounts": {
                "realEstate": [
                    {"creditor": "Big Mortgage", "bureau": "Equifax", "opened_on": "2015-06-01T00:00:00Z"},
                ],
                "revolving": [
                    {"creditor": "Card Co", "bureau": "Experian", "balance": 1200.5, "opened_on": None},
                    {"creditor": "Store Card", "bureau": "TransUnion", "reported_on": "2024-02-29"},
                ],
                "other": [
                    {"creditor": "Auto Loan", "days_late_7y": {"30": 2, "120": 1}},
                ],
            },
        },
    }
    payload.update(overrides)
    return payload


# =============================================================================
# TEST: TOP LEVEL
# =============================================================================

class TestNormalizeHeader:

    def test_metadata_carried_verbatim(self):
        report = normalize(make_payload())

        assert report.run_id == "run-1"
        assert report.user_id == "user-1"
        assert report.collected_at == "2024-03-05T10:15:00Z"
        assert report.version == "v2"

    def test_envelope_arguments_win(self):
        report = normalize(make_payload(), run_id="run-override", user_id="user-override")

        assert report.run_id == "run-override"
        assert report.user_id == "user-override"

    def test_version_defaults_to_v1(self):
        payload = make_payload()
        del payload["version"]

        assert normalize(payload).version == "v1"

    def test_non_object_payload_rejected(self):
        with pytest.raises(PayloadValidationError):
            normalize(["not", "an", "object"])

    def test_missing_run_id_rejected(self):
        payload = make_payload()
        del payload["runId"]

        with pytest.raises(PayloadValidationError):
            normalize(payload)

    def test_empty_report_degrades_to_empty_graph(self):
        report = normalize({"runId": "run-2", "report": "garbage"})

        assert report.report.scores == []
        assert report.flattened_accounts() == []


# =============================================================================
# TEST: SCORES
# =============================================================================

class TestNormalizeScores:

    def test_bureaus_canonicalised_and_scores_coerced(self):
        scores = normalize(make_payload()).report.scores

        assert [(s.bureau, s.score) for s in scores] == [
            ("transunion", 701), ("experian", 688), ("equifax", 695),
        ]
        assert scores[2].status == "ok"

    def test_position_is_ordinal_within_bureau(self):
        payload = make_payload(report={"scores": [
            {"bureau": "Experian", "score": 700},
            {"bureau": "Equifax", "score": 701},
            {"bureau": "Experian", "score": 702},
        ]})

        scores = normalize(payload).report.scores

        assert [(s.bureau, s.position) for s in scores] == [
            ("experian", 1), ("equifax", 1), ("experian", 2),
        ]

    def test_explicit_position_kept(self):
        payload = make_payload(report={"scores": [{"bureau": "Experian", "score": 700, "position": 7}]})

        assert normalize(payload).report.scores[0].position == 7

    def test_explicit_and_generated_positions_do_not_collide(self):
        payload = make_payload(report={"scores": [
            {"bureau": "Experian", "score": 700, "position": 2},
            {"bureau": "Experian", "score": 650},
        ]})

        scores = normalize(payload).report.scores

        assert [(s.score, s.position) for s in scores] == [(700, 2), (650, 1)]

    def test_repeated_explicit_position_is_reassigned(self):
        payload = make_payload(report={"scores": [
            {"bureau": "Equifax", "score": 600, "position": 1},
            {"bureau": "Equifax", "score": 610, "position": 1},
            {"bureau": "Equifax", "score": 620, "position": 0},
        ]})

        scores = normalize(payload).report.scores

        assert [s.position for s in scores] == [1, 2, 3]

    def test_missing_bureau_is_unknown(self):
        payload = make_payload(report={"scores": [{"score": 650}]})

        assert normalize(payload).report.scores[0].bureau == "unknown"


# =============================================================================
# TEST: ACCOUNTS
# =============================================================================

class TestNormalizeAccounts:

    def test_buckets_flatten_to_sum_of_inputs(self):
        report = normalize(make_payload())
        accounts = report.flattened_accounts()

        assert len(accounts) == 1 + 2 + 1
        assert [a.category for a in accounts] == [
            AccountCategory.REAL_ESTATE, AccountCategory.REVOLVING,
            AccountCategory.REVOLVING, AccountCategory.OTHER,
        ]
        assert report.report.accounts.counts() == {"realEstate": 1, "revolving": 2, "other": 1}

    def test_long_dates_truncated_and_null_dates_stay_null(self):
        accounts = normalize(make_payload()).flattened_accounts()

        assert accounts[0].opened_on == "2015-06-01"
        assert accounts[1].opened_on is None
        assert accounts[2].reported_on == "2024-02-29"
        assert accounts[3].closed_on is None

    def test_numerics_pass_through(self):
        accounts = normalize(make_payload()).flattened_accounts()

        assert accounts[1].balance == 1200.5
        assert accounts[0].balance is None

    def test_days_late_defaults(self):
        accounts = normalize(make_payload()).flattened_accounts()

        assert accounts[0].days_late_7y == {"30": 0, "60": 0, "90": 0}
        assert accounts[3].days_late_7y == {"30": 2, "60": 0, "90": 0}

    def test_defaults_for_missing_collections(self):
        account = normalize(make_payload()).flattened_accounts()[0]

        assert account.remarks == []
        assert account.two_year_history == {}

    def test_position_defaults_to_bucket_ordinal(self):
        accounts = normalize(make_payload()).flattened_accounts()

        assert [a.position for a in accounts] == [1, 1, 2, 1]

    def test_non_object_items_skipped(self):
        payload = make_payload(report={"accounts": {"revolving": ["junk", {"creditor": "Real"}]}})

        accounts = normalize(payload).flattened_accounts()

        assert [a.creditor for a in accounts] == ["Real"]

    def test_report_json_keeps_category(self):
        report_json = normalize(make_payload()).to_report_json()

        assert len(report_json["accounts"]["revolving"]) == 2
        assert report_json["accounts"]["revolving"][0]["category"] == "revolving"
        assert "payload" not in report_json["accounts"]["revolving"][0]


# =============================================================================
# TEST: SCRAPER CAPTURED LISTS
# =============================================================================

class TestCapturedLists:

    def test_named_lists_are_routed(self):
        payload = {
            "runId": "run-3",
            "capturedLists": {
                "Credit Scores": [{"Bureau": "TransUnion", "Score": "720"}],
                "Real Estate Accounts": [{"creditor": "Mortgage"}],
                "Revolving Accounts": [{"creditor": "Visa"}, {"creditor": "Amex"}],
                "Other Accounts": [{"creditor": "Student Loan"}],
                "Consumer Statements": [{"bureau": "Experian", "statement": "<p>Identity <b>theft</b></p>"}],
                "Unrelated": [{"x": 1}],
            },
        }

        report = normalize(payload)

        assert report.report.scores[0].score == 720
        assert report.report.accounts.counts() == {"realEstate": 1, "revolving": 2, "other": 1}
        assert report.report.consumer_statements[0].statement == "Identity theft"

    def test_list_form(self):
        payload = {
            "runId": "run-4",
            "capturedLists": [
                {"name": "Revolving Accounts", "items": [{"creditor": "Visa"}]},
            ],
        }

        accounts = normalize(payload).flattened_accounts()

        assert accounts[0].category == AccountCategory.REVOLVING


# =============================================================================
# TEST: PAYLOAD DECODER
# =============================================================================

class TestPayloadNode:

    def test_first_skips_null_and_empty(self):
        node = PayloadNode({"a": None, "b": "", "c": "value"})
        assert node.first(("a", "b", "c")) == "value"

    def test_missing_child_wraps_none(self):
        node = PayloadNode({"a": 1}).child("missing").child("deeper")
        assert node.value is None
        assert node.items() == []

    def test_text_strips(self):
        assert PayloadNode({"name": "  Card Co "}).text(("name",)) == "Card Co"


class TestCoercion:

    def test_truncate_date(self):
        assert truncate_date("2024-01-31T23:59:59.000Z") == "2024-01-31"
        assert truncate_date("2024-01-31") == "2024-01-31"
        assert truncate_date(None) is None
        assert truncate_date("   ") is None

    def test_canonical_bureau(self):
        assert canonical_bureau("Trans Union") == "transunion"
        assert canonical_bureau("EQUIFAX") == "equifax"
        assert canonical_bureau("Innovis") == "Innovis"
        assert canonical_bureau(None) is None

    def test_coerce_score(self):
        assert coerce_score("712*") == 712
        assert coerce_score(700.0) == 700
        assert coerce_score("N/A") is None
        assert coerce_score(True) is None

    def test_strip_html(self):
        assert strip_html("<div>Hello <i>world</i></div>") == "Hello world"
