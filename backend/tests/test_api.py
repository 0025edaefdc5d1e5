"""
API tests through FastAPI's TestClient with the session dependency overridden.
"""
import pytest
from datetime import datetime
from uuid import uuid4

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from report_engine.database import get_db
from report_engine.models.db_models import CreditReportDB, ExtractionResultDB
from report_engine.routers import extractions_router, reports_router, rounds_router


INGEST_BODY = {
    "runId": "run-api-1",
    "userId": "user-api",
    "collectedAt": "2024-04-01T08:30:00Z",
    "payload": {
        "report": {
            "scores": [{"bureau": "Experian", "score": 710}],
            "accounts": {
                "realEstate": [],
                "revolving": [{"creditor": "Card Co", "bureau": "Experian", "opened_on": "2018-02-03T00:00:00Z"}],
                "other": [{"creditor": "Loan Co", "bureau": "Equifax"}],
            },
        },
    },
}


@pytest.fixture
def client(engine):
    # Routers only; the full app would also run init_db against DATABASE_URL
    app = FastAPI()
    app.include_router(reports_router)
    app.include_router(extractions_router)
    app.include_router(rounds_router)

    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


# =============================================================================
# TEST: CREDIT REPORTS
# =============================================================================

class TestCreditReportsApi:

    def test_ingest_then_read_latest(self, client):
        response = client.post("/credit-reports/ingest", json=INGEST_BODY)
        assert response.status_code == 200
        assert response.json()["counts"]["accounts"] == {"realEstate": 0, "revolving": 1, "other": 1}

        latest = client.get("/credit-reports/latest", params={"runId": "run-api-1"}).json()
        assert latest["runId"] == "run-api-1"
        assert latest["collectedAt"] == "2024-04-01T08:30:00"
        assert latest["report"]["accounts"]["revolving"][0]["opened_on"] == "2018-02-03"

    def test_ingest_twice_is_idempotent(self, client):
        client.post("/credit-reports/ingest", json=INGEST_BODY)
        client.post("/credit-reports/ingest", json=INGEST_BODY)

        page = client.get("/credit-reports/accounts", params={"category": "revolving"}).json()
        assert len(page["items"]) == 1

    def test_dry_run_writes_nothing(self, client):
        body = dict(INGEST_BODY, dryRun=True)

        response = client.post("/credit-reports/ingest", json=body)

        assert response.status_code == 200
        assert "normalized" in response.json()
        assert client.get("/credit-reports/latest", params={"runId": "run-api-1"}).status_code == 404

    def test_missing_run_id_is_schema_error(self, client):
        body = {k: v for k, v in INGEST_BODY.items() if k != "runId"}

        response = client.post("/credit-reports/ingest", json=body)

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "E_SCHEMA_INVALID"

    def test_latest_not_found(self, client):
        response = client.get("/credit-reports/latest", params={"runId": "nope"})

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "E_NOT_FOUND"

    def test_latest_by_user_without_reports(self, client):
        body = client.get("/credit-reports/latest", params={"userId": "nobody"}).json()

        assert body["version"] == "v1"
        assert body["counts"] == {"accounts": {"realEstate": 0, "revolving": 0, "other": 0}}

    def test_latest_raw(self, client):
        client.post("/credit-reports/ingest", json=INGEST_BODY)

        raw = client.get("/credit-reports/latest-raw", params={"userId": "user-api"}).json()

        assert raw["runId"] == "run-api-1"
        assert raw["raw"] == INGEST_BODY["payload"]

    def test_accounts_requires_category(self, client):
        assert client.get("/credit-reports/accounts").status_code == 400


# =============================================================================
# TEST: EXTRACTIONS
# =============================================================================

class TestExtractionsApi:

    @pytest.fixture
    def report_id(self, engine):
        db = sessionmaker(bind=engine)()
        report_id = str(uuid4())
        db.add(CreditReportDB(id=report_id, file_name="report.pdf"))
        db.add(ExtractionResultDB(
            id=str(uuid4()), report_id=report_id, extraction_method="pdfjs",
            extracted_text="credit report text", confidence_score=0.9,
            created_at=datetime(2024, 1, 1),
        ))
        db.add(ExtractionResultDB(
            id=str(uuid4()), report_id=report_id, extraction_method="ocr",
            extracted_text="scanned page", confidence_score=0.6,
            created_at=datetime(2024, 1, 2),
        ))
        db.commit()
        db.close()
        return report_id

    def test_best(self, client, report_id):
        body = client.get(f"/extractions/{report_id}/best").json()
        assert body == {"text": "credit report text", "confidence": 0.9, "method": "pdfjs"}

    def test_best_not_found(self, client):
        assert client.get(f"/extractions/{uuid4()}/best").status_code == 404

    def test_merged(self, client, report_id):
        body = client.get(f"/extractions/{report_id}/merged").json()
        assert body["text"] == "credit report text\n\nscanned page"

    def test_consolidate(self, client, report_id):
        body = client.post(f"/extractions/{report_id}/consolidate", json={"merge": True}).json()

        assert body["method"] == "pdfjs"
        assert body["merged"] is True

    def test_reconsolidate(self, client, report_id):
        body = client.post(
            f"/extractions/{report_id}/reconsolidate", json={"strategy": "manual_review"}
        ).json()

        assert body["requires_human_review"] is True
        assert body["confidence"] == 0.5


# =============================================================================
# TEST: ROUNDS
# =============================================================================

class TestRoundsApi:

    def test_round_lifecycle(self, client):
        created = client.post("/rounds", json={"customer_id": "customer-1"}).json()
        round_id = created["id"]
        assert created["round_number"] == 1
        assert created["status"] == "draft"

        snapshot = client.put(
            f"/rounds/{round_id}/snapshot",
            json={"normalized": {"scores": [{"bureau": "equifax", "score": 700}]}, "raw": {"x": 1}},
        ).json()
        assert snapshot["counts"]["round_scores"] == 1

        assert client.post(f"/rounds/{round_id}/save").json()["status"] == "saved"
        assert client.post(f"/rounds/{round_id}/send").json()["status"] == "sent"

        deleted = client.delete(f"/rounds/{round_id}", params={"remove_raw": "true"}).json()
        assert deleted["ok"] is True
        assert deleted["cascade"]["raw_payloads"] == 1
        assert client.get(f"/rounds/{round_id}").json()["status"] == "deleted"

    def test_invalid_transition_is_conflict(self, client):
        round_id = client.post("/rounds", json={"customer_id": "customer-1"}).json()["id"]

        response = client.post(f"/rounds/{round_id}/send")

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "E_INVALID_TRANSITION"

    def test_delete_unknown_round(self, client):
        assert client.delete(f"/rounds/{uuid4()}").status_code == 404
