"""
Tests for the import reconciliation API endpoints.
"""
from fastapi import status


def receivable(title_id="t1", **overrides):
    values = {
        "id": title_id,
        "client": "ACME",
        "issue_date": "2023-11-01",
        "due_date": "2023-12-01",
        "face_value": 100.0,
        "balance": 100.0,
        "status": "OVERDUE",
        "category": "SALES",
        "payment_method": "BOLETO",
    }
    values.update(overrides)
    return values


class TestReceivableImportAPI:
    def test_stage_then_commit(self, client, sample_headers, store, acme_titles):
        staged = client.post(
            "/imports/receivables/stage",
            json={"candidates": [receivable(balance=60.0), receivable("t9")]},
            headers=sample_headers,
        )

        assert staged.status_code == status.HTTP_200_OK
        data = staged.json()["data"]
        assert (data["new"], data["changed"], data["unchanged"]) == (1, 1, 0)
        assert data["items"][0]["changed_fields"] == ["balance"]

        committed = client.post(
            "/imports/receivables/commit",
            json={"items": data["items"], "file_name": "jan.xlsx"},
            headers=sample_headers,
        )

        assert committed.status_code == status.HTTP_200_OK
        assert committed.json()["data"]["written"] == ["t1", "t9"]
        assert store.receivables.get("t1")["balance"] == 60.0
        assert store.receivables.get("t9")["origin"] == "EXTERNAL_IMPORT"
        audit = list(store.audit.rows.values())
        assert audit[-1]["action"] == "IMPORT_COMMIT_RECEIVABLES"
        assert audit[-1]["user"] == "maria"

    def test_unchanged_batch(self, client, acme_titles):
        response = client.post("/imports/receivables/stage", json={"candidates": [receivable()]})

        assert response.json()["data"]["unchanged"] == 1

    def test_duplicate_ids_rejected(self, client):
        response = client.post(
            "/imports/receivables/stage",
            json={"candidates": [receivable(), receivable()]},
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["error_code"] == "REC_001_CANDIDATES"

    def test_empty_batch_rejected(self, client):
        response = client.post("/imports/receivables/stage", json={"candidates": []})
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_fetch_failure(self, client, store):
        store.receivables.fail_next("select")

        response = client.post("/imports/receivables/stage", json={"candidates": [receivable()]})

        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["error_code"] == "REC_005"

    def test_invalid_commit_item(self, client):
        response = client.post(
            "/imports/receivables/commit",
            json={"items": [{"data": {"id": "t1"}, "status": "NEW"}]},
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
        assert response.json()["error_code"] == "REC_001_ITEMS"


class TestPayableImportAPI:
    def test_stage_and_commit(self, client, sample_headers, store):
        candidate = {
            "id": "p1",
            "supplier": "Paper Co",
            "due_date": "2024-01-20",
            "face_value": 300.0,
            "balance": 300.0,
            "status": "OPEN",
        }

        staged = client.post("/imports/payables/stage", json={"candidates": [candidate]}, headers=sample_headers)
        items = staged.json()["data"]["items"]
        assert items[0]["status"] == "NEW"

        committed = client.post("/imports/payables/commit", json={"items": items}, headers=sample_headers)

        assert committed.json()["data"]["written"] == ["p1"]
        assert store.payables.get("p1")["supplier"] == "PAPER CO"
