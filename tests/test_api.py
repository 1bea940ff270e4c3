"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient

from api.main import app
from storage import get_storage
from workflow import get_registry

PATIENT = {
    "patient_id": "patient-123",
    "name": "Test Patient",
    "allergies": ["Penicillin"],
    "conditions": ["Hypertension"],
}


def _medication(drug_name, dose="10", **overrides):
    data = {
        "drug_name": drug_name,
        "strength": {"value": 10, "unit": "mg"},
        "dosage_form": "tablet",
        "instructions": {"dose": dose, "frequency": "once daily", "route": "oral"},
        "start_date": "2024-01-01",
        "indication": "Maintenance",
    }
    data.update(overrides)
    return data


@pytest.fixture
def client():
    get_registry.cache_clear()
    get_storage.cache_clear()
    with TestClient(app) as test_client:
        yield test_client
    get_registry.cache_clear()
    get_storage.cache_clear()


@pytest.fixture
def review_id(client):
    response = client.post("/v1/reviews", json={"patient_id": "patient-123", "patient": PATIENT})
    assert response.status_code == 200
    return response.json()["session_id"]


class TestService:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestReviewLifecycle:
    """Test review endpoints."""

    def test_create_returns_review_number(self, client):
        response = client.post("/v1/reviews", json={"patient_id": "patient-123"})

        assert response.status_code == 200
        data = response.json()
        assert data["review_number"].startswith("MTR-")
        assert data["status"] == "in_progress"

    def test_duplicate_in_progress_review_conflicts(self, client, review_id):
        response = client.post("/v1/reviews", json={"patient_id": "patient-123"})

        assert response.status_code == 409
        assert response.json()["session_id"] == review_id

    def test_unknown_review(self, client):
        assert client.get("/v1/reviews/missing").status_code == 404

    def test_step_zero_requires_patient(self, client):
        created = client.post("/v1/reviews", json={"patient_id": "patient-456"}).json()
        review = created["session_id"]

        response = client.post(f"/v1/reviews/{review}/steps/0/complete", json={})
        assert response.status_code == 422

        patient = {**PATIENT, "patient_id": "patient-456"}
        assert client.post(f"/v1/reviews/{review}/patient", json=patient).status_code == 200
        response = client.post(f"/v1/reviews/{review}/steps/0/complete", json={})
        assert response.status_code == 200
        assert response.json()["steps"][0]["status"] == "completed"

    def test_complete_requires_steps(self, client, review_id):
        response = client.post(f"/v1/reviews/{review_id}/complete")

        assert response.status_code == 400

    def test_full_review(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        for index in range(4):
            response = client.post(f"{base}/steps/{index}/complete", json={"data": {}})
            assert response.status_code == 200
        progress = client.get(f"{base}/progress").json()
        assert progress["can_complete"] is True
        assert progress["completion_percentage"] == 67

        response = client.post(f"{base}/complete")

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert client.get("/v1/reviews/stats/counts").json()["completed"] == 1

    def test_advance_and_goto(self, client, review_id):
        base = f"/v1/reviews/{review_id}"

        assert client.post(f"{base}/advance").json()["current_step"] == 1
        assert client.post(f"{base}/steps/3/goto").status_code == 422
        assert client.post(f"{base}/steps/0/goto").json()["current_step"] == 0

    def test_cancel_twice(self, client, review_id):
        base = f"/v1/reviews/{review_id}"

        assert client.post(f"{base}/cancel").json()["status"] == "cancelled"
        assert client.post(f"{base}/cancel").json()["status"] == "cancelled"

    def test_completed_review_is_still_readable(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        for index in range(4):
            client.post(f"{base}/steps/{index}/complete", json={})
        client.post(f"{base}/complete")

        review = client.get(base)

        assert review.status_code == 200
        assert review.json()["status"] == "completed"
        assert client.post(f"{base}/advance").status_code == 400

    def test_on_hold_review_cannot_complete(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        for index in range(4):
            client.post(f"{base}/steps/{index}/complete", json={})
        client.post(f"{base}/hold")

        response = client.post(f"{base}/complete")

        assert response.status_code == 400
        assert client.get(f"{base}/progress").json()["status"] == "on_hold"

    def test_save(self, client, review_id):
        response = client.post(f"/v1/reviews/{review_id}/save")

        assert response.status_code == 200
        assert response.json()["saved_at"] is not None


class TestAssessmentEndpoints:
    """Test rule engine endpoints."""

    def test_stateless_check(self, client):
        response = client.post(
            "/v1/assessment/check",
            json={
                "medications": [
                    _medication("Warfarin"),
                    {"drug_name": "   "},
                    _medication("Aspirin"),
                ],
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["skipped"] == [1]
        assert data["by_check"]["interactions"] == 1
        assert data["severity_counts"]["moderate"] == 1

    def test_review_assessment_is_not_duplicated(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        client.post(f"{base}/medications", json=_medication("Lisinopril", dose="80"))
        client.post(f"{base}/medications", json=_medication("Amoxicillin 500mg"))

        first = client.post(f"{base}/assessment").json()
        second = client.post(f"{base}/assessment").json()

        assert len(first["new_problem_ids"]) == 2
        assert second["new_problem_ids"] == []
        assert len(client.get(base).json()["problems"]) == 2

    def test_adherence_check(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        client.post(f"{base}/medications", json=_medication("Metformin", adherence_score=3))

        data = client.post(f"{base}/assessment/adherence").json()

        assert len(data["problems"]) == 1
        assert data["problems"][0]["severity"] == "major"


class TestLedgerEndpoints:
    """Test medication, intervention and follow-up endpoints."""

    def test_invalid_medication_update(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        medication = client.post(f"{base}/medications", json=_medication("Metformin")).json()

        response = client.patch(
            f"{base}/medications/{medication['id']}", json={"adherence_score": 11}
        )

        assert response.status_code == 422

    def test_intervention_outcome_once(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        intervention = client.post(
            f"{base}/interventions",
            json={"type": "recommendation", "category": "medication_change"},
        ).json()
        outcome_url = f"{base}/interventions/{intervention['id']}/outcome"

        first = client.post(outcome_url, json={"outcome": "accepted"})
        second = client.post(outcome_url, json={"outcome": "rejected"})

        assert first.status_code == 200
        assert second.status_code == 422

    def test_follow_up_reschedule_and_complete(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        follow_up = client.post(
            f"{base}/follow-ups",
            json={"type": "phone_call", "scheduled_date": "2024-03-01T09:00:00"},
        ).json()
        url = f"{base}/follow-ups/{follow_up['id']}"

        rescheduled = client.post(
            f"{url}/reschedule", json={"new_date": "2024-03-08T09:00:00"}
        ).json()
        assert rescheduled["status"] == "rescheduled"

        completed = client.post(f"{url}/complete", json={"outcome": "successful"}).json()
        assert completed["status"] == "completed"
        assert client.post(f"{url}/cancel").status_code == 422

        summary = client.get(f"{base}/summary").json()
        assert summary["follow_ups_outstanding"] == 0

    def test_replace_medications(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        client.post(f"{base}/medications", json=_medication("Metformin"))

        response = client.put(
            f"{base}/medications",
            json=[_medication("Lisinopril", id="med-1"), _medication("Amlodipine")],
        )

        assert response.status_code == 200
        assert [m["drug_name"] for m in response.json()] == ["Lisinopril", "Amlodipine"]
        assert response.json()[0]["id"] == "med-1"
        assert response.json()[1]["id"]

    def test_plan_items_require_plan(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        recommendation = {"type": "adjust_dose", "rationale": "Dose too high"}

        assert client.post(f"{base}/plan/recommendations", json=recommendation).status_code == 422

        client.put(f"{base}/plan", json={"notes": "Reduce antihypertensive load"})
        client.post(f"{base}/plan/recommendations", json=recommendation)
        client.post(
            f"{base}/plan/monitoring",
            json={"parameter": "Blood pressure", "frequency": "weekly"},
        )
        plan = client.post(f"{base}/plan/goals", json={"description": "BP below 140/90"}).json()

        assert plan["notes"] == "Reduce antihypertensive load"
        assert plan["recommendations"][0]["type"] == "adjust_dose"
        assert plan["monitoring"][0]["parameter"] == "Blood pressure"
        assert plan["goals"][0]["description"] == "BP below 140/90"

    def test_intervention_follow_up_completed(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        intervention = client.post(
            f"{base}/interventions",
            json={
                "type": "recommendation",
                "category": "medication_change",
                "follow_up_required": True,
            },
        ).json()

        response = client.post(
            f"{base}/interventions/{intervention['id']}/follow-up-completed"
        )

        assert response.status_code == 200
        assert response.json()["follow_up_completed"] is True

    def test_new_records_keep_unique_ids_and_initial_state(self, client, review_id):
        base = f"/v1/reviews/{review_id}"
        intervention = {"id": "int-1", "type": "recommendation", "category": "medication_change"}
        client.post(f"{base}/interventions", json=intervention)
        client.post(f"{base}/interventions/int-1/outcome", json={"outcome": "accepted"})

        duplicate = client.post(f"{base}/interventions", json=intervention)
        preset = client.post(
            f"{base}/interventions",
            json={"type": "counseling", "category": "education", "outcome": "accepted"},
        )
        closed = client.post(
            f"{base}/follow-ups",
            json={
                "type": "phone_call",
                "scheduled_date": "2024-03-01T09:00:00",
                "status": "completed",
            },
        )

        assert duplicate.status_code == 422
        assert preset.status_code == 422
        assert closed.status_code == 422
        review = client.get(base).json()
        assert [i["outcome"] for i in review["interventions"]] == ["accepted"]
        assert review["follow_ups"] == []
