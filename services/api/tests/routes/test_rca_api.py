"""Tests for RCA suggestion and report endpoints."""

import pytest

from services.api.src.safesnap.core.errors import AiServiceError


class UnavailableLLM:
    def generate(self, prompt, context=None, user_key=None):
        raise AiServiceError("OpenAI service unavailable")

    def health_check(self):
        return False


def _as(user):
    return {"X-User-Email": user["email"]}


@pytest.fixture
def incident_id(client, worker_user):
    res = client.post(
        "/api/incidents",
        json={
            "title": "Forklift hit racking",
            "description": "Aisle 4, pallet fell, no injuries",
            "severity": "MEDIUM",
        },
        headers=_as(worker_user),
    )
    return res.json()["id"]


def _suggestion(client, incident_id, manager_user):
    return client.get(f"/api/incidents/{incident_id}/rca/suggestions", headers=_as(manager_user))


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

class TestSuggestions:
    def test_generated_on_report(self, client, incident_id, manager_user):
        res = _suggestion(client, incident_id, manager_user)
        assert res.status_code == 200
        data = res.json()
        assert data["status"] == "GENERATED"
        assert data["incident_category"] == "EQUIPMENT_MALFUNCTION"
        assert data["suggested_five_whys"]
        assert data["suggested_corrective_action"]
        assert data["suggested_preventive_action"]

    def test_workers_cannot_read(self, client, incident_id, worker_user):
        res = _suggestion(client, incident_id, worker_user)
        assert res.status_code == 403

    def test_missing_suggestion(self, client, manager_user):
        res = _suggestion(client, "nope", manager_user)
        assert res.status_code == 404

    def test_review_then_approve(self, client, incident_id, manager_user, worker_user):
        res = client.post(
            f"/api/incidents/{incident_id}/rca/suggestions/review", headers=_as(manager_user),
        )
        assert res.status_code == 200
        assert res.json()["status"] == "REVIEWED"
        assert res.json()["reviewed_by"] == manager_user["id"]

        res = client.post(
            f"/api/incidents/{incident_id}/rca/suggestions/approve", headers=_as(manager_user),
        )
        assert res.json()["status"] == "APPROVED"

        view = client.get(f"/api/incidents/{incident_id}", headers=_as(worker_user)).json()
        assert view["ai_suggestion"]["reviewed_by_name"] == "Morgan Manager"
        assert "status" not in view["ai_suggestion"]

    def test_failed_suggestion_cannot_be_approved(self, client, container, worker_user, manager_user):
        container.workflow.llm = UnavailableLLM()
        res = client.post(
            "/api/incidents",
            json={"title": "Forklift hit racking", "description": "Aisle 4", "severity": "MEDIUM"},
            headers=_as(worker_user),
        )
        inc_id = res.json()["id"]
        assert _suggestion(client, inc_id, manager_user).json()["status"] == "FAILED"

        for action in ("review", "approve"):
            res = client.post(
                f"/api/incidents/{inc_id}/rca/suggestions/{action}", headers=_as(manager_user),
            )
            assert res.status_code == 409
        assert _suggestion(client, inc_id, manager_user).json()["status"] == "FAILED"

    def test_pending_review(self, client, incident_id, manager_user, worker_user):
        res = client.get("/api/rca/pending-review", headers=_as(manager_user))
        assert [s["incident_id"] for s in res.json()] == [incident_id]
        assert client.get("/api/rca/pending-review", headers=_as(worker_user)).status_code == 403

    def test_regenerate(self, client, incident_id, manager_user):
        before = _suggestion(client, incident_id, manager_user).json()

        res = client.post(
            f"/api/incidents/{incident_id}/rca/suggestions/regenerate", headers=_as(manager_user),
        )
        assert res.status_code == 202
        assert res.json() == {"incident_id": incident_id, "queued": True}

        after = _suggestion(client, incident_id, manager_user).json()
        assert after["status"] == "GENERATED"
        assert after["generated_at"] >= before["generated_at"]

    def test_worker_cannot_regenerate(self, client, incident_id, worker_user):
        res = client.post(
            f"/api/incidents/{incident_id}/rca/suggestions/regenerate", headers=_as(worker_user),
        )
        assert res.status_code == 403


# ---------------------------------------------------------------------------
# Final report
# ---------------------------------------------------------------------------

class TestFinalize:
    def test_unchanged_draft_is_approved(self, client, incident_id, manager_user):
        draft = _suggestion(client, incident_id, manager_user).json()
        body = {
            "five_whys": draft["suggested_five_whys"],
            "corrective_action": draft["suggested_corrective_action"],
            "preventive_action": draft["suggested_preventive_action"],
        }

        res = client.post(f"/api/incidents/{incident_id}/rca/approve", json=body, headers=_as(manager_user))
        assert res.status_code == 201
        assert res.json()["manager_id"] == manager_user["id"]
        assert _suggestion(client, incident_id, manager_user).json()["status"] == "APPROVED"

    def test_rewritten_draft_is_modified(self, client, incident_id, manager_user):
        body = {
            "five_whys": "Operator fatigue after double shift",
            "corrective_action": "Cap shifts at ten hours",
            "preventive_action": "Roster review every month",
        }
        res = client.post(f"/api/incidents/{incident_id}/rca/approve", json=body, headers=_as(manager_user))
        assert res.status_code == 201
        assert _suggestion(client, incident_id, manager_user).json()["status"] == "MODIFIED"

        view = client.get(f"/api/incidents/{incident_id}", headers=_as(manager_user)).json()
        assert view["rca_report"]["five_whys"] == "Operator fatigue after double shift"

    def test_second_finalize_conflicts(self, client, incident_id, manager_user):
        body = {"five_whys": "w", "corrective_action": "c", "preventive_action": "p"}
        url = f"/api/incidents/{incident_id}/rca/approve"
        assert client.post(url, json=body, headers=_as(manager_user)).status_code == 201
        assert client.post(url, json=body, headers=_as(manager_user)).status_code == 409

    def test_empty_text_rejected(self, client, incident_id, manager_user):
        body = {"five_whys": "", "corrective_action": "c", "preventive_action": "p"}
        res = client.post(f"/api/incidents/{incident_id}/rca/approve", json=body, headers=_as(manager_user))
        assert res.status_code == 422

    def test_worker_cannot_finalize(self, client, incident_id, worker_user):
        body = {"five_whys": "w", "corrective_action": "c", "preventive_action": "p"}
        res = client.post(f"/api/incidents/{incident_id}/rca/approve", json=body, headers=_as(worker_user))
        assert res.status_code == 403


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

class TestReporting:
    def test_statistics(self, client, incident_id, manager_user):
        res = client.get("/api/rca/statistics", headers=_as(manager_user))
        assert res.status_code == 200
        data = res.json()
        assert data["total_suggestions"] == 1
        assert data["generated_count"] == 1
        assert data["success_rate"] == 100.0

    def test_statistics_manager_only(self, client, worker_user):
        assert client.get("/api/rca/statistics", headers=_as(worker_user)).status_code == 403

    def test_health_needs_no_user(self, client):
        res = client.get("/api/rca/health")
        assert res.status_code == 200
        data = res.json()
        assert data["recent_failure_count"] == 0
        assert data["openai"]["mock_mode"] is True
