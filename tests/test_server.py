"""Tests for the dashboard API."""

import json

import pytest
from fastapi.testclient import TestClient

from codebakers.server import create_app


@pytest.fixture
def client(workspace):
    return TestClient(create_app(workspace.root))


class TestIndex:
    """Tests for /api and /api/status."""

    def test_index(self, client):
        response = client.get("/api")
        assert response.status_code == 200
        assert "GET /api/scores" in response.json()["endpoints"]

    def test_status(self, client):
        data = client.get("/api/status").json()
        assert data["workspace"] == "acme"
        assert data["agents"] == 2
        assert data["scores"]["projects"] == 0

    def test_uninitialized_workspace(self, tmp_path):
        client = TestClient(create_app(tmp_path))
        assert client.get("/api/status").status_code == 503


class TestAgentEndpoints:
    """Tests for /api/agents."""

    def test_list(self, client):
        agents = client.get("/api/agents").json()["agents"]
        assert [a["name"] for a in agents] == ["chatbot", "stripe-payments"]

    def test_get(self, client):
        data = client.get("/api/agents/stripe-payments").json()
        assert data["title"] == "Stripe Payments Agent"
        assert data["lint"]["ok"] is True

    def test_get_missing(self, client):
        assert client.get("/api/agents/nope").status_code == 404

    def test_match(self, client):
        data = client.get("/api/agents/match", params={"q": "stripe subscription billing"}).json()
        assert data["matches"][0]["name"] == "stripe-payments"
        assert data["matches"][0]["score"] == 3


class TestLessonEndpoints:
    """Tests for /api/lessons."""

    def _capture(self, client, **overrides):
        body = {"title": "Webhook retried twice", "agent": "stripe-payments", "severity": "high"}
        body.update(overrides)
        return client.post("/api/lessons", json=body)

    def test_capture_and_apply(self, client, workspace):
        response = self._capture(client)
        assert response.status_code == 201
        lesson_id = response.json()["id"]

        applied = client.post(f"/api/lessons/{lesson_id}/apply")
        assert applied.status_code == 200
        assert applied.json()["status"] == "applied"

        agent_text = (workspace.root / "agents" / "stripe-payments.md").read_text()
        assert f"<!-- lesson:{lesson_id} -->" in agent_text

        assert client.post(f"/api/lessons/{lesson_id}/apply").status_code == 409

    def test_capture_warns_on_unknown_agent(self, client):
        data = self._capture(client, agent="gdpr").json()
        assert "warning" in data

    def test_capture_invalid_category(self, client):
        assert self._capture(client, category="rumour").status_code == 400

    def test_apply_unknown_agent(self, client):
        lesson_id = self._capture(client, agent="gdpr").json()["id"]
        assert client.post(f"/api/lessons/{lesson_id}/apply").status_code == 400

    def test_list_and_filter(self, client):
        self._capture(client)
        self._capture(client, title="Prompt too long", agent="chatbot")

        everything = client.get("/api/lessons").json()["lessons"]
        assert len(everything) == 2

        chatbot = client.get("/api/lessons", params={"agent": "chatbot"}).json()["lessons"]
        assert [lsn["title"] for lsn in chatbot] == ["Prompt too long"]

        assert client.get("/api/lessons", params={"status": "done"}).status_code == 400

    def test_get_missing(self, client):
        assert client.get("/api/lessons/nope").status_code == 404


class TestScoreEndpoints:
    """Tests for /api/scores."""

    def test_list(self, client, scores_file):
        data = client.get("/api/scores").json()
        assert data["projects"][0]["id"] == "acme-portal"
        assert data["projects"][0]["trend"] == 4.5
        assert data["stats"]["open_critical"] == 1

    def test_get_project(self, client, scores_file):
        data = client.get("/api/scores/acme-portal").json()
        assert data["overall"] == 76.5
        assert client.get("/api/scores/nope").status_code == 404

    def test_record(self, client, scores_file):
        response = client.post(
            "/api/scores/acme-portal",
            json={"scores": {"performance": 100}, "on": "2026-10-02"},
        )
        assert response.status_code == 200
        assert response.json()["overall"] == 82.5

        saved = json.loads(scores_file.read_text())
        assert saved["projects"]["acme-portal"]["history"][-1]["date"] == "2026-10-02"

    def test_record_partial_bugs(self, client, scores_file):
        response = client.post(
            "/api/scores/acme-portal",
            json={"bugs_resolved": 7},
        )
        assert response.status_code == 200
        assert response.json()["bugs"] == {
            "total": 9,
            "open": 2,
            "resolved": 7,
            "by_severity": {"critical": 1, "high": 1, "medium": 0, "low": 0},
        }

    def test_record_invalid_is_rejected(self, client, scores_file):
        before = scores_file.read_text()
        response = client.post("/api/scores/acme-portal", json={"scores": {"security": 150}})

        assert response.status_code == 400
        issues = response.json()["detail"]["issues"]
        assert any(i["path"].endswith("scores.security") for i in issues)
        assert scores_file.read_text() == before

    def test_record_boolean_score_rejected(self, client, scores_file):
        before = scores_file.read_text()
        response = client.post("/api/scores/acme-portal", json={"scores": {"security": True}})
        assert response.status_code == 422
        assert scores_file.read_text() == before

    def test_record_partial_severity(self, client, scores_file):
        response = client.post("/api/scores/acme-portal", json={"by_severity": {"high": 0}})
        assert response.status_code == 200
        assert response.json()["bugs"]["by_severity"] == {"critical": 1, "high": 0, "medium": 0, "low": 0}
        assert response.json()["bugs"]["open"] == 1

    def test_record_bad_date(self, client, scores_file):
        response = client.post("/api/scores/acme-portal", json={"on": "yesterday"})
        assert response.status_code == 400
        assert client.post("/api/scores/acme-portal", json={"on": "20261002"}).status_code == 400

    def test_record_bad_project_id(self, client, scores_file):
        response = client.post("/api/scores/Acme_Portal", json={"scores": {"security": 50}})
        assert response.status_code == 400

    def test_validate(self, client, scores_file, sample_scores):
        assert client.get("/api/scores/validate").json()["ok"] is True

        sample_scores["weights"]["security"] = 0.9
        scores_file.write_text(json.dumps(sample_scores))

        data = client.get("/api/scores/validate").json()
        assert data["ok"] is False
        assert client.get("/api/scores").status_code == 409

    def test_validate_bad_json(self, client, scores_file):
        scores_file.write_text("{")
        data = client.get("/api/scores/validate").json()
        assert data["ok"] is False


class TestReviewEndpoint:
    """Tests for /api/review."""

    def test_json(self, client, scores_file):
        data = client.get("/api/review", params={"since": "2026-10-01"}).json()
        assert data["since"] == "2026-10-01"
        assert data["open_critical"] == {"acme-portal": 1}

    def test_markdown(self, client):
        data = client.get("/api/review", params={"format": "markdown"}).json()
        assert data["markdown"].startswith("# Agent Review:")

    def test_bad_since(self, client):
        assert client.get("/api/review", params={"since": "last month"}).status_code == 400
