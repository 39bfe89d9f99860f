from pathlib import Path
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from conftest import FakeSource, RecordingSleep, ScriptedEvaluator, make_records
from taskscore.config import settings
from taskscore.errors import GenericFetchFailure, NotConfigured, PermissionDenied
from taskscore.main import app
from taskscore.models import AnalysisResult
from taskscore.routers import runs
from taskscore.services.analyzer import Analyzer
from taskscore.services.pipeline import AnalysisPipeline

GOOD = AnalysisResult(match_percentage=77, status="Meets criteria", rationale="Has an owner and a deadline.")


@pytest.fixture
def source():
    return FakeSource(make_records(3, date="2024-05-01"), employees=["Alice", "Bob"])


@pytest.fixture
def dispatched():
    return []


@pytest.fixture
def client(repo, source, dispatched, monkeypatch):
    monkeypatch.setattr(settings, "api_token", None)
    pipeline = AnalysisPipeline(ScriptedEvaluator(GOOD), sleep=RecordingSleep())
    app.dependency_overrides[runs.get_repo] = lambda: repo
    app.dependency_overrides[runs.get_source] = lambda: source
    app.dependency_overrides[runs.get_analyzer] = lambda: Analyzer(source, pipeline, repo)
    app.dependency_overrides[runs.get_dispatcher] = lambda: dispatched.append
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_list_employees(client):
    resp = client.get("/employees")
    assert resp.status_code == 200
    assert resp.json() == {"employees": ["Alice", "Bob"]}


def test_list_dates(client):
    resp = client.get("/employees/Alice/dates")
    assert resp.json() == {"dates": ["2024-05-01"]}


def test_start_run_queues_pending_tasks(client, dispatched):
    resp = client.post("/runs", json={"employee": "Alice", "date": "2024-05-01"})

    assert resp.status_code == 200
    body = resp.json()
    run = body["run"]
    assert run["status"] == "RUNNING"
    assert run["employee"] == "Alice"
    assert [item["state"] for item in run["items"]] == ["PENDING"] * 3
    assert body["progress"] == {"analyzed": 0, "failed": 0, "total": 3, "percent": 0.0}
    assert dispatched == [run["run_id"]]


def test_empty_run_is_not_dispatched(client, dispatched):
    resp = client.post("/runs", json={"employee": "Alice", "date": "2030-01-01"})

    assert resp.status_code == 200
    assert resp.json()["run"]["status"] == "EMPTY"
    assert resp.json()["run"]["error"] == "No tasks found"
    assert dispatched == []


def test_new_run_supersedes_previous(client):
    first = client.post("/runs", json={"employee": "Alice"}).json()["run"]["run_id"]
    second = client.post("/runs", json={"employee": "Alice"}).json()["run"]["run_id"]

    current = client.get("/runs/current", params={"employee": "Alice"})
    assert second > first
    assert current.json()["run"]["run_id"] == second


def test_get_run_by_id(client):
    run_id = client.post("/runs", json={"employee": "Bob"}).json()["run"]["run_id"]

    resp = client.get(f"/runs/{run_id}")
    assert resp.status_code == 200
    assert resp.json()["run"]["employee"] == "Bob"


def test_unknown_run_is_404(client):
    assert client.get("/runs/999").status_code == 404
    assert client.get("/runs/current", params={"employee": "Nobody"}).status_code == 404


def test_permission_denied_carries_remediation(client, source):
    source.error = PermissionDenied("Permission Denied (403).")

    resp = client.post("/runs", json={"employee": "Alice"})

    assert resp.status_code == 403
    body = resp.json()
    assert body["error"] == "permission_denied"
    assert body["retry"] is True
    assert any("Anyone with the link" in step for step in body["remediation"])


@pytest.mark.parametrize(
    "error, status, code, retry",
    [
        (NotConfigured("Google API Key is not configured."), 503, "not_configured", False),
        (GenericFetchFailure("Status: 500"), 502, "fetch_failed", True),
    ],
)
def test_source_errors_are_rendered(client, source, error, status, code, retry):
    source.error = error

    resp = client.get("/employees")

    assert resp.status_code == status
    assert resp.json()["error"] == code
    assert resp.json()["retry"] is retry
    assert resp.json()["remediation"] == []


def test_failed_start_becomes_current_error(client, source):
    source.error = GenericFetchFailure("Status: 500")
    client.post("/runs", json={"employee": "Alice"})

    current = client.get("/runs/current", params={"employee": "Alice"}).json()["run"]
    assert current["status"] == "FAILED"
    assert current["error"] == "Status: 500"


def test_token_is_enforced_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "api_token", "secret")

    assert client.get("/employees").status_code == 401
    assert client.get("/employees", headers={"X-API-Token": "wrong"}).status_code == 401
    assert client.get("/employees", headers={"X-API-Token": "secret"}).status_code == 200
    assert client.get("/health").status_code == 200


def test_dispatch_failure_fails_the_run(client):
    def refuse(run_id):
        raise ConnectionError("broker unreachable")

    app.dependency_overrides[runs.get_dispatcher] = lambda: refuse

    resp = client.post("/runs", json={"employee": "Alice"})

    assert resp.status_code == 503
    assert resp.json()["error"] == "dispatch_failed"
    current = client.get("/runs/current", params={"employee": "Alice"}).json()["run"]
    assert current["status"] == "FAILED"
    assert "broker unreachable" in current["error"]
    assert all(item["state"] == "FAILED" for item in current["items"])


def test_unconfigured_evaluator_is_rendered(client):
    def unconfigured():
        raise NotConfigured("Gemini API key is not configured.")

    app.dependency_overrides[runs.get_analyzer] = unconfigured

    resp = client.post("/runs", json={"employee": "Alice"})

    assert resp.status_code == 503
    assert resp.json()["error"] == "not_configured"
    assert resp.json()["retry"] is False
