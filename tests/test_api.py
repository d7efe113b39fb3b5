"""Tests for the REST API."""

import time

import pytest
from fastapi.testclient import TestClient

from flowrunner.config import get_testing_config
from flowrunner.main import create_app
from flowrunner.storage.repository import InMemoryWorkflowRepository

from .factories import USERS_URL, BlockingHttpClient, FakeHttpClient, json_response

DOWN_URL = "https://unreachable.example.com/"

ONBOARDING = {
    "name": "Onboarding",
    "description": "New user flow",
    "status": "Draft",
    "userId": "user-1",
    "nodes": [
        {"id": "1", "type": "task", "position": {"x": 0, "y": 0}, "data": {"label": "Start"}},
        {"id": "2", "type": "api", "position": {"x": 0, "y": 100},
         "data": {"label": "Fetch users", "endpoint": USERS_URL}},
        {"id": "3", "type": "decision", "position": {"x": 0, "y": 200},
         "data": {"label": "Enough users?", "condition": "len(outcomes) > 1"}},
        {"id": "4", "type": "task", "position": {"x": -100, "y": 300}, "data": {"label": "Welcome"}},
        {"id": "5", "type": "task", "position": {"x": 100, "y": 300}, "data": {"label": "Wait"}},
    ],
    "edges": [
        {"id": "e1", "source": "1", "target": "2"},
        {"id": "e2", "source": "2", "target": "3"},
        {"id": "e3", "source": "3", "target": "4", "label": "true"},
        {"id": "e4", "source": "3", "target": "5", "label": "false"},
    ],
}


def _with_nodes(nodes, edges=()):
    return dict(ONBOARDING, nodes=nodes, edges=list(edges))


@pytest.fixture
def http_client():
    return FakeHttpClient({USERS_URL: json_response([{"id": 1}, {"id": 2}])})


@pytest.fixture
def client(http_client):
    """API client wired to an in-memory repository and a fake HTTP client."""
    app = create_app(get_testing_config(), repository=InMemoryWorkflowRepository(), http_client=http_client)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def workflow_id(client):
    response = client.post("/api/v1/workflows", json=ONBOARDING)
    assert response.status_code == 201
    return response.json()["id"]


class TestHealth:
    """Test cases for the health endpoint."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Request-ID" in response.headers


class TestWorkflowCrud:
    """Test cases for workflow CRUD endpoints."""

    def test_create_and_get(self, client, workflow_id):
        response = client.get(f"/api/v1/workflows/{workflow_id}")

        assert response.status_code == 200
        document = response.json()
        assert document["id"] == workflow_id
        assert document["name"] == "Onboarding"
        assert document["status"] == "draft"
        assert document["userId"] == "user-1"
        assert document["lastEditedBy"] == "user-1"
        assert document["lastEditedOn"] is not None
        assert document["executions"] == []
        assert [node["type"] for node in document["nodes"]] == ["task", "api", "decision", "task", "task"]

    def test_create_invalid_graph_is_rejected(self, client):
        invalid = _with_nodes(
            [{"id": "1", "type": "task", "data": {"label": "A"}},
             {"id": "1", "type": "task", "data": {"label": "B"}}],
            [{"id": "e1", "source": "1", "target": "ghost"}]
        )

        response = client.post("/api/v1/workflows", json=invalid)

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "GraphValidationError"
        assert len(body["details"]["validation_errors"]) == 2

    def test_create_malformed_node_is_422(self, client):
        malformed = _with_nodes([{"id": "1", "type": "api", "data": {"label": "No endpoint"}}])

        assert client.post("/api/v1/workflows", json=malformed).status_code == 422

    def test_get_unknown_workflow(self, client):
        response = client.get("/api/v1/workflows/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "WorkflowNotFoundError"

    def test_update(self, client, workflow_id):
        changed = dict(ONBOARDING, name="Onboarding v2", lastEditedBy="user-2")

        response = client.put(f"/api/v1/workflows/{workflow_id}", json=changed)

        assert response.status_code == 200
        document = client.get(f"/api/v1/workflows/{workflow_id}").json()
        assert document["name"] == "Onboarding v2"
        assert document["lastEditedBy"] == "user-2"

    def test_update_unknown_workflow(self, client):
        assert client.put("/api/v1/workflows/missing", json=ONBOARDING).status_code == 404

    def test_delete(self, client, workflow_id):
        assert client.delete(f"/api/v1/workflows/{workflow_id}").status_code == 204
        assert client.get(f"/api/v1/workflows/{workflow_id}").status_code == 404
        assert client.delete(f"/api/v1/workflows/{workflow_id}").status_code == 404

    def test_validate_without_saving(self, client):
        invalid = dict(ONBOARDING, edges=[{"id": "e3", "source": "3", "target": "4", "label": "true"}])

        response = client.post("/api/v1/workflows/validate", json=invalid)

        assert response.status_code == 200
        result = response.json()
        assert result["is_valid"] is False
        assert [issue["reason"] for issue in result["issues"]] == ["missing_branch_edge"]
        assert client.get("/api/v1/workflows").json()["total"] == 0


class TestWorkflowListing:
    """Test cases for listing workflows."""

    def test_pagination(self, client):
        for index in range(5):
            client.post("/api/v1/workflows", json=dict(ONBOARDING, name=f"Flow {index}"))

        page = client.get("/api/v1/workflows", params={"page": 2, "page_size": 2}).json()

        assert page["total"] == 5
        assert page["total_pages"] == 3
        assert page["page"] == 2
        assert len(page["items"]) == 2
        assert page["items"][0]["nodeCount"] == 5

    def test_filter_by_user_and_search(self, client):
        client.post("/api/v1/workflows", json=ONBOARDING)
        client.post("/api/v1/workflows", json=dict(ONBOARDING, name="Billing", userId="user-2"))

        by_user = client.get("/api/v1/workflows", params={"user_id": "user-2"}).json()
        by_name = client.get("/api/v1/workflows", params={"search": "onboard"}).json()

        assert [item["name"] for item in by_user["items"]] == ["Billing"]
        assert [item["name"] for item in by_name["items"]] == ["Onboarding"]

    def test_listed_status_follows_latest_execution(self, client, workflow_id):
        client.post(f"/api/v1/workflows/{workflow_id}/execute")

        item = client.get("/api/v1/workflows").json()["items"][0]

        assert item["status"] == "success"
        assert item["executionCount"] == 1


class TestExecution:
    """Test cases for running workflows through the API."""

    def test_execute_success(self, client, workflow_id, http_client):
        response = client.post(f"/api/v1/workflows/{workflow_id}/execute")

        assert response.status_code == 200
        body = response.json()
        assert body["succeeded"] is True
        assert body["error"] is None
        assert body["persistence_error"] is None
        assert body["execution"]["status"] == "success"
        assert body["execution"]["logs"][0]["id"] == "start"
        assert body["execution"]["logs"][-1]["id"] == "complete"
        assert http_client.calls == [USERS_URL]

    def test_execute_failure_is_journaled(self, client):
        flow = _with_nodes([
            {"id": "1", "type": "api", "data": {"label": "Broken", "endpoint": DOWN_URL}},
            {"id": "2", "type": "task", "data": {"label": "Never"}},
        ], [{"id": "e1", "source": "1", "target": "2"}])
        workflow_id = client.post("/api/v1/workflows", json=flow).json()["id"]

        body = client.post(f"/api/v1/workflows/{workflow_id}/execute").json()

        assert body["succeeded"] is False
        assert body["error"]["error_code"] == "NodeExecutionError"
        assert body["execution"]["status"] == "failed"
        assert body["execution"]["logs"][-1]["id"] == "error"
        assert "2" not in [entry["id"] for entry in body["execution"]["logs"]]

    def test_execution_history(self, client, workflow_id):
        first = client.post(f"/api/v1/workflows/{workflow_id}/execute").json()["execution"]["id"]
        second = client.post(f"/api/v1/workflows/{workflow_id}/execute").json()["execution"]["id"]

        history = client.get(f"/api/v1/workflows/{workflow_id}/executions").json()

        assert first != second
        assert [execution["id"] for execution in history] == [first, second]

    def test_execute_unknown_workflow(self, client):
        assert client.post("/api/v1/workflows/missing/execute").status_code == 404


class TestBackgroundRuns:
    """Test cases for background run endpoints."""

    def test_start_and_poll(self, client, workflow_id):
        response = client.post(f"/api/v1/workflows/{workflow_id}/runs")
        assert response.status_code == 202
        run_id = response.json()["run_id"]

        run = client.get(f"/api/v1/runs/{run_id}").json()
        deadline = time.monotonic() + 5
        while run["completed_at"] is None and time.monotonic() < deadline:
            time.sleep(0.02)
            run = client.get(f"/api/v1/runs/{run_id}").json()

        assert run["state"] == "success"
        assert run["workflow_id"] == workflow_id
        assert run["execution"]["status"] == "success"

    def test_unknown_run(self, client):
        assert client.get("/api/v1/runs/nope").status_code == 404
        assert client.post("/api/v1/runs/nope/cancel").status_code == 404

    def test_start_run_for_unknown_workflow(self, client):
        assert client.post("/api/v1/workflows/missing/runs").status_code == 404


class TestCancellationEndpoint:
    """Test cases for cancelling a background run over HTTP."""

    def test_cancel_in_flight_run(self):
        blocking = BlockingHttpClient()
        app = create_app(get_testing_config(), repository=InMemoryWorkflowRepository(), http_client=blocking)

        with TestClient(app) as client:
            flow = _with_nodes([{"id": "1", "type": "api", "data": {"label": "Slow", "endpoint": USERS_URL}}])
            workflow_id = client.post("/api/v1/workflows", json=flow).json()["id"]
            run_id = client.post(f"/api/v1/workflows/{workflow_id}/runs").json()["run_id"]
            assert blocking.started.wait(5)

            response = client.post(f"/api/v1/runs/{run_id}/cancel")

            assert response.status_code == 200
            assert response.json()["cancelled"] is True

            deadline = time.monotonic() + 5
            run = client.get(f"/api/v1/runs/{run_id}").json()
            while run["completed_at"] is None and time.monotonic() < deadline:
                time.sleep(0.02)
                run = client.get(f"/api/v1/runs/{run_id}").json()

            assert run["state"] == "cancelled"
            assert run["execution"]["logs"][-1]["id"] == "cancelled"


class TestSqlBackedApp:
    """Test cases for the application with its default SQL repository."""

    def test_round_trip_through_sqlite(self, http_client):
        app = create_app(get_testing_config(), http_client=http_client)

        with TestClient(app) as client:
            workflow_id = client.post("/api/v1/workflows", json=ONBOARDING).json()["id"]
            client.post(f"/api/v1/workflows/{workflow_id}/execute")

            document = client.get(f"/api/v1/workflows/{workflow_id}").json()

        assert document["name"] == "Onboarding"
        assert len(document["executions"]) == 1
        assert document["executions"][0]["logs"][0]["id"] == "start"
