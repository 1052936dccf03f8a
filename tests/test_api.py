"""Tests for the REST API."""

import os
import tempfile

import pytest
from fastapi.testclient import TestClient

from graphflow.config import AppConfig, LogLevel
from graphflow.factory import create_app
from graphflow.storage.database import reset_database_engine


WORKFLOW = {
    "id": "wf-api",
    "name": "API workflow",
    "nodes": [
        {"id": "start", "type": "manualTrigger"},
        {"id": "check", "type": "if",
         "parameters": {"condition": {"field": "amount", "operator": "gt", "value": 100}}},
        {"id": "big", "type": "set", "parameters": {"values": {"size": "big"}}},
        {"id": "small", "type": "set", "parameters": {"values": {"size": "small"}}},
    ],
    "connections": [
        {"source_node_id": "start", "target_node_id": "check"},
        {"source_node_id": "check", "source_output": "true", "target_node_id": "big"},
        {"source_node_id": "check", "source_output": "false", "target_node_id": "small"},
    ],
}


@pytest.fixture
def client():
    """Application over a temporary SQLite database."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)
    config = AppConfig(
        database_url=f"sqlite:///{db_path}",
        log_level=LogLevel.WARNING,
        max_concurrent_executions=2,
        python_timeout_ms=10000,
        script_timeout_ms=10000,
    )
    app = create_app(config)
    with TestClient(app) as test_client:
        yield test_client

    reset_database_engine()
    try:
        os.unlink(db_path)
    except OSError:
        pass


@pytest.fixture
def stored_workflow(client):
    response = client.post("/api/v1/workflows", json=WORKFLOW)
    assert response.status_code == 201
    return response.json()["workflow_id"]


class TestHealth:
    """Test cases for the health endpoints."""

    def test_root(self, client):
        """The root endpoint names the service."""
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["message"] == "graphflow is running"

    def test_health(self, client):
        """Health reports the database and the engine."""
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["execution_engine"]["active_executions"] == 0
        assert "X-Request-ID" in response.headers
        assert "X-Response-Time" in response.headers


class TestWorkflowEndpoints:
    """Test cases for the workflow endpoints."""

    def test_create_and_get(self, client, stored_workflow):
        """Stored workflows can be listed and read back."""
        assert stored_workflow == "wf-api"
        listed = client.get("/api/v1/workflows").json()
        assert [item["id"] for item in listed] == ["wf-api"]
        assert listed[0]["node_count"] == 4

        fetched = client.get("/api/v1/workflows/wf-api").json()
        assert len(fetched["connections"]) == 3

    def test_invalid_workflow_rejected(self, client):
        """Cyclic workflows are rejected with 400 and the validation errors."""
        cyclic = {
            "id": "wf-cycle",
            "name": "Cycle",
            "nodes": [{"id": "t", "type": "noOp"}, {"id": "a", "type": "noOp"}, {"id": "b", "type": "noOp"}],
            "connections": [
                {"source_node_id": "t", "target_node_id": "a"},
                {"source_node_id": "a", "target_node_id": "b"},
                {"source_node_id": "b", "target_node_id": "a"},
            ],
        }
        response = client.post("/api/v1/workflows", json=cyclic)
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "StructuralError"
        assert detail["details"]["validation_errors"]

    def test_missing_workflow(self, client):
        """Unknown workflows are 404."""
        assert client.get("/api/v1/workflows/ghost").status_code == 404
        assert client.delete("/api/v1/workflows/ghost").status_code == 404

    def test_validate_and_delete(self, client, stored_workflow):
        """Stored workflows can be validated and deleted."""
        result = client.post(f"/api/v1/workflows/{stored_workflow}/validate").json()
        assert result["is_valid"] is True

        assert client.delete(f"/api/v1/workflows/{stored_workflow}").json()["deleted"] is True
        assert client.get(f"/api/v1/workflows/{stored_workflow}").status_code == 404


class TestExecutionEndpoints:
    """Test cases for running workflows and reading runs."""

    def test_execute_and_read_back(self, client, stored_workflow):
        """A blocking run returns the finished run; its log is queryable afterwards."""
        response = client.post(f"/api/v1/workflows/{stored_workflow}/execute", json={"input": {"amount": 250}})
        assert response.status_code == 200
        run = response.json()
        assert run["status"] == "success"
        assert run["output"]["size"] == "big"
        assert run["duration_ms"] is not None
        assert "logs" not in run

        fetched = client.get(f"/api/v1/executions/{run['id']}").json()
        assert fetched["status"] == "success"

        logs = client.get(f"/api/v1/executions/{run['id']}/logs", params={"category": "NODE_START"}).json()
        assert [entry["node_id"] for entry in logs["entries"]] == ["start", "check", "big"]

        summary = client.get(f"/api/v1/executions/{run['id']}/summary").json()
        assert summary["nodes_started"] == 3
        assert summary["error_count"] == 0

        listed = client.get("/api/v1/executions", params={"workflow_id": stored_workflow}).json()
        assert [item["id"] for item in listed] == [run["id"]]

    def test_background_execution(self, client, stored_workflow):
        """Without ``wait`` the run id is returned immediately."""
        response = client.post(f"/api/v1/workflows/{stored_workflow}/execute",
                               json={"input": {"amount": 5}, "wait": False})
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert body["run_id"]

    def test_failed_run_is_reported(self, client):
        """A failing node yields a failed run, not an HTTP error."""
        workflow = {
            "id": "wf-fail",
            "name": "Failing",
            "nodes": [{"id": "script", "type": "code",
                       "parameters": {"language": "python", "code": "return 1 / 0"}}],
            "connections": [],
        }
        assert client.post("/api/v1/workflows", json=workflow).status_code == 201
        run = client.post("/api/v1/workflows/wf-fail/execute", json={}).json()
        assert run["status"] == "failed"
        assert run["error_node_id"] == "script"
        assert "ZeroDivisionError" in run["error_message"]

    def test_unknown_execution(self, client):
        """Unknown runs are 404 and cannot be cancelled."""
        assert client.get("/api/v1/executions/missing").status_code == 404
        assert client.post("/api/v1/executions/missing/cancel").status_code == 409

    def test_execute_unknown_workflow(self, client):
        """Executing an unknown workflow is 404."""
        assert client.post("/api/v1/workflows/ghost/execute", json={}).status_code == 404


class TestVariableAndSettingEndpoints:
    """Test cases for variables, settings and capability discovery."""

    def test_variables(self, client):
        """Variables can be written, listed and deleted per scope."""
        client.put("/api/v1/variables/base", json={"value": "https://global"})
        client.put("/api/v1/variables/base", json={"value": "https://scoped", "workflow_id": "wf-api"})
        body = client.get("/api/v1/variables", params={"workflow_id": "wf-api"}).json()
        assert body["global"] == {"base": "https://global"}
        assert body["workflow"] == {"base": "https://scoped"}

        assert client.delete("/api/v1/variables/base").status_code == 200
        assert client.delete("/api/v1/variables/base").status_code == 404

    def test_variables_reach_runs(self, client):
        """Stored variables are resolved in node parameters."""
        client.put("/api/v1/variables/label", json={"value": "from-variable"})
        workflow = {
            "id": "wf-vars",
            "name": "Variables",
            "nodes": [{"id": "set", "type": "set", "parameters": {"values": {"label": "${label}"}}}],
            "connections": [],
        }
        client.post("/api/v1/workflows", json=workflow)
        run = client.post("/api/v1/workflows/wf-vars/execute", json={}).json()
        assert run["output"]["label"] == "from-variable"

    def test_settings(self, client):
        """Settings show defaults and accept overrides."""
        settings = client.get("/api/v1/settings").json()
        assert settings["python.executionMode"] == "embedded"
        client.put("/api/v1/settings/python.executionMode", json={"value": "external"})
        assert client.get("/api/v1/settings").json()["python.executionMode"] == "external"

    def test_capabilities(self, client):
        """Executors and script runtimes are discoverable."""
        executors = {item["node_type"] for item in client.get("/api/v1/executors").json()}
        assert {"if", "switch", "code", "merge"} <= executors

        languages = {item["language_id"]: item for item in client.get("/api/v1/scripting/languages").json()}
        assert set(languages) == {"python", "python-external", "javascript", "javascript-external"}
        assert languages["python"]["available"] is True
