"""Tests for the HTTP API, with a scripted provider and a temporary workflow library."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import FakeProvider
from fastapi.testclient import TestClient

from workbench.api.main import app
from workbench.executor import run_manager as run_manager_module
from workbench.executor.run_manager import RunManager
from workbench.workflows import registry as registry_module
from workbench.workflows.registry import WorkflowRegistry

SCRIPT = (
    "nodes:\n"
    "  - id: reply\n"
    "    type: prompt\n"
    "    prompt: \"Answer: {{ chunk }}\"\n"
    "  - id: show\n"
    "    type: print\n"
    "    message: \"{{ reply }}\"\n"
)

CONTENT = "first line\nsecond line"


@pytest.fixture
def manager(monkeypatch) -> RunManager:
    manager = RunManager(provider_factory=lambda: FakeProvider(reply="done"))
    monkeypatch.setattr(run_manager_module, "_manager", manager)
    return manager


@pytest.fixture
def library(monkeypatch, tmp_path: Path) -> WorkflowRegistry:
    (tmp_path / "echo.workflow").write_text(
        "---\nname: Echo\ncategory: Text\ndifficulty: beginner\n---\n" + SCRIPT
    )
    registry = WorkflowRegistry(tmp_path)
    monkeypatch.setattr(registry_module, "_registry", registry)
    return registry


@pytest.fixture
def client(manager, library):
    with TestClient(app) as test_client:
        yield test_client


def finished(client: TestClient, manager: RunManager, run_id: str) -> dict:
    assert manager.wait(run_id, timeout=10)
    response = client.get(f"/v1/workbench/runs/{run_id}")
    assert response.status_code == 200
    return response.json()


# =========================================================================
# 1. Service endpoints
# =========================================================================


class TestService:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["workflows_loaded"] == 1
        assert body["active_run"] is None

    def test_root_lists_endpoints(self, client):
        assert client.get("/").json()["endpoints"]["workbench"] == "/v1/workbench"


# =========================================================================
# 2. Chunking and scripts
# =========================================================================


class TestChunksAndScripts:
    def test_chunks(self, client):
        response = client.post("/v1/workbench/chunks", json={"content": CONTENT})
        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 2
        assert body["is_table"] is False
        assert [u["raw_text"] for u in body["units"]] == ["first line", "second line"]

    def test_chunks_rejects_bad_count(self, client):
        response = client.post(
            "/v1/workbench/chunks",
            json={"content": CONTENT, "params": {"mode": "word-count", "word_count": 0}},
        )
        assert response.status_code == 400

    def test_parse_reports_variables(self, client):
        body = client.post("/v1/workbench/scripts/parse", json={"script": SCRIPT}).json()
        assert [n["id"] for n in body["nodes"]] == ["reply", "show"]
        show = body["variables"][1]
        assert show["node_id"] == "show"
        assert "reply" in show["available"]
        assert show["referenced"] == ["reply"]

    def test_parse_rejects_script_without_nodes(self, client):
        response = client.post("/v1/workbench/scripts/parse", json={"script": "nothing here"})
        assert response.status_code == 400

    def test_serialize_parsed_nodes(self, client):
        nodes = client.post("/v1/workbench/scripts/parse", json={"script": SCRIPT}).json()["nodes"]
        script = client.post("/v1/workbench/scripts/serialize", json={"nodes": nodes}).json()["script"]
        reparsed = client.post("/v1/workbench/scripts/parse", json={"script": script}).json()
        assert [n["id"] for n in reparsed["nodes"]] == ["reply", "show"]


# =========================================================================
# 3. Runs and export
# =========================================================================


class TestRuns:
    def test_workflow_run_then_export(self, client, manager):
        response = client.post(
            "/v1/workbench/runs/workflow",
            json={"content": CONTENT, "script": SCRIPT, "settings": {"model": "gpt-test"}},
        )
        assert response.status_code == 200
        run_id = response.json()["run_id"]

        run = finished(client, manager, run_id)
        assert run["status"] == "completed"
        assert [entry["message"] for entry in run["logs"]] == ["done", "done"]

        export = client.post(
            f"/v1/workbench/runs/{run_id}/export",
            json={"format": "combined", "response_key": "reply"},
        ).json()
        assert export["content"] == "## Chunk 1\n\ndone\n\n---\n\n## Chunk 2\n\ndone"

        documents = client.post(
            f"/v1/workbench/runs/{run_id}/export",
            json={"format": "documents", "response_key": "reply", "title_prefix": "Notes"},
        ).json()["documents"]
        assert [d["title"] for d in documents] == ["Notes - Unit 1", "Notes - Unit 2"]

    def test_saved_workflow_run(self, client, manager):
        response = client.post(
            "/v1/workbench/runs/workflow",
            json={"content": CONTENT, "workflow_key": "echo", "unit_limit": 1},
        )
        assert response.status_code == 200
        run = finished(client, manager, response.json()["run_id"])
        assert run["progress"]["total_units"] == 1

    def test_workflow_run_needs_script_or_key(self, client):
        response = client.post("/v1/workbench/runs/workflow", json={"content": CONTENT})
        assert response.status_code == 400

    def test_unknown_saved_workflow(self, client):
        response = client.post(
            "/v1/workbench/runs/workflow",
            json={"content": CONTENT, "workflow_key": "missing"},
        )
        assert response.status_code == 404

    def test_prompt_run_then_csv_export(self, client, manager):
        response = client.post(
            "/v1/workbench/runs/prompt",
            json={"content": CONTENT, "prompt": "Summarize", "settings": {"model": "gpt-test"}},
        )
        run_id = response.json()["run_id"]
        run = finished(client, manager, run_id)
        assert [r["response"] for r in run["chunk_results"]] == ["done", "done"]

        export = client.post(f"/v1/workbench/runs/{run_id}/export", json={"format": "csv"}).json()
        assert export["content"].splitlines()[0] == "Unit #,Original Text,Response,Status"

        listed = client.get("/v1/workbench/runs", params={"status": "completed"}).json()
        assert listed["count"] == 1
        assert listed["runs"][0]["run_id"] == run_id

    def test_unknown_run(self, client):
        assert client.get("/v1/workbench/runs/run-missing").status_code == 404
        assert client.post("/v1/workbench/runs/run-missing/cancel").status_code == 404

    def test_cancel_finished_run_is_rejected(self, client, manager):
        response = client.post(
            "/v1/workbench/runs/prompt",
            json={"content": CONTENT, "prompt": "Hi", "settings": {"model": "gpt-test"}},
        )
        run_id = response.json()["run_id"]
        finished(client, manager, run_id)
        assert client.post(f"/v1/workbench/runs/{run_id}/cancel").status_code == 400


# =========================================================================
# 4. Workflow library
# =========================================================================


class TestWorkflowLibrary:
    def test_list_and_get(self, client):
        summaries = client.get("/v1/workflows").json()
        assert [s["workflow_key"] for s in summaries] == ["echo"]
        assert summaries[0]["node_count"] == 2
        assert client.get("/v1/workflows/keys").json() == ["echo"]
        assert client.get("/v1/workflows/count").json() == {"count": 1}
        assert client.get("/v1/workflows/echo").json()["metadata"]["name"] == "Echo"
        assert [n["id"] for n in client.get("/v1/workflows/echo/nodes").json()] == ["reply", "show"]

    def test_filters(self, client):
        assert client.get("/v1/workflows", params={"difficulty": "advanced"}).json() == []
        assert len(client.get("/v1/workflows", params={"category": "text"}).json()) == 1
        assert len(client.get("/v1/workflows/category/Text").json()) == 1

    def test_missing_workflow(self, client):
        assert client.get("/v1/workflows/missing").status_code == 404
        assert client.get("/v1/workflows/missing/nodes").status_code == 404
        assert client.delete("/v1/workflows/missing").status_code == 404

    def test_save_and_delete(self, client, tmp_path):
        workflow = {"metadata": {"name": "Copy", "category": "Text"}, "body": SCRIPT}
        response = client.put("/v1/workflows/copy", json=workflow)
        assert response.status_code == 200
        assert response.json()["node_count"] == 2
        assert (tmp_path / "copy.workflow").exists()

        assert client.delete("/v1/workflows/copy").json() == {"workflow_key": "copy", "deleted": True}
        assert not (tmp_path / "copy.workflow").exists()

    def test_save_rejects_invalid_script(self, client):
        response = client.put("/v1/workflows/bad", json={"body": "nothing here"})
        assert response.status_code == 400
