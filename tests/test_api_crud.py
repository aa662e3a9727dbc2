from __future__ import annotations

from pathlib import Path
from typing import Generator, List, Tuple

import pytest
from fastapi.testclient import TestClient

from driftcheck.main import app
from driftcheck.routes import api as api_routes
from driftcheck.services.storage import LocalJsonStorage, RegressionRepository, get_repository


class _RecordingOrchestrator:
    def __init__(self) -> None:
        self.enqueued: List[str] = []

    def enqueue(self, run_id: str) -> None:
        self.enqueued.append(run_id)


@pytest.fixture
def client(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Tuple[TestClient, RegressionRepository, _RecordingOrchestrator], None, None]:
    """Provide an isolated TestClient with a fresh repository per test."""
    storage = LocalJsonStorage(tmp_path / "db.json")
    repo = RegressionRepository(storage)
    orchestrator = _RecordingOrchestrator()

    monkeypatch.setattr(api_routes, "get_orchestrator", lambda: orchestrator)

    def override_repo() -> RegressionRepository:
        return repo

    app.dependency_overrides[get_repository] = override_repo
    with TestClient(app) as test_client:
        yield test_client, repo, orchestrator
    app.dependency_overrides.clear()


def _configure(api: TestClient, tmp_path: Path) -> None:
    resp = api.patch(
        "/api/config",
        json={
            "live_url": "https://www.example.com/",
            "dev_url": "https://dev.example.com",
            "output_dir": str(tmp_path / "results"),
        },
    )
    assert resp.status_code == 200


def test_config_defaults_and_update(client, tmp_path: Path) -> None:
    api, repo, _orchestrator = client

    resp = api.get("/api/config")
    assert resp.status_code == 200
    config = resp.json()
    assert config["viewport"] == {"width": 1920, "height": 1080}
    assert config["parallel"] is True
    assert config["max_concurrency"] == 5
    assert config["diff_threshold"] == 0.1

    _configure(api, tmp_path)
    resp = api.patch("/api/config", json={"max_concurrency": 3, "viewport": {"width": 375, "height": 667}})
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["live_url"] == "https://www.example.com"
    assert updated["max_concurrency"] == 3
    assert updated["viewport"] == {"width": 375, "height": 667}
    assert repo.get_config()["dev_url"] == "https://dev.example.com"


def test_config_validation(client) -> None:
    api, _repo, _orchestrator = client

    assert api.patch("/api/config", json={"max_concurrency": 0}).status_code == 422
    assert api.patch("/api/config", json={"max_concurrency": 64}).status_code == 422
    assert api.patch("/api/config", json={"diff_threshold": 1.5}).status_code == 422
    assert api.patch("/api/config", json={"viewport": {"width": 0, "height": 10}}).status_code == 422
    assert api.patch("/api/config", json={"live_url": "   "}).status_code == 400


def test_run_requires_environment_urls(client) -> None:
    api, _repo, orchestrator = client

    resp = api.post("/api/runs", json={"routes": [{"path": "/"}]})
    assert resp.status_code == 400
    assert orchestrator.enqueued == []


def test_run_crud_flow(client, tmp_path: Path) -> None:
    api, repo, orchestrator = client
    _configure(api, tmp_path)

    assert api.post("/api/runs", json={"routes": []}).status_code == 422

    resp = api.post(
        "/api/runs",
        json={"routes": [{"path": "/"}, {"path": "/about", "router_type": "hash"}], "note": "nightly"},
    )
    assert resp.status_code == 201
    run = resp.json()
    assert run["status"] == "queued"
    assert run["routes"][1] == {"path": "/about", "type": "static", "router_type": "hash"}
    assert orchestrator.enqueued == [run["id"]]

    resp = api.get("/api/runs")
    assert resp.status_code == 200
    assert [item["id"] for item in resp.json()] == [run["id"]]

    repo.update_run(
        run["id"],
        {
            "status": "finished",
            "results": [
                {
                    "route": "/",
                    "url": "https://www.example.com/",
                    "environment": "live",
                    "passed": True,
                    "screenshot": "/tmp/live/home.png",
                    "duration": 120,
                }
            ],
            "comparisons": [
                {
                    "route": "/",
                    "live_screenshot": "/tmp/live/home.png",
                    "dev_screenshot": "/tmp/dev/home.png",
                    "diff_percentage": 0.0,
                    "has_differences": False,
                }
            ],
        },
    )

    resp = api.get(f"/api/runs/{run['id']}/results")
    assert resp.status_code == 200
    assert resp.json()[0]["environment"] == "live"
    assert resp.json()[0]["steps"] == []

    resp = api.get(f"/api/runs/{run['id']}/comparisons")
    assert resp.status_code == 200
    assert resp.json()[0]["diff_screenshot"] is None

    resp = api.get(f"/api/runs/{run['id']}")
    assert resp.status_code == 200
    assert resp.json()["status"] == "finished"

    assert api.delete(f"/api/runs/{run['id']}").status_code == 204
    assert api.get(f"/api/runs/{run['id']}").status_code == 404
    assert api.get(f"/api/runs/{run['id']}/results").status_code == 404


def test_artifacts_are_served_from_output_root(client, tmp_path: Path) -> None:
    api, _repo, _orchestrator = client
    _configure(api, tmp_path)
    target = tmp_path / "results" / "diffs" / "home-diff.png"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"\x89PNG")

    resp = api.get("/artifacts/diffs/home-diff.png")
    assert resp.status_code == 200
    assert resp.content == b"\x89PNG"

    assert api.get("/artifacts/diffs/missing.png").status_code == 404
    assert api.get("/artifacts/..%2F..%2Fdb.json").status_code == 404


def test_ping(client) -> None:
    api, _repo, _orchestrator = client
    assert api.get("/api/orchestrator/ping").json() == {"status": "ok"}
