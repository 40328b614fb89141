import pytest
from fastapi.testclient import TestClient

from matrixci.server import create_app


@pytest.fixture
def pipeline(make_pipeline):
    return make_pipeline()


@pytest.fixture
def client(pipeline):
    return TestClient(create_app(pipeline))


def test_rejected_event_returns_204(client, pipeline):
    r = client.post("/events", json={"kind": "pull_request", "ref": "refs/pull/1/merge", "changed_paths": ["README.md"]})
    assert r.status_code == 204
    assert pipeline.runs == {}


def test_tag_event_runs_to_a_published_release(client):
    r = client.post("/events", json={"kind": "tag", "ref": "v1.0.0", "sha": "abc123"})
    assert r.status_code == 200
    body = r.json()
    assert body["group"] == "refs/tags/v1.0.0-CI"
    assert body["cancelled_run_id"] is None
    assert "Rust on windows-latest" in body["jobs"]

    # background tasks have finished once the test client returns
    run = client.get(f"/runs/{body['run_id']}").json()
    assert run["terminal"] is True
    assert run["event"] == "push"
    assert run["release"]["state"] == "published"
    assert sorted(run["release"]["assets"]) == ["copycat", "copycat.exe"]
    win = next(j for j in run["jobs"] if j["name"] == "Rust on windows-latest")
    assert win["matrix"] == {"os": "windows-latest"}
    assert win["steps"][-1] == {"name": "Upload release artifact for macOS", "status": "skipped", "exit_code": None}

    assert client.post(f"/runs/{body['run_id']}/cancel").status_code == 409


def test_cancel_unfinished_run(client, pipeline):
    from matrixci.model import Event

    run, _ = pipeline.start(Event.create("push", "refs/heads/main"))
    r = client.post(f"/runs/{run.id}/cancel")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "cancelled": True}
    statuses = {j["status"] for j in client.get(f"/runs/{run.id}").json()["jobs"]}
    assert statuses == {"cancelled"}


def test_unknown_run_is_404(client):
    assert client.get("/runs/nope").status_code == 404
    assert client.post("/runs/nope/cancel").status_code == 404


def test_bad_event_kind_is_422(client):
    assert client.post("/events", json={"kind": "release", "ref": "v1"}).status_code == 422
