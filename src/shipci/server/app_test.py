import json

import pytest
from fastapi.testclient import TestClient

from shipci.model import JobResult, PipelineResult, Status, StepResult
from shipci.pipelines import default_pipelines
from shipci.server.app import create_app
from shipci.settings import Settings
from shipci.triggers import sign

SECRET = "s3cret"

PUSH = {"ref": "refs/heads/master", "after": "abc123", "repository": {"full_name": "acme/group"}}
RELEASE = {"action": "created", "release": {"id": 3, "tag_name": "v1.0.0"}, "repository": {"full_name": "acme/group"}}


class FakeDispatcher:
    def __init__(self, failing_targets=()):
        self.calls = []
        self.failing_targets = set(failing_targets)

    def __call__(self, pipeline, event):
        self.calls.append((pipeline.name, event))
        jobs = []
        for j in pipeline.jobs:
            failed = j.target in self.failing_targets
            status = Status.FAILED if failed else Status.PASSED
            jobs.append(
                JobResult(
                    name=j.name,
                    status=status,
                    target=j.target,
                    steps=[StepResult(s.name, Status.FAILED if failed else Status.PASSED) for s in j.steps[:1]],
                    assets=[] if failed else [f"{j.name}.tar.gz"],
                )
            )
        overall = Status.FAILED if any(x.status is Status.FAILED for x in jobs) else Status.PASSED
        return PipelineResult(pipeline=pipeline.name, event=event, status=overall, jobs=jobs)


@pytest.fixture
def dispatcher():
    return FakeDispatcher(failing_targets={"x86_64-pc-windows-gnu"})


@pytest.fixture
def client(tmp_path, dispatcher):
    settings = Settings(database_url=f"sqlite+aiosqlite:///{tmp_path}/runs.db", webhook_secret=SECRET)
    app = create_app(settings=settings, pipelines=default_pipelines(), dispatcher=dispatcher)
    with TestClient(app) as c:
        yield c


def _post(client, event, payload, secret=SECRET):
    body = json.dumps(payload).encode()
    headers = {"X-GitHub-Event": event, "Content-Type": "application/json"}
    if secret:
        headers["X-Hub-Signature-256"] = sign(secret, body)
    return client.post("/webhooks/github", content=body, headers=headers)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["pipelines"] == ["CI", "Release"]


def test_rejects_bad_signature(client, dispatcher):
    r = _post(client, "push", PUSH, secret="wrong")
    assert r.status_code == 401
    assert dispatcher.calls == []


def test_ping(client):
    r = _post(client, "ping", {"zen": "hi"})
    assert r.status_code == 202
    assert r.json()["status"] == "pong"


def test_push_to_master_runs_ci(client, dispatcher):
    r = _post(client, "push", PUSH)
    assert r.status_code == 202
    body = r.json()
    assert body["status"] == "queued"
    (run_id,) = body["run_ids"]

    assert [name for name, _ in dispatcher.calls] == ["CI"]
    assert dispatcher.calls[0][1].sha == "abc123"

    run = client.get(f"/runs/{run_id}").json()
    assert run["status"] == "passed"
    assert run["pipeline"] == "CI"
    assert run["sha"] == "abc123"
    assert [j["job_name"] for j in run["jobs"]] == ["build"]


def test_push_to_other_branch_is_ignored(client, dispatcher):
    r = _post(client, "push", {**PUSH, "ref": "refs/heads/feature"})
    assert r.json()["status"] == "ignored"
    assert dispatcher.calls == []


def test_unsupported_event_is_ignored(client):
    r = _post(client, "issues", {"action": "opened"})
    assert r.status_code == 202
    assert r.json()["status"] == "ignored"


def test_release_records_partial_assets(client):
    r = _post(client, "release", RELEASE)
    (run_id,) = r.json()["run_ids"]

    run = client.get(f"/runs/{run_id}").json()
    assert run["status"] == "failed"
    jobs = {j["target"]: j for j in run["jobs"]}
    assert jobs["x86_64-pc-windows-gnu"]["status"] == "failed"
    assert jobs["x86_64-pc-windows-gnu"]["assets"] == []
    assert jobs["x86_64-unknown-linux-musl"]["status"] == "passed"
    assert jobs["x86_64-unknown-linux-musl"]["assets"] == ["release x86_64-unknown-linux-musl.tar.gz"]
    assert jobs["x86_64-apple-darwin"]["status"] == "passed"


def test_unknown_run_is_404(client):
    assert client.get("/runs/nope").status_code == 404


def test_list_runs(client):
    _post(client, "push", PUSH)
    runs = client.get("/runs").json()
    assert len(runs) == 1
    assert runs[0]["event"] == "push"


def test_invalid_json(client):
    body = b"not json"
    r = client.post(
        "/webhooks/github",
        content=body,
        headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": sign(SECRET, body)},
    )
    assert r.status_code == 400
