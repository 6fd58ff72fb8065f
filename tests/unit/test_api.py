from __future__ import annotations

from fastapi.testclient import TestClient

from agent_task_engine.orchestrator import Orchestrator
from agent_task_engine.server.app import create_app


def _client(orch: Orchestrator) -> TestClient:
    return TestClient(create_app(orch))


def _running_at_publish(orch: Orchestrator) -> int:
    task = orch.tasks.create({"topic": "tides"})
    orch.engine.run(task.id, max_steps=2)
    return task.id


def test_health_reports_workflow(article: Orchestrator) -> None:
    health = _client(article).get("/api/health").json()

    assert health["status"] == "ok"
    assert health["workflow"] == "article"
    assert "version" in health


def test_task_listing_and_lookup(article: Orchestrator) -> None:
    client = _client(article)
    task_id = _running_at_publish(article)
    article.tasks.create("idle")

    listed = client.get("/api/tasks", params={"state": "running"}).json()
    assert [t["id"] for t in listed] == [task_id]

    record = client.get(f"/api/tasks/{task_id}").json()
    assert record["wid"] == "publish"
    assert record["input"] == {"topic": "tides"}

    history = client.get(f"/api/tasks/{task_id}/history").json()
    assert [e["kind"] for e in history] == ["created", "started", "step", "step"]

    missing = client.get("/api/tasks/999")
    assert missing.status_code == 404
    assert missing.json()["detail"]["type"] == "NotFound"


def test_suspend_then_resume_over_http(article: Orchestrator) -> None:
    client = _client(article)
    task_id = _running_at_publish(article)

    suspended = client.post(f"/api/tasks/{task_id}/suspend", json={"reason": "fact check"})
    assert suspended.status_code == 200
    assert suspended.json() == {"task_id": task_id, "wid": "publish", "reason": "fact check"}

    resumed = client.post(f"/api/tasks/{task_id}/resume", json={"decision": "next"})
    assert resumed.status_code == 200
    assert resumed.json()["state"] == "completed"


def test_state_conflicts_map_to_409(article: Orchestrator) -> None:
    client = _client(article)
    task = article.tasks.create("x")

    response = client.post(f"/api/tasks/{task.id}/suspend", json={"reason": "early"})
    assert response.status_code == 409
    assert response.json()["detail"]["type"] == "InvalidState"

    invalid = client.post(f"/api/tasks/{task.id}/resume", json={"decision": "later"})
    assert invalid.status_code == 422

    blank = client.post(f"/api/tasks/{task.id}/suspend", json={"reason": ""})
    assert blank.status_code == 422


def test_cancel_over_http(article: Orchestrator) -> None:
    client = _client(article)
    task_id = _running_at_publish(article)

    cancelled = client.post(f"/api/tasks/{task_id}/cancel", json={"reason": "superseded"})
    assert cancelled.json()["state"] == "cancelled"

    again = client.post(f"/api/tasks/{task_id}/cancel", json={})
    assert again.status_code == 409
    assert again.json()["detail"]["type"] == "TerminalStateViolation"


def test_plan_tree_and_subplans(article: Orchestrator) -> None:
    client = _client(article)
    article.plans.create_plan("root", title="Root")

    created = client.post(
        "/api/plans/root/subplans", json={"planid": "research", "title": "Research"}
    )
    assert created.status_code == 200
    assert created.json()["pid"] == "root"

    tree = client.get("/api/plans/root").json()
    assert [p["id"] for p in tree["subplans"]] == ["research"]

    assert client.get("/api/plans/nope").status_code == 404


def test_tool_log_and_reverse(article: Orchestrator) -> None:
    client = _client(article)
    task = article.tasks.create("x")
    article.engine.run(task.id)

    log = client.get(f"/api/tool-log/{task.workid}").json()
    assert [e["ordinal"] for e in log] == [1, 2, 3]

    report = client.post(f"/api/tool-log/{task.workid}/reverse", json={"upto_ordinal": 1}).json()
    assert report["complete"] is False
    assert report["reversed"] == []
    assert report["failed_ordinal"] == 3
    assert report["error"]["type"] == "IrreversibleEntry"

    bad = client.post(f"/api/tool-log/{task.workid}/reverse", json={"upto_ordinal": 0})
    assert bad.status_code == 422
