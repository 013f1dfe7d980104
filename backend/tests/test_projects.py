# tests/test_projects.py — Projects, tasks and outbound issue mirroring
import json
import uuid

import pytest

from models import Task, EntityLink, TaskActivity, BoardColumn
from tests.conftest import get_auth_headers, issue_payload, post_issue_event, fetch_all


@pytest.mark.asyncio
async def test_create_project_gets_canonical_columns(client, test_user):
    headers = get_auth_headers(test_user)
    resp = await client.post("/api/v1/projects", json={"name": "Mobile App"}, headers=headers)
    assert resp.status_code == 201
    project = resp.json()
    assert project["slug"] == "mobile-app"

    resp = await client.get(f"/api/v1/projects/{project['id']}/columns", headers=headers)
    columns = resp.json()
    assert [c["slug"] for c in columns] == ["to-do", "in-progress", "in-review", "done"]
    assert [c["is_final"] for c in columns] == [False, False, False, True]


@pytest.mark.asyncio
async def test_task_crud(client, test_user, project, session_factory):
    headers = get_auth_headers(test_user)
    base = f"/api/v1/projects/{project.id}/tasks"

    resp = await client.post(base, json={"title": "Write docs", "priority": "high"}, headers=headers)
    assert resp.status_code == 201
    task = resp.json()
    assert task["status"] == "to-do"
    assert task["number"] == 1
    assert task["column_id"]

    resp = await client.patch(f"{base}/{task['id']}", json={"status": "in-progress"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["status"] == "in-progress"
    assert resp.json()["column_id"] != task["column_id"]

    resp = await client.get(f"{base}?status=in-progress", headers=headers)
    assert [t["id"] for t in resp.json()] == [task["id"]]

    activity = await fetch_all(session_factory, TaskActivity, TaskActivity.task_id == task["id"])
    assert {a.action for a in activity} == {"created", "status_changed"}
    assert {a.source for a in activity} == {"api"}

    resp = await client.delete(f"{base}/{task['id']}", headers=headers)
    assert resp.status_code == 200
    resp = await client.get(f"{base}/{task['id']}", headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_unknown_status_is_rejected(client, test_user, project):
    resp = await client.post(
        f"/api/v1/projects/{project.id}/tasks",
        json={"title": "Nope", "status": "blocked"},
        headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_duplicate_label_conflicts(client, test_user, project):
    headers = get_auth_headers(test_user)
    url = f"/api/v1/projects/{project.id}/labels"
    assert (await client.post(url, json={"name": "bug", "color": "red"}, headers=headers)).status_code == 201
    assert (await client.post(url, json={"name": "bug"}, headers=headers)).status_code == 409


# ============================================================
# OUTBOUND MIRRORING
# ============================================================

@pytest.mark.asyncio
async def test_api_task_creates_linked_issue(client, test_user, project, integration, runtime, tracker, session_factory):
    headers = get_auth_headers(test_user)
    resp = await client.post(
        f"/api/v1/projects/{project.id}/tasks",
        json={"title": "Add dark mode", "description": "Users asked for it"},
        headers=headers,
    )
    task_id = resp.json()["id"]

    await runtime.queue.drain()

    assert tracker.calls("POST") == [("POST", "/api/v1/repos/acme/widgets/issues")]
    body = tracker.issues[101]["body"]
    assert body.startswith("Users asked for it")
    assert task_id in body

    links = await fetch_all(session_factory, EntityLink, EntityLink.task_id == task_id)
    assert len(links) == 1
    assert links[0].external_id == "101"
    assert links[0].integration_id == integration.id

    resp = await client.get(f"/api/v1/projects/{project.id}/tasks/{task_id}/links", headers=headers)
    assert resp.json()[0]["url"].endswith("/issues/101")


@pytest.mark.asyncio
async def test_echoed_opened_event_is_skipped(client, test_user, project, integration, runtime, tracker, session_factory):
    resp = await client.post(
        f"/api/v1/projects/{project.id}/tasks", json={"title": "Add dark mode"}, headers=get_auth_headers(test_user),
    )
    await runtime.queue.drain()

    echo = issue_payload("opened", number=101, title="Add dark mode", body=tracker.issues[101]["body"])
    resp = await post_issue_event(client, echo)
    assert resp.status_code == 200

    tasks = await fetch_all(session_factory, Task, Task.project_id == project.id)
    assert len(tasks) == 1


@pytest.mark.asyncio
async def test_task_created_done_closes_issue(client, test_user, project, integration, runtime, tracker):
    await client.post(
        f"/api/v1/projects/{project.id}/tasks",
        json={"title": "Already shipped", "status": "done"},
        headers=get_auth_headers(test_user),
    )
    await runtime.queue.drain()

    assert ("PATCH", "/api/v1/repos/acme/widgets/issues/101") in tracker.calls("PATCH")
    assert tracker.issues[101]["state"] == "closed"


@pytest.mark.asyncio
async def test_status_change_is_mirrored(client, test_user, project, integration, runtime, tracker):
    headers = get_auth_headers(test_user)
    base = f"/api/v1/projects/{project.id}/tasks"
    task_id = (await client.post(base, json={"title": "Add dark mode"}, headers=headers)).json()["id"]
    await runtime.queue.drain()

    await client.patch(f"{base}/{task_id}", json={"status": "done", "title": "Add dark theme"}, headers=headers)
    await runtime.queue.drain()

    assert tracker.issues[101]["state"] == "closed"
    assert tracker.issues[101]["title"] == "Add dark theme"
    assert "Status: Done" in tracker.issues[101]["body"]


def _last_patch(tracker) -> dict:
    patches = [r for r in tracker.requests if r.method == "PATCH"]
    return json.loads(patches[-1].content)


@pytest.mark.asyncio
async def test_reopen_echo_keeps_human_column(client, test_user, project, integration, runtime, tracker, session_factory):
    headers = get_auth_headers(test_user)
    base = f"/api/v1/projects/{project.id}/tasks"
    task_id = (await client.post(base, json={"title": "Add dark mode"}, headers=headers)).json()["id"]
    await runtime.queue.drain()
    body = tracker.issues[101]["body"]

    await client.patch(f"{base}/{task_id}", json={"status": "done"}, headers=headers)
    await runtime.queue.drain()
    assert _last_patch(tracker)["state"] == "closed"
    await post_issue_event(client, issue_payload("closed", number=101, title="Add dark mode", body=body, state="closed"))

    await client.patch(f"{base}/{task_id}", json={"status": "in-progress"}, headers=headers)
    await runtime.queue.drain()
    assert _last_patch(tracker)["state"] == "open"

    resp = await post_issue_event(
        client, issue_payload("reopened", number=101, title="Add dark mode", body=body, state="open"),
    )
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    task = (await fetch_all(session_factory, Task, Task.id == task_id))[0]
    assert task.status == "in-progress"


@pytest.mark.asyncio
async def test_move_between_open_columns_sends_no_state(client, test_user, project, integration, runtime, tracker):
    headers = get_auth_headers(test_user)
    base = f"/api/v1/projects/{project.id}/tasks"
    task_id = (await client.post(base, json={"title": "Add dark mode"}, headers=headers)).json()["id"]
    await runtime.queue.drain()

    await client.patch(f"{base}/{task_id}", json={"status": "in-review"}, headers=headers)
    await runtime.queue.drain()
    assert "state" not in _last_patch(tracker)

    await client.patch(f"{base}/{task_id}", json={"title": "Add dark theme"}, headers=headers)
    await runtime.queue.drain()
    sent = _last_patch(tracker)
    assert sent["title"] == "Add dark theme"
    assert "state" not in sent


@pytest.mark.asyncio
async def test_close_echo_keeps_custom_final_column(
    client, test_user, project, integration, runtime, tracker, db_session, session_factory,
):
    db_session.add(BoardColumn(
        id=str(uuid.uuid4()), project_id=project.id, slug="shipped", name="Shipped", position=4, is_final=True,
    ))
    await db_session.commit()

    headers = get_auth_headers(test_user)
    base = f"/api/v1/projects/{project.id}/tasks"
    task_id = (await client.post(base, json={"title": "Add dark mode"}, headers=headers)).json()["id"]
    await runtime.queue.drain()
    body = tracker.issues[101]["body"]

    await client.patch(f"{base}/{task_id}", json={"status": "shipped"}, headers=headers)
    await runtime.queue.drain()
    assert _last_patch(tracker)["state"] == "closed"

    await post_issue_event(client, issue_payload("closed", number=101, title="Add dark mode", body=body, state="closed"))

    task = (await fetch_all(session_factory, Task, Task.id == task_id))[0]
    assert task.status == "shipped"


@pytest.mark.asyncio
async def test_priority_only_change_is_not_mirrored(client, test_user, project, integration, runtime, tracker):
    headers = get_auth_headers(test_user)
    base = f"/api/v1/projects/{project.id}/tasks"
    task_id = (await client.post(base, json={"title": "Add dark mode"}, headers=headers)).json()["id"]
    await runtime.queue.drain()

    await client.patch(f"{base}/{task_id}", json={"priority": "urgent"}, headers=headers)
    await runtime.queue.drain()

    assert tracker.calls("PATCH") == []


@pytest.mark.asyncio
async def test_tracker_outage_does_not_fail_task_creation(client, test_user, project, integration, runtime, tracker, session_factory):
    tracker.fail.add(("POST", "widgets/issues"))
    resp = await client.post(
        f"/api/v1/projects/{project.id}/tasks", json={"title": "Add dark mode"}, headers=get_auth_headers(test_user),
    )
    assert resp.status_code == 201

    await runtime.queue.drain()
    assert runtime.queue.failed == 1
    assert await fetch_all(session_factory, EntityLink, EntityLink.task_id == resp.json()["id"]) == []


@pytest.mark.asyncio
async def test_project_without_integration_stays_local(client, test_user, project, runtime, tracker):
    await client.post(
        f"/api/v1/projects/{project.id}/tasks", json={"title": "Local"}, headers=get_auth_headers(test_user),
    )
    await runtime.queue.drain()
    assert tracker.requests == []


# ============================================================
# HEALTH
# ============================================================

@pytest.mark.asyncio
async def test_health_reports_queue(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["database"] == "connected"
    assert body["outbound_queue"]["pending"] == 0
    assert body["outbound_queue"]["workers_running"] is False
