# tests/test_code_events.py — Pull request and push webhooks moving linked tasks
import json
import uuid

import pytest
from httpx import AsyncClient

from issue_sync.column_migration import migrate_columns
from models import Task, EntityLink, BoardColumn, WorkflowRule, ResourceType
from tests.conftest import post_issue_event, fetch_all, REPO_URL

REPOSITORY = {
    "name": "widgets",
    "full_name": "acme/widgets",
    "owner": {"login": "acme"},
    "html_url": REPO_URL,
}


def pull_request_payload(
    action: str,
    number: int = 5,
    branch: str = "widgets-7",
    title: str = "Add dark mode",
    body: str = "",
    state: str = "open",
    merged: bool = False,
) -> bytes:
    return json.dumps({
        "action": action,
        "pull_request": {
            "number": number,
            "title": title,
            "body": body,
            "html_url": f"{REPO_URL}/pulls/{number}",
            "state": state,
            "draft": False,
            "merged": merged,
            "merged_at": "2026-10-19T10:00:00Z" if merged else None,
            "head": {"ref": branch},
            "user": {"login": "octo"},
        },
        "repository": REPOSITORY,
    }).encode("utf-8")


def push_payload(ref: str = "refs/heads/widgets-7", deleted: bool = False) -> bytes:
    return json.dumps({
        "ref": ref,
        "deleted": deleted,
        "head_commit": {
            "id": "9f2c1e0",
            "message": "Wire up theme toggle",
            "timestamp": "2026-10-19T09:30:00Z",
            "author": {"name": "Octo"},
        },
        "repository": REPOSITORY,
    }).encode("utf-8")


async def _task(db_session, project, number=7, status="to-do"):
    task = Task(id=str(uuid.uuid4()), project_id=project.id, number=number, title="Add dark mode", status=status)
    db_session.add(task)
    await db_session.commit()
    return task.id


async def _reload(session_factory, task_id):
    return (await fetch_all(session_factory, Task, Task.id == task_id))[0]


async def _column(session_factory, project, slug):
    return (await fetch_all(
        session_factory, BoardColumn, BoardColumn.project_id == project.id, BoardColumn.slug == slug,
    ))[0]


# ============================================================
# PUSH
# ============================================================

@pytest.mark.asyncio
async def test_push_to_task_branch_starts_work(client: AsyncClient, integration, project, db_session, session_factory):
    task_id = await _task(db_session, project)

    resp = await post_issue_event(client, push_payload(), event="push")
    assert resp.status_code == 200
    assert resp.json()["success"] is True

    task = await _reload(session_factory, task_id)
    assert task.status == "in-progress"
    assert task.last_sync_source == "webhook"

    links = await fetch_all(session_factory, EntityLink, EntityLink.resource_type == ResourceType.BRANCH.value)
    assert len(links) == 1
    assert links[0].task_id == task_id
    assert links[0].url == f"{REPO_URL}/tree/widgets-7"
    assert links[0].extra_data["last_commit"]["sha"] == "9f2c1e0"


@pytest.mark.asyncio
async def test_second_push_updates_branch_link(client: AsyncClient, integration, project, db_session, session_factory):
    await _task(db_session, project)
    await post_issue_event(client, push_payload(), event="push")
    await post_issue_event(client, push_payload(), event="push")

    links = await fetch_all(session_factory, EntityLink, EntityLink.resource_type == ResourceType.BRANCH.value)
    assert len(links) == 1


@pytest.mark.asyncio
async def test_push_to_protected_branch_is_skipped(client: AsyncClient, integration, project, db_session, session_factory):
    task_id = await _task(db_session, project)

    resp = await post_issue_event(client, push_payload("refs/heads/main"), event="push")
    assert resp.status_code == 200
    assert "protected" in resp.json()["message"]
    assert (await _reload(session_factory, task_id)).status == "to-do"


@pytest.mark.asyncio
async def test_tag_push_and_branch_deletion_are_ignored(client: AsyncClient, integration, project, db_session, session_factory):
    task_id = await _task(db_session, project)

    resp = await post_issue_event(client, push_payload("refs/tags/v1.0"), event="push")
    assert "ignored" in resp.json()["message"]
    resp = await post_issue_event(client, push_payload(deleted=True), event="push")
    assert "ignored" in resp.json()["message"]

    assert (await _reload(session_factory, task_id)).status == "to-do"
    assert await fetch_all(session_factory, EntityLink) == []


@pytest.mark.asyncio
async def test_push_does_not_reopen_finished_task(client: AsyncClient, integration, project, db_session, session_factory):
    task_id = await _task(db_session, project, status="done")

    resp = await post_issue_event(client, push_payload(), event="push")
    assert resp.status_code == 200
    assert (await _reload(session_factory, task_id)).status == "done"


@pytest.mark.asyncio
async def test_push_follows_branch_push_rule(client: AsyncClient, integration, project, db_session, session_factory):
    review = await _column(session_factory, project, "in-review")
    db_session.add(WorkflowRule(
        id=str(uuid.uuid4()), project_id=project.id, integration_type="gitea",
        event_type="branch_push", column_id=review.id,
    ))
    task_id = await _task(db_session, project)

    await post_issue_event(client, push_payload(), event="push")
    assert (await _reload(session_factory, task_id)).status == "in-review"


@pytest.mark.asyncio
async def test_push_for_unknown_task_is_a_no_op(client: AsyncClient, integration, project, session_factory):
    resp = await post_issue_event(client, push_payload("refs/heads/widgets-99"), event="push")
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert await fetch_all(session_factory, EntityLink) == []


@pytest.mark.asyncio
async def test_unsigned_push_is_rejected(client: AsyncClient, integration, project, db_session, session_factory):
    task_id = await _task(db_session, project)

    resp = await post_issue_event(client, push_payload(), event="push", secret="wrong-secret")
    assert resp.status_code == 401
    assert (await _reload(session_factory, task_id)).status == "to-do"


# ============================================================
# PULL REQUESTS
# ============================================================

@pytest.mark.asyncio
async def test_opened_pr_links_and_moves_task_to_review(client: AsyncClient, integration, project, db_session, session_factory):
    task_id = await _task(db_session, project)

    resp = await post_issue_event(client, pull_request_payload("opened"), event="pull_request")
    assert resp.status_code == 200

    task = await _reload(session_factory, task_id)
    assert task.status == "in-review"
    links = await fetch_all(session_factory, EntityLink, EntityLink.resource_type == ResourceType.PULL_REQUEST.value)
    assert len(links) == 1
    assert links[0].external_id == "5"
    assert links[0].extra_data["branch"] == "widgets-7"


@pytest.mark.asyncio
async def test_pr_title_reference_is_used_when_branch_does_not_match(
    client: AsyncClient, integration, project, db_session, session_factory,
):
    task_id = await _task(db_session, project, number=3)

    await post_issue_event(
        client, pull_request_payload("opened", branch="dark-mode", title="[3] Add dark mode"), event="pull_request",
    )
    assert (await _reload(session_factory, task_id)).status == "in-review"


@pytest.mark.asyncio
async def test_redelivered_pr_open_is_skipped(client: AsyncClient, integration, project, db_session, session_factory):
    await _task(db_session, project)
    raw = pull_request_payload("opened")
    await post_issue_event(client, raw, event="pull_request")
    resp = await post_issue_event(client, raw, event="pull_request")

    assert "already linked" in resp.json()["message"]
    assert len(await fetch_all(session_factory, EntityLink)) == 1


@pytest.mark.asyncio
async def test_migrated_pr_rule_is_applied(client: AsyncClient, integration, project, db_session, session_factory):
    integration.config = {"statusTransitions": {"onPROpen": "in-progress", "onPRMerge": "in-review"}}
    await db_session.commit()
    await migrate_columns(db_session)
    task_id = await _task(db_session, project)

    await post_issue_event(client, pull_request_payload("opened"), event="pull_request")
    assert (await _reload(session_factory, task_id)).status == "in-progress"

    await post_issue_event(
        client, pull_request_payload("closed", state="closed", merged=True), event="pull_request",
    )
    assert (await _reload(session_factory, task_id)).status == "in-review"


@pytest.mark.asyncio
async def test_merged_pr_finishes_task(client: AsyncClient, integration, project, db_session, session_factory):
    task_id = await _task(db_session, project)
    await post_issue_event(client, pull_request_payload("opened"), event="pull_request")

    resp = await post_issue_event(
        client, pull_request_payload("closed", state="closed", merged=True), event="pull_request",
    )
    assert resp.status_code == 200

    task = await _reload(session_factory, task_id)
    assert task.status == "done"
    link = (await fetch_all(session_factory, EntityLink, EntityLink.resource_type == ResourceType.PULL_REQUEST.value))[0]
    assert link.extra_data["state"] == "closed"
    assert link.extra_data["merged"] is True


@pytest.mark.asyncio
async def test_closed_unmerged_pr_leaves_task(client: AsyncClient, integration, project, db_session, session_factory):
    task_id = await _task(db_session, project)
    await post_issue_event(client, pull_request_payload("opened"), event="pull_request")

    await post_issue_event(client, pull_request_payload("closed", state="closed"), event="pull_request")
    assert (await _reload(session_factory, task_id)).status == "in-review"


@pytest.mark.asyncio
async def test_merge_waits_for_other_open_prs(client: AsyncClient, integration, project, db_session, session_factory):
    task_id = await _task(db_session, project)
    await post_issue_event(client, pull_request_payload("opened", number=5), event="pull_request")
    await post_issue_event(client, pull_request_payload("opened", number=6), event="pull_request")

    await post_issue_event(
        client, pull_request_payload("closed", number=5, state="closed", merged=True), event="pull_request",
    )
    assert (await _reload(session_factory, task_id)).status == "in-review"

    await post_issue_event(
        client, pull_request_payload("closed", number=6, state="closed", merged=True), event="pull_request",
    )
    assert (await _reload(session_factory, task_id)).status == "done"


@pytest.mark.asyncio
async def test_unlinked_pr_close_is_a_no_op(client: AsyncClient, integration, project, session_factory):
    resp = await post_issue_event(
        client, pull_request_payload("closed", number=77, state="closed", merged=True), event="pull_request",
    )
    assert resp.status_code == 200
    assert resp.json()["success"] is True


@pytest.mark.asyncio
async def test_other_pr_actions_are_ignored(client: AsyncClient, integration, project, db_session, session_factory):
    task_id = await _task(db_session, project)

    resp = await post_issue_event(client, pull_request_payload("synchronized"), event="pull_request")
    assert "ignored" in resp.json()["message"]
    assert (await _reload(session_factory, task_id)).status == "to-do"


@pytest.mark.asyncio
async def test_malformed_pr_payload_is_rejected(client: AsyncClient, integration):
    resp = await post_issue_event(client, b'{"action": "opened"}', event="pull_request")
    assert resp.status_code == 400
    assert resp.json()["success"] is False
