# issue_sync/outbound.py — Mirrors human task edits to the linked external issue
#
# Subscribes to the task façade's events. Anything tagged with the webhook
# source is dropped here: that change came from the tracker and pushing it
# back would echo.
import logging

from database import get_db_context
from issue_sync.loop_guard import is_webhook_sourced
from issue_sync.metadata import render_issue_body
from issue_sync.outbound_queue import OutboundQueue
from issue_sync.repositories import SqlColumnRepository, SqlEntityLinkRepository, SqlIntegrationRepository
from issue_sync.tracker_client import TrackerClient
from models import Task, BoardColumn, ResourceType
from task_service import EventBus, TaskEvent, TASK_CREATED, TASK_UPDATED

logger = logging.getLogger("boardsync.outbound")

# Task fields that are visible on the external issue
MIRRORED_FIELDS = {"title", "description", "status"}


class OutboundIssueSync:
    def __init__(self, queue: OutboundQueue, session_factory=None, transport=None):
        self.queue = queue
        self.session_factory = session_factory
        self.transport = transport

    def register(self, events: EventBus):
        events.subscribe(TASK_CREATED, self.on_task_event)
        events.subscribe(TASK_UPDATED, self.on_task_event)

    async def on_task_event(self, event: TaskEvent):
        if is_webhook_sourced(event.source):
            logger.info(f"Task {event.task_id} changed by webhook, not mirroring {event.name}")
            return
        if event.name == TASK_UPDATED and not MIRRORED_FIELDS.intersection(event.changes):
            return

        if event.name == TASK_CREATED:
            self.queue.submit(f"create-issue:{event.task_id}", lambda: self.create_issue(event.task_id))
        else:
            previous_status = event.changes.get("status", {}).get("old")
            self.queue.submit(
                f"edit-issue:{event.task_id}",
                lambda: self.update_issue(event.task_id, previous_status),
            )

    async def _is_final(self, db, task: Task) -> bool:
        if task.column_id:
            column = await db.get(BoardColumn, task.column_id)
            if column:
                return bool(column.is_final)
        return task.status == "done"

    async def _status_is_final(self, db, project_id: str, status: str) -> bool:
        column = await SqlColumnRepository(db).find_by_slug(project_id, status)
        if column:
            return bool(column.is_final)
        return status == "done"

    async def create_issue(self, task_id: str):
        async with get_db_context(self.session_factory) as db:
            task = await db.get(Task, task_id)
            if not task:
                logger.info(f"Task {task_id} vanished before its issue was created")
                return
            links = SqlEntityLinkRepository(db)
            if await links.find_for_task(task_id, ResourceType.ISSUE.value):
                logger.info(f"Task {task_id} already linked to an issue")
                return

            integration = await SqlIntegrationRepository(db).find_active_for_project(task.project_id)
            if not integration or not integration.access_token:
                logger.info(f"No writable integration for project {task.project_id}, not creating issue")
                return

            client = TrackerClient.for_integration(integration, transport=self.transport)
            body = render_issue_body(task.id, task.description, task.status, task.priority.value if task.priority else None)
            issue = await client.create_issue(task.title, body)

            await links.create(
                task_id=task.id,
                resource_type=ResourceType.ISSUE.value,
                title=f"Issue #{issue['number']}",
                url=issue["html_url"],
                external_id=str(issue["number"]),
                integration_id=integration.id,
                metadata={"created_from": "task"},
            )
            if await self._is_final(db, task):
                await client.edit_issue(issue["number"], state="closed")
            logger.info(f"Created issue #{issue['number']} for task {task.id}")

    async def update_issue(self, task_id: str, previous_status: str = None):
        async with get_db_context(self.session_factory) as db:
            task = await db.get(Task, task_id)
            if not task:
                return
            link = await SqlEntityLinkRepository(db).find_for_task(task_id, ResourceType.ISSUE.value)
            if not link or not link.integration_id:
                logger.info(f"Task {task_id} has no linked issue, nothing to update")
                return
            integration = await SqlIntegrationRepository(db).get(link.integration_id)
            if not integration or not integration.is_active or not integration.access_token:
                logger.info(f"Integration for task {task_id} is not writable, skipping issue update")
                return

            client = TrackerClient.for_integration(integration, transport=self.transport)
            body = render_issue_body(
                task.id, task.description, task.status,
                task.priority.value if task.priority else None, action="updated",
            )
            # The tracker echoes every state write, so state moves only when finality does
            state = None
            if previous_status is not None:
                is_final = await self._is_final(db, task)
                if is_final != await self._status_is_final(db, task.project_id, previous_status):
                    state = "closed" if is_final else "open"
            await client.edit_issue(int(link.external_id), title=task.title, body=body, state=state)
            logger.info(f"Updated issue #{link.external_id} from task {task.id}")
