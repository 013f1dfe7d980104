# issue_sync/handlers.py — Create / state-change / edit / delete handlers for issue events
#
# Each handler compares the event against current persisted state instead of
# a sequence number, so redelivered or reordered events are safe to apply.
import asyncio
import logging
from typing import Optional, Callable, Awaitable, TypeVar

from sqlalchemy.exc import OperationalError

from issue_sync import config
from issue_sync.errors import ValidationFailure
from issue_sync.events import IssueEvent, SyncOutcome
from issue_sync.loop_guard import is_self_authored_issue
from issue_sync.metadata import strip_metadata
from issue_sync.repositories import SyncStore
from issue_sync.state_mapper import StateMapper, default_status_for_state
from models import Integration, ResourceType, Task

logger = logging.getLogger("boardsync.webhooks")

T = TypeVar("T")


async def with_retry(operation: Callable[[], Awaitable[T]], context: str) -> T:
    """Run a store lookup, retrying transient failures with capped exponential backoff"""
    attempts = max(config.DB_RETRY_ATTEMPTS, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except OperationalError as e:
            if attempt == attempts:
                logger.error(f"{context} failed after {attempts} attempts: {e}")
                raise
            delay = min(config.DB_RETRY_BASE_DELAY * 2 ** (attempt - 1), config.DB_RETRY_MAX_DELAY)
            logger.warning(f"{context} failed on attempt {attempt}, retrying in {delay:.2f}s: {e}")
            await asyncio.sleep(delay)


class IssueHandlers:
    def __init__(
        self,
        store: SyncStore,
        tasks,
        mapper: StateMapper = None,
        bidirectional_descriptions: bool = None,
    ):
        self.store = store
        self.tasks = tasks
        self.mapper = mapper or StateMapper(store.rules, store.columns)
        self.bidirectional_descriptions = (
            config.BIDIRECTIONAL_DESCRIPTIONS if bidirectional_descriptions is None
            else bidirectional_descriptions
        )

    # ----------------------------------------------------------
    # Lookup
    # ----------------------------------------------------------

    async def find_linked_task(self, event: IssueEvent) -> Optional[Task]:
        link = await with_retry(
            lambda: self.store.links.find_by_external_ref(
                ResourceType.ISSUE.value, event.external_id, event.url,
            ),
            f"Find link for issue #{event.number}",
        )
        if not link:
            return None
        return await self.store.tasks.get(link.task_id)

    # ----------------------------------------------------------
    # opened
    # ----------------------------------------------------------

    async def handle_opened(self, event: IssueEvent, integration: Integration) -> SyncOutcome:
        logger.info(f"Processing issue opened: #{event.number} in {event.repository}")

        if is_self_authored_issue(event.title, event.body):
            logger.info(f"Issue #{event.number} was created by us, skipping")
            return SyncOutcome.skipped(f"Issue #{event.number} originated from a task")

        if not event.title.strip():
            raise ValidationFailure(f"Issue #{event.number} has empty title - cannot create task")

        existing = await with_retry(
            lambda: self.store.links.find_by_external_ref(
                ResourceType.ISSUE.value, event.external_id, event.url,
            ),
            f"Check existing link for issue #{event.number}",
        )
        if existing:
            logger.info(f"Task {existing.task_id} already exists for issue #{event.number}, skipping")
            return SyncOutcome.skipped(f"Issue #{event.number} already linked", existing.task_id)

        integration_type = integration_type_of(integration)
        status = await self.mapper.map_issue_state(integration.project_id, integration_type, event.state)
        description = strip_metadata(event.body) or config.EMPTY_DESCRIPTION

        task = await self.tasks.create(
            project_id=integration.project_id,
            title=event.title,
            description=description,
            status=status,
            priority=config.DEFAULT_PRIORITY,
            assignee=None,
            source=config.WEBHOOK_SOURCE,
        )

        # A failure here leaves the task unlinked; a redelivery will not repair it.
        await self.store.links.create(
            task_id=task.id,
            resource_type=ResourceType.ISSUE.value,
            title=f"Issue #{event.number}",
            url=event.url,
            external_id=event.external_id,
            integration_id=integration.id,
            metadata={"state": event.state, "author": event.author, "created_from": integration_type},
        )

        logger.info(f"Created task {task.id} from issue #{event.number}")
        return SyncOutcome.processed(f"Task created from issue #{event.number}", task.id)

    # ----------------------------------------------------------
    # closed / reopened
    # ----------------------------------------------------------

    async def handle_state_changed(self, event: IssueEvent, integration: Integration) -> SyncOutcome:
        logger.info(f"Processing issue state change: #{event.number} -> {event.state}")

        default_status_for_state(event.state)
        task = await self.find_linked_task(event)
        if not task:
            logger.info(f"No linked task for issue #{event.number}, skipping")
            return SyncOutcome.skipped(f"No task linked to issue #{event.number}")

        if (event.state == "closed") == await self.mapper.task_is_final(task):
            logger.info(f"Task {task.id} column already agrees with issue state {event.state}, skipping")
            return SyncOutcome.skipped(f"Task already consistent with '{event.state}'", task.id)

        status = await self.mapper.map_issue_state(task.project_id, integration_type_of(integration), event.state)
        if task.status == status:
            logger.info(f"Task {task.id} already has status {status}, skipping")
            return SyncOutcome.skipped(f"Task already '{status}'", task.id)

        await self.tasks.update(
            task.id,
            title=task.title,
            status=status,
            due_date=task.due_date,
            project_id=task.project_id,
            description=task.description or "",
            priority=task.priority,
            position=task.position or 0,
            assignee=task.assignee_email,
            source=config.WEBHOOK_SOURCE,
        )

        logger.info(f"Updated task {task.id} status to {status} from issue #{event.number}")
        return SyncOutcome.processed(f"Task moved to '{status}'", task.id)

    # ----------------------------------------------------------
    # edited
    # ----------------------------------------------------------

    async def handle_edited(self, event: IssueEvent, integration: Integration) -> SyncOutcome:
        logger.info(f"Processing issue edit: #{event.number}")

        task = await self.find_linked_task(event)
        if not task:
            logger.info(f"No linked task for issue #{event.number}, skipping")
            return SyncOutcome.skipped(f"No task linked to issue #{event.number}")

        if not event.title.strip():
            raise ValidationFailure(f"Issue #{event.number} has empty title - cannot update task")

        description = task.description
        if self.bidirectional_descriptions:
            description = strip_metadata(event.body) or config.EMPTY_DESCRIPTION
        else:
            logger.info(f"Description sync disabled, keeping description of task {task.id}")

        if task.title == event.title and (task.description or "") == (description or ""):
            return SyncOutcome.skipped("Task already up to date", task.id)

        await self.tasks.update(
            task.id,
            title=event.title,
            status=task.status,
            due_date=task.due_date,
            project_id=task.project_id,
            description=description,
            priority=task.priority,
            position=task.position or 0,
            assignee=task.assignee_email,
            source=config.WEBHOOK_SOURCE,
        )

        logger.info(f"Updated task {task.id} content from issue #{event.number}")
        return SyncOutcome.processed("Task content updated", task.id)

    # ----------------------------------------------------------
    # deleted
    # ----------------------------------------------------------

    async def handle_deleted(self, event: IssueEvent, integration: Integration) -> SyncOutcome:
        logger.info(f"Processing issue deletion: #{event.number}")

        task = await self.find_linked_task(event)
        if not task:
            logger.info(f"No linked task for issue #{event.number}, skipping")
            return SyncOutcome.skipped(f"No task linked to issue #{event.number}")

        await self.tasks.delete(task.id)

        logger.info(f"Deleted task {task.id} after issue #{event.number} was deleted")
        return SyncOutcome.processed("Task deleted", task.id)


def integration_type_of(integration: Integration) -> str:
    t = integration.type
    return t.value if hasattr(t, "value") else str(t)

