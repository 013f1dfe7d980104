# issue_sync/code_handlers.py — Pull request and branch push handlers
#
# Code events never create tasks. They find an existing task by the number
# encoded in the branch name (or PR title/body), link the branch or PR to it,
# and move it to the column the project's workflow rules pick. A task that
# already sits in a final column is not pulled back by a push or a new PR.
import logging
from typing import Optional

from issue_sync import config
from issue_sync.branch_matcher import extract_task_number, task_number_from_branch
from issue_sync.events import PullRequestEvent, BranchPushed, SyncOutcome
from issue_sync.handlers import integration_type_of, with_retry
from issue_sync.repositories import SyncStore
from issue_sync.state_mapper import StateMapper
from models import Integration, ResourceType, Task, WorkflowEventType

logger = logging.getLogger("boardsync.webhooks")


def _integration_config(integration: Integration) -> dict:
    return integration.config if isinstance(integration.config, dict) else {}


class CodeHandlers:
    def __init__(self, store: SyncStore, tasks, mapper: StateMapper = None):
        self.store = store
        self.tasks = tasks
        self.mapper = mapper or StateMapper(store.rules, store.columns)

    # ----------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------

    async def _project_slug(self, integration: Integration) -> Optional[str]:
        project = await self.store.projects.get(integration.project_id)
        return project.slug if project else None

    async def _target_status(self, integration: Integration, event_type: str, fallback: str) -> Optional[str]:
        status = await self.mapper.resolve_status(
            integration.project_id, integration_type_of(integration), event_type, fallback,
        )
        if not await self.store.columns.find_by_slug(integration.project_id, status):
            logger.warning(f"No '{status}' column in project {integration.project_id}, task stays put")
            return None
        return status

    async def _move(self, task: Task, status: str) -> None:
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

    async def _advance(
        self, task: Task, integration: Integration, event_type: str, fallback: str, context: str,
    ) -> SyncOutcome:
        """Move the task forward unless it is already there or already finished"""
        status = await self._target_status(integration, event_type, fallback)
        if status is None or task.status == status:
            return SyncOutcome.skipped(f"Task already '{task.status}'", task.id)
        if await self.mapper.task_is_final(task):
            logger.info(f"Task {task.id} is in a final column, not moving it for {context}")
            return SyncOutcome.skipped(f"Task already finished ('{task.status}')", task.id)

        previous = task.status
        await self._move(task, status)
        logger.info(f"Moved task {task.id} from {previous} to {status} for {context}")
        return SyncOutcome.processed(f"Task moved to '{status}'", task.id)

    # ----------------------------------------------------------
    # pull_request opened / reopened
    # ----------------------------------------------------------

    async def handle_pull_request_opened(self, event: PullRequestEvent, integration: Integration) -> SyncOutcome:
        logger.info(f"Processing pull request {event.action}: #{event.number} ({event.branch})")

        existing = await with_retry(
            lambda: self.store.links.find_by_external_ref(
                ResourceType.PULL_REQUEST.value, event.external_id, event.url,
            ),
            f"Check existing link for PR #{event.number}",
        )
        if existing:
            await self.store.links.update_metadata(existing, {"state": "open", "draft": event.draft})
            return SyncOutcome.skipped(f"PR #{event.number} already linked", existing.task_id)

        slug = await self._project_slug(integration)
        if not slug:
            return SyncOutcome.skipped(f"Project {integration.project_id} not found")
        number = extract_task_number(event.branch, event.title, event.body, _integration_config(integration), slug)
        if not number:
            logger.info(f"PR #{event.number} does not reference a task, skipping")
            return SyncOutcome.skipped(f"No task referenced by PR #{event.number}")

        task = await self.store.tasks.find_by_number(integration.project_id, number)
        if not task:
            logger.info(f"Task #{number} not found in project {integration.project_id}")
            return SyncOutcome.skipped(f"Task #{number} not found")

        await self.store.links.create(
            task_id=task.id,
            resource_type=ResourceType.PULL_REQUEST.value,
            title=event.title or f"PR #{event.number}",
            url=event.url,
            external_id=event.external_id,
            integration_id=integration.id,
            metadata={
                "state": event.state,
                "draft": event.draft,
                "merged": event.merged,
                "branch": event.branch,
                "author": event.author,
            },
        )

        return await self._advance(
            task, integration, WorkflowEventType.PR_OPENED.value, config.PR_OPENED_STATUS, f"PR #{event.number}",
        )

    # ----------------------------------------------------------
    # pull_request closed
    # ----------------------------------------------------------

    async def handle_pull_request_closed(self, event: PullRequestEvent, integration: Integration) -> SyncOutcome:
        logger.info(f"Processing pull request closed: #{event.number} (merged={event.merged})")

        link = await with_retry(
            lambda: self.store.links.find_by_external_ref(
                ResourceType.PULL_REQUEST.value, event.external_id, event.url,
            ),
            f"Find link for PR #{event.number}",
        )
        if not link:
            return SyncOutcome.skipped(f"No task linked to PR #{event.number}")

        task = await self.store.tasks.get(link.task_id)
        if not task:
            return SyncOutcome.skipped(f"No task linked to PR #{event.number}")

        await self.store.links.update_metadata(
            link, {"state": "closed", "merged": event.merged, "merged_at": event.merged_at},
        )
        if not event.merged:
            return SyncOutcome.processed(f"PR #{event.number} closed without merge", task.id)

        siblings = await self.store.links.list_for_task(task.id, ResourceType.PULL_REQUEST.value)
        still_open = [l for l in siblings if l.id != link.id and (l.extra_data or {}).get("state") == "open"]
        if still_open:
            logger.info(f"Task {task.id} still has {len(still_open)} open PR(s), not moving it")
            return SyncOutcome.skipped("Other pull requests still open", task.id)

        status = await self._target_status(integration, WorkflowEventType.PR_MERGED.value, config.PR_MERGED_STATUS)
        if status is None or task.status == status:
            return SyncOutcome.skipped(f"Task already '{task.status}'", task.id)

        await self._move(task, status)
        logger.info(f"Moved task {task.id} to {status} after PR #{event.number} was merged")
        return SyncOutcome.processed(f"Task moved to '{status}'", task.id)

    # ----------------------------------------------------------
    # push
    # ----------------------------------------------------------

    async def handle_push(self, event: BranchPushed, integration: Integration) -> SyncOutcome:
        logger.info(f"Processing push to {event.branch} in {event.repository}")

        if event.branch in config.PROTECTED_BRANCHES:
            return SyncOutcome.skipped(f"Branch '{event.branch}' is protected")

        slug = await self._project_slug(integration)
        if not slug:
            return SyncOutcome.skipped(f"Project {integration.project_id} not found")
        number = task_number_from_branch(event.branch, _integration_config(integration), slug)
        if not number:
            logger.info(f"Branch {event.branch} does not match the project's branch pattern")
            return SyncOutcome.skipped(f"No task referenced by branch '{event.branch}'")

        task = await self.store.tasks.find_by_number(integration.project_id, number)
        if not task:
            logger.info(f"Task #{number} not found in project {integration.project_id}")
            return SyncOutcome.skipped(f"Task #{number} not found")

        metadata = {"last_commit": event.head_commit}
        link = await self.store.links.find_by_external_ref(ResourceType.BRANCH.value, event.branch, event.url)
        if link:
            await self.store.links.update_metadata(link, metadata)
        else:
            await self.store.links.create(
                task_id=task.id,
                resource_type=ResourceType.BRANCH.value,
                title=event.branch,
                url=event.url,
                external_id=event.branch,
                integration_id=integration.id,
                metadata=metadata,
            )

        return await self._advance(
            task, integration, WorkflowEventType.BRANCH_PUSH.value, config.BRANCH_PUSH_STATUS,
            f"push to {event.branch}",
        )
