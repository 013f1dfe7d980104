# issue_sync/state_mapper.py — External issue state → internal column slug
#
# Resolution order:
#   1. WorkflowRule for (project, integration type, event type) → its column's slug
#   2. the default for the external state ("open" → "to-do", "closed" → "done")
# A rule whose column has since been deleted falls back to the default.
import logging

from issue_sync.errors import ValidationFailure
from issue_sync.repositories import WorkflowRuleRepository, ColumnRepository
from models import WorkflowEventType

logger = logging.getLogger("boardsync.state-mapper")

DEFAULT_STATUS_BY_STATE = {
    "open": "to-do",
    "closed": "done",
}

EVENT_TYPE_BY_STATE = {
    "open": WorkflowEventType.ISSUE_OPENED.value,
    "closed": WorkflowEventType.ISSUE_CLOSED.value,
}


def default_status_for_state(state: str) -> str:
    try:
        return DEFAULT_STATUS_BY_STATE[state]
    except KeyError:
        raise ValidationFailure(f"Invalid issue state: {state!r}. Expected 'open' or 'closed'")


class StateMapper:
    def __init__(self, rules: WorkflowRuleRepository, columns: ColumnRepository):
        self.rules = rules
        self.columns = columns

    async def resolve_status(
        self, project_id: str, integration_type: str, event_type: str, fallback_status: str,
    ) -> str:
        rule = await self.rules.find(project_id, integration_type, event_type)
        if not rule:
            return fallback_status

        column = await self.columns.find_in_project(project_id, rule.column_id)
        if not column:
            logger.warning(
                f"Workflow rule {rule.id} points at missing column {rule.column_id}; "
                f"using '{fallback_status}'"
            )
            return fallback_status
        return column.slug

    async def task_is_final(self, task) -> bool:
        """Whether the task sits in a final column; falls back to its status slug"""
        column = None
        if getattr(task, "column_id", None):
            column = await self.columns.find_in_project(task.project_id, task.column_id)
        if not column:
            column = await self.columns.find_by_slug(task.project_id, task.status)
        if column:
            return bool(column.is_final)
        return task.status == "done"

    async def map_issue_state(self, project_id: str, integration_type: str, state: str) -> str:
        fallback = default_status_for_state(state)
        return await self.resolve_status(project_id, integration_type, EVENT_TYPE_BY_STATE[state], fallback)
