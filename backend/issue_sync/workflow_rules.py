# issue_sync/workflow_rules.py — Workflow rule store operations
#
# At most one rule per (project, integration type, event type). Upsert is the
# only write path; the last upsert wins.
import logging
from typing import List

from issue_sync.errors import ValidationFailure, NotFound
from issue_sync.repositories import WorkflowRuleRepository, ColumnRepository
from models import WorkflowRule, WorkflowEventType, IntegrationType

logger = logging.getLogger("boardsync.workflow-rules")

EVENT_TYPES = {e.value for e in WorkflowEventType}
INTEGRATION_TYPES = {t.value for t in IntegrationType}


class WorkflowRuleService:
    def __init__(self, rules: WorkflowRuleRepository, columns: ColumnRepository):
        self.rules = rules
        self.columns = columns

    async def _validate(self, project_id: str, integration_type: str, event_type: str, column_id: str):
        if integration_type not in INTEGRATION_TYPES:
            raise ValidationFailure(f"Unknown integration type: {integration_type}")
        if event_type not in EVENT_TYPES:
            raise ValidationFailure(f"Unknown event type: {event_type}")
        column = await self.columns.find_in_project(project_id, column_id)
        if not column:
            raise ValidationFailure(f"Column {column_id} does not belong to project {project_id}")

    async def upsert(
        self, project_id: str, integration_type: str, event_type: str, column_id: str,
    ) -> WorkflowRule:
        await self._validate(project_id, integration_type, event_type, column_id)

        existing = await self.rules.find(project_id, integration_type, event_type)
        if existing:
            if existing.column_id == column_id:
                return existing
            logger.info(
                f"Updating workflow rule {existing.id}: {integration_type}/{event_type} → column {column_id}"
            )
            return await self.rules.set_column(existing, column_id)

        rule = await self.rules.insert(project_id, integration_type, event_type, column_id)
        logger.info(f"Created workflow rule {rule.id}: {integration_type}/{event_type} → column {column_id}")
        return rule

    async def ensure(
        self, project_id: str, integration_type: str, event_type: str, column_id: str,
    ) -> WorkflowRule:
        """Insert the rule unless one already exists; an existing target is left untouched"""
        existing = await self.rules.find(project_id, integration_type, event_type)
        if existing:
            return existing
        return await self.upsert(project_id, integration_type, event_type, column_id)

    async def delete(self, rule_id: str) -> WorkflowRule:
        rule = await self.rules.get(rule_id)
        if not rule:
            raise NotFound(f"Workflow rule {rule_id} not found")
        await self.rules.delete(rule)
        logger.info(f"Deleted workflow rule {rule_id}")
        return rule

    async def list(self, project_id: str) -> List[WorkflowRule]:
        return await self.rules.list_for_project(project_id)
