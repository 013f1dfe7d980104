# issue_sync/column_migration.py — Startup bootstrap for columns and workflow rules
#
# Safe to run on every boot: each step only fills in what is missing.
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from issue_sync.repositories import SqlColumnRepository, SqlWorkflowRuleRepository
from issue_sync.workflow_rules import WorkflowRuleService
from models import Project, Task, Integration, WorkflowEventType

logger = logging.getLogger("boardsync.migration")

CANONICAL_COLUMNS = [
    {"name": "To Do", "slug": "to-do", "position": 0, "is_final": False},
    {"name": "In Progress", "slug": "in-progress", "position": 1, "is_final": False},
    {"name": "In Review", "slug": "in-review", "position": 2, "is_final": False},
    {"name": "Done", "slug": "done", "position": 3, "is_final": True},
]

# Legacy Integration.config["statusTransitions"] keys → workflow event types
LEGACY_TRANSITION_EVENTS = {
    "onBranchPush": WorkflowEventType.BRANCH_PUSH.value,
    "onPROpen": WorkflowEventType.PR_OPENED.value,
    "onPRMerge": WorkflowEventType.PR_MERGED.value,
}

DEFAULT_RULES = {
    WorkflowEventType.ISSUE_OPENED.value: "to-do",
    WorkflowEventType.ISSUE_CLOSED.value: "done",
}


@dataclass
class MigrationReport:
    projects: int = 0
    columns_created: int = 0
    tasks_backfilled: int = 0
    rules_written: int = 0
    failed_integrations: List[str] = field(default_factory=list)


async def ensure_canonical_columns(columns: SqlColumnRepository, project_id: str) -> Dict[str, str]:
    """Create whichever canonical columns the project lacks; returns slug → column id"""
    existing = {c.slug: c.id for c in await columns.list_for_project(project_id)}
    for spec in CANONICAL_COLUMNS:
        if spec["slug"] in existing:
            continue
        column = await columns.create(project_id, spec["slug"], spec["name"], spec["position"], spec["is_final"])
        existing[column.slug] = column.id
    return existing


def _legacy_transitions(config) -> Dict[str, str]:
    cfg = config or {}
    if isinstance(cfg, str):
        cfg = json.loads(cfg) if cfg.strip() else {}
    return cfg.get("statusTransitions") or {}


async def migrate_columns(db: AsyncSession) -> MigrationReport:
    logger.info("Starting column migration")
    report = MigrationReport()
    columns = SqlColumnRepository(db)
    rule_service = WorkflowRuleService(SqlWorkflowRuleRepository(db), columns)

    project_ids = list((await db.execute(select(Project.id))).scalars().all())
    if not project_ids:
        logger.info("No projects found, skipping column migration")
        return report

    for project_id in project_ids:
        report.projects += 1
        before = len(await columns.list_for_project(project_id))
        column_map = await ensure_canonical_columns(columns, project_id)
        report.columns_created += len(column_map) - before

        for slug, column_id in column_map.items():
            result = await db.execute(
                update(Task)
                .where(
                    Task.project_id == project_id,
                    Task.status == slug,
                    (Task.column_id.is_(None)) | (Task.column_id != column_id),
                )
                .values(column_id=column_id)
            )
            report.tasks_backfilled += result.rowcount or 0
        await db.commit()

        # Plain values only: a rollback below expires every loaded instance
        integrations = [
            (i.id, i.type.value, i.config)
            for i in (await db.execute(
                select(Integration).where(Integration.project_id == project_id, Integration.is_active.is_(True))
            )).scalars().all()
        ]

        for integration_id, integration_type, integration_config in integrations:
            try:
                transitions = _legacy_transitions(integration_config)
                for key, event_type in LEGACY_TRANSITION_EVENTS.items():
                    column_id = column_map.get(transitions.get(key) or "")
                    if not column_id:
                        continue
                    await rule_service.upsert(project_id, integration_type, event_type, column_id)
                    report.rules_written += 1

                # Defaults never override a rule an administrator already set
                for event_type, slug in DEFAULT_RULES.items():
                    column_id = column_map.get(slug)
                    if column_id:
                        await rule_service.ensure(project_id, integration_type, event_type, column_id)
                        report.rules_written += 1
            except Exception:
                await db.rollback()
                logger.error(f"Failed to migrate workflow rules for integration {integration_id}", exc_info=True)
                report.failed_integrations.append(integration_id)

    logger.info(
        f"Column migration complete: {report.projects} projects, "
        f"{report.columns_created} columns created, {report.tasks_backfilled} tasks backfilled"
    )
    return report
