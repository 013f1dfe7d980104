# routers/workflow_rules.py — Which column an external event moves a task to
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_min_role, CurrentUser
from database import get_db_session
from issue_sync.errors import ValidationFailure, NotFound
from issue_sync.repositories import SqlWorkflowRuleRepository, SqlColumnRepository
from issue_sync.workflow_rules import WorkflowRuleService
from models import WorkflowRule, UserRole
from routers.projects import load_project

router = APIRouter(prefix="/api/v1/workflow-rules", tags=["Workflow Rules"])


class WorkflowRuleUpsert(BaseModel):
    project_id: str
    integration_type: str
    event_type: str
    column_id: str


class WorkflowRuleOut(BaseModel):
    id: str
    project_id: str
    integration_type: str
    event_type: str
    column_id: str
    updated_at: Optional[str] = None


def _rule_to_out(r: WorkflowRule) -> dict:
    return {
        "id": r.id,
        "project_id": r.project_id,
        "integration_type": r.integration_type,
        "event_type": r.event_type,
        "column_id": r.column_id,
        "updated_at": r.updated_at.isoformat() if r.updated_at else None,
    }


def _service(db: AsyncSession) -> WorkflowRuleService:
    return WorkflowRuleService(SqlWorkflowRuleRepository(db), SqlColumnRepository(db))


@router.get("", response_model=List[WorkflowRuleOut])
async def list_rules(
    project_id: str = Query(...),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await load_project(project_id, user, db)
    return [_rule_to_out(r) for r in await _service(db).list(project_id)]


@router.put("", response_model=WorkflowRuleOut)
async def upsert_rule(
    data: WorkflowRuleUpsert,
    user: CurrentUser = Depends(require_min_role(UserRole.ORG_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
):
    """Create or retarget the rule for (project, integration type, event type)"""
    await load_project(data.project_id, user, db)
    try:
        rule = await _service(db).upsert(data.project_id, data.integration_type, data.event_type, data.column_id)
    except ValidationFailure as e:
        raise HTTPException(400, e.message)
    return _rule_to_out(rule)


@router.delete("/{rule_id}")
async def delete_rule(
    rule_id: str,
    user: CurrentUser = Depends(require_min_role(UserRole.ORG_ADMIN)),
    db: AsyncSession = Depends(get_db_session),
):
    rule = await db.get(WorkflowRule, rule_id)
    if not rule:
        raise HTTPException(404, "Workflow rule not found")
    await load_project(rule.project_id, user, db)
    try:
        await _service(db).delete(rule_id)
    except NotFound as e:
        raise HTTPException(404, e.message)
    return {"status": "deleted", "id": rule_id}
