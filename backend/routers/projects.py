# routers/projects.py — Projects, board columns, tasks and labels
# Task writes go through TaskService so integrations see them as domain events.
import re
import logging
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, CurrentUser
from database import get_db_session
from issue_sync.column_migration import ensure_canonical_columns
from issue_sync.errors import NotFound
from issue_sync.repositories import SqlColumnRepository
from issue_sync.runtime import SyncRuntime, get_sync_runtime
from models import (
    Project, BoardColumn, Task, Label, TaskLabel, EntityLink, TaskPriority, UserRole, new_uuid,
)
from task_service import TaskService

logger = logging.getLogger("boardsync.projects")

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])

# Source tag for edits made through this API
API_SOURCE = "api"


# ============================================================
# SCHEMAS
# ============================================================

class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(default=None, pattern=r'^[a-z0-9][a-z0-9-]*$')


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    status: str = "to-do"
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee_email: Optional[str] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[TaskPriority] = None
    position: Optional[int] = None
    due_date: Optional[datetime] = None
    assignee_email: Optional[str] = None


class LabelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    color: str = "gray"


# ============================================================
# HELPERS
# ============================================================

def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "project"


async def load_project(project_id: str, user: CurrentUser, db: AsyncSession) -> Project:
    """Project visible to the user (own organisation; super admins see all)"""
    project = await db.get(Project, project_id)
    if not project:
        raise HTTPException(404, "Project not found")
    if user.role != UserRole.SUPER_ADMIN.value and project.organisation_id != user.organisation_id:
        raise HTTPException(404, "Project not found")
    return project


async def _load_task(project_id: str, task_id: str, db: AsyncSession) -> Task:
    task = await db.get(Task, task_id)
    if not task or task.project_id != project_id:
        raise HTTPException(404, "Task not found")
    return task


async def _require_status(db: AsyncSession, project_id: str, status: str):
    column = await SqlColumnRepository(db).find_by_slug(project_id, status)
    if not column:
        raise HTTPException(400, f"Unknown status '{status}' for this project")


def _project_to_out(p: Project) -> dict:
    return {
        "id": p.id,
        "organisation_id": p.organisation_id,
        "name": p.name,
        "slug": p.slug,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


def _column_to_out(c: BoardColumn) -> dict:
    return {"id": c.id, "slug": c.slug, "name": c.name, "position": c.position, "is_final": bool(c.is_final)}


def _task_to_out(t: Task, labels: List[Label] = None) -> dict:
    return {
        "id": t.id,
        "project_id": t.project_id,
        "column_id": t.column_id,
        "number": t.number,
        "title": t.title,
        "description": t.description,
        "status": t.status,
        "priority": t.priority.value if t.priority else None,
        "position": t.position,
        "assignee_email": t.assignee_email,
        "due_date": t.due_date.isoformat() if t.due_date else None,
        "labels": [{"id": l.id, "name": l.name, "color": l.color} for l in labels or []],
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }


async def _task_labels(db: AsyncSession, task_id: str) -> List[Label]:
    result = await db.execute(
        select(Label).join(TaskLabel, TaskLabel.label_id == Label.id).where(TaskLabel.task_id == task_id)
    )
    return list(result.scalars().all())


# ============================================================
# PROJECTS & COLUMNS
# ============================================================

@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a project with the canonical board columns"""
    project = Project(
        id=new_uuid(),
        organisation_id=user.organisation_id,
        name=data.name,
        slug=data.slug or _slugify(data.name),
    )
    db.add(project)
    await db.commit()
    await db.refresh(project)
    await ensure_canonical_columns(SqlColumnRepository(db), project.id)
    logger.info(f"Project {project.id} created by {user.email}")
    return _project_to_out(project)


@router.get("/{project_id}")
async def get_project(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return _project_to_out(await load_project(project_id, user, db))


@router.get("/{project_id}/columns")
async def list_columns(
    project_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await load_project(project_id, user, db)
    return [_column_to_out(c) for c in await SqlColumnRepository(db).list_for_project(project_id)]


# ============================================================
# TASKS
# ============================================================

@router.get("/{project_id}/tasks")
async def list_tasks(
    project_id: str,
    status: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await load_project(project_id, user, db)
    stmt = select(Task).where(Task.project_id == project_id)
    if status:
        stmt = stmt.where(Task.status == status)
    result = await db.execute(stmt.order_by(Task.number))
    return [_task_to_out(t) for t in result.scalars().all()]


@router.post("/{project_id}/tasks", status_code=201)
async def create_task(
    project_id: str,
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    runtime: SyncRuntime = Depends(get_sync_runtime),
):
    await load_project(project_id, user, db)
    await _require_status(db, project_id, data.status)
    task = await TaskService(db, runtime.events).create(
        project_id=project_id,
        title=data.title,
        description=data.description,
        status=data.status,
        priority=data.priority.value,
        assignee=data.assignee_email,
        source=API_SOURCE,
    )
    return _task_to_out(task)


@router.get("/{project_id}/tasks/{task_id}")
async def get_task(
    project_id: str,
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await load_project(project_id, user, db)
    task = await _load_task(project_id, task_id, db)
    return _task_to_out(task, await _task_labels(db, task.id))


@router.patch("/{project_id}/tasks/{task_id}")
async def update_task(
    project_id: str,
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    runtime: SyncRuntime = Depends(get_sync_runtime),
):
    await load_project(project_id, user, db)
    task = await _load_task(project_id, task_id, db)
    changes = data.model_dump(exclude_unset=True)
    if "status" in changes:
        await _require_status(db, project_id, changes["status"])

    priority = changes.get("priority") or task.priority
    task = await TaskService(db, runtime.events).update(
        task.id,
        title=changes.get("title", task.title),
        status=changes.get("status", task.status),
        due_date=changes.get("due_date", task.due_date),
        project_id=task.project_id,
        description=changes.get("description", task.description),
        priority=priority.value if priority else None,
        position=changes.get("position", task.position),
        assignee=changes.get("assignee_email", task.assignee_email),
        source=API_SOURCE,
    )
    return _task_to_out(task, await _task_labels(db, task.id))


@router.delete("/{project_id}/tasks/{task_id}")
async def delete_task(
    project_id: str,
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    runtime: SyncRuntime = Depends(get_sync_runtime),
):
    await load_project(project_id, user, db)
    await _load_task(project_id, task_id, db)
    try:
        task = await TaskService(db, runtime.events).delete(task_id)
    except NotFound:
        raise HTTPException(404, "Task not found")
    return {"status": "deleted", "id": task.id}


@router.get("/{project_id}/tasks/{task_id}/links")
async def list_task_links(
    project_id: str,
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await load_project(project_id, user, db)
    await _load_task(project_id, task_id, db)
    result = await db.execute(select(EntityLink).where(EntityLink.task_id == task_id).order_by(EntityLink.created_at))
    return [
        {
            "id": l.id,
            "resource_type": l.resource_type,
            "external_id": l.external_id,
            "url": l.url,
            "title": l.title,
            "integration_id": l.integration_id,
            "metadata": l.extra_data or {},
        }
        for l in result.scalars().all()
    ]


# ============================================================
# LABELS
# ============================================================

@router.post("/{project_id}/labels", status_code=201)
async def create_label(
    project_id: str,
    data: LabelCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await load_project(project_id, user, db)
    label = Label(id=new_uuid(), project_id=project_id, name=data.name, color=data.color)
    db.add(label)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(409, f"Label '{data.name}' already exists")
    await db.refresh(label)
    return {"id": label.id, "name": label.name, "color": label.color}


@router.post("/{project_id}/tasks/{task_id}/labels/{label_id}")
async def attach_label(
    project_id: str,
    task_id: str,
    label_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    runtime: SyncRuntime = Depends(get_sync_runtime),
):
    """Attach a label; the linked issue gets it asynchronously"""
    await load_project(project_id, user, db)
    task = await _load_task(project_id, task_id, db)
    label = await db.get(Label, label_id)
    if not label or label.project_id != project_id:
        raise HTTPException(404, "Label not found")

    existing = await db.execute(
        select(TaskLabel).where(TaskLabel.task_id == task.id, TaskLabel.label_id == label.id)
    )
    if not existing.scalar_one_or_none():
        db.add(TaskLabel(id=new_uuid(), task_id=task.id, label_id=label.id))
        await db.commit()

    queued = runtime.enqueue_label_sync(task.id, label.name, label.color)
    return {"status": "attached", "label_id": label.id, "sync_queued": queued}


@router.delete("/{project_id}/tasks/{task_id}/labels/{label_id}")
async def detach_label(
    project_id: str,
    task_id: str,
    label_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    runtime: SyncRuntime = Depends(get_sync_runtime),
):
    await load_project(project_id, user, db)
    task = await _load_task(project_id, task_id, db)
    result = await db.execute(
        select(TaskLabel).where(TaskLabel.task_id == task.id, TaskLabel.label_id == label_id)
    )
    assignment = result.scalar_one_or_none()
    if not assignment:
        raise HTTPException(404, "Label not attached to task")
    label = await db.get(Label, label_id)
    await db.delete(assignment)
    await db.commit()

    queued = runtime.enqueue_label_removal(task.id, label.name)
    return {"status": "detached", "label_id": label_id, "sync_queued": queued}
