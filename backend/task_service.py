# task_service.py — Task mutation façade
# Every task write (API, webhook, migration) goes through TaskService so that:
# - the status slug and column reference stay aligned
# - activity entries record who (or what) made the change
# - domain events are published with the originating source tag
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, List, Any, Callable, Awaitable

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import AsyncSession

from issue_sync.errors import NotFound
from models import (
    Task, TaskActivity, TaskLabel, EntityLink, BoardColumn, TaskPriority, utcnow, new_uuid,
)

logger = logging.getLogger("boardsync.tasks")


# ============================================================
# DOMAIN EVENTS
# ============================================================

TASK_CREATED = "task.created"
TASK_UPDATED = "task.updated"
TASK_DELETED = "task.deleted"


@dataclass
class TaskEvent:
    name: str
    task_id: str
    project_id: str
    source: Optional[str] = None
    changes: Dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[TaskEvent], Awaitable[None]]


class EventBus:
    """In-process publisher; a failing subscriber never fails the publisher"""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscriber]] = defaultdict(list)
        self.published: List[TaskEvent] = []

    def subscribe(self, event_name: str, handler: Subscriber) -> None:
        self._subscribers[event_name].append(handler)

    async def publish(self, event: TaskEvent) -> None:
        self.published.append(event)
        del self.published[:-100]
        for handler in self._subscribers.get(event.name, []):
            try:
                await handler(event)
            except Exception:
                logger.exception(f"Subscriber {getattr(handler, '__qualname__', handler)} failed on {event.name}")


# ============================================================
# FAÇADE
# ============================================================

def _priority(value: Optional[str]) -> TaskPriority:
    try:
        return TaskPriority(value)
    except ValueError:
        return TaskPriority.MEDIUM


def _value(v):
    return v.value if hasattr(v, "value") else v


class TaskService:
    def __init__(self, db: AsyncSession, events: EventBus):
        self.db = db
        self.events = events

    async def _column_for_status(self, project_id: str, status: str) -> Optional[BoardColumn]:
        result = await self.db.execute(
            select(BoardColumn).where(BoardColumn.project_id == project_id, BoardColumn.slug == status)
        )
        return result.scalar_one_or_none()

    async def _record(self, task_id, action, source, field_name=None, old_value=None, new_value=None):
        self.db.add(TaskActivity(
            id=new_uuid(), task_id=task_id, action=action, source=source,
            field_name=field_name,
            old_value=None if old_value is None else str(old_value),
            new_value=None if new_value is None else str(new_value),
        ))

    async def create(
        self,
        project_id: str,
        title: str,
        description: Optional[str],
        status: str,
        priority: Optional[str],
        assignee: Optional[str] = None,
        source: Optional[str] = None,
    ) -> Task:
        column = await self._column_for_status(project_id, status)
        max_number = (await self.db.execute(
            select(func.max(Task.number)).where(Task.project_id == project_id)
        )).scalar() or 0
        max_pos = 0
        if column:
            max_pos = (await self.db.execute(
                select(func.max(Task.position)).where(Task.column_id == column.id)
            )).scalar() or 0

        task = Task(
            id=new_uuid(),
            project_id=project_id,
            column_id=column.id if column else None,
            number=max_number + 1,
            title=title,
            description=description,
            status=status,
            priority=_priority(priority),
            position=max_pos + 1,
            assignee_email=assignee,
            last_sync_source=source,
        )
        self.db.add(task)
        await self.db.flush()
        await self._record(task.id, "created", source)
        await self.db.commit()
        await self.db.refresh(task)

        await self.events.publish(TaskEvent(TASK_CREATED, task.id, project_id, source))
        return task

    async def update(
        self,
        task_id: str,
        title: str,
        status: str,
        due_date: Optional[datetime],
        project_id: str,
        description: Optional[str],
        priority: Optional[str],
        position: Optional[int],
        assignee: Optional[str] = None,
        source: Optional[str] = None,
    ) -> Task:
        task = await self.db.get(Task, task_id)
        if not task:
            raise NotFound(f"Task {task_id} not found")

        incoming = {
            "title": title,
            "status": status,
            "due_date": due_date,
            "project_id": project_id,
            "description": description,
            "priority": _priority(priority),
            "position": position if position is not None else task.position,
            "assignee_email": assignee,
        }
        changes = {}
        for name, new in incoming.items():
            old = getattr(task, name)
            if old != new:
                changes[name] = {"old": _value(old), "new": _value(new)}
                setattr(task, name, new)

        if "status" in changes or "project_id" in changes:
            column = await self._column_for_status(task.project_id, task.status)
            task.column_id = column.id if column else None

        task.last_sync_source = source
        task.updated_at = utcnow()
        for name, change in changes.items():
            action = "status_changed" if name == "status" else "updated"
            await self._record(task.id, action, source, name, change["old"], change["new"])
        await self.db.commit()
        await self.db.refresh(task)

        await self.events.publish(TaskEvent(TASK_UPDATED, task.id, task.project_id, source, changes))
        return task

    async def delete(self, task_id: str) -> Task:
        """Delete a task and everything it owns (links, label assignments, activity)"""
        task = await self.db.get(Task, task_id)
        if not task:
            raise NotFound(f"Task {task_id} not found")

        await self.db.execute(delete(EntityLink).where(EntityLink.task_id == task_id))
        await self.db.execute(delete(TaskLabel).where(TaskLabel.task_id == task_id))
        await self.db.execute(delete(TaskActivity).where(TaskActivity.task_id == task_id))
        await self.db.delete(task)
        await self.db.commit()

        await self.events.publish(TaskEvent(TASK_DELETED, task.id, task.project_id))
        return task
