# issue_sync/repositories.py — Store interfaces consumed by the sync engine
#
# Handlers depend on the Protocols; the Sql* classes are the production
# implementations over an AsyncSession. Every write commits on its own: the
# engine relies on lookup-before-write, not on cross-step transactions.
import logging
from dataclasses import dataclass
from typing import Optional, List, Protocol

from sqlalchemy import select, func, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Integration, IntegrationType, EntityLink, WorkflowRule, BoardColumn, Task, Project,
    new_uuid, utcnow,
)

logger = logging.getLogger("boardsync.repositories")


# ============================================================
# INTERFACES
# ============================================================

class IntegrationRepository(Protocol):
    async def find_active_by_repository(
        self, owner: str, name: str, integration_type: str,
    ) -> Optional[Integration]: ...

    async def get(self, integration_id: str) -> Optional[Integration]: ...

    async def list_active(self) -> List[Integration]: ...

    async def find_active_for_project(self, project_id: str) -> Optional[Integration]: ...


class EntityLinkRepository(Protocol):
    async def find_by_external_ref(
        self, resource_type: str, external_id: str, url: str,
    ) -> Optional[EntityLink]: ...

    async def find_for_task(self, task_id: str, resource_type: str = None) -> Optional[EntityLink]: ...

    async def create(
        self, task_id: str, resource_type: str, title: str, url: str, external_id: str,
        integration_id: str = None, metadata: dict = None,
    ) -> EntityLink: ...

    async def delete_by_task_or_id(self, task_id: str = None, link_id: str = None) -> Optional[EntityLink]: ...

    async def list_for_task(self, task_id: str, resource_type: str = None) -> List[EntityLink]: ...

    async def update_metadata(self, link: EntityLink, metadata: dict) -> EntityLink: ...


class WorkflowRuleRepository(Protocol):
    async def find(self, project_id: str, integration_type: str, event_type: str) -> Optional[WorkflowRule]: ...

    async def get(self, rule_id: str) -> Optional[WorkflowRule]: ...

    async def list_for_project(self, project_id: str) -> List[WorkflowRule]: ...

    async def insert(self, project_id: str, integration_type: str, event_type: str, column_id: str) -> WorkflowRule: ...

    async def set_column(self, rule: WorkflowRule, column_id: str) -> WorkflowRule: ...

    async def delete(self, rule: WorkflowRule) -> None: ...


class ColumnRepository(Protocol):
    async def find_in_project(self, project_id: str, column_id: str) -> Optional[BoardColumn]: ...

    async def find_by_slug(self, project_id: str, slug: str) -> Optional[BoardColumn]: ...

    async def list_for_project(self, project_id: str) -> List[BoardColumn]: ...

    async def create(self, project_id: str, slug: str, name: str, position: int, is_final: bool) -> BoardColumn: ...


class TaskRepository(Protocol):
    async def get(self, task_id: str) -> Optional[Task]: ...

    async def find_by_number(self, project_id: str, number: int) -> Optional[Task]: ...


class ProjectRepository(Protocol):
    async def get(self, project_id: str) -> Optional[Project]: ...


# ============================================================
# SQLALCHEMY IMPLEMENTATIONS
# ============================================================

class SqlIntegrationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_active_by_repository(self, owner, name, integration_type):
        stmt = (
            select(Integration)
            .where(
                func.lower(Integration.repository_owner) == owner.lower(),
                func.lower(Integration.repository_name) == name.lower(),
                Integration.type == IntegrationType(integration_type),
                Integration.is_active.is_(True),
            )
            .order_by(Integration.created_at.asc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get(self, integration_id):
        return await self.db.get(Integration, integration_id)

    async def list_active(self):
        result = await self.db.execute(
            select(Integration).where(Integration.is_active.is_(True)).order_by(Integration.created_at)
        )
        return list(result.scalars().all())

    async def find_active_for_project(self, project_id):
        result = await self.db.execute(
            select(Integration)
            .where(Integration.project_id == project_id, Integration.is_active.is_(True))
            .order_by(Integration.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()


class SqlEntityLinkRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_external_ref(self, resource_type, external_id, url):
        result = await self.db.execute(
            select(EntityLink).where(
                EntityLink.resource_type == resource_type,
                EntityLink.external_id == external_id,
                EntityLink.url == url,
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def find_for_task(self, task_id, resource_type=None):
        stmt = select(EntityLink).where(EntityLink.task_id == task_id)
        if resource_type:
            stmt = stmt.where(EntityLink.resource_type == resource_type)
        result = await self.db.execute(stmt.order_by(EntityLink.created_at).limit(1))
        return result.scalar_one_or_none()

    async def create(self, task_id, resource_type, title, url, external_id, integration_id=None, metadata=None):
        link = EntityLink(
            id=new_uuid(),
            task_id=task_id,
            integration_id=integration_id,
            resource_type=resource_type,
            external_id=external_id,
            url=url,
            title=title,
            extra_data=metadata or {},
            created_at=utcnow(),
        )
        self.db.add(link)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(
                f"Link for {resource_type} {external_id} ({url}) already exists; "
                f"task {task_id} left unlinked"
            )
            raise
        await self.db.refresh(link)
        return link

    async def delete_by_task_or_id(self, task_id=None, link_id=None):
        if not task_id and not link_id:
            return None
        stmt = select(EntityLink)
        stmt = stmt.where(EntityLink.id == link_id) if link_id else stmt.where(EntityLink.task_id == task_id)
        result = await self.db.execute(stmt)
        links = list(result.scalars().all())
        if not links:
            return None
        await self.db.execute(delete(EntityLink).where(EntityLink.id.in_([l.id for l in links])))
        await self.db.commit()
        return links[0]

    async def list_for_task(self, task_id, resource_type=None):
        stmt = select(EntityLink).where(EntityLink.task_id == task_id)
        if resource_type:
            stmt = stmt.where(EntityLink.resource_type == resource_type)
        result = await self.db.execute(stmt.order_by(EntityLink.created_at))
        return list(result.scalars().all())

    async def update_metadata(self, link, metadata):
        link.extra_data = {**(link.extra_data or {}), **metadata}
        await self.db.commit()
        await self.db.refresh(link)
        return link


class SqlWorkflowRuleRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find(self, project_id, integration_type, event_type):
        result = await self.db.execute(
            select(WorkflowRule).where(
                WorkflowRule.project_id == project_id,
                WorkflowRule.integration_type == integration_type,
                WorkflowRule.event_type == event_type,
            )
        )
        return result.scalar_one_or_none()

    async def get(self, rule_id):
        return await self.db.get(WorkflowRule, rule_id)

    async def list_for_project(self, project_id):
        result = await self.db.execute(
            select(WorkflowRule)
            .where(WorkflowRule.project_id == project_id)
            .order_by(WorkflowRule.integration_type, WorkflowRule.event_type)
        )
        return list(result.scalars().all())

    async def insert(self, project_id, integration_type, event_type, column_id):
        rule = WorkflowRule(
            id=new_uuid(),
            project_id=project_id,
            integration_type=integration_type,
            event_type=event_type,
            column_id=column_id,
        )
        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)
        return rule

    async def set_column(self, rule, column_id):
        rule.column_id = column_id
        rule.updated_at = utcnow()
        await self.db.commit()
        await self.db.refresh(rule)
        return rule

    async def delete(self, rule):
        await self.db.delete(rule)
        await self.db.commit()


class SqlColumnRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_in_project(self, project_id, column_id):
        result = await self.db.execute(
            select(BoardColumn).where(BoardColumn.id == column_id, BoardColumn.project_id == project_id)
        )
        return result.scalar_one_or_none()

    async def find_by_slug(self, project_id, slug):
        result = await self.db.execute(
            select(BoardColumn).where(BoardColumn.project_id == project_id, BoardColumn.slug == slug)
        )
        return result.scalar_one_or_none()

    async def list_for_project(self, project_id):
        result = await self.db.execute(
            select(BoardColumn).where(BoardColumn.project_id == project_id).order_by(BoardColumn.position)
        )
        return list(result.scalars().all())

    async def create(self, project_id, slug, name, position, is_final):
        column = BoardColumn(
            id=new_uuid(), project_id=project_id, slug=slug, name=name,
            position=position, is_final=is_final,
        )
        self.db.add(column)
        await self.db.commit()
        await self.db.refresh(column)
        return column


class SqlTaskRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, task_id):
        return await self.db.get(Task, task_id)

    async def find_by_number(self, project_id, number):
        result = await self.db.execute(
            select(Task).where(Task.project_id == project_id, Task.number == number).limit(1)
        )
        return result.scalar_one_or_none()


class SqlProjectRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, project_id):
        return await self.db.get(Project, project_id)


@dataclass
class SyncStore:
    """Bundle of the stores one webhook delivery works against"""
    integrations: IntegrationRepository
    links: EntityLinkRepository
    rules: WorkflowRuleRepository
    columns: ColumnRepository
    tasks: TaskRepository
    projects: ProjectRepository

    @classmethod
    def for_session(cls, db: AsyncSession) -> "SyncStore":
        return cls(
            integrations=SqlIntegrationRepository(db),
            links=SqlEntityLinkRepository(db),
            rules=SqlWorkflowRuleRepository(db),
            columns=SqlColumnRepository(db),
            tasks=SqlTaskRepository(db),
            projects=SqlProjectRepository(db),
        )
