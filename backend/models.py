# models.py — Database models for Boardsync
# - UUID string primary keys everywhere
# - Projects own columns, tasks, labels, integrations and workflow rules
# - Entity links join tasks to external issues (one link per external resource)

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    SUPER_ADMIN = "super_admin"
    ORG_ADMIN = "org_admin"
    POWER_USER = "power_user"
    USER = "user"


class TaskPriority(str, PyEnum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IntegrationType(str, PyEnum):
    GITEA = "gitea"
    GITHUB = "github"


class ResourceType(str, PyEnum):
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"
    BRANCH = "branch"


class WorkflowEventType(str, PyEnum):
    ISSUE_OPENED = "issue_opened"
    ISSUE_CLOSED = "issue_closed"
    BRANCH_PUSH = "branch_push"
    PR_OPENED = "pr_opened"
    PR_MERGED = "pr_merged"


# ============================================================
# ORGANISATIONS & USERS
# ============================================================

class Organisation(Base):
    __tablename__ = "organisations"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    slug = Column(String, unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    users = relationship("User", back_populates="organisation")
    projects = relationship("Project", back_populates="organisation")


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False, default="")
    password_hash = Column(String, nullable=False)
    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False, index=True)
    organisation_id = Column(String, ForeignKey("organisations.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    organisation = relationship("Organisation", back_populates="users")


# ============================================================
# PROJECTS, COLUMNS, TASKS
# ============================================================

class Project(Base):
    """A task board bound to at most one repository per integration type"""
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    organisation_id = Column(String, ForeignKey("organisations.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    organisation = relationship("Organisation", back_populates="projects")
    columns = relationship("BoardColumn", back_populates="project", order_by="BoardColumn.position")

    __table_args__ = (
        Index("idx_project_org_slug", "organisation_id", "slug"),
    )


class BoardColumn(Base):
    """Swim lane of a project; its slug doubles as the task status vocabulary"""
    __tablename__ = "board_columns"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    slug = Column(String, nullable=False)
    name = Column(String, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    is_final = Column(Boolean, default=False)  # Tasks here count as complete
    created_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="columns")

    __table_args__ = (
        UniqueConstraint("project_id", "slug", name="uq_column_project_slug"),
        Index("idx_col_project_pos", "project_id", "position"),
    )


class Task(Base):
    """Task card; status holds the slug of the column it sits in"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    column_id = Column(String, ForeignKey("board_columns.id", ondelete="SET NULL"), nullable=True, index=True)
    number = Column(Integer, nullable=False, default=1)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="to-do", index=True)
    priority = Column(SQLEnum(TaskPriority), default=TaskPriority.MEDIUM)
    position = Column(Integer, default=0)
    assignee_email = Column(String, nullable=True, index=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    last_sync_source = Column(String, nullable=True)  # "webhook" when the last write came from an inbound event
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_task_project_status", "project_id", "status"),
    )


class Label(Base):
    """Project label; color is a named token ("teal") or a hex string"""
    __tablename__ = "labels"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=False, default="gray")
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="uq_label_project_name"),
    )


class TaskLabel(Base):
    __tablename__ = "task_labels"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    label_id = Column(String, ForeignKey("labels.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("task_id", "label_id", name="uq_task_label"),
    )


class TaskActivity(Base):
    """Audit trail for a task; source tells webhook writes from human edits"""
    __tablename__ = "task_activities"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String, nullable=False)  # "created", "updated", "status_changed"
    field_name = Column(String, nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    source = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_activity_task_time", "task_id", "created_at"),
    )


# ============================================================
# INTEGRATIONS
# ============================================================

class Integration(Base):
    """Binding of a project to an external repository"""
    __tablename__ = "integrations"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(IntegrationType), nullable=False, default=IntegrationType.GITEA)
    base_url = Column(String, nullable=False)  # e.g. https://gitea.example.com or https://api.github.com
    repository_owner = Column(String, nullable=False)
    repository_name = Column(String, nullable=False)
    webhook_secret = Column(String, nullable=True)
    access_token = Column(String, nullable=True)
    config = Column(JSON, nullable=False, default=dict)  # legacy statusTransitions etc.
    is_active = Column(Boolean, default=True, index=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_integration_repo", "repository_owner", "repository_name", "is_active"),
    )


class WorkflowRule(Base):
    """Maps an external event type to a target column of the same project"""
    __tablename__ = "workflow_rules"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    integration_type = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    column_id = Column(String, ForeignKey("board_columns.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("project_id", "integration_type", "event_type", name="uq_workflow_rule"),
    )


class EntityLink(Base):
    """Durable join between a task and an external resource"""
    __tablename__ = "entity_links"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    integration_id = Column(String, ForeignKey("integrations.id", ondelete="SET NULL"), nullable=True, index=True)
    resource_type = Column(String, nullable=False, default=ResourceType.ISSUE.value)
    external_id = Column(String, nullable=False)
    url = Column(String, nullable=False)
    title = Column(String, nullable=True)
    extra_data = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("resource_type", "external_id", "url", name="uq_entity_link_external_ref"),
        Index("idx_link_task_type", "task_id", "resource_type"),
    )
