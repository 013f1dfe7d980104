"""Boardsync initial schema (projects, columns, tasks, labels, integrations, rules, links)

Revision ID: a1f4c7d2e9b0
Revises:
Create Date: 2026-10-19T09:12:44.318205
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1f4c7d2e9b0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- organisations ---
    op.create_table(
        'organisations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_organisations_name', 'organisations', ['name'])
    op.create_index('ix_organisations_slug', 'organisations', ['slug'], unique=True)
    op.create_index('ix_organisations_is_active', 'organisations', ['is_active'])

    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False, server_default=''),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('role', sa.Enum('SUPER_ADMIN', 'ORG_ADMIN', 'POWER_USER', 'USER', name='userrole'), nullable=False),
        sa.Column('organisation_id', sa.String(), sa.ForeignKey('organisations.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_organisation_id', 'users', ['organisation_id'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])

    # --- projects ---
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organisation_id', sa.String(), sa.ForeignKey('organisations.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_projects_organisation_id', 'projects', ['organisation_id'])
    op.create_index('idx_project_org_slug', 'projects', ['organisation_id', 'slug'])

    # --- board_columns ---
    op.create_table(
        'board_columns',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_final', sa.Boolean(), nullable=True, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'slug', name='uq_column_project_slug'),
    )
    op.create_index('ix_board_columns_project_id', 'board_columns', ['project_id'])
    op.create_index('idx_col_project_pos', 'board_columns', ['project_id', 'position'])

    # --- tasks ---
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('column_id', sa.String(), sa.ForeignKey('board_columns.id', ondelete='SET NULL'), nullable=True),
        sa.Column('number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='to-do'),
        sa.Column('priority', sa.Enum('URGENT', 'HIGH', 'MEDIUM', 'LOW', name='taskpriority'), nullable=True),
        sa.Column('position', sa.Integer(), nullable=True, server_default='0'),
        sa.Column('assignee_email', sa.String(), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_source', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_column_id', 'tasks', ['column_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_assignee_email', 'tasks', ['assignee_email'])
    op.create_index('idx_task_project_status', 'tasks', ['project_id', 'status'])

    # --- labels ---
    op.create_table(
        'labels',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('color', sa.String(), nullable=False, server_default='gray'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'name', name='uq_label_project_name'),
    )
    op.create_index('ix_labels_project_id', 'labels', ['project_id'])

    # --- task_labels ---
    op.create_table(
        'task_labels',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('label_id', sa.String(), sa.ForeignKey('labels.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('task_id', 'label_id', name='uq_task_label'),
    )
    op.create_index('ix_task_labels_task_id', 'task_labels', ['task_id'])
    op.create_index('ix_task_labels_label_id', 'task_labels', ['label_id'])

    # --- task_activities ---
    op.create_table(
        'task_activities',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('field_name', sa.String(), nullable=True),
        sa.Column('old_value', sa.Text(), nullable=True),
        sa.Column('new_value', sa.Text(), nullable=True),
        sa.Column('source', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_activities_task_id', 'task_activities', ['task_id'])
    op.create_index('idx_activity_task_time', 'task_activities', ['task_id', 'created_at'])

    # --- integrations ---
    op.create_table(
        'integrations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.Enum('GITEA', 'GITHUB', name='integrationtype'), nullable=False),
        sa.Column('base_url', sa.String(), nullable=False),
        sa.Column('repository_owner', sa.String(), nullable=False),
        sa.Column('repository_name', sa.String(), nullable=False),
        sa.Column('webhook_secret', sa.String(), nullable=True),
        sa.Column('access_token', sa.String(), nullable=True),
        sa.Column('config', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='true'),
        sa.Column('created_by', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_integrations_project_id', 'integrations', ['project_id'])
    op.create_index('ix_integrations_is_active', 'integrations', ['is_active'])
    op.create_index('idx_integration_repo', 'integrations', ['repository_owner', 'repository_name', 'is_active'])

    # --- workflow_rules ---
    op.create_table(
        'workflow_rules',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('integration_type', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('column_id', sa.String(), sa.ForeignKey('board_columns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'integration_type', 'event_type', name='uq_workflow_rule'),
    )
    op.create_index('ix_workflow_rules_project_id', 'workflow_rules', ['project_id'])

    # --- entity_links ---
    op.create_table(
        'entity_links',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('integration_id', sa.String(), sa.ForeignKey('integrations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('resource_type', sa.String(), nullable=False, server_default='issue'),
        sa.Column('external_id', sa.String(), nullable=False),
        sa.Column('url', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('resource_type', 'external_id', 'url', name='uq_entity_link_external_ref'),
    )
    op.create_index('ix_entity_links_task_id', 'entity_links', ['task_id'])
    op.create_index('ix_entity_links_integration_id', 'entity_links', ['integration_id'])
    op.create_index('idx_link_task_type', 'entity_links', ['task_id', 'resource_type'])


def downgrade() -> None:
    op.drop_table('entity_links')
    op.drop_table('workflow_rules')
    op.drop_table('integrations')
    op.drop_table('task_activities')
    op.drop_table('task_labels')
    op.drop_table('labels')
    op.drop_table('tasks')
    op.drop_table('board_columns')
    op.drop_table('projects')
    op.drop_table('users')
    op.drop_table('organisations')

    op.execute("DROP TYPE IF EXISTS integrationtype")
    op.execute("DROP TYPE IF EXISTS taskpriority")
    op.execute("DROP TYPE IF EXISTS userrole")
