"""Initial schema: identity, organizations, projects, boards, tasks and activity.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORG_ROLES = ('GUEST', 'MEMBER', 'MANAGER', 'ADMIN', 'OWNER')
PROJECT_ROLES = ('GUEST', 'MEMBER', 'MANAGER', 'ADMIN')
INVITATION_STATUSES = ('PENDING', 'ACCEPTED', 'REJECTED', 'EXPIRED')
TASK_STATUSES = ('BACKLOG', 'TODO', 'IN_PROGRESS', 'IN_REVIEW', 'DONE', 'CANCELLED')


def upgrade() -> None:
    uuid = postgresql.UUID(as_uuid=True)
    org_role = postgresql.ENUM(*ORG_ROLES, name='organizationrole', create_type=False)
    project_role = postgresql.ENUM(*PROJECT_ROLES, name='projectrole', create_type=False)
    invitation_status = postgresql.ENUM(*INVITATION_STATUSES, name='invitationstatus', create_type=False)
    task_status = postgresql.ENUM(*TASK_STATUSES, name='taskstatus', create_type=False)

    # Shared enums are created once up front
    org_role.create(op.get_bind(), checkfirst=True)
    project_role.create(op.get_bind(), checkfirst=True)
    invitation_status.create(op.get_bind(), checkfirst=True)
    task_status.create(op.get_bind(), checkfirst=True)

    # Identity
    op.create_table(
        'users',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('first_name', sa.String(100), nullable=False, server_default=''),
        sa.Column('last_name', sa.String(100), nullable=False, server_default=''),
        sa.Column('avatar', sa.String(500)),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.text('true')),
        sa.Column('current_organization_id', uuid, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_is_active', 'users', ['is_active'])

    op.create_table(
        'refresh_tokens',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('user_id', uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token', sa.String(500), nullable=False, unique=True),
        sa.Column('expires_at', sa.DateTime, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_refresh_tokens_user_id', 'refresh_tokens', ['user_id'])
    op.create_index('ix_refresh_tokens_expires_at', 'refresh_tokens', ['expires_at'])

    # Organizations
    op.create_table(
        'organizations',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False, unique=True),
        sa.Column('description', sa.Text),
        sa.Column('logo', sa.String(500)),
        sa.Column('website', sa.String(255)),
        sa.Column('industry', sa.String(100)),
        sa.Column('size', sa.String(50)),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.text('true')),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint("slug <> ''", name='non_empty_slug'),
    )
    op.create_index('ix_organizations_slug', 'organizations', ['slug'])
    op.create_index('ix_organizations_created_at', 'organizations', ['created_at'])

    op.create_foreign_key(
        'fk_users_current_organization',
        'users', 'organizations',
        ['current_organization_id'], ['id'],
        ondelete='SET NULL',
    )

    op.create_table(
        'organization_settings',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('organization_id', uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('allow_member_invites', sa.Boolean, nullable=False, server_default=sa.text('false')),
        sa.Column('default_project_role', project_role, nullable=False, server_default='MEMBER'),
        sa.Column('require_approval_to_join', sa.Boolean, nullable=False, server_default=sa.text('false')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_table(
        'organization_members',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('organization_id', uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', org_role, nullable=False, server_default='MEMBER'),
        sa.Column('joined_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('organization_id', 'user_id', name='unique_org_user'),
    )
    op.create_index('ix_organization_members_organization_id', 'organization_members', ['organization_id'])
    op.create_index('ix_organization_members_user_id', 'organization_members', ['user_id'])
    op.create_index('ix_organization_members_role', 'organization_members', ['role'])
    # At most one OWNER per organization
    op.create_index(
        'uq_organization_single_owner',
        'organization_members',
        ['organization_id'],
        unique=True,
        postgresql_where=sa.text("role = 'OWNER'"),
    )

    op.create_table(
        'organization_invitations',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('organization_id', uuid, sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', org_role, nullable=False, server_default='MEMBER'),
        sa.Column('token', sa.String(100), nullable=False, unique=True),
        sa.Column('status', invitation_status, nullable=False, server_default='PENDING'),
        sa.Column('sender_id', uuid, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('expires_at', sa.DateTime, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint("role <> 'OWNER'", name='invitation_not_owner'),
    )
    op.create_index('ix_organization_invitations_organization_id', 'organization_invitations', ['organization_id'])
    op.create_index('ix_organization_invitations_email', 'organization_invitations', ['email'])
    op.create_index('ix_organization_invitations_token', 'organization_invitations', ['token'])
    op.create_index('ix_organization_invitations_status', 'organization_invitations', ['status'])

    # Projects
    op.create_table(
        'projects',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('organization_id', uuid, sa.ForeignKey('organizations.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('owner_id', uuid, sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('key', sa.String(10), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('color', sa.String(20)),
        sa.Column(
            'status',
            sa.Enum('PLANNING', 'ACTIVE', 'ON_HOLD', 'COMPLETED', 'ARCHIVED', name='projectstatus'),
            nullable=False,
            server_default='ACTIVE',
        ),
        sa.Column('start_date', sa.DateTime),
        sa.Column('end_date', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_projects_organization_id', 'projects', ['organization_id'])
    op.create_index('ix_projects_owner_id', 'projects', ['owner_id'])
    op.create_index('ix_projects_key', 'projects', ['key'])
    op.create_index('ix_projects_status', 'projects', ['status'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])

    op.create_table(
        'project_members',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('project_id', uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', project_role, nullable=False, server_default='MEMBER'),
        sa.Column('joined_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('project_id', 'user_id', name='unique_project_user'),
    )
    op.create_index('ix_project_members_project_id', 'project_members', ['project_id'])
    op.create_index('ix_project_members_user_id', 'project_members', ['user_id'])
    op.create_index('ix_project_members_role', 'project_members', ['role'])

    op.create_table(
        'project_invitations',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('project_id', uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', project_role, nullable=False, server_default='MEMBER'),
        sa.Column('token', sa.String(100), nullable=False, unique=True),
        sa.Column('status', invitation_status, nullable=False, server_default='PENDING'),
        sa.Column('inviter_id', uuid, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('expires_at', sa.DateTime, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_project_invitations_project_id', 'project_invitations', ['project_id'])
    op.create_index('ix_project_invitations_email', 'project_invitations', ['email'])
    op.create_index('ix_project_invitations_token', 'project_invitations', ['token'])
    op.create_index('ix_project_invitations_status', 'project_invitations', ['status'])

    op.create_table(
        'task_sequences',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('project_id', uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('next_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('next_number > 0', name='chk_next_task_number_positive'),
    )

    # Boards
    op.create_table(
        'boards',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('project_id', uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_boards_project_id', 'boards', ['project_id'])

    op.create_table(
        'board_columns',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('board_id', uuid, sa.ForeignKey('boards.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('order', sa.Integer, nullable=False, server_default='0'),
        sa.Column('status', task_status, nullable=False, server_default='TODO'),
        sa.Column('color', sa.String(20)),
        sa.Column('wip_limit', sa.Integer, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_board_columns_board_id', 'board_columns', ['board_id'])

    op.create_table(
        'labels',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('project_id', uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('color', sa.String(20), nullable=False),
        sa.UniqueConstraint('project_id', 'name', name='unique_project_label'),
    )
    op.create_index('ix_labels_project_id', 'labels', ['project_id'])

    # Tasks
    op.create_table(
        'tasks',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('project_id', uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('task_number', sa.Integer, nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('status', task_status, nullable=False, server_default='TODO'),
        sa.Column(
            'priority',
            sa.Enum('LOW', 'MEDIUM', 'HIGH', 'URGENT', name='taskpriority'),
            nullable=False,
            server_default='MEDIUM',
        ),
        sa.Column('column_id', uuid, sa.ForeignKey('board_columns.id', ondelete='SET NULL'), nullable=True),
        sa.Column('parent_id', uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=True),
        sa.Column('order', sa.Float, nullable=False, server_default='0'),
        sa.Column('due_date', sa.DateTime, nullable=True),
        sa.Column('start_date', sa.DateTime, nullable=True),
        sa.Column('estimated_hours', sa.Float, nullable=True),
        sa.Column('actual_hours', sa.Float, nullable=True),
        sa.Column('creator_id', uuid, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('project_id', 'task_number', name='uq_project_task_number'),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_priority', 'tasks', ['priority'])
    op.create_index('ix_tasks_column_id', 'tasks', ['column_id'])
    op.create_index('ix_tasks_parent_id', 'tasks', ['parent_id'])
    op.create_index('ix_tasks_due_date', 'tasks', ['due_date'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])

    op.create_table(
        'task_assignees',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('task_id', uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('assigned_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('task_id', 'user_id', name='uq_task_assignee'),
    )
    op.create_index('ix_task_assignees_task_id', 'task_assignees', ['task_id'])
    op.create_index('ix_task_assignees_user_id', 'task_assignees', ['user_id'])

    op.create_table(
        'task_labels',
        sa.Column('task_id', uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('label_id', uuid, sa.ForeignKey('labels.id', ondelete='CASCADE'), primary_key=True),
    )

    op.create_table(
        'comments',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('task_id', uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('parent_id', uuid, sa.ForeignKey('comments.id', ondelete='CASCADE'), nullable=True),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_comments_task_id', 'comments', ['task_id'])
    op.create_index('ix_comments_user_id', 'comments', ['user_id'])
    op.create_index('ix_comments_created_at', 'comments', ['created_at'])

    op.create_table(
        'attachments',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('task_id', uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('uploaded_by_id', uuid, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('filename', sa.String(255), nullable=False),
        sa.Column('url', sa.String(1000), nullable=False),
        sa.Column('public_id', sa.String(255), nullable=True),
        sa.Column('size', sa.Integer, nullable=True),
        sa.Column('mime_type', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_attachments_task_id', 'attachments', ['task_id'])

    # Activity & notifications
    op.create_table(
        'activities',
        sa.Column('id', uuid, primary_key=True),
        sa.Column(
            'type',
            sa.Enum(
                'CREATED', 'UPDATED', 'STATUS_CHANGED', 'MOVED', 'ASSIGNED', 'UNASSIGNED', 'COMMENTED', 'DELETED',
                name='activitytype',
            ),
            nullable=False,
        ),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('task_id', uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=True),
        sa.Column('project_id', uuid, sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=True),
        sa.Column('user_id', uuid, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('metadata', sa.JSON, nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_activities_type', 'activities', ['type'])
    op.create_index('ix_activities_task_id', 'activities', ['task_id'])
    op.create_index('ix_activities_project_id', 'activities', ['project_id'])
    op.create_index('ix_activities_created_at', 'activities', ['created_at'], postgresql_ops={'created_at': 'DESC'})

    op.create_table(
        'notifications',
        sa.Column('id', uuid, primary_key=True),
        sa.Column('user_id', uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'type',
            sa.Enum('TASK_ASSIGNED', 'TASK_OVERDUE', 'TASK_DUE_SOON', 'PROJECT_MEMBER_ADDED', name='notificationtype'),
            nullable=False,
        ),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('metadata', sa.JSON, nullable=False, server_default='{}'),
        sa.Column('is_read', sa.Boolean, nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'], postgresql_ops={'created_at': 'DESC'})


def downgrade() -> None:
    # Drop tables in reverse dependency order
    op.drop_table('notifications')
    op.drop_table('activities')
    op.drop_table('attachments')
    op.drop_table('comments')
    op.drop_table('task_labels')
    op.drop_table('task_assignees')
    op.drop_table('tasks')
    op.drop_table('labels')
    op.drop_table('board_columns')
    op.drop_table('boards')
    op.drop_table('task_sequences')
    op.drop_table('project_invitations')
    op.drop_table('project_members')
    op.drop_table('projects')
    op.drop_table('organization_invitations')
    op.drop_table('organization_members')
    op.drop_table('organization_settings')
    op.drop_constraint('fk_users_current_organization', 'users', type_='foreignkey')
    op.drop_table('organizations')
    op.drop_table('refresh_tokens')
    op.drop_table('users')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS notificationtype')
    op.execute('DROP TYPE IF EXISTS activitytype')
    op.execute('DROP TYPE IF EXISTS taskpriority')
    op.execute('DROP TYPE IF EXISTS taskstatus')
    op.execute('DROP TYPE IF EXISTS projectstatus')
    op.execute('DROP TYPE IF EXISTS invitationstatus')
    op.execute('DROP TYPE IF EXISTS projectrole')
    op.execute('DROP TYPE IF EXISTS organizationrole')
