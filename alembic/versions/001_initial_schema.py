"""Initial schema: users, session tokens, issues, progress notes and history.

Revision ID: 001
Revises:
Create Date: 2026-10-19

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


def upgrade() -> None:
    # Create users table (enums will be created automatically)
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('full_name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('role', sa.Enum('citizen', 'worker', 'officer', name='userrole'), nullable=False, server_default='citizen'),
        sa.Column('is_admin', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint("is_admin = false OR role = 'officer'", name='admin_requires_officer'),
    )
    op.create_index('idx_users_email', 'users', ['email'])
    op.create_index('idx_users_role', 'users', ['role'])

    op.create_table(
        'session_tokens',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token_hash', sa.String(255), nullable=False, unique=True),
        sa.Column('last_used_at', sa.DateTime),
        sa.Column('expires_at', sa.DateTime),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('revoked_at', sa.DateTime),
    )
    op.create_index('idx_session_tokens_user', 'session_tokens', ['user_id'])
    op.create_index('idx_session_tokens_hash', 'session_tokens', ['token_hash'])

    op.create_table(
        'issues',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('category', sa.String(50), nullable=False, server_default='other'),
        sa.Column('priority', sa.Enum('low', 'medium', 'high', 'critical', name='issuepriority'), nullable=False, server_default='medium'),
        sa.Column('status', sa.Enum('pending', 'in_progress', 'resolved', name='issuestatus'), nullable=False, server_default='pending'),
        sa.Column('location', sa.String(500), nullable=False),
        sa.Column('latitude', sa.Float),
        sa.Column('longitude', sa.Float),
        sa.Column('images', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('reported_by', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('assigned_to', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('reported_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.Column('sla_deadline', sa.DateTime),
        sa.CheckConstraint('length(trim(title)) > 0', name='title_not_blank'),
        sa.CheckConstraint(
            '(latitude IS NULL AND longitude IS NULL) OR (latitude IS NOT NULL AND longitude IS NOT NULL)',
            name='coordinates_complete'
        ),
    )

    # Dashboard predicates filter on reporter/assignee; lists sort by report time
    op.create_index('idx_issues_reported_by', 'issues', ['reported_by'])
    op.create_index('idx_issues_assigned_to', 'issues', ['assigned_to'])
    op.create_index('idx_issues_status', 'issues', ['status'])
    op.create_index('idx_issues_priority', 'issues', ['priority'])
    op.create_index('idx_issues_category', 'issues', ['category'])
    op.create_index('idx_issues_sla_deadline', 'issues', ['sla_deadline'])
    op.create_index('idx_issues_reported_at', 'issues', ['reported_at'], postgresql_ops={'reported_at': 'DESC'})

    op.create_table(
        'issue_updates',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('issue_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint('length(trim(message)) > 0', name='message_not_blank'),
    )
    op.create_index('idx_issue_updates_issue', 'issue_updates', ['issue_id'])
    op.create_index('idx_issue_updates_created_at', 'issue_updates', ['created_at'])

    op.create_table(
        'issue_history',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('issue_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'change_type',
            sa.Enum('created', 'status_changed', 'assigned', 'reassigned', name='issuechangetype'),
            nullable=False
        ),
        sa.Column('field_name', sa.String(50)),
        sa.Column('old_value', sa.Text),
        sa.Column('new_value', sa.Text),
        sa.Column('changed_by', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('changed_at', sa.DateTime, nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('idx_issue_history_issue', 'issue_history', ['issue_id'])
    op.create_index('idx_issue_history_changed_at', 'issue_history', ['changed_at'], postgresql_ops={'changed_at': 'DESC'})


def downgrade() -> None:
    # Drop tables
    op.drop_table('issue_history')
    op.drop_table('issue_updates')
    op.drop_table('issues')
    op.drop_table('session_tokens')
    op.drop_table('users')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS issuechangetype')
    op.execute('DROP TYPE IF EXISTS issuestatus')
    op.execute('DROP TYPE IF EXISTS issuepriority')
    op.execute('DROP TYPE IF EXISTS userrole')
