"""Automation engine tables

Revision ID: 0001_automation_engine
Revises:
Create Date: 2026-10-18

Creates flows, enrollments, the delivery queue and the audit log.
Partial indexes carry both PostgreSQL and SQLite predicates.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_automation_engine'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
TIMESTAMP = sa.DateTime(timezone=True)


def upgrade() -> None:
    """Create automation tables."""

    # ==========================================================================
    # Flows
    # ==========================================================================
    op.create_table(
        'automation_flows',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('trigger_type', sa.String(50), nullable=False, server_default='manual'),
        sa.Column('trigger_config', JSON, nullable=False),
        sa.Column('steps', JSON, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('total_enrolled', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_converted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', TIMESTAMP, nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        'idx_automation_flows_live_name',
        'automation_flows',
        ['name'],
        postgresql_where=sa.text("status != 'archived'"),
        sqlite_where=sa.text("status != 'archived'"),
    )
    op.create_index(
        'idx_automation_flows_status', 'automation_flows', ['status', 'updated_at']
    )

    # ==========================================================================
    # Enrollments
    # ==========================================================================
    op.create_table(
        'automation_enrollments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'flow_id',
            sa.Uuid(),
            sa.ForeignKey('automation_flows.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('profile_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('current_step', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('enrolled_at', TIMESTAMP, nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', TIMESTAMP, nullable=True),
        sa.Column('exited_at', TIMESTAMP, nullable=True),
        sa.Column('exit_reason', sa.Text(), nullable=True),
        sa.Column('converted_at', TIMESTAMP, nullable=True),
        sa.Column('updated_at', TIMESTAMP, nullable=False, server_default=sa.func.now()),
    )
    # At most one active enrollment per (flow, profile)
    op.create_index(
        'uq_automation_enrollments_active',
        'automation_enrollments',
        ['flow_id', 'profile_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index(
        'idx_automation_enrollments_flow_status',
        'automation_enrollments',
        ['flow_id', 'status'],
    )

    # ==========================================================================
    # Queue
    # ==========================================================================
    op.create_table(
        'automation_queue',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'flow_id',
            sa.Uuid(),
            sa.ForeignKey('automation_flows.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'enrollment_id',
            sa.Uuid(),
            sa.ForeignKey('automation_enrollments.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('profile_id', sa.Uuid(), nullable=False),
        sa.Column('step_index', sa.Integer(), nullable=False),
        sa.Column('template_slug', sa.String(200), nullable=False),
        sa.Column('subject', sa.String(300), nullable=False),
        sa.Column('recipient', sa.String(320), nullable=True),
        sa.Column('variables', JSON, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('scheduled_for', TIMESTAMP, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('message_id', sa.String(255), nullable=True),
        sa.Column('sent_at', TIMESTAMP, nullable=True),
        sa.Column('created_at', TIMESTAMP, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', TIMESTAMP, nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        'idx_automation_queue_due', 'automation_queue', ['status', 'scheduled_for']
    )
    op.create_index(
        'idx_automation_queue_enrollment', 'automation_queue', ['enrollment_id', 'status']
    )
    op.create_index('idx_automation_queue_flow', 'automation_queue', ['flow_id', 'status'])

    # ==========================================================================
    # Audit log (append-only)
    # ==========================================================================
    op.create_table(
        'automation_audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.String(64), nullable=True),
        sa.Column('metadata', JSON, nullable=False),
        sa.Column('created_at', TIMESTAMP, nullable=False, server_default=sa.func.now()),
    )
    op.create_index(
        'idx_automation_audit_resource',
        'automation_audit_logs',
        ['resource_type', 'resource_id', 'created_at'],
    )
    op.create_index(
        'idx_automation_audit_actor', 'automation_audit_logs', ['actor_id', 'created_at']
    )


def downgrade() -> None:
    op.drop_table('automation_audit_logs')
    op.drop_table('automation_queue')
    op.drop_table('automation_enrollments')
    op.drop_table('automation_flows')
