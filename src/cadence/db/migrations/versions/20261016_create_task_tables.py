"""create scheduled_tasks and task_executions

Revision ID: 4f1c2d9e7a30
Revises:
Create Date: 2026-10-16 00:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '4f1c2d9e7a30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'scheduled_tasks',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column(
            'type',
            sa.Enum('one-time', 'recurring', 'trigger', name='task_type', create_constraint=True),
            nullable=False,
        ),
        sa.Column('schedule', postgresql.JSONB(), nullable=True),
        sa.Column('trigger_config', postgresql.JSONB(), nullable=True),
        sa.Column('action', postgresql.JSONB(), nullable=False),
        sa.Column('conditions', postgresql.JSONB(), nullable=True),
        sa.Column('retry_policy', postgresql.JSONB(), nullable=True),
        sa.Column('notification_config', postgresql.JSONB(), nullable=True),
        sa.Column(
            'status',
            sa.Enum('active', 'paused', 'completed', 'failed', name='task_status', create_constraint=True),
            nullable=False,
            server_default='active',
        ),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('run_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('claimed_by', sa.String(255), nullable=True),
        sa.Column('claimed_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('idx_tasks_user_status', 'scheduled_tasks', ['user_id', 'status'])
    op.create_index(
        'idx_tasks_next_run',
        'scheduled_tasks',
        ['next_run_at'],
        postgresql_where=sa.text("status = 'active' AND next_run_at IS NOT NULL"),
    )

    op.create_table(
        'task_executions',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column(
            'task_id',
            postgresql.UUID(as_uuid=False),
            sa.ForeignKey('scheduled_tasks.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'status',
            sa.Enum('running', 'completed', 'failed', name='execution_status', create_constraint=True),
            nullable=False,
        ),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('result', postgresql.JSONB(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('logs', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('triggered_by', postgresql.JSONB(), nullable=True),
    )
    op.create_index('idx_executions_task_started', 'task_executions', ['task_id', 'started_at'])


def downgrade() -> None:
    op.drop_index('idx_executions_task_started', table_name='task_executions')
    op.drop_table('task_executions')
    op.drop_index('idx_tasks_next_run', table_name='scheduled_tasks')
    op.drop_index('idx_tasks_user_status', table_name='scheduled_tasks')
    op.drop_table('scheduled_tasks')
    sa.Enum(name='execution_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='task_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='task_type').drop(op.get_bind(), checkfirst=True)
