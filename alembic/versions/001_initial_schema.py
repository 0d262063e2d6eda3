"""Initial schema

Revision ID: 001
Revises: 
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import mysql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create agent_schedules table
    op.create_table(
        'agent_schedules',
        sa.Column('id', mysql.CHAR(36), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('agent_id', sa.String(255), nullable=False),
        sa.Column('agent_type', sa.String(50), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('workspace_id', sa.String(64), nullable=True),
        sa.Column('cron_expression', sa.String(255), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
        sa.Column('context', sa.JSON(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('last_run_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('next_run_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('created_by', mysql.CHAR(36), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_agent_schedules_workspace_id', 'agent_schedules', ['workspace_id'])
    op.create_index('idx_schedule_enabled_next_run', 'agent_schedules', ['enabled', 'next_run_at'])
    op.create_index('idx_schedule_agent', 'agent_schedules', ['agent_type', 'agent_id'])

    # Create schedule_executions table
    op.create_table(
        'schedule_executions',
        sa.Column('id', mysql.CHAR(36), nullable=False),
        sa.Column('schedule_id', mysql.CHAR(36), nullable=False),
        sa.Column(
            'status',
            sa.Enum('running', 'success', 'failed', name='executionstatus'),
            nullable=False,
            server_default='running'
        ),
        sa.Column('started_at', sa.TIMESTAMP(), nullable=False),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('output', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('tokens_used', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['schedule_id'], ['agent_schedules.id'], ondelete='CASCADE')
    )
    op.create_index('idx_execution_schedule_started', 'schedule_executions', ['schedule_id', 'started_at'])
    op.create_index('idx_execution_status', 'schedule_executions', ['status'])


def downgrade() -> None:
    op.drop_index('idx_execution_status', table_name='schedule_executions')
    op.drop_index('idx_execution_schedule_started', table_name='schedule_executions')
    op.drop_table('schedule_executions')

    op.drop_index('idx_schedule_agent', table_name='agent_schedules')
    op.drop_index('idx_schedule_enabled_next_run', table_name='agent_schedules')
    op.drop_index('ix_agent_schedules_workspace_id', table_name='agent_schedules')
    op.drop_table('agent_schedules')
