"""Initial schema

Revision ID: 001
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'cycles',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cycles_status', 'cycles', ['status'])

    op.create_table(
        'pools',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('cycle_id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=False),
        sa.Column('unit', sa.String(length=20), nullable=False),
        sa.Column('capacity', sa.Numeric(precision=19, scale=4), nullable=False),
        sa.Column('committed', sa.Numeric(precision=19, scale=4), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['cycle_id'], ['cycles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_pools_cycle_id', 'pools', ['cycle_id'])

    op.create_table(
        'requests',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('cycle_id', sa.String(length=64), nullable=False),
        sa.Column('requester', sa.String(length=255), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('quantities', sa.JSON(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.ForeignKeyConstraint(['cycle_id'], ['cycles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_requests_cycle_status', 'requests', ['cycle_id', 'status'])

    op.create_table(
        'allocation_runs',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('cycle_id', sa.String(length=64), nullable=False),
        sa.Column('mode', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('policy', sa.JSON(), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('engine_version', sa.String(length=50), nullable=True),
        sa.Column('snapshot', sa.JSON(), nullable=False),
        sa.Column('snapshot_digest', sa.String(length=64), nullable=True),
        sa.Column('summary', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['cycle_id'], ['cycles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_allocation_runs_status', 'allocation_runs', ['status'])
    op.create_index('idx_runs_cycle_created', 'allocation_runs', ['cycle_id', 'created_at'])

    op.create_table(
        'allocation_results',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.String(length=64), nullable=False),
        sa.Column('request_id', sa.String(length=64), nullable=False),
        sa.Column('decision', sa.String(length=20), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=False),
        sa.Column('requested', sa.JSON(), nullable=False),
        sa.Column('granted', sa.JSON(), nullable=False),
        sa.Column('limiting_pools', sa.JSON(), nullable=False),
        sa.Column('trace', sa.JSON(), nullable=False),
        sa.Column('committed', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['run_id'], ['allocation_runs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id', 'request_id', name='uq_result_run_request')
    )
    op.create_index('idx_results_run_rank', 'allocation_results', ['run_id', 'rank'])

    op.create_table(
        'audit_entries',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=True),
        sa.Column('cycle_id', sa.String(length=64), nullable=False),
        sa.Column('run_id', sa.String(length=64), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('before_digest', sa.String(length=64), nullable=True),
        sa.Column('after_digest', sa.String(length=64), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'idx_audit_cycle_timestamp', 'audit_entries', ['cycle_id', 'timestamp', 'id']
    )


def downgrade() -> None:
    op.drop_index('idx_audit_cycle_timestamp', table_name='audit_entries')
    op.drop_table('audit_entries')

    op.drop_index('idx_results_run_rank', table_name='allocation_results')
    op.drop_table('allocation_results')

    op.drop_index('idx_runs_cycle_created', table_name='allocation_runs')
    op.drop_index('ix_allocation_runs_status', table_name='allocation_runs')
    op.drop_table('allocation_runs')

    op.drop_index('idx_requests_cycle_status', table_name='requests')
    op.drop_table('requests')

    op.drop_index('ix_pools_cycle_id', table_name='pools')
    op.drop_table('pools')

    op.drop_index('ix_cycles_status', table_name='cycles')
    op.drop_table('cycles')
