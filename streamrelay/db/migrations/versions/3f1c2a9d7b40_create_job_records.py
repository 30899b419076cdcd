"""create_job_records

Revision ID: 3f1c2a9d7b40
Revises:
Create Date: 2026-10-12 10:14:37.512904

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JOB_STATUS = sa.Enum(
    'QUEUED', 'IN_PROGRESS', 'COMPLETED', 'FAILED', 'CANCELLED', 'INCOMPLETE',
    name='jobstatus',
)
TASK_TYPE = sa.Enum('AGENT', 'RESEARCH', name='tasktype')


def upgrade() -> None:
    """Create the job_records table."""
    op.create_table(
        'job_records',
        sa.Column('job_id', sa.String(length=128), nullable=False),
        sa.Column('request_id', sa.String(length=64), nullable=False),
        sa.Column('owner_id', sa.String(length=128), nullable=True),
        sa.Column('conversation_id', sa.String(length=128), nullable=True),
        sa.Column('task_type', TASK_TYPE, nullable=False),
        sa.Column('status', JOB_STATUS, nullable=False),
        sa.Column('cursor', sa.Integer(), nullable=False),
        sa.Column('partial_output', sa.String(), nullable=False),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('job_id'),
    )
    op.create_index('ix_job_records_request_id', 'job_records', ['request_id'])
    op.create_index('ix_job_records_owner_id', 'job_records', ['owner_id'])
    op.create_index('ix_job_records_conversation_id', 'job_records', ['conversation_id'])
    op.create_index('ix_job_records_status', 'job_records', ['status'])

    # Active-task listing filters by owner and status together
    op.create_index('ix_job_records_owner_status', 'job_records', ['owner_id', 'status'])


def downgrade() -> None:
    """Drop the job_records table."""
    op.drop_index('ix_job_records_owner_status', table_name='job_records')
    op.drop_index('ix_job_records_status', table_name='job_records')
    op.drop_index('ix_job_records_conversation_id', table_name='job_records')
    op.drop_index('ix_job_records_owner_id', table_name='job_records')
    op.drop_index('ix_job_records_request_id', table_name='job_records')
    op.drop_table('job_records')
    TASK_TYPE.drop(op.get_bind(), checkfirst=True)
    JOB_STATUS.drop(op.get_bind(), checkfirst=True)
