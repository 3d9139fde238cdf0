"""initial schema - jobs and quota records

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000

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
    # Create jobs table (status as VARCHAR, not enum)
    op.create_table(
        'jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(255), nullable=False, index=True),
        sa.Column('blob_location', sa.Text(), nullable=False),
        sa.Column('file_name', sa.String(500), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=False),
        sa.Column('media_type', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='queued', index=True),
        sa.Column('result', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    # Listing is always "this owner's jobs, newest first"
    op.create_index('ix_jobs_owner_created', 'jobs', ['owner_id', 'created_at'])

    # Create quota_records table (plan and status as VARCHAR)
    op.create_table(
        'quota_records',
        sa.Column('owner_id', sa.String(255), primary_key=True),
        sa.Column('free_jobs_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('plan', sa.String(20), nullable=False, server_default='free'),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='inactive'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )


def downgrade() -> None:
    op.drop_table('quota_records')
    op.drop_index('ix_jobs_owner_created', table_name='jobs')
    op.drop_table('jobs')
