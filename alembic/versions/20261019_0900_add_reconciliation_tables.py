"""add_reconciliation_tables

Revision ID: 20261019_0900_add_recon
Revises: None
Create Date: 2026-10-19 09:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20261019_0900_add_recon'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    Create reconciliation_run and reconciliation_record tables.
    """
    op.create_table(
        'reconciliation_run',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('dataset_id', sa.String(length=255), nullable=False),
        sa.Column('created_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_time', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_reconciliation_run_dataset_id', 'reconciliation_run', ['dataset_id'])

    op.create_table(
        'reconciliation_record',
        sa.Column('reconciliation_run_id', sa.Integer(), nullable=False),
        sa.Column('migration_key', sa.Text(), nullable=False),
        sa.Column('source_data', sa.String(length=64), nullable=True),
        sa.Column('target_data', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['reconciliation_run_id'], ['reconciliation_run.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('reconciliation_run_id', 'migration_key')
    )


def downgrade() -> None:
    """
    Drop reconciliation tables.
    """
    op.drop_table('reconciliation_record')
    op.drop_index('ix_reconciliation_run_dataset_id', table_name='reconciliation_run')
    op.drop_table('reconciliation_run')
