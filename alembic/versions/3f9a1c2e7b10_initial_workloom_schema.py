"""Initial schema: accounts, field_mappings, scraping_jobs, mappings, mapping_runs, profiles, profile_changes, sync_operations

Revision ID: 3f9a1c2e7b10
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2e7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('accounts',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('provider', sa.Text(), nullable=False),
        sa.Column('account_name', sa.Text(), nullable=False),
        sa.Column('username', sa.Text(), nullable=True),
        sa.Column('encrypted_credentials', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('config', sa.JSON(), nullable=False),
        sa.Column('stats', sa.JSON(), nullable=False),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_accounts_user_id', 'accounts', ['user_id'])
    op.create_index('ix_accounts_user_provider', 'accounts', ['user_id', 'provider'])

    op.create_table('field_mappings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account_id', sa.Text(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('source_field', sa.Text(), nullable=False),
        sa.Column('target_field', sa.Text(), nullable=False),
        sa.Column('is_required', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id', 'target_field', name='uq_field_mapping_target'),
    )
    op.create_index('ix_field_mappings_account_id', 'field_mappings', ['account_id'])

    op.create_table('scraping_jobs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('account_id', sa.Text(), nullable=False),
        sa.Column('type', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('config', sa.JSON(), nullable=False),
        sa.Column('profiles_found', sa.Integer(), nullable=False),
        sa.Column('profiles_scraped', sa.Integer(), nullable=False),
        sa.Column('profiles_failed', sa.Integer(), nullable=False),
        sa.Column('results', sa.JSON(), nullable=False),
        sa.Column('retryable', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('mapping_run_id', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_scraping_jobs_account_id', 'scraping_jobs', ['account_id'])
    op.create_index('ix_scraping_jobs_mapping_run_id', 'scraping_jobs', ['mapping_run_id'])

    op.create_table('mappings',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('user_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('job_title', sa.Text(), nullable=True),
        sa.Column('company', sa.Text(), nullable=True),
        sa.Column('country', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('last_run_at', sa.DateTime(), nullable=True),
        sa.Column('next_run_at', sa.DateTime(), nullable=True),
        sa.Column('profiles_count', sa.Integer(), nullable=False),
        sa.Column('runs_count', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_mappings_user_id', 'mappings', ['user_id'])

    op.create_table('mapping_runs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('mapping_id', sa.Text(), nullable=False),
        sa.Column('run_date', sa.DateTime(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('total_found', sa.Integer(), nullable=False),
        sa.Column('new_profiles', sa.Integer(), nullable=False),
        sa.Column('departures', sa.Integer(), nullable=False),
        sa.Column('job_changes', sa.Integer(), nullable=False),
        sa.Column('scraping_job_id', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['mapping_id'], ['mappings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_mapping_runs_mapping_id', 'mapping_runs', ['mapping_id'])

    op.create_table('profiles',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('mapping_id', sa.Text(), nullable=False),
        sa.Column('external_id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('job_title', sa.Text(), nullable=True),
        sa.Column('company', sa.Text(), nullable=True),
        sa.Column('location', sa.Text(), nullable=True),
        sa.Column('profile_url', sa.Text(), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('is_stale', sa.Boolean(), nullable=False),
        sa.Column('crm_refs', sa.JSON(), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(), nullable=True),
        sa.Column('last_seen_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['mapping_id'], ['mappings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('mapping_id', 'external_id', name='uq_profile_mapping_external'),
    )
    op.create_index('ix_profiles_mapping_id', 'profiles', ['mapping_id'])

    op.create_table('profile_changes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.Text(), nullable=False),
        sa.Column('profile_id', sa.Text(), nullable=False),
        sa.Column('change_type', sa.Text(), nullable=False),
        sa.Column('previous', sa.JSON(), nullable=True),
        sa.Column('current', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['run_id'], ['mapping_runs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['profile_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_profile_changes_run_id', 'profile_changes', ['run_id'])

    op.create_table('sync_operations',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('account_id', sa.Text(), nullable=False),
        sa.Column('kind', sa.Text(), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('processed', sa.Integer(), nullable=False),
        sa.Column('successful', sa.Integer(), nullable=False),
        sa.Column('failed', sa.Integer(), nullable=False),
        sa.Column('skipped', sa.Integer(), nullable=False),
        sa.Column('errors', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_operations_account_id', 'sync_operations', ['account_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('sync_operations')
    op.drop_table('profile_changes')
    op.drop_table('profiles')
    op.drop_table('mapping_runs')
    op.drop_table('mappings')
    op.drop_table('scraping_jobs')
    op.drop_table('field_mappings')
    op.drop_table('accounts')
