"""Sync engine baseline - tenants, threads, integrations and jobs

Revision ID: 0001_sync_engine
Revises:
Create Date: 2026-10-18

Creates the organization/user tables, the canonical thread model
(authors, threads, messages, updates), per-organization platform
integrations and the background job queue.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_sync_engine'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create sync engine tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Tenancy
    # ==========================================================================
    op.execute('''
        CREATE TABLE organizations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            email VARCHAR(255) NOT NULL,
            name VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Threads
    # ==========================================================================
    op.execute('''
        CREATE TABLE authors (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            meta_id VARCHAR(255),
            name VARCHAR(255) NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_authors_org_meta UNIQUE (organization_id, meta_id),
            CONSTRAINT uq_authors_org_user UNIQUE (organization_id, user_id)
        )
    ''')

    op.execute('''
        CREATE TABLE threads (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(500) NOT NULL,
            status INTEGER NOT NULL DEFAULT 0,
            priority INTEGER NOT NULL DEFAULT 0,
            author_id UUID REFERENCES authors(id) ON DELETE SET NULL,
            assigned_user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            external_id VARCHAR(255),
            external_origin VARCHAR(20),
            external_metadata JSONB,
            external_issue_id VARCHAR(255),
            external_pr_id VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            deleted_at TIMESTAMPTZ,
            CONSTRAINT ck_threads_external_ref_pair
                CHECK ((external_id IS NULL) = (external_origin IS NULL)),
            CONSTRAINT uq_threads_external_ref
                UNIQUE (organization_id, external_origin, external_id)
        )
    ''')
    op.execute('CREATE INDEX idx_threads_external_issue ON threads(external_issue_id)')
    op.execute('CREATE INDEX idx_threads_external_pr ON threads(external_pr_id)')
    op.execute('CREATE INDEX idx_threads_org_created ON threads(organization_id, created_at)')

    op.execute('''
        CREATE TABLE messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            thread_id UUID NOT NULL REFERENCES threads(id) ON DELETE CASCADE,
            author_id UUID REFERENCES authors(id) ON DELETE SET NULL,
            content TEXT NOT NULL,
            origin VARCHAR(20),
            external_message_id VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            relay_attempts INTEGER NOT NULL DEFAULT 0,
            relay_next_attempt_at TIMESTAMPTZ,
            relay_last_error TEXT,
            CONSTRAINT uq_messages_thread_external UNIQUE (thread_id, external_message_id)
        )
    ''')
    op.execute('CREATE INDEX idx_messages_thread_created ON messages(thread_id, created_at)')
    op.execute('''
        CREATE INDEX idx_messages_relay_pending ON messages(created_at)
        WHERE external_message_id IS NULL
    ''')

    op.execute('''
        CREATE TABLE updates (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            thread_id UUID NOT NULL REFERENCES threads(id) ON DELETE CASCADE,
            type VARCHAR(50) NOT NULL,
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            metadata JSONB NOT NULL DEFAULT '{}',
            replicated JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            relay_attempts INTEGER NOT NULL DEFAULT 0,
            relay_next_attempt_at TIMESTAMPTZ,
            relay_last_error TEXT
        )
    ''')
    op.execute('CREATE INDEX idx_updates_thread_created ON updates(thread_id, created_at)')

    # ==========================================================================
    # Integrations
    # ==========================================================================
    op.execute('''
        CREATE TABLE integrations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            type VARCHAR(20) NOT NULL,
            enabled BOOLEAN NOT NULL DEFAULT FALSE,
            config JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_integrations_org_type UNIQUE (organization_id, type)
        )
    ''')

    # ==========================================================================
    # Jobs
    # ==========================================================================
    op.execute('''
        CREATE TABLE jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID REFERENCES organizations(id) ON DELETE CASCADE,
            job_type VARCHAR(50) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}',
            run_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at TIMESTAMPTZ,
            idempotency_key VARCHAR(255)
        )
    ''')
    op.execute('''
        CREATE INDEX idx_jobs_pending ON jobs(status, run_at)
        WHERE status = 'pending'
    ''')
    op.execute('CREATE INDEX idx_jobs_org ON jobs(organization_id, created_at)')
    op.execute('''
        CREATE UNIQUE INDEX uq_job_idempotency ON jobs(idempotency_key)
        WHERE idempotency_key IS NOT NULL
    ''')


def downgrade() -> None:
    """Drop sync engine tables."""
    for table in (
        'jobs',
        'integrations',
        'updates',
        'messages',
        'threads',
        'authors',
        'users',
        'organizations',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')
