"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from threadsync.db.base import Base
from threadsync.db.enums import DEFAULT_JOB_STATUS, ThreadPriority, ThreadStatus

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite for local runs and tests).
# Python None is stored as SQL NULL. JSON columns are not mutation-tracked:
# always assign a new dict.
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Tenancy
# =============================================================================

class Organization(Base):
    """Tenant. Every synced row is scoped to one organization."""

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )


class User(Base):
    """Internal portal user (agent)."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )


class Author(Base):
    """
    Message author.

    Either an internal user (user_id set) or a platform identity
    (meta_id = Slack user id, GitHub user id, ...). At most one Author per
    (organization_id, meta_id).
    """

    __tablename__ = "authors"
    __table_args__ = (
        UniqueConstraint("organization_id", "meta_id", name="uq_authors_org_meta"),
        UniqueConstraint("organization_id", "user_id", name="uq_authors_org_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    meta_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )


# =============================================================================
# Threads
# =============================================================================

class Thread(Base):
    """
    Canonical support conversation.

    external_id/external_origin link the thread to the platform it was
    imported from; they are set together and external_origin never changes.
    """

    __tablename__ = "threads"
    __table_args__ = (
        CheckConstraint(
            "(external_id IS NULL) = (external_origin IS NULL)",
            name="ck_threads_external_ref_pair",
        ),
        UniqueConstraint(
            "organization_id",
            "external_origin",
            "external_id",
            name="uq_threads_external_ref",
        ),
        Index("idx_threads_external_issue", "external_issue_id"),
        Index("idx_threads_external_pr", "external_pr_id"),
        Index("idx_threads_org_created", "organization_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[int] = mapped_column(
        Integer, default=ThreadStatus.OPEN.value, nullable=False
    )
    priority: Mapped[int] = mapped_column(
        Integer, default=ThreadPriority.NONE.value, nullable=False
    )
    author_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("authors.id", ondelete="SET NULL"), nullable=True
    )
    assigned_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # Platform link
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_origin: Mapped[str | None] = mapped_column(String(20), nullable=True)
    external_metadata: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    external_issue_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    external_pr_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    author: Mapped[Author | None] = relationship()
    messages: Mapped[list[Message]] = relationship(
        back_populates="thread", order_by="Message.created_at"
    )
    updates: Mapped[list[Update]] = relationship(
        back_populates="thread", order_by="Update.created_at"
    )


class Message(Base):
    """
    Message within a thread.

    external_message_id is write-once: it is set by the ingestor for
    platform-originated messages and by the outbound relay after posting.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint(
            "thread_id", "external_message_id", name="uq_messages_thread_external"
        ),
        Index("idx_messages_thread_created", "thread_id", "created_at"),
        Index(
            "idx_messages_relay_pending",
            "created_at",
            postgresql_where=text("external_message_id IS NULL"),
            sqlite_where=text("external_message_id IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("threads.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("authors.id", ondelete="SET NULL"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)  # serialized rich text
    origin: Mapped[str | None] = mapped_column(String(20), nullable=True)
    external_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )

    # Outbound relay bookkeeping
    relay_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    relay_next_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    relay_last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    thread: Mapped[Thread] = relationship(back_populates="messages")
    author: Mapped[Author | None] = relationship()


class Update(Base):
    """
    Append-only audit entry on a thread.

    Only `replicated` and the relay bookkeeping columns change after insert.
    `replicated` maps platform -> ack (true or the platform message id).
    """

    __tablename__ = "updates"
    __table_args__ = (
        Index("idx_updates_thread_created", "thread_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("threads.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSONType, default=dict, nullable=False)
    replicated: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )

    relay_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    relay_next_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    relay_last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    thread: Mapped[Thread] = relationship(back_populates="updates")
    user: Mapped[User | None] = relationship()


# =============================================================================
# Integrations
# =============================================================================

class Integration(Base):
    """
    Per-organization platform link.

    Created disabled (holding a CSRF token) on the first connect attempt and
    enabled by the install callback. Inbound events are routed by values
    inside `config` (teamId, installationId), not by primary key.
    """

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("organization_id", "type", name="uq_integrations_org_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    config: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=_now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=_now_utc, onupdate=_now_utc, server_default=func.now(), nullable=False
    )

    organization: Mapped[Organization] = relationship()


# =============================================================================
# Jobs
# =============================================================================

class Job(Base):
    """
    Background job for async processing.

    Used for: deferred Slack event processing, portal notices, history backfill.
    Worker polls for pending jobs and processes them.
    """

    __tablename__ = "jobs"
    __table_args__ = (
        Index(
            "idx_jobs_pending",
            "status",
            "run_at",
            postgresql_where=text("status = 'pending'"),
        ),
        Index("idx_jobs_org", "organization_id", "created_at"),
        Index(
            "uq_job_idempotency",
            "idempotency_key",
            unique=True,
            postgresql_where=text("idempotency_key IS NOT NULL"),
            sqlite_where=text("idempotency_key IS NOT NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
    )

    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    run_at: Mapped[datetime] = mapped_column(default=_now_utc, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_JOB_STATUS.value, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=_now_utc, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
