"""Identity resolution: external references -> Threads and Authors."""

from __future__ import annotations

import logging
import re
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import Platform
from threadsync.db.models import Author, Thread, User

logger = logging.getLogger(__name__)

_GITHUB_ID_RE = re.compile(r"^github:(?P<owner>[^/]+)/(?P<repo>[^#]+)#(?P<id>\d+)$")


# =============================================================================
# GitHub ids
# =============================================================================

def format_github_id(github_id: int | str, owner: str, repo: str) -> str:
    """Portal id for an issue or PR: github:owner/repo#id."""
    return f"github:{owner}/{repo}#{github_id}"


def parse_github_id(value: str) -> tuple[str, str, int] | None:
    """Return (owner, repo, id) for a portal id, or None."""
    match = _GITHUB_ID_RE.match(value or "")
    if not match:
        return None
    return match.group("owner"), match.group("repo"), int(match.group("id"))


def github_reference_keys(github_id: int | str, owner: str | None, repo: str | None) -> list[str]:
    """Every stored form a link to this GitHub object may take."""
    keys = [str(github_id)]
    if owner and repo:
        keys.append(format_github_id(github_id, owner, repo))
    return keys


# =============================================================================
# Threads
# =============================================================================

def _live_threads():
    return select(Thread).where(Thread.deleted_at.is_(None))


def find_threads_by_issue_id(
    db: Session, issue_id: int | str, owner: str | None = None, repo: str | None = None
) -> list[Thread]:
    keys = github_reference_keys(issue_id, owner, repo)
    stmt = _live_threads().where(Thread.external_issue_id.in_(keys)).order_by(Thread.created_at)
    return list(db.scalars(stmt))


def find_threads_by_pr_id(
    db: Session, pr_id: int | str, owner: str | None = None, repo: str | None = None
) -> list[Thread]:
    keys = github_reference_keys(pr_id, owner, repo)
    stmt = _live_threads().where(Thread.external_pr_id.in_(keys)).order_by(Thread.created_at)
    return list(db.scalars(stmt))


def find_thread_by_external_ref(
    db: Session,
    org_id: UUID,
    external_origin: str,
    external_id: str,
) -> Thread | None:
    stmt = _live_threads().where(
        Thread.organization_id == org_id,
        Thread.external_origin == external_origin,
        Thread.external_id == external_id,
    )
    return db.scalars(stmt).first()


def find_slack_thread(db: Session, org_id: UUID, thread_ts: str) -> Thread | None:
    """Thread imported from Slack whose root message has timestamp thread_ts."""
    return find_thread_by_external_ref(db, org_id, Platform.SLACK.value, thread_ts)


def find_discord_thread(db: Session, org_id: UUID, channel_id: str) -> Thread | None:
    """Thread imported from the Discord thread channel channel_id."""
    return find_thread_by_external_ref(db, org_id, Platform.DISCORD.value, channel_id)


# =============================================================================
# Authors
# =============================================================================

def get_author_by_meta_id(db: Session, org_id: UUID, meta_id: str) -> Author | None:
    return db.scalars(
        select(Author).where(Author.organization_id == org_id, Author.meta_id == meta_id)
    ).first()


def get_or_create_author(
    db: Session,
    org_id: UUID,
    meta_id: str,
    name: str,
) -> Author:
    """
    Get-or-insert an Author keyed by (organization, platform user id).

    The insert is committed immediately. A concurrent delivery inserting
    the same author loses on the unique constraint, rolls back and reads
    the winner's row, so both converge on a single Author.
    """
    author = get_author_by_meta_id(db, org_id, meta_id)
    if author:
        return author

    author = Author(organization_id=org_id, meta_id=meta_id, name=name or meta_id)
    db.add(author)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        author = get_author_by_meta_id(db, org_id, meta_id)
        if author is None:
            raise
        logger.info(
            "Author insert lost race, reusing existing row",
            extra=build_log_context(org_id=str(org_id)),
        )
        return author
    db.refresh(author)
    return author


def get_or_create_user_author(db: Session, user: User) -> Author:
    """Author row representing an internal user."""
    author = db.scalars(
        select(Author).where(
            Author.organization_id == user.organization_id,
            Author.user_id == user.id,
        )
    ).first()
    if author:
        return author

    author = Author(organization_id=user.organization_id, user_id=user.id, name=user.name)
    db.add(author)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        author = db.scalars(
            select(Author).where(
                Author.organization_id == user.organization_id,
                Author.user_id == user.id,
            )
        ).first()
        if author is None:
            raise
        return author
    db.refresh(author)
    return author
