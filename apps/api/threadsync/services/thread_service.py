"""Thread mutators used by portal users.

Every mutation appends an Update (audit + relay source). Updates written
here carry an empty `replicated` map, so the outbound relay mirrors them to
the thread's platform.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from threadsync.core.config import settings
from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import ThreadStatus, UpdateType
from threadsync.db.models import Message, Organization, Thread, Update, User
from threadsync.schemas.update import (
    AssignedChangedMetadata,
    GitHubIssueMetadata,
    GitHubPullRequestMetadata,
    MarkedDuplicateMetadata,
    PriorityChangedMetadata,
    StatusChangedMetadata,
    dump_update_metadata,
)
from threadsync.services import github_api, identity_service, integration_service
from threadsync.services.integration_service import IntegrationError, IntegrationErrorCode
from threadsync.services.status_translation import priority_label, status_label
from threadsync.utils.rich_text import serialize_text

logger = logging.getLogger(__name__)

PORTAL_SOURCE = "portal"


def portal_thread_url(org: Organization, thread_id: UUID) -> str:
    return f"{settings.PORTAL_SCHEME}://{org.slug}.{settings.PORTAL_BASE_DOMAIN}/threads/{thread_id}"


def get_thread(db: Session, org_id: UUID, thread_id: UUID) -> Thread | None:
    return db.scalars(
        select(Thread).where(
            Thread.id == thread_id,
            Thread.organization_id == org_id,
            Thread.deleted_at.is_(None),
        )
    ).first()


def _append_update(
    db: Session,
    thread: Thread,
    update_type: UpdateType,
    metadata,
    actor: User | None,
) -> Update:
    update = Update(
        thread_id=thread.id,
        type=update_type.value,
        user_id=actor.id if actor else None,
        meta=dump_update_metadata(metadata),
        replicated={},
    )
    db.add(update)
    return update


def change_status(
    db: Session, thread: Thread, new_status: ThreadStatus, actor: User | None = None
) -> Update | None:
    """Set status. Returns None when unchanged."""
    old_status = thread.status
    if old_status == new_status:
        return None
    thread.status = new_status.value
    metadata = StatusChangedMetadata(
        old_status=old_status,
        new_status=new_status.value,
        old_status_label=status_label(old_status),
        new_status_label=status_label(new_status),
        source=PORTAL_SOURCE,
        user_name=actor.name if actor else None,
    )
    update = _append_update(db, thread, UpdateType.STATUS_CHANGED, metadata, actor)
    db.commit()
    db.refresh(update)
    return update


def change_priority(
    db: Session, thread: Thread, new_priority: int, actor: User | None = None
) -> Update | None:
    old_priority = thread.priority
    if old_priority == new_priority:
        return None
    thread.priority = new_priority
    metadata = PriorityChangedMetadata(
        old_priority=old_priority,
        new_priority=new_priority,
        old_priority_label=priority_label(old_priority),
        new_priority_label=priority_label(new_priority),
        source=PORTAL_SOURCE,
        user_name=actor.name if actor else None,
    )
    update = _append_update(db, thread, UpdateType.PRIORITY_CHANGED, metadata, actor)
    db.commit()
    db.refresh(update)
    return update


def assign(
    db: Session, thread: Thread, assignee: User | None, actor: User | None = None
) -> Update | None:
    old_assignee_id = thread.assigned_user_id
    new_assignee_id = assignee.id if assignee else None
    if old_assignee_id == new_assignee_id:
        return None

    old_assignee = db.get(User, old_assignee_id) if old_assignee_id else None
    thread.assigned_user_id = new_assignee_id
    metadata = AssignedChangedMetadata(
        old_assigned_user_id=str(old_assignee_id) if old_assignee_id else None,
        new_assigned_user_id=str(new_assignee_id) if new_assignee_id else None,
        old_assigned_user_name=old_assignee.name if old_assignee else None,
        new_assigned_user_name=assignee.name if assignee else None,
        source=PORTAL_SOURCE,
        user_name=actor.name if actor else None,
    )
    update = _append_update(db, thread, UpdateType.ASSIGNED_CHANGED, metadata, actor)
    db.commit()
    db.refresh(update)
    return update


def mark_duplicate(
    db: Session, thread: Thread, duplicate_of: Thread, actor: User | None = None
) -> Update:
    """User-only transition to Duplicate, reachable from any status."""
    if duplicate_of.id == thread.id:
        raise ValueError("A thread cannot duplicate itself")
    old_status = thread.status
    thread.status = ThreadStatus.DUPLICATE.value
    metadata = MarkedDuplicateMetadata(
        duplicate_of_thread_id=str(duplicate_of.id),
        duplicate_of_thread_name=duplicate_of.name,
        old_status=old_status,
        source=PORTAL_SOURCE,
        user_name=actor.name if actor else None,
    )
    update = _append_update(db, thread, UpdateType.MARKED_DUPLICATE, metadata, actor)
    db.commit()
    db.refresh(update)
    return update


def add_reply(db: Session, thread: Thread, user: User, text: str) -> Message:
    """
    Internal reply. Left with external_message_id NULL so the outbound
    relay posts it to the thread's platform.
    """
    author = identity_service.get_or_create_user_author(db, user)
    message = Message(
        thread_id=thread.id,
        author_id=author.id,
        content=serialize_text(text),
        origin=None,
        external_message_id=None,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


# =============================================================================
# GitHub links
# =============================================================================

def external_issue(item: dict, owner: str, repo: str, full_name: str | None = None) -> dict:
    """Portal shape of a GitHub issue or pull request (id is github:owner/repo#id)."""
    return {
        "id": identity_service.format_github_id(item["id"], owner, repo),
        "number": item.get("number"),
        "title": item.get("title") or "",
        "body": item.get("body"),
        "state": item.get("state") or "open",
        "url": item.get("html_url") or "",
        "repository": {
            "owner": owner,
            "name": repo,
            "full_name": full_name or f"{owner}/{repo}",
        },
    }


def link_github_issue(
    db: Session,
    thread: Thread,
    issue_ref: str,
    actor: User | None = None,
    issue_number: int | None = None,
    issue_label: str | None = None,
    issue_url: str | None = None,
    update_type: UpdateType = UpdateType.GITHUB_ISSUE_LINKED,
) -> Update:
    thread.external_issue_id = issue_ref
    metadata = GitHubIssueMetadata(
        issue_id=issue_ref,
        issue_number=issue_number,
        issue_label=issue_label,
        issue_url=issue_url,
        source=PORTAL_SOURCE,
        user_name=actor.name if actor else None,
    )
    update = _append_update(db, thread, update_type, metadata, actor)
    db.commit()
    db.refresh(update)
    return update


def link_github_pr(
    db: Session,
    thread: Thread,
    pr_ref: str,
    actor: User | None = None,
    pr_number: int | None = None,
    pr_label: str | None = None,
    pr_url: str | None = None,
) -> Update:
    thread.external_pr_id = pr_ref
    metadata = GitHubPullRequestMetadata(
        pr_id=pr_ref,
        pr_number=pr_number,
        pr_label=pr_label,
        pr_url=pr_url,
        source=PORTAL_SOURCE,
        user_name=actor.name if actor else None,
    )
    update = _append_update(db, thread, UpdateType.GITHUB_PR_LINKED, metadata, actor)
    db.commit()
    db.refresh(update)
    return update


async def create_github_issue_for_thread(
    db: Session,
    org_id: UUID,
    thread_id: UUID,
    title: str,
    owner: str,
    repo: str,
    body: str | None = None,
    actor: User | None = None,
) -> dict:
    """
    Open a GitHub issue for a thread and link it.

    Raises IntegrationError for configuration problems and
    github_api.GitHubApiError when GitHub rejects the request.
    """
    config, target_repo = integration_service.require_github_repo(db, org_id, owner, repo)

    thread = get_thread(db, org_id, thread_id)
    if thread is None:
        raise IntegrationError(IntegrationErrorCode.THREAD_NOT_FOUND)

    org = db.get(Organization, org_id)
    footer = (
        "\n\n---\n\n"
        f"Issue created from the support portal. [View thread]({portal_thread_url(org, thread.id)})."
    )
    issue = await github_api.create_issue(
        config.installation_id, owner, repo, title, (body or "") + footer
    )

    issue_ref = identity_service.format_github_id(issue["id"], owner, repo)
    link_github_issue(
        db,
        thread,
        issue_ref,
        actor=actor,
        issue_number=issue.get("number"),
        issue_label=f"{owner}/{repo}#{issue.get('number')}",
        issue_url=issue.get("html_url"),
        update_type=UpdateType.GITHUB_ISSUE_CREATED,
    )
    logger.info(
        "Created GitHub issue %s for thread",
        issue_ref,
        extra=build_log_context(org_id=str(org_id), thread_id=str(thread.id)),
    )
    return external_issue(issue, owner, repo, target_repo.full_name)
