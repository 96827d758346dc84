"""GitHub webhook event handlers."""

from __future__ import annotations

import logging

from sqlalchemy import update as sql_update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import Platform, UpdateType
from threadsync.db.models import Message, Thread, Update
from threadsync.schemas.update import StatusChangedMetadata, dump_update_metadata
from threadsync.services import identity_service, integration_service
from threadsync.services.events import EventContext
from threadsync.services.replication import origin_marker
from threadsync.services.status_translation import translate_external_event
from threadsync.utils.rich_text import serialize_text

logger = logging.getLogger(__name__)

GITHUB_USER_NAME = "GitHub Integration"


def _repository(payload: dict) -> tuple[str | None, str | None, str | None]:
    repository = payload.get("repository") or {}
    owner = (repository.get("owner") or {}).get("login")
    return owner, repository.get("name"), repository.get("full_name")


# =============================================================================
# Closed
# =============================================================================

def _resolve_linked_threads(
    db: Session,
    threads: list[Thread],
    event: str,
    metadata_extra: dict,
    delivery_id: str | None,
) -> int:
    """Move each linked thread to the translated status, one Update per transition."""
    changed = 0
    for thread in threads:
        transition = translate_external_event(Platform.GITHUB.value, event, thread.status)
        if transition is None:
            logger.info(
                "Thread %s already at status %s, skipping",
                thread.id,
                thread.status,
                extra=build_log_context(
                    org_id=str(thread.organization_id),
                    thread_id=str(thread.id),
                    event_type=event,
                    delivery_id=delivery_id,
                ),
            )
            continue

        # Compare-and-set so concurrent redeliveries transition the thread once
        result = db.execute(
            sql_update(Thread)
            .where(Thread.id == thread.id, Thread.status == transition.old_status)
            .values(status=transition.new_status)
        )
        if result.rowcount == 0:
            logger.info("Thread %s changed concurrently, skipping", thread.id)
            continue

        metadata = StatusChangedMetadata(
            old_status=transition.old_status,
            new_status=transition.new_status,
            old_status_label=transition.old_label,
            new_status_label=transition.new_label,
            source=Platform.GITHUB.value,
            user_name=GITHUB_USER_NAME,
            **metadata_extra,
        )
        db.add(
            Update(
                thread_id=thread.id,
                type=UpdateType.STATUS_CHANGED.value,
                user_id=None,
                meta=dump_update_metadata(metadata),
                replicated=origin_marker(Platform.GITHUB.value),
            )
        )
        changed += 1
        logger.info(
            "Thread %s status %s -> %s",
            thread.id,
            transition.old_label,
            transition.new_label,
            extra=build_log_context(
                org_id=str(thread.organization_id),
                thread_id=str(thread.id),
                event_type=event,
                delivery_id=delivery_id,
            ),
        )
    db.commit()
    return changed


async def handle_issue_closed(ctx: EventContext) -> None:
    payload = ctx.payload
    issue = payload.get("issue") or {}
    owner, repo, full_name = _repository(payload)
    if issue.get("id") is None:
        logger.warning("issues.closed without issue id")
        return

    threads = identity_service.find_threads_by_issue_id(ctx.db, issue["id"], owner, repo)
    if not threads:
        logger.info("No threads linked to issue %s#%s", full_name, issue.get("number"))
        return

    _resolve_linked_threads(
        ctx.db,
        threads,
        "issues.closed",
        {"issue_number": issue.get("number"), "repo_full_name": full_name},
        ctx.delivery_id,
    )


async def handle_pull_request_closed(ctx: EventContext) -> None:
    payload = ctx.payload
    pull_request = payload.get("pull_request") or {}
    owner, repo, full_name = _repository(payload)
    if pull_request.get("id") is None:
        logger.warning("pull_request.closed without pull request id")
        return

    threads = identity_service.find_threads_by_pr_id(ctx.db, pull_request["id"], owner, repo)
    if not threads:
        logger.info("No threads linked to PR %s#%s", full_name, pull_request.get("number"))
        return

    _resolve_linked_threads(
        ctx.db,
        threads,
        "pull_request.closed",
        {
            "pr_number": pull_request.get("number"),
            "repo_full_name": full_name,
            "merged": bool(pull_request.get("merged")),
        },
        ctx.delivery_id,
    )


# =============================================================================
# Opened
# =============================================================================

async def _import_opened(ctx: EventContext, kind: str, item: dict) -> None:
    """Create a thread for a newly opened issue/PR in every org tracking the repo."""
    db = ctx.db
    payload = ctx.payload
    installation_id = (payload.get("installation") or {}).get("id")
    owner, repo, full_name = _repository(payload)
    if installation_id is None or not owner or not repo or item.get("id") is None:
        logger.warning("%s.opened missing installation, repository or id", kind)
        return

    integrations = integration_service.find_github_integrations_by_installation(
        db, installation_id
    )
    if not integrations:
        logger.info("No GitHub integration for installation %s", installation_id)
        return

    external_ref = identity_service.format_github_id(item["id"], owner, repo)
    user = item.get("user") or {}

    for integration in integrations:
        config = integration_service.safe_read_config(integration)
        if config is None:
            continue
        if kind not in config.selected_events:
            continue
        if config.find_repo(owner, repo) is None:
            continue

        org_id = integration.organization_id
        if identity_service.find_thread_by_external_ref(
            db, org_id, Platform.GITHUB.value, external_ref
        ):
            logger.info("Thread for %s already exists, skipping", external_ref)
            continue

        author = None
        if user.get("id") is not None:
            author = identity_service.get_or_create_author(
                db, org_id, str(user["id"]), user.get("login") or str(user["id"])
            )

        thread = Thread(
            organization_id=org_id,
            name=(item.get("title") or external_ref)[:500],
            author_id=author.id if author else None,
            external_id=external_ref,
            external_origin=Platform.GITHUB.value,
            external_metadata={
                "repoFullName": full_name,
                "number": item.get("number"),
                "url": item.get("html_url"),
            },
            external_issue_id=external_ref if kind == "issues" else None,
            external_pr_id=external_ref if kind == "pull_request" else None,
        )
        db.add(thread)
        db.flush()

        body = item.get("body")
        if body:
            db.add(
                Message(
                    thread_id=thread.id,
                    author_id=author.id if author else None,
                    content=serialize_text(body),
                    origin=Platform.GITHUB.value,
                    external_message_id=str(item["id"]),
                )
            )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info("Concurrent import of %s, keeping existing thread", external_ref)
            continue

        logger.info(
            "Imported %s as thread %s",
            external_ref,
            thread.id,
            extra=build_log_context(
                org_id=str(org_id),
                thread_id=str(thread.id),
                platform=Platform.GITHUB.value,
                delivery_id=ctx.delivery_id,
            ),
        )


async def handle_issue_opened(ctx: EventContext) -> None:
    await _import_opened(ctx, "issues", ctx.payload.get("issue") or {})


async def handle_pull_request_opened(ctx: EventContext) -> None:
    await _import_opened(ctx, "pull_request", ctx.payload.get("pull_request") or {})
