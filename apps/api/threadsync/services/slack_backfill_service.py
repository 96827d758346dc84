"""Slack history backfill.

When a channel is selected, its history is imported page by page through
background jobs: one job per conversations.history page, plus one job per
message that has replies. Imports go through the live ingestion path, so
re-running a backfill never duplicates threads or messages.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import JobType, Platform
from threadsync.db.models import Integration
from threadsync.services import integration_service, job_service, slack_api
from threadsync.services.slack_events import ingest_slack_message, is_user_message

logger = logging.getLogger(__name__)

PAGE_SIZE = 200


def _schedule(db: Session, integration: Integration, job_type: JobType, payload: dict, key: str) -> bool:
    try:
        job_service.schedule_job(
            db,
            integration.organization_id,
            job_type,
            payload,
            idempotency_key=key,
        )
        return True
    except IntegrityError:
        db.rollback()
        return False


def schedule_channel_backfill(
    db: Session, integration: Integration, channel_id: str, cursor: str | None = None
) -> bool:
    """Queue one history page. Returns False when that page is already queued."""
    return _schedule(
        db,
        integration,
        JobType.SLACK_BACKFILL_CHANNEL,
        {"integration_id": str(integration.id), "channel_id": channel_id, "cursor": cursor},
        f"slack_backfill_channel:{integration.id}:{channel_id}:{cursor or 'start'}",
    )


def schedule_thread_backfill(
    db: Session,
    integration: Integration,
    channel_id: str,
    thread_ts: str,
    cursor: str | None = None,
) -> bool:
    return _schedule(
        db,
        integration,
        JobType.SLACK_BACKFILL_THREAD,
        {
            "integration_id": str(integration.id),
            "channel_id": channel_id,
            "thread_ts": thread_ts,
            "cursor": cursor,
        },
        f"slack_backfill_thread:{integration.id}:{channel_id}:{thread_ts}:{cursor or 'start'}",
    )


def _load(db: Session, integration_id: UUID | str):
    """Enabled Slack integration, its config and bot token, or None."""
    integration = db.get(Integration, UUID(str(integration_id)))
    if integration is None or not integration.enabled or integration.type != Platform.SLACK.value:
        return None
    config = integration_service.safe_read_config(integration)
    if config is None or config.installation is None or not config.installation.bot_token:
        return None
    return integration, config, config.installation.bot_token


def _next_cursor(response: dict) -> str | None:
    return (response.get("response_metadata") or {}).get("next_cursor") or None


async def backfill_channel_page(
    db: Session, integration_id: UUID | str, channel_id: str, cursor: str | None = None
) -> int:
    """
    Import one page of channel history. Returns the number of new threads.

    Raises SlackApiError so the job is retried.
    """
    loaded = _load(db, integration_id)
    if loaded is None:
        logger.info("Slack integration %s unavailable, skipping backfill", integration_id)
        return 0
    integration, config, token = loaded
    if channel_id not in config.selected_channels:
        logger.info("Channel %s no longer selected, stopping backfill", channel_id)
        return 0

    log_context = build_log_context(
        org_id=str(integration.organization_id), platform=Platform.SLACK.value
    )
    response = await slack_api.conversations_history(token, channel_id, cursor=cursor, limit=PAGE_SIZE)
    messages = [m for m in response.get("messages") or [] if is_user_message(m)]
    integration_service.update_backfill_progress(db, integration.id, total=len(messages))

    imported = 0
    for message in messages:
        # History returns thread parents only; their replies come from a thread job
        result = await ingest_slack_message(
            db, integration, config, channel_id, {**message, "thread_ts": None}, notify=False
        )
        if result is not None:
            imported += 1
        if message.get("reply_count"):
            schedule_thread_backfill(db, integration, channel_id, message["ts"])
        integration_service.update_backfill_progress(db, integration.id, processed=1)

    next_cursor = _next_cursor(response)
    if next_cursor:
        schedule_channel_backfill(db, integration, channel_id, next_cursor)

    logger.info(
        "Backfilled %d of %d messages from channel %s",
        imported,
        len(messages),
        channel_id,
        extra=log_context,
    )
    return imported


async def backfill_thread_page(
    db: Session,
    integration_id: UUID | str,
    channel_id: str,
    thread_ts: str,
    cursor: str | None = None,
) -> int:
    """Import one page of replies under thread_ts. Returns the number of new messages."""
    loaded = _load(db, integration_id)
    if loaded is None:
        return 0
    integration, config, token = loaded

    response = await slack_api.conversations_replies(
        token, channel_id, thread_ts, cursor=cursor, limit=PAGE_SIZE
    )
    replies = [
        m
        for m in response.get("messages") or []
        if m.get("ts") != thread_ts and is_user_message(m)
    ]
    integration_service.update_backfill_progress(db, integration.id, total=len(replies))

    imported = 0
    for reply in replies:
        result = await ingest_slack_message(
            db, integration, config, channel_id, {**reply, "thread_ts": thread_ts}, notify=False
        )
        if result is not None:
            imported += 1
        integration_service.update_backfill_progress(db, integration.id, processed=1)

    next_cursor = _next_cursor(response)
    if next_cursor:
        schedule_thread_backfill(db, integration, channel_id, thread_ts, next_cursor)
    return imported
