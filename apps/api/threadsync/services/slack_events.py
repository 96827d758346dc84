"""Slack message ingestion (live events and history backfill)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import JobType, Platform
from threadsync.db.models import Author, Integration, Message, Thread
from threadsync.schemas.integration import SlackIntegrationConfig
from threadsync.services import identity_service, integration_service, job_service, slack_api
from threadsync.services.events import EventContext
from threadsync.utils.rich_text import serialize_text

logger = logging.getLogger(__name__)

# Plain user messages plus the subtypes that still carry a user-authored message
INGESTED_SUBTYPES = {None, "thread_broadcast", "file_share"}
THREAD_NAME_MAX = 120


@dataclass
class IngestResult:
    thread: Thread
    message: Message
    created_thread: bool


def is_user_message(message: dict[str, Any]) -> bool:
    """False for bot posts (including our own relay posts), edits, deletes and joins."""
    if message.get("bot_id") or message.get("bot_profile"):
        return False
    if message.get("subtype") not in INGESTED_SUBTYPES:
        return False
    return bool(message.get("user")) and bool(message.get("ts"))


def thread_name_from_text(text: str) -> str:
    first_line = next((line.strip() for line in (text or "").splitlines() if line.strip()), "")
    if not first_line:
        return "Slack thread"
    if len(first_line) > THREAD_NAME_MAX:
        return first_line[: THREAD_NAME_MAX - 3].rstrip() + "..."
    return first_line


def _message_exists(db: Session, thread_id, external_message_id: str) -> bool:
    return (
        db.scalars(
            select(Message.id).where(
                Message.thread_id == thread_id,
                Message.external_message_id == external_message_id,
            )
        ).first()
        is not None
    )


async def _resolve_author(
    db: Session,
    integration: Integration,
    config: SlackIntegrationConfig,
    user_id: str,
) -> Author:
    author = identity_service.get_author_by_meta_id(db, integration.organization_id, user_id)
    if author:
        return author

    name = user_id
    token = config.installation.bot_token if config.installation else None
    if token:
        try:
            name = slack_api.display_name(await slack_api.users_info(token, user_id)) or user_id
        except slack_api.SlackApiError as exc:
            logger.warning("Slack users.info failed for author lookup: %s", exc.error)
    return identity_service.get_or_create_author(db, integration.organization_id, user_id, name)


async def ingest_slack_message(
    db: Session,
    integration: Integration,
    config: SlackIntegrationConfig,
    channel_id: str,
    message: dict[str, Any],
    notify: bool = True,
) -> IngestResult | None:
    """
    Import one Slack message.

    A message without a parent timestamp (or whose thread_ts is its own ts)
    starts a new Thread; anything else is a reply to the Thread rooted at
    thread_ts. Replays of an already-imported message are no-ops. The
    Thread and its first Message are committed together.
    """
    org_id = integration.organization_id
    ts = message["ts"]
    thread_ts = message.get("thread_ts")
    is_root = not thread_ts or thread_ts == ts
    log_context = build_log_context(org_id=str(org_id), platform=Platform.SLACK.value)

    thread: Thread | None
    if is_root:
        if identity_service.find_slack_thread(db, org_id, ts):
            logger.info("Slack thread %s already imported", ts, extra=log_context)
            return None
        thread = None
    else:
        thread = identity_service.find_slack_thread(db, org_id, thread_ts)
        if thread is None:
            logger.info("No thread for Slack parent %s, ignoring reply", thread_ts, extra=log_context)
            return None
        if _message_exists(db, thread.id, ts):
            logger.info("Slack message %s already imported", ts, extra=log_context)
            return None

    author = await _resolve_author(db, integration, config, message["user"])
    text = message.get("text") or ""

    if thread is None:
        thread = Thread(
            organization_id=org_id,
            name=thread_name_from_text(text),
            author_id=author.id,
            external_id=ts,
            external_origin=Platform.SLACK.value,
            external_metadata={"channelId": channel_id},
        )
        db.add(thread)
        db.flush()

    msg = Message(
        thread_id=thread.id,
        author_id=author.id,
        content=serialize_text(text),
        origin=Platform.SLACK.value,
        external_message_id=ts,
    )
    db.add(msg)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent delivery of the same message won the insert
        db.rollback()
        logger.info("Slack message %s imported concurrently", ts, extra=log_context)
        return None

    if is_root and notify and config.show_portal_message:
        schedule_portal_notice(db, org_id, thread.id)

    logger.info(
        "Imported Slack message %s into thread %s",
        ts,
        thread.id,
        extra=build_log_context(
            org_id=str(org_id), thread_id=str(thread.id), platform=Platform.SLACK.value
        ),
    )
    return IngestResult(thread=thread, message=msg, created_thread=is_root)


def schedule_portal_notice(db: Session, org_id, thread_id) -> None:
    """Best-effort single-attempt "tracked in portal" reply."""
    try:
        job_service.schedule_job(
            db,
            org_id,
            JobType.SLACK_PORTAL_NOTICE,
            {"thread_id": str(thread_id)},
            idempotency_key=f"slack_portal_notice:{thread_id}",
            max_attempts=1,
        )
    except IntegrityError:
        db.rollback()


async def handle_message(ctx: EventContext) -> None:
    """Events API `message` delivery (payload is the event_callback envelope)."""
    db = ctx.db
    envelope = ctx.payload
    event = envelope.get("event") or {}

    if not is_user_message(event):
        logger.debug("Skipping non-user Slack message (subtype=%s)", event.get("subtype"))
        return

    team_id = envelope.get("team_id") or event.get("team")
    integration = integration_service.find_slack_integration_by_team_id(db, team_id)
    if integration is None:
        logger.info("No enabled Slack integration for team %s", team_id)
        return

    config = integration_service.safe_read_config(integration)
    if config is None:
        return

    channel_id = event.get("channel")
    if channel_id not in config.selected_channels:
        logger.debug("Channel %s not selected, ignoring", channel_id)
        return

    await ingest_slack_message(db, integration, config, channel_id, event)
