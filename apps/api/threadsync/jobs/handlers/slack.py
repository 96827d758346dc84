"""Slack job handlers."""

from __future__ import annotations

import logging
from uuid import UUID

logger = logging.getLogger(__name__)

PORTAL_NOTICE_TEXT = "This conversation is being tracked in <{url}|the support portal>."


async def process_slack_event(db, job) -> None:
    """
    Run a queued Events API delivery through the event dispatcher.

    The delivery was acknowledged by the HTTP response that enqueued it, so
    no ack callback is passed here.
    """
    from threadsync.db.enums import Platform
    from threadsync.services.event_dispatch import dispatch_event

    envelope = job.payload or {}
    event = envelope.get("event") or {}
    event_type = event.get("type")
    if not event_type:
        logger.warning("Slack event job %s has no event type", job.id)
        return

    await dispatch_event(
        db,
        Platform.SLACK,
        event_type,
        envelope,
        delivery_id=envelope.get("event_id"),
    )


async def process_slack_portal_notice(db, job) -> None:
    """Reply under a newly imported Slack thread with a link to the portal."""
    from threadsync.db.enums import Platform
    from threadsync.db.models import Organization, Thread
    from threadsync.services import integration_service, slack_api
    from threadsync.services.thread_service import portal_thread_url

    thread_id = job.payload.get("thread_id")
    if not thread_id:
        raise Exception("Missing thread_id in job payload")

    thread = db.get(Thread, UUID(thread_id))
    if thread is None or thread.external_origin != Platform.SLACK.value:
        logger.info("Thread %s not found or not from Slack, skipping notice", thread_id)
        return

    integration = integration_service.get_enabled_integration(
        db, thread.organization_id, Platform.SLACK.value
    )
    if integration is None:
        logger.info("No enabled Slack integration for thread %s, skipping notice", thread_id)
        return
    config = integration_service.read_config(integration)
    token = config.installation.bot_token if config.installation else None
    channel_id = (thread.external_metadata or {}).get("channelId")
    if not token or not channel_id:
        logger.info("Slack installation incomplete for thread %s, skipping notice", thread_id)
        return

    org = db.get(Organization, thread.organization_id)
    await slack_api.post_message(
        token,
        channel_id,
        PORTAL_NOTICE_TEXT.format(url=portal_thread_url(org, thread.id)),
        thread_ts=thread.external_id,
    )


async def process_slack_backfill_channel(db, job) -> None:
    from threadsync.services import slack_backfill_service

    payload = job.payload or {}
    integration_id = payload.get("integration_id")
    channel_id = payload.get("channel_id")
    if not integration_id or not channel_id:
        raise Exception("Missing integration_id or channel_id in job payload")

    await slack_backfill_service.backfill_channel_page(
        db, integration_id, channel_id, cursor=payload.get("cursor")
    )


async def process_slack_backfill_thread(db, job) -> None:
    from threadsync.services import slack_backfill_service

    payload = job.payload or {}
    integration_id = payload.get("integration_id")
    channel_id = payload.get("channel_id")
    thread_ts = payload.get("thread_ts")
    if not integration_id or not channel_id or not thread_ts:
        raise Exception("Missing integration_id, channel_id or thread_ts in job payload")

    await slack_backfill_service.backfill_thread_page(
        db, integration_id, channel_id, thread_ts, cursor=payload.get("cursor")
    )
