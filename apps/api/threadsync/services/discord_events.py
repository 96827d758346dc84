"""Discord message ingestion.

Discord delivers messages over the gateway, not webhooks. A gateway bridge
forwards each MESSAGE_CREATE dispatch to the internal events endpoint with
the thread channel it was posted in attached as `thread`
({id, name, parent_id, parent_name}). Only messages inside threads are
synced: a Discord thread maps to one portal Thread.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import Platform
from threadsync.db.models import Integration, Message, Thread
from threadsync.schemas.integration import DiscordIntegrationConfig
from threadsync.services import identity_service, integration_service
from threadsync.services.events import EventContext
from threadsync.services.slack_events import thread_name_from_text
from threadsync.utils.rich_text import serialize_text

logger = logging.getLogger(__name__)

DISCORD = Platform.DISCORD.value
DISCORD_EPOCH_MS = 1420070400000
# A message this close to its thread's creation is the thread's first message
THREAD_START_WINDOW_MS = 1000
# DEFAULT and REPLY; joins, pins and other system messages are skipped
INGESTED_MESSAGE_TYPES = {0, 19}


def snowflake_timestamp_ms(snowflake: str | int) -> int:
    return (int(snowflake) >> 22) + DISCORD_EPOCH_MS


def starts_thread(message_id: str, thread_id: str) -> bool:
    """True when the message was posted as its thread was created."""
    delta = snowflake_timestamp_ms(message_id) - snowflake_timestamp_ms(thread_id)
    return abs(delta) < THREAD_START_WINDOW_MS


def is_user_message(message: dict[str, Any]) -> bool:
    """False for bots, for webhook posts (including our relay) and for system messages."""
    author = message.get("author") or {}
    if author.get("bot") or message.get("webhook_id"):
        return False
    if message.get("type", 0) not in INGESTED_MESSAGE_TYPES:
        return False
    return bool(author.get("id")) and bool(message.get("id"))


def author_name(author: dict[str, Any]) -> str:
    return author.get("global_name") or author.get("username") or str(author.get("id"))


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


def ingest_discord_message(
    db: Session,
    integration: Integration,
    config: DiscordIntegrationConfig,
    message: dict[str, Any],
    thread_channel: dict[str, Any],
) -> Message | None:
    """
    Import one Discord message posted in thread_channel.

    The first message of a Discord thread creates the portal Thread; later
    messages are appended to it. Replays are no-ops. Returns the new Message,
    or None when nothing was imported.
    """
    org_id = integration.organization_id
    channel_id = str(thread_channel["id"])
    message_id = str(message["id"])
    log_context = build_log_context(org_id=str(org_id), platform=DISCORD)

    thread = identity_service.find_discord_thread(db, org_id, channel_id)
    if thread is None and not starts_thread(message_id, channel_id):
        logger.info("No thread for Discord channel %s, ignoring message", channel_id, extra=log_context)
        return None
    if thread is not None and _message_exists(db, thread.id, message_id):
        logger.info("Discord message %s already imported", message_id, extra=log_context)
        return None

    discord_author = message["author"]
    author = identity_service.get_or_create_author(
        db, org_id, str(discord_author["id"]), author_name(discord_author)
    )
    content = message.get("content") or ""

    if thread is None:
        metadata = {"guildId": config.guild_id}
        if thread_channel.get("parent_id"):
            metadata["channelId"] = str(thread_channel["parent_id"])
        thread = Thread(
            organization_id=org_id,
            name=thread_channel.get("name") or thread_name_from_text(content),
            author_id=author.id,
            external_id=channel_id,
            external_origin=DISCORD,
            external_metadata=metadata,
        )
        db.add(thread)
        db.flush()

    msg = Message(
        thread_id=thread.id,
        author_id=author.id,
        content=serialize_text(content),
        origin=DISCORD,
        external_message_id=message_id,
    )
    db.add(msg)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Discord message %s imported concurrently", message_id, extra=log_context)
        return None

    logger.info(
        "Imported Discord message %s into thread %s",
        message_id,
        thread.id,
        extra=build_log_context(org_id=str(org_id), thread_id=str(thread.id), platform=DISCORD),
    )
    return msg


async def handle_message_create(ctx: EventContext) -> None:
    """Gateway MESSAGE_CREATE forwarded by the bridge."""
    db = ctx.db
    message = ctx.payload

    if not is_user_message(message):
        logger.debug("Skipping non-user Discord message")
        return

    thread_channel = message.get("thread")
    if not thread_channel or not thread_channel.get("id"):
        logger.debug("Discord message %s is not in a thread, ignoring", message.get("id"))
        return

    guild_id = message.get("guild_id")
    integration = integration_service.find_discord_integration_by_guild_id(db, guild_id)
    if integration is None:
        logger.info("No enabled Discord integration for guild %s", guild_id)
        return

    config = integration_service.safe_read_config(integration)
    if config is None:
        return

    if not config.accepts_channel(
        str(thread_channel.get("parent_id") or ""), thread_channel.get("parent_name")
    ):
        logger.debug("Discord channel %s not selected, ignoring", thread_channel.get("parent_id"))
        return

    ingest_discord_message(db, integration, config, message, thread_channel)
