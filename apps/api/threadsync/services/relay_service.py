"""Outbound relay: mirror portal replies and thread updates to the thread's platform.

The relay is a polling consumer. Its cursor is the per-row marker itself
(Message.external_message_id, Update.replicated["slack"]) so a restart picks
up exactly where the last committed marker left off. Failed rows are retried
with exponential backoff and abandoned after RELAY_MAX_ATTEMPTS.

Two guards keep a row from being posted twice. The in-flight guard stops
overlapping passes of one relay. The lease (a conditional UPDATE pushing
relay_next_attempt_at forward) stops relays in other sessions or processes,
such as the worker and the manual relay endpoint. The row is re-read after
the lease is taken, so a stale snapshot of an already-sent row is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy import update as sql_update
from sqlalchemy.orm import Session

from threadsync.core.config import settings
from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import Platform, UpdateType
from threadsync.db.models import Message, Thread, Update
from threadsync.schemas.integration import DiscordWebhook
from threadsync.schemas.update import (
    AssignedChangedMetadata,
    GitHubIssueMetadata,
    GitHubPullRequestMetadata,
    MarkedDuplicateMetadata,
    PriorityChangedMetadata,
    StatusChangedMetadata,
    parse_update_metadata,
)
from threadsync.services import discord_api, integration_service, slack_api
from threadsync.services.replication import is_replicated, mark_replicated
from threadsync.services.status_translation import priority_label, status_label
from threadsync.utils.rich_text import safe_parse_content, to_discord_markdown, to_slack_mrkdwn

logger = logging.getLogger(__name__)

SLACK = Platform.SLACK.value
DISCORD = Platform.DISCORD.value
FALLBACK_USER_NAME = "Someone"
LAST_ERROR_MAX = 500
RATE_LIMITED_ERRORS = (slack_api.SlackApiError, discord_api.DiscordApiError)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class RelayConfigError(Exception):
    """The thread's organization has no usable installation for its platform."""


class InFlightGuard:
    """
    Keys currently being sent by this relay.

    A key is claimed before the platform call and released afterwards, so two
    overlapping passes never post the same row twice.
    """

    def __init__(self) -> None:
        self._keys: set[str] = set()
        self._lock = asyncio.Lock()

    async def claim(self, key: str) -> bool:
        async with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    async def release(self, key: str) -> None:
        async with self._lock:
            self._keys.discard(key)

    @asynccontextmanager
    async def hold(self, key: str):
        """Yields True when the key was claimed; releases it on exit."""
        claimed = await self.claim(key)
        try:
            yield claimed
        finally:
            if claimed:
                await self.release(key)

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class RelayOutcome(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RelayStats:
    messages_sent: int = 0
    updates_sent: int = 0
    failures: int = 0

    def merge(self, other: "RelayStats") -> "RelayStats":
        self.messages_sent += other.messages_sent
        self.updates_sent += other.updates_sent
        self.failures += other.failures
        return self


def backoff_delay(attempts: int, retry_after: int | None = None) -> timedelta:
    """Delay before the next attempt, honouring a larger platform Retry-After."""
    seconds = min(
        settings.RELAY_BACKOFF_BASE_SECONDS * 2 ** max(attempts - 1, 0),
        settings.RELAY_BACKOFF_MAX_SECONDS,
    )
    if retry_after and retry_after > seconds:
        seconds = retry_after
    return timedelta(seconds=seconds)


# =============================================================================
# Update formatting
# =============================================================================

def format_update_text(update: Update) -> str | None:
    """Slack text for an Update, or None when the type has no Slack rendering."""
    metadata = parse_update_metadata(update.type, update.meta)
    if metadata is None:
        return None

    user = metadata.user_name or (update.user.name if update.user else None) or FALLBACK_USER_NAME

    if isinstance(metadata, StatusChangedMetadata):
        label = metadata.new_status_label or status_label(metadata.new_status)
        return f"{user} changed status to *{label}*"

    if isinstance(metadata, PriorityChangedMetadata):
        label = metadata.new_priority_label or priority_label(metadata.new_priority)
        return f"{user} changed priority to *{label}*"

    if isinstance(metadata, AssignedChangedMetadata):
        if not metadata.new_assigned_user_id:
            return f"{user} unassigned the thread"
        if update.user_id and metadata.new_assigned_user_id == str(update.user_id):
            return f"{user} self-assigned the thread"
        assignee = metadata.new_assigned_user_name or "someone"
        return f"{user} assigned the thread to *{assignee}*"

    if isinstance(metadata, MarkedDuplicateMetadata):
        target = metadata.duplicate_of_thread_name or "another thread"
        return f"{user} marked this thread as a duplicate of *{target}*"

    if isinstance(metadata, GitHubIssueMetadata):
        label = _link(metadata.issue_label or metadata.issue_id, metadata.issue_url)
        if update.type == UpdateType.GITHUB_ISSUE_CREATED.value:
            return f"{user} created GitHub issue {label}"
        return f"{user} linked GitHub issue {label}"

    if isinstance(metadata, GitHubPullRequestMetadata):
        label = _link(metadata.pr_label or metadata.pr_id, metadata.pr_url)
        return f"{user} linked pull request {label}"

    return None


def _link(label: str, url: str | None) -> str:
    if url:
        return f"<{url}|{label}>"
    return label


# =============================================================================
# Relay base
# =============================================================================

class PlatformRelay:
    """
    Relays portal replies to threads imported from one platform.

    One relay per platform per process. Subclasses implement _send_message.
    """

    platform: str

    def __init__(
        self,
        guard: InFlightGuard | None = None,
        batch_size: int | None = None,
        max_attempts: int | None = None,
    ):
        self.guard = guard or InFlightGuard()
        self.batch_size = batch_size or settings.RELAY_BATCH_SIZE
        self.max_attempts = max_attempts or settings.RELAY_MAX_ATTEMPTS

    def _due(self, model, now: datetime):
        return (
            model.relay_attempts < self.max_attempts,
            or_(model.relay_next_attempt_at.is_(None), model.relay_next_attempt_at <= now),
        )

    def _linked_thread(self):
        return (
            Thread.external_origin == self.platform,
            Thread.external_id.is_not(None),
            Thread.external_metadata.is_not(None),
            Thread.deleted_at.is_(None),
        )

    def pending_messages(self, db: Session) -> list[Message]:
        stmt = (
            select(Message)
            .join(Thread, Message.thread_id == Thread.id)
            .where(
                Message.external_message_id.is_(None),
                *self._linked_thread(),
                *self._due(Message, _now_utc()),
            )
            .order_by(Message.created_at)
            .limit(self.batch_size)
        )
        return list(db.scalars(stmt))

    def pending_updates(self, db: Session) -> list[Update]:
        return []

    def _lease(self, db: Session, model, row_id: UUID, *pending) -> bool:
        """
        Claim a due row for RELAY_LEASE_SECONDS. Returns False when the row
        was sent or claimed by someone else since it was read.
        """
        now = _now_utc()
        result = db.execute(
            sql_update(model)
            .where(model.id == row_id, *pending, *self._due(model, now))
            .values(relay_next_attempt_at=now + timedelta(seconds=settings.RELAY_LEASE_SECONDS))
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount == 0:
            logger.info(
                "%s %s already relayed or leased, skipping",
                model.__name__,
                row_id,
                extra=build_log_context(platform=self.platform),
            )
            return False
        return True

    def _record_failure(self, db: Session, row: Message | Update, exc: Exception) -> None:
        db.rollback()
        attempts = row.relay_attempts + 1
        retry_after = exc.retry_after if isinstance(exc, RATE_LIMITED_ERRORS) else None
        row.relay_attempts = attempts
        row.relay_last_error = f"{type(exc).__name__}: {exc}"[:LAST_ERROR_MAX]
        row.relay_next_attempt_at = _now_utc() + backoff_delay(attempts, retry_after)
        db.commit()

        log_context = build_log_context(thread_id=str(row.thread_id), platform=self.platform)
        if attempts >= self.max_attempts:
            logger.error(
                "Giving up relaying %s %s after %d attempts: %s",
                type(row).__name__,
                row.id,
                attempts,
                exc,
                extra=log_context,
            )
        else:
            logger.warning(
                "Relay of %s %s failed (attempt %d): %s",
                type(row).__name__,
                row.id,
                attempts,
                exc,
                extra=log_context,
            )

    async def _send_message(self, db: Session, message: Message) -> str:
        """Post the reply; returns the platform message id."""
        raise NotImplementedError

    async def relay_message(self, db: Session, message: Message) -> RelayOutcome:
        """Post one internal reply."""
        async with self.guard.hold(f"message:{message.id}") as claimed:
            if not claimed:
                return RelayOutcome.SKIPPED
            if not self._lease(db, Message, message.id, Message.external_message_id.is_(None)):
                return RelayOutcome.SKIPPED
            try:
                db.refresh(message)
                external_id = await self._send_message(db, message)
                return self._store_message_ts(db, message.id, external_id)
            except Exception as exc:
                self._record_failure(db, message, exc)
                return RelayOutcome.FAILED

    def _store_message_ts(self, db: Session, message_id: UUID, ts: str) -> RelayOutcome:
        # Write-once: a concurrent writer that got there first wins
        result = db.execute(
            sql_update(Message)
            .where(Message.id == message_id, Message.external_message_id.is_(None))
            .values(
                external_message_id=ts,
                relay_last_error=None,
                relay_next_attempt_at=None,
            )
        )
        db.commit()
        if result.rowcount == 0:
            logger.warning("Message %s already had an external id, kept existing", message_id)
            return RelayOutcome.SKIPPED
        return RelayOutcome.SENT

    async def relay_update(self, db: Session, update: Update) -> RelayOutcome:
        return RelayOutcome.SKIPPED

    async def run_once(self, db: Session) -> RelayStats:
        """Relay one batch of pending messages and one batch of pending updates."""
        stats = RelayStats()

        for message in self.pending_messages(db):
            outcome = await self.relay_message(db, message)
            if outcome is RelayOutcome.SENT:
                stats.messages_sent += 1
            elif outcome is RelayOutcome.FAILED:
                stats.failures += 1

        for update in self.pending_updates(db):
            outcome = await self.relay_update(db, update)
            if outcome is RelayOutcome.SENT:
                stats.updates_sent += 1
            elif outcome is RelayOutcome.FAILED:
                stats.failures += 1

        if stats.messages_sent or stats.updates_sent or stats.failures:
            logger.info(
                "%s relay pass: %d messages, %d updates, %d failures",
                self.platform,
                stats.messages_sent,
                stats.updates_sent,
                stats.failures,
            )
        return stats


# =============================================================================
# Slack
# =============================================================================

class SlackRelay(PlatformRelay):
    """Replies and Update notices into the Slack thread under the root message."""

    platform = SLACK

    def _update_pending(self):
        return Update.replicated[SLACK].as_string().is_(None)

    def pending_updates(self, db: Session) -> list[Update]:
        stmt = (
            select(Update)
            .join(Thread, Update.thread_id == Thread.id)
            .where(
                self._update_pending(),
                *self._linked_thread(),
                *self._due(Update, _now_utc()),
            )
            .order_by(Update.created_at)
            .limit(self.batch_size)
        )
        return list(db.scalars(stmt))

    def _destination(self, db: Session, thread: Thread) -> tuple[str, str]:
        """(bot token, channel id) for a Slack-linked thread."""
        channel_id = (thread.external_metadata or {}).get("channelId")
        if not channel_id:
            raise RelayConfigError("thread has no channelId")

        integration = integration_service.get_enabled_integration(
            db, thread.organization_id, SLACK
        )
        if integration is None:
            raise RelayConfigError("no enabled Slack integration")
        config = integration_service.safe_read_config(integration)
        if config is None or not config.team_id:
            raise RelayConfigError("Slack integration has no teamId")
        token = config.installation.bot_token if config.installation else None
        if not token:
            raise RelayConfigError("Slack installation has no bot token")
        return token, channel_id

    async def _send_message(self, db: Session, message: Message) -> str:
        thread = message.thread
        token, channel_id = self._destination(db, thread)
        text = to_slack_mrkdwn(safe_parse_content(message.content)) or " "
        author_name = message.author.name if message.author else None
        response = await slack_api.post_message(
            token,
            channel_id,
            text,
            thread_ts=thread.external_id,
            username=author_name,
        )
        return response["ts"]

    async def relay_update(self, db: Session, update: Update) -> RelayOutcome:
        """Post one Update notice."""
        async with self.guard.hold(f"update:{update.id}") as claimed:
            if not claimed:
                return RelayOutcome.SKIPPED
            if not self._lease(db, Update, update.id, self._update_pending()):
                return RelayOutcome.SKIPPED
            try:
                db.refresh(update)
                if is_replicated(update, SLACK):
                    return RelayOutcome.SKIPPED

                text = format_update_text(update)
                if text is None:
                    # No Slack rendering; mark so it is not scanned again
                    mark_replicated(update, SLACK)
                    update.relay_next_attempt_at = None
                    db.commit()
                    return RelayOutcome.SKIPPED

                thread = update.thread
                token, channel_id = self._destination(db, thread)
                response = await slack_api.post_message(
                    token, channel_id, text, thread_ts=thread.external_id
                )
                mark_replicated(update, SLACK, response["ts"])
                update.relay_last_error = None
                update.relay_next_attempt_at = None
                db.commit()
                return RelayOutcome.SENT
            except Exception as exc:
                self._record_failure(db, update, exc)
                return RelayOutcome.FAILED


# =============================================================================
# Discord
# =============================================================================

class DiscordRelay(PlatformRelay):
    """
    Replies into Discord threads through a webhook on the parent channel.

    Webhooks are cached per parent channel in the integration config. Update
    notices are not mirrored to Discord.
    """

    platform = DISCORD

    async def _webhook(self, db: Session, thread: Thread) -> tuple[str, DiscordWebhook]:
        """(parent channel id, webhook) for a Discord-linked thread."""
        parent_id = (thread.external_metadata or {}).get("channelId")
        if not parent_id:
            raise RelayConfigError("thread has no channelId")

        integration = integration_service.get_enabled_integration(
            db, thread.organization_id, DISCORD
        )
        if integration is None:
            raise RelayConfigError("no enabled Discord integration")
        config = integration_service.safe_read_config(integration)
        if config is None or not config.guild_id:
            raise RelayConfigError("Discord integration has no guildId")

        cached = (config.webhooks or {}).get(parent_id)
        if cached:
            return parent_id, cached

        raw = await discord_api.get_or_create_webhook(parent_id)
        webhook = DiscordWebhook(id=str(raw["id"]), token=raw["token"])
        config.webhooks = {**(config.webhooks or {}), parent_id: webhook}
        integration_service.write_config(integration, config)
        db.commit()
        return parent_id, webhook

    def _forget_webhook(self, db: Session, thread: Thread, parent_id: str) -> None:
        integration = integration_service.get_enabled_integration(
            db, thread.organization_id, DISCORD
        )
        config = integration_service.safe_read_config(integration) if integration else None
        if config is None or not config.webhooks or parent_id not in config.webhooks:
            return
        remaining = {k: v for k, v in config.webhooks.items() if k != parent_id}
        config.webhooks = remaining or None
        integration_service.write_config(integration, config)
        db.commit()

    async def _send_message(self, db: Session, message: Message) -> str:
        thread = message.thread
        parent_id, webhook = await self._webhook(db, thread)
        # Discord rejects empty content
        content = to_discord_markdown(safe_parse_content(message.content)) or "\u200b"
        author_name = message.author.name if message.author else None
        try:
            response = await discord_api.execute_webhook(
                webhook.id,
                webhook.token,
                content,
                thread_id=thread.external_id,
                username=author_name,
            )
        except discord_api.DiscordApiError as exc:
            if exc.error in ("http_401", "http_404"):
                # Webhook deleted on Discord; recreate it on the next attempt
                self._forget_webhook(db, thread, parent_id)
            raise
        return str(response["id"])


def default_relays() -> list[PlatformRelay]:
    return [SlackRelay(), DiscordRelay()]


async def run_relays(db: Session, relays: list[PlatformRelay]) -> RelayStats:
    """One pass of every relay, with combined stats."""
    stats = RelayStats()
    for relay in relays:
        stats.merge(await relay.run_once(db))
    return stats
