"""Outbound relay of portal replies into Discord threads through channel webhooks."""

from datetime import datetime, timedelta, timezone

import pytest

from threadsync.db.enums import ThreadStatus
from threadsync.services import discord_api, slack_api, thread_service
from threadsync.services.relay_service import (
    DiscordRelay,
    RelayStats,
    SlackRelay,
    default_relays,
    run_relays,
)

DISCORD_CHANNEL_ID = "1180000000000000001"
DISCORD_THREAD_ID = "1190000000000000000"


def _naive_utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@pytest.fixture
def webhooks_created(monkeypatch):
    """Capture webhook lookups; each returns a webhook with a token."""
    calls = []

    async def fake_get_or_create_webhook(channel_id, name=None):
        calls.append(channel_id)
        return {"id": f"hook-{len(calls)}", "token": "hook-token", "name": "Support Portal"}

    monkeypatch.setattr(discord_api, "get_or_create_webhook", fake_get_or_create_webhook)
    return calls


@pytest.fixture
def executed(monkeypatch):
    """Capture webhook executions; each returns a fresh message id."""
    calls = []

    async def fake_execute_webhook(webhook_id, webhook_token, content, thread_id=None, username=None):
        calls.append(
            {
                "webhook_id": webhook_id,
                "token": webhook_token,
                "content": content,
                "thread_id": thread_id,
                "username": username,
            }
        )
        return {"id": f"msg-{len(calls)}", "channel_id": thread_id}

    monkeypatch.setattr(discord_api, "execute_webhook", fake_execute_webhook)
    return calls


@pytest.mark.asyncio
async def test_reply_is_posted_into_thread_with_author_name(
    db, discord_integration, discord_thread, test_user, webhooks_created, executed
):
    message = thread_service.add_reply(db, discord_thread, test_user, "Could you **restart** it?")

    stats = await DiscordRelay().run_once(db)

    assert stats.messages_sent == 1
    assert webhooks_created == [DISCORD_CHANNEL_ID]
    assert executed == [
        {
            "webhook_id": "hook-1",
            "token": "hook-token",
            "content": "Could you **restart** it?",
            "thread_id": DISCORD_THREAD_ID,
            "username": "Dana Agent",
        }
    ]
    db.refresh(message)
    assert message.external_message_id == "msg-1"
    assert message.relay_next_attempt_at is None


@pytest.mark.asyncio
async def test_webhook_is_cached_in_integration_config(
    db, discord_integration, discord_thread, test_user, webhooks_created, executed
):
    thread_service.add_reply(db, discord_thread, test_user, "First")
    relay = DiscordRelay()
    await relay.run_once(db)
    thread_service.add_reply(db, discord_thread, test_user, "Second")
    await relay.run_once(db)

    assert webhooks_created == [DISCORD_CHANNEL_ID]
    assert [call["webhook_id"] for call in executed] == ["hook-1"] * 2
    db.refresh(discord_integration)
    assert discord_integration.config["webhooks"] == {
        DISCORD_CHANNEL_ID: {"id": "hook-1", "token": "hook-token"}
    }


@pytest.mark.asyncio
async def test_deleted_webhook_is_forgotten_and_reply_retried_later(
    db, discord_integration, discord_thread, test_user, monkeypatch
):
    discord_integration.config = {
        **discord_integration.config,
        "webhooks": {DISCORD_CHANNEL_ID: {"id": "700000000000000009", "token": "stale"}},
    }
    db.commit()

    async def fake_execute_webhook(webhook_id, webhook_token, content, thread_id=None, username=None):
        raise discord_api.DiscordApiError("webhook.execute", "http_404")

    monkeypatch.setattr(discord_api, "execute_webhook", fake_execute_webhook)
    message = thread_service.add_reply(db, discord_thread, test_user, "Hello?")

    stats = await DiscordRelay().run_once(db)

    assert stats.failures == 1
    db.refresh(message)
    assert message.external_message_id is None
    assert message.relay_attempts == 1
    assert message.relay_last_error.startswith("DiscordApiError")
    db.refresh(discord_integration)
    assert "webhooks" not in discord_integration.config


@pytest.mark.asyncio
async def test_rate_limit_backs_off_by_retry_after(
    db, discord_integration, discord_thread, test_user, webhooks_created, monkeypatch
):
    async def fake_execute_webhook(webhook_id, webhook_token, content, thread_id=None, username=None):
        raise discord_api.DiscordApiError("webhook.execute", "ratelimited", retry_after=300)

    monkeypatch.setattr(discord_api, "execute_webhook", fake_execute_webhook)
    message = thread_service.add_reply(db, discord_thread, test_user, "Ping")

    stats = await DiscordRelay().run_once(db)

    assert stats.failures == 1
    db.refresh(message)
    assert message.relay_next_attempt_at >= _naive_utc_now() + timedelta(seconds=290)
    assert DiscordRelay().pending_messages(db) == []


@pytest.mark.asyncio
async def test_missing_integration_counts_as_failure(
    db, discord_thread, test_user, webhooks_created, executed
):
    message = thread_service.add_reply(db, discord_thread, test_user, "Anyone?")

    stats = await DiscordRelay().run_once(db)

    assert stats.failures == 1
    assert executed == []
    db.refresh(message)
    assert message.relay_last_error.startswith("RelayConfigError")


@pytest.mark.asyncio
async def test_discord_relay_ignores_slack_threads(
    db, discord_integration, slack_integration, slack_thread, test_user, executed
):
    thread_service.add_reply(db, slack_thread, test_user, "For Slack only")

    stats = await DiscordRelay().run_once(db)

    assert stats == RelayStats()
    assert executed == []


@pytest.mark.asyncio
async def test_status_changes_are_not_mirrored_to_discord(
    db, discord_integration, discord_thread, test_user, executed
):
    thread_service.change_status(db, discord_thread, ThreadStatus.RESOLVED, actor=test_user)

    stats = await DiscordRelay().run_once(db)

    assert stats.updates_sent == 0
    assert executed == []


@pytest.mark.asyncio
async def test_run_relays_combines_platform_passes(
    db,
    discord_integration,
    discord_thread,
    slack_integration,
    slack_thread,
    test_user,
    webhooks_created,
    executed,
    monkeypatch,
):
    async def fake_post_message(token, channel, text, thread_ts=None, username=None):
        return {"ok": True, "ts": "1700000100.000001"}

    monkeypatch.setattr(slack_api, "post_message", fake_post_message)
    thread_service.add_reply(db, slack_thread, test_user, "To Slack")
    thread_service.add_reply(db, discord_thread, test_user, "To Discord")

    stats = await run_relays(db, [SlackRelay(), DiscordRelay()])

    assert stats.messages_sent == 2
    assert stats.failures == 0
    assert [call["content"] for call in executed] == ["To Discord"]


def test_default_relays_cover_slack_and_discord():
    assert [type(relay) for relay in default_relays()] == [SlackRelay, DiscordRelay]
