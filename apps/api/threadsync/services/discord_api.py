"""Discord REST client.

Only what the relay needs: find or create the channel webhook the portal
posts through, and execute it inside a thread. Every call raises
DiscordApiError on transport errors, HTTP errors and undecodable bodies.
"""

from __future__ import annotations

import math
from typing import Any

import httpx

from threadsync.core.config import settings

HTTPX_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


class DiscordApiError(Exception):
    """Discord REST call failed."""

    def __init__(self, route: str, error: str, retry_after: int | None = None):
        self.route = route
        self.error = error
        self.retry_after = retry_after
        super().__init__(f"Discord {route} failed: {error}")


def _url(path: str) -> str:
    return f"{settings.DISCORD_API_BASE_URL.rstrip('/')}{path}"


def _bot_headers() -> dict[str, str]:
    return {"Authorization": f"Bot {settings.DISCORD_BOT_TOKEN}"}


def _retry_after(resp: httpx.Response) -> int | None:
    raw = resp.headers.get("Retry-After")
    if raw is None:
        try:
            raw = (resp.json() or {}).get("retry_after")
        except ValueError:
            return None
    try:
        return math.ceil(float(raw))
    except (TypeError, ValueError):
        return None


async def _request(
    method: str,
    path: str,
    route: str,
    *,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
    json: dict[str, Any] | None = None,
) -> Any:
    try:
        async with httpx.AsyncClient(timeout=HTTPX_TIMEOUT) as client:
            resp = await client.request(
                method, _url(path), headers=headers, params=params, json=json
            )
    except httpx.TimeoutException as exc:
        raise DiscordApiError(route, "timeout") from exc
    except httpx.HTTPError as exc:
        raise DiscordApiError(route, f"transport_error: {type(exc).__name__}") from exc

    if resp.status_code == 429:
        raise DiscordApiError(route, "ratelimited", retry_after=_retry_after(resp))
    if resp.status_code >= 400:
        raise DiscordApiError(route, f"http_{resp.status_code}")

    try:
        return resp.json()
    except ValueError as exc:
        raise DiscordApiError(route, "invalid_json") from exc


async def list_channel_webhooks(channel_id: str) -> list[dict[str, Any]]:
    return await _request(
        "GET", f"/channels/{channel_id}/webhooks", "channel.webhooks", headers=_bot_headers()
    )


async def create_webhook(channel_id: str, name: str) -> dict[str, Any]:
    return await _request(
        "POST",
        f"/channels/{channel_id}/webhooks",
        "webhook.create",
        headers=_bot_headers(),
        json={"name": name},
    )


async def execute_webhook(
    webhook_id: str,
    webhook_token: str,
    content: str,
    thread_id: str | None = None,
    username: str | None = None,
) -> dict[str, Any]:
    """
    Post through a webhook. With wait=true Discord returns the created
    message, whose `id` becomes Message.external_message_id.
    """
    params: dict[str, Any] = {"wait": "true"}
    if thread_id:
        params["thread_id"] = thread_id
    payload: dict[str, Any] = {"content": content, "allowed_mentions": {"parse": []}}
    if username:
        payload["username"] = username
    return await _request(
        "POST",
        f"/webhooks/{webhook_id}/{webhook_token}",
        "webhook.execute",
        params=params,
        json=payload,
    )


async def get_or_create_webhook(channel_id: str, name: str | None = None) -> dict[str, Any]:
    """The channel's portal webhook, created on first use."""
    name = name or settings.DISCORD_WEBHOOK_NAME
    for webhook in await list_channel_webhooks(channel_id):
        # Only webhooks created by this bot come back with a token
        if webhook.get("name") == name and webhook.get("token"):
            return webhook
    return await create_webhook(channel_id, name)
