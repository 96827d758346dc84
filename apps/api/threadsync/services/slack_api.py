"""Slack Web API client.

Thin async wrappers over the handful of Web API methods the sync engine
needs. Every call raises SlackApiError on transport errors, HTTP errors and
`ok: false` responses so callers can decide whether to retry.
"""

from __future__ import annotations

from typing import Any

import httpx

from threadsync.core.config import settings

HTTPX_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


class SlackApiError(Exception):
    """Slack Web API call failed."""

    def __init__(self, method: str, error: str, retry_after: int | None = None):
        self.method = method
        self.error = error
        self.retry_after = retry_after
        super().__init__(f"Slack {method} failed: {error}")


def _url(method: str) -> str:
    return f"{settings.SLACK_API_BASE_URL.rstrip('/')}/{method}"


async def _call(
    method: str,
    *,
    token: str | None = None,
    json: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    headers = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        async with httpx.AsyncClient(timeout=HTTPX_TIMEOUT) as client:
            if json is not None:
                resp = await client.post(_url(method), json=json, headers=headers)
            elif data is not None:
                resp = await client.post(_url(method), data=data, headers=headers)
            else:
                resp = await client.get(_url(method), params=params, headers=headers)
    except httpx.TimeoutException as exc:
        raise SlackApiError(method, "timeout") from exc
    except httpx.HTTPError as exc:
        raise SlackApiError(method, f"transport_error: {type(exc).__name__}") from exc

    if resp.status_code == 429:
        retry_after = resp.headers.get("Retry-After")
        raise SlackApiError(
            method,
            "ratelimited",
            retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
        )
    if resp.status_code != 200:
        raise SlackApiError(method, f"http_{resp.status_code}")

    try:
        body = resp.json()
    except ValueError as exc:
        raise SlackApiError(method, "invalid_json") from exc
    if not isinstance(body, dict):
        raise SlackApiError(method, "invalid_json")
    if not body.get("ok"):
        raise SlackApiError(method, body.get("error") or "unknown_error")
    return body


async def post_message(
    token: str,
    channel: str,
    text: str,
    thread_ts: str | None = None,
    username: str | None = None,
) -> dict[str, Any]:
    """chat.postMessage. The returned body carries the new message `ts`."""
    payload: dict[str, Any] = {"channel": channel, "text": text}
    if thread_ts:
        payload["thread_ts"] = thread_ts
    if username:
        # Requires chat:write.customize
        payload["username"] = username
    return await _call("chat.postMessage", token=token, json=payload)


async def oauth_v2_access(code: str) -> dict[str, Any]:
    """Exchange an OAuth code for a bot installation."""
    return await _call(
        "oauth.v2.access",
        data={
            "client_id": settings.SLACK_CLIENT_ID,
            "client_secret": settings.SLACK_CLIENT_SECRET,
            "code": code,
            "redirect_uri": settings.SLACK_REDIRECT_URI,
        },
    )


async def conversations_history(
    token: str, channel: str, cursor: str | None = None, limit: int = 200
) -> dict[str, Any]:
    params: dict[str, Any] = {"channel": channel, "limit": limit}
    if cursor:
        params["cursor"] = cursor
    return await _call("conversations.history", token=token, params=params)


async def conversations_replies(
    token: str, channel: str, ts: str, cursor: str | None = None, limit: int = 200
) -> dict[str, Any]:
    params: dict[str, Any] = {"channel": channel, "ts": ts, "limit": limit}
    if cursor:
        params["cursor"] = cursor
    return await _call("conversations.replies", token=token, params=params)


async def users_info(token: str, user: str) -> dict[str, Any]:
    return await _call("users.info", token=token, params={"user": user})


def display_name(user_info: dict[str, Any]) -> str | None:
    """Best human name from a users.info response."""
    user = user_info.get("user") or {}
    profile = user.get("profile") or {}
    return (
        profile.get("display_name")
        or profile.get("real_name")
        or user.get("real_name")
        or user.get("name")
        or None
    )
