"""Webhook handler interface."""

from __future__ import annotations

import json
from typing import Protocol

from fastapi import HTTPException, Request, Response
from sqlalchemy.orm import Session

from threadsync.core.config import settings

WebhookResult = dict | Response


class WebhookHandler(Protocol):
    async def handle(self, request: Request, db: Session, **kwargs) -> WebhookResult:
        """Handle a webhook request."""


async def read_body_limited(request: Request, max_bytes: int | None = None) -> bytes:
    """Raw request body, rejecting anything over the payload limit with 413."""
    limit = max_bytes or settings.WEBHOOK_MAX_PAYLOAD_BYTES
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > limit:
                raise HTTPException(413, "Payload too large")
        except ValueError:
            pass

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > limit:
            raise HTTPException(413, "Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


def parse_json_body(body: bytes) -> dict:
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(400, "Invalid JSON")
    if not isinstance(data, dict):
        raise HTTPException(400, "Invalid JSON")
    return data
