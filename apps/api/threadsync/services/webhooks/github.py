"""GitHub webhook handler."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from threadsync.core.config import settings
from threadsync.core.security import verify_github_signature
from threadsync.db.enums import Platform
from threadsync.services.event_dispatch import dispatch_event
from threadsync.services.webhooks.base import parse_json_body, read_body_limited

logger = logging.getLogger(__name__)


class GitHubWebhookHandler:
    async def handle(self, request: Request, db: Session, **kwargs) -> dict:
        """
        Receive a GitHub App webhook.

        Security:
        - Validates payload size
        - Validates X-Hub-Signature-256 HMAC against GITHUB_WEBHOOK_SECRET

        Processing:
        - Dispatches `<X-GitHub-Event>.<action>` inline
        - Always answers 200 once the signature checks out; handler errors
          are logged by the dispatcher, never surfaced to GitHub
        """
        if not settings.GITHUB_WEBHOOK_SECRET:
            logger.error("GitHub webhook received but GITHUB_WEBHOOK_SECRET is not set")
            raise HTTPException(500, "Webhook secret not configured")

        body = await read_body_limited(request)
        signature = request.headers.get("X-Hub-Signature-256", "")
        if not signature:
            logger.warning("GitHub webhook missing signature")
            raise HTTPException(403, "Missing signature")
        if not verify_github_signature(body, signature, settings.GITHUB_WEBHOOK_SECRET):
            logger.warning("GitHub webhook invalid signature")
            raise HTTPException(403, "Invalid signature")

        github_event = request.headers.get("X-GitHub-Event", "")
        delivery_id = request.headers.get("X-GitHub-Delivery")
        if github_event == "ping":
            return {"status": "ok", "event": "ping"}

        data = parse_json_body(body)
        action = data.get("action")
        event = f"{github_event}.{action}" if action else github_event

        result = await dispatch_event(
            db,
            Platform.GITHUB,
            event,
            data,
            delivery_id=delivery_id,
        )
        return {"status": "ok", "event": event, "handled": result.handled}
