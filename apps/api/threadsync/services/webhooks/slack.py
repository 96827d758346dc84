"""Slack Events API handler."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from threadsync.core.config import settings
from threadsync.core.security import verify_slack_signature
from threadsync.db.enums import JobType
from threadsync.services import job_service
from threadsync.services.webhooks.base import parse_json_body, read_body_limited

logger = logging.getLogger(__name__)


def slack_event_job_key(event_id: str) -> str:
    return f"slack_event:{event_id}"


class SlackWebhookHandler:
    async def handle(self, request: Request, db: Session, **kwargs) -> dict:
        """
        Receive a Slack Events API delivery.

        Slack treats the HTTP 200 as the acknowledgement and retries after
        3 seconds, so event_callback deliveries are only enqueued here. The
        worker runs them through the event dispatcher. Redeliveries carry the
        same event_id and collapse onto the existing job.
        """
        if not settings.SLACK_SIGNING_SECRET:
            logger.error("Slack event received but SLACK_SIGNING_SECRET is not set")
            raise HTTPException(500, "Signing secret not configured")

        body = await read_body_limited(request)
        if not verify_slack_signature(
            body,
            request.headers.get("X-Slack-Signature", ""),
            request.headers.get("X-Slack-Request-Timestamp", ""),
            settings.SLACK_SIGNING_SECRET,
            max_age_seconds=settings.SLACK_REQUEST_MAX_AGE_SECONDS,
        ):
            logger.warning("Slack event invalid or stale signature")
            raise HTTPException(403, "Invalid signature")

        data = parse_json_body(body)
        payload_type = data.get("type")

        if payload_type == "url_verification":
            return {"challenge": data.get("challenge", "")}

        if payload_type != "event_callback":
            logger.info("Ignoring Slack payload type %s", payload_type)
            return {"status": "ok"}

        event_id = data.get("event_id")
        if not event_id:
            raise HTTPException(400, "Missing event_id")

        try:
            job_service.schedule_job(
                db=db,
                org_id=None,
                job_type=JobType.SLACK_EVENT,
                payload=data,
                idempotency_key=slack_event_job_key(event_id),
            )
            logger.info("Slack event %s enqueued", event_id)
            return {"status": "ok", "enqueued": True}
        except IntegrityError:
            db.rollback()
            logger.info("Slack event %s already enqueued", event_id)
            return {"status": "ok", "enqueued": False}
