"""Webhooks router - inbound platform events."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from threadsync.core.deps import get_db
from threadsync.core.rate_limit import WEBHOOK_LIMIT, limiter
from threadsync.services.webhooks.registry import get_handler

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/github")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_github_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Receive GitHub App webhooks (issues, pull_request).

    Signature is verified before any processing; the event is handled
    inline and GitHub always gets a 200 once the signature checks out.
    """
    handler = get_handler("github")
    return await handler.handle(request, db)


@router.post("/slack/events")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_slack_event(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Receive Slack Events API deliveries.

    Answers url_verification challenges; event callbacks are queued for the
    worker and acknowledged immediately.
    """
    handler = get_handler("slack")
    return await handler.handle(request, db)
