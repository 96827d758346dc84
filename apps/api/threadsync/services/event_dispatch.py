"""Dispatch inbound platform events to their handlers.

dispatch_event() is the ingestor boundary: it acknowledges first, logs every
delivery, and never lets an exception escape to the webhook transport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.orm import Session

from threadsync.core.structured_logging import build_log_context
from threadsync.db.enums import Platform
from threadsync.services import discord_events, github_events, slack_events
from threadsync.services.events import AckCallback, EventContext, EventHandler, EventType

logger = logging.getLogger(__name__)

EVENT_HANDLERS: Mapping[EventType, EventHandler] = {
    EventType.GITHUB_ISSUE_OPENED: github_events.handle_issue_opened,
    EventType.GITHUB_ISSUE_CLOSED: github_events.handle_issue_closed,
    EventType.GITHUB_PR_OPENED: github_events.handle_pull_request_opened,
    EventType.GITHUB_PR_CLOSED: github_events.handle_pull_request_closed,
    EventType.SLACK_MESSAGE: slack_events.handle_message,
    EventType.DISCORD_MESSAGE_CREATE: discord_events.handle_message_create,
}


@dataclass(frozen=True)
class DispatchResult:
    event_type: EventType | None
    handled: bool
    error: str | None = None


def resolve_event_handler(event_type: EventType) -> EventHandler | None:
    return EVENT_HANDLERS.get(event_type)


async def dispatch_event(
    db: Session,
    platform: str | Platform,
    event: str,
    payload: dict[str, Any],
    ack: AckCallback | None = None,
    delivery_id: str | None = None,
) -> DispatchResult:
    platform_value = platform.value if isinstance(platform, Platform) else platform
    log_context = build_log_context(
        platform=platform_value, event_type=event, delivery_id=delivery_id
    )
    logger.info("Received webhook: %s from %s", event, platform_value, extra=log_context)

    event_type = EventType.resolve(platform_value, event)
    try:
        if ack is not None:
            await ack()

        if event_type is None:
            return DispatchResult(event_type=None, handled=False)
        handler = resolve_event_handler(event_type)
        if handler is None:
            return DispatchResult(event_type=event_type, handled=False)

        await handler(
            EventContext(
                db=db,
                event_type=event_type,
                payload=payload,
                delivery_id=delivery_id,
            )
        )
        return DispatchResult(event_type=event_type, handled=True)
    except Exception as e:
        db.rollback()
        logger.exception(
            "Error handling %s: %s", event, type(e).__name__, extra=log_context
        )
        return DispatchResult(event_type=event_type, handled=False, error=type(e).__name__)
