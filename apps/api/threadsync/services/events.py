"""Inbound platform event types and handler context."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from sqlalchemy.orm import Session

from threadsync.db.enums import Platform


class EventType(str, Enum):
    """Inbound events the engine reacts to, as "<platform>:<event>"."""

    GITHUB_ISSUE_OPENED = "github:issues.opened"
    GITHUB_ISSUE_CLOSED = "github:issues.closed"
    GITHUB_PR_OPENED = "github:pull_request.opened"
    GITHUB_PR_CLOSED = "github:pull_request.closed"
    SLACK_MESSAGE = "slack:message"
    DISCORD_MESSAGE_CREATE = "discord:message_create"

    @property
    def platform(self) -> str:
        return self.value.split(":", 1)[0]

    @property
    def event(self) -> str:
        return self.value.split(":", 1)[1]

    @classmethod
    def resolve(cls, platform: str | Platform, event: str) -> "EventType | None":
        platform_value = platform.value if isinstance(platform, Platform) else platform
        try:
            return cls(f"{platform_value}:{event}")
        except ValueError:
            return None


AckCallback = Callable[[], Awaitable[None]]


@dataclass
class EventContext:
    """Everything a handler needs for one inbound delivery."""

    db: Session
    event_type: EventType
    payload: dict[str, Any]
    delivery_id: str | None = None


EventHandler = Callable[[EventContext], Awaitable[None]]
