"""Webhook handler registry."""

from __future__ import annotations

from threadsync.services.webhooks.base import WebhookHandler
from threadsync.services.webhooks.github import GitHubWebhookHandler
from threadsync.services.webhooks.slack import SlackWebhookHandler

_HANDLERS: dict[str, WebhookHandler] = {
    "github": GitHubWebhookHandler(),
    "slack": SlackWebhookHandler(),
}


def get_handler(name: str):
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"Unknown webhook handler: {name}")
    return handler
