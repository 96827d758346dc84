"""Loop-prevention markers on Update.replicated.

`replicated` maps platform -> ack. An Update carrying a truthy ack for a
platform is never relayed to that platform again. Updates caused by a
platform event are created already marked for that platform.
"""

from __future__ import annotations

from typing import Any

from threadsync.db.models import Update

# Ack written for updates that originate on the platform itself
SELF_ACK = True


def origin_marker(platform: str | None) -> dict[str, Any]:
    """Initial `replicated` value for an update created by `platform` (or natively)."""
    if not platform:
        return {}
    return {platform: SELF_ACK}


def is_replicated(update: Update, platform: str) -> bool:
    ack = (update.replicated or {}).get(platform)
    return ack is not None and ack is not False


def mark_replicated(update: Update, platform: str, ack: Any = SELF_ACK) -> None:
    """Record the platform ack. Reassigns the dict so the JSON column is flushed."""
    if ack is None or ack is False:
        raise ValueError("ack must be truthy")
    replicated = dict(update.replicated or {})
    replicated[platform] = ack
    update.replicated = replicated
