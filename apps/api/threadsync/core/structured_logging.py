"""Structured logging helpers."""

from typing import Any


def build_log_context(
    *,
    org_id: str | None = None,
    thread_id: str | None = None,
    platform: str | None = None,
    event_type: str | None = None,
    delivery_id: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """Return a log context dict with only the populated fields."""
    context: dict[str, Any] = {}
    if org_id:
        context["org_id"] = str(org_id)
    if thread_id:
        context["thread_id"] = str(thread_id)
    if platform:
        context["platform"] = platform
    if event_type:
        context["event_type"] = event_type
    if delivery_id:
        context["delivery_id"] = delivery_id
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
