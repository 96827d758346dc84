"""Status translation between platform lifecycle events and thread status.

External events only ever move a thread forward from Open/InProgress to
Resolved. Closed and Duplicate are user-only transitions, so a platform
event never produces them and never touches a thread already past Resolved.
"""

from __future__ import annotations

from dataclasses import dataclass

from threadsync.db.enums import Platform, ThreadPriority, ThreadStatus

STATUS_LABELS: dict[int, str] = {
    ThreadStatus.OPEN: "Open",
    ThreadStatus.IN_PROGRESS: "In progress",
    ThreadStatus.RESOLVED: "Resolved",
    ThreadStatus.CLOSED: "Closed",
    ThreadStatus.DUPLICATE: "Duplicated",
}

PRIORITY_LABELS: dict[int, str] = {
    ThreadPriority.NONE: "No priority",
    ThreadPriority.LOW: "Low",
    ThreadPriority.MEDIUM: "Medium",
    ThreadPriority.HIGH: "High",
}

# (platform, lifecycle event) -> target internal status
EXTERNAL_STATUS_TRANSITIONS: dict[tuple[str, str], ThreadStatus] = {
    (Platform.GITHUB.value, "issues.closed"): ThreadStatus.RESOLVED,
    (Platform.GITHUB.value, "pull_request.closed"): ThreadStatus.RESOLVED,
}

# Statuses an external event may move a thread out of
EXTERNALLY_MUTABLE_STATUSES = frozenset({ThreadStatus.OPEN, ThreadStatus.IN_PROGRESS})


@dataclass(frozen=True)
class StatusTransition:
    old_status: int
    new_status: int

    @property
    def old_label(self) -> str:
        return status_label(self.old_status)

    @property
    def new_label(self) -> str:
        return status_label(self.new_status)


def status_label(status: int | None) -> str:
    if status is None:
        return STATUS_LABELS[ThreadStatus.OPEN]
    return STATUS_LABELS.get(status, str(status))


def priority_label(priority: int | None) -> str:
    if priority is None:
        return PRIORITY_LABELS[ThreadPriority.NONE]
    return PRIORITY_LABELS.get(priority, str(priority))


def target_status(platform: str, event: str) -> ThreadStatus | None:
    return EXTERNAL_STATUS_TRANSITIONS.get((platform, event))


def translate_external_event(
    platform: str, event: str, current_status: int | None
) -> StatusTransition | None:
    """
    Resolve the transition a platform event causes for a thread.

    Returns None when the event has no status meaning or the thread is not
    in a state the event may move it out of (re-delivery is a no-op).
    """
    target = target_status(platform, event)
    if target is None:
        return None
    old_status = ThreadStatus.OPEN.value if current_status is None else current_status
    if old_status not in EXTERNALLY_MUTABLE_STATUSES:
        return None
    return StatusTransition(old_status=old_status, new_status=target.value)
