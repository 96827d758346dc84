"""Thread lifecycle enums."""

from enum import Enum, IntEnum


class ThreadStatus(IntEnum):
    """Internal status lattice, persisted as an integer."""

    OPEN = 0
    IN_PROGRESS = 1
    RESOLVED = 2
    CLOSED = 3
    DUPLICATE = 4


class ThreadPriority(IntEnum):
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


class UpdateType(str, Enum):
    """Audit entry types appended to a thread."""

    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    ASSIGNED_CHANGED = "assigned_changed"
    MARKED_DUPLICATE = "marked_duplicate"
    GITHUB_ISSUE_CREATED = "github_issue_created"
    GITHUB_ISSUE_LINKED = "github_issue_linked"
    GITHUB_PR_LINKED = "github_pr_linked"
