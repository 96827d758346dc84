"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of background jobs."""

    SLACK_EVENT = "slack_event"  # Inbound Events API delivery, processed after ack
    SLACK_PORTAL_NOTICE = "slack_portal_notice"  # Best-effort "tracked in portal" reply
    SLACK_BACKFILL_CHANNEL = "slack_backfill_channel"
    SLACK_BACKFILL_THREAD = "slack_backfill_thread"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


DEFAULT_JOB_STATUS = JobStatus.PENDING
