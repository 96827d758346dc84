"""Enum definitions for application constants."""

from threadsync.db.enums.jobs import DEFAULT_JOB_STATUS, JobStatus, JobType
from threadsync.db.enums.platforms import Platform
from threadsync.db.enums.threads import ThreadPriority, ThreadStatus, UpdateType

__all__ = [
    "DEFAULT_JOB_STATUS",
    "JobStatus",
    "JobType",
    "Platform",
    "ThreadPriority",
    "ThreadStatus",
    "UpdateType",
]
