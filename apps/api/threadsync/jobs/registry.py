"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from threadsync.db.enums import JobType
from threadsync.jobs.handlers import slack

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.SLACK_EVENT.value: slack.process_slack_event,
    JobType.SLACK_PORTAL_NOTICE.value: slack.process_slack_portal_notice,
    JobType.SLACK_BACKFILL_CHANNEL.value: slack.process_slack_backfill_channel,
    JobType.SLACK_BACKFILL_THREAD.value: slack.process_slack_backfill_thread,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
