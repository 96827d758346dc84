"""Job service - background job scheduling and processing state."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from threadsync.db.enums import JobStatus, JobType
from threadsync.db.models import Job

# Retries back off exponentially: 2s, 4s, 8s, ...
RETRY_BASE_SECONDS = 2


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def schedule_job(
    db: Session,
    org_id: UUID | None,
    job_type: JobType,
    payload: dict,
    run_at: datetime | None = None,
    idempotency_key: str | None = None,
    max_attempts: int = 3,
) -> Job:
    """
    Schedule a new background job.

    If run_at is None, the job runs immediately.
    If idempotency_key is provided, duplicate jobs with same key will fail
    with IntegrityError (caller should catch and handle).
    """
    job = Job(
        organization_id=org_id,
        job_type=job_type.value,
        payload=payload,
        run_at=run_at or _now_utc(),
        status=JobStatus.PENDING.value,
        max_attempts=max_attempts,
        idempotency_key=idempotency_key,
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_pending_jobs(db: Session, limit: int = 10) -> list[Job]:
    """
    Get pending jobs that are due to run.

    Returns jobs where status='pending' and run_at <= now, ordered by run_at.
    """
    stmt = (
        select(Job)
        .where(Job.status == JobStatus.PENDING.value, Job.run_at <= _now_utc())
        .order_by(Job.run_at)
        .limit(limit)
    )
    return list(db.scalars(stmt))


def get_job_by_idempotency_key(db: Session, idempotency_key: str) -> Job | None:
    return db.scalars(select(Job).where(Job.idempotency_key == idempotency_key)).first()


def mark_job_running(db: Session, job: Job) -> Job:
    """Mark a job as running (increment attempts)."""
    job.status = JobStatus.RUNNING.value
    job.attempts += 1
    db.commit()
    db.refresh(job)
    return job


def mark_job_completed(db: Session, job: Job) -> Job:
    """Mark a job as completed."""
    job.status = JobStatus.COMPLETED.value
    job.completed_at = _now_utc()
    job.last_error = None
    db.commit()
    db.refresh(job)
    return job


def mark_job_failed(db: Session, job: Job, error: str) -> Job:
    """
    Mark a job as failed.

    If attempts < max_attempts, reset to pending for retry after a backoff.
    """
    job.last_error = error[:2000]
    if job.attempts < job.max_attempts:
        job.status = JobStatus.PENDING.value
        job.run_at = _now_utc() + timedelta(
            seconds=RETRY_BASE_SECONDS * 2 ** max(job.attempts - 1, 0)
        )
    else:
        job.status = JobStatus.FAILED.value
    db.commit()
    db.refresh(job)
    return job
