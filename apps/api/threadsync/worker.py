"""
Background worker for scheduled jobs and the outbound relays.

Usage:
    python -m threadsync.worker

Each tick processes a batch of pending jobs, then runs one pass of each
platform relay. For production, run this as a separate process (e.g.,
Docker container).
"""

import asyncio
import logging

from threadsync.core.config import settings
from threadsync.core.gcp_monitoring import setup_gcp_monitoring
from threadsync.core.structured_logging import build_log_context
from threadsync.db.session import SessionLocal
from threadsync.jobs.registry import resolve_job_handler
from threadsync.services import job_service
from threadsync.services.relay_service import PlatformRelay, default_relays, run_relays

monitoring = setup_gcp_monitoring(f"{settings.GCP_SERVICE_NAME}-worker")

# Configure logging (fallback when Cloud Logging isn't enabled)
if not monitoring.logging_enabled:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = settings.WORKER_POLL_INTERVAL
BATCH_SIZE = settings.WORKER_BATCH_SIZE


async def process_job(db, job) -> None:
    """Process a single job based on its type."""
    logger.info(
        "Processing job %s (type=%s, attempt=%s)", job.id, job.job_type, job.attempts
    )
    handler = resolve_job_handler(job.job_type)
    await handler(db, job)


async def process_pending_jobs(db, limit: int = BATCH_SIZE) -> int:
    """Run one batch of due jobs. Returns the number processed."""
    jobs = job_service.get_pending_jobs(db, limit=limit)
    if jobs:
        logger.info("Found %d pending jobs", len(jobs))

    for job in jobs:
        try:
            job_service.mark_job_running(db, job)
            await process_job(db, job)
            job_service.mark_job_completed(db, job)
            logger.info("Job %s completed successfully", job.id)
        except Exception as e:
            db.rollback()
            job_service.mark_job_failed(db, job, f"{type(e).__name__}: {e}")
            monitoring.report(
                job_id=str(job.id),
                job_type=job.job_type,
                org_id=str(job.organization_id) if job.organization_id else None,
            )
            logger.error(
                "Job %s failed: %s",
                job.id,
                type(e).__name__,
                extra=build_log_context(
                    org_id=str(job.organization_id) if job.organization_id else None
                ),
            )
    return len(jobs)


async def worker_loop(relays: list[PlatformRelay] | None = None) -> None:
    """Main worker loop - polls for jobs and relays pending rows."""
    relays = relays or default_relays()
    logger.info(
        "Worker starting (poll interval: %ss, batch size: %s, relay batch: %s)",
        POLL_INTERVAL_SECONDS,
        BATCH_SIZE,
        settings.RELAY_BATCH_SIZE,
    )

    while True:
        with SessionLocal() as db:
            try:
                await process_pending_jobs(db)
            except Exception as e:
                logger.error("Error in worker loop: %s", e)

            try:
                await run_relays(db, relays)
            except Exception as e:
                db.rollback()
                logger.error("Error in relay pass: %s", e)
                monitoring.report(route="relay")

        await asyncio.sleep(POLL_INTERVAL_SECONDS)


def main() -> None:
    """Entry point for the worker."""
    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Worker shutting down")
    except Exception:
        monitoring.report(route="worker")
        logger.exception(
            "Worker crashed",
            extra=build_log_context(route="worker", method="background"),
        )
        raise


if __name__ == "__main__":
    main()
