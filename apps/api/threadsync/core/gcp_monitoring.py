"""Cloud Logging and Error Reporting for the API and the worker.

Both are off in dev and tests. Reports carry the webhook delivery that was
being handled (or the job/thread ids for worker failures) so an error can be
matched to the platform retry that caused it.
"""

from dataclasses import dataclass
import logging
import os
import random
from typing import Any

from threadsync.core.config import settings


logger = logging.getLogger(__name__)

# Header -> platform tag for inbound deliveries
DELIVERY_HEADERS = (
    ("x-github-delivery", "github"),
    ("x-slack-request-timestamp", "slack"),
)


def monitoring_enabled() -> bool:
    if settings.ENV == "dev":
        return False
    if os.getenv("TESTING", "").lower() in ("1", "true", "yes"):
        return False
    return settings.GCP_MONITORING_ENABLED


def _sampled() -> bool:
    rate = settings.GCP_ERROR_REPORTING_SAMPLE_RATE
    if rate >= 1:
        return True
    if rate <= 0:
        return False
    return random.random() < rate


def delivery_context(request: Any | None) -> dict[str, str]:
    """Platform and delivery id of an inbound webhook request, if any."""
    if request is None:
        return {}
    for header, platform in DELIVERY_HEADERS:
        value = request.headers.get(header)
        if value:
            return {"platform": platform, "delivery_id": value}
    return {}


def format_report_user(context: dict[str, Any]) -> str | None:
    """Error Reporting has no custom labels; pack the context into `user`."""
    parts = [f"{key}={value}" for key, value in sorted(context.items()) if value is not None]
    return " ".join(parts) or None


@dataclass(frozen=True)
class Monitoring:
    """Optional GCP clients for one process (API or worker)."""

    service_name: str
    error_reporter: Any | None = None
    logging_enabled: bool = False

    def report(self, request: Any | None = None, **context: Any) -> bool:
        """
        Report the exception being handled. Returns True when a report was sent.

        Never raises: a failing reporter is logged and ignored.
        """
        if self.error_reporter is None or not _sampled():
            return False

        http_context = None
        if request is not None:
            http_context = {
                "method": request.method,
                "url": str(request.url.path),
                "userAgent": request.headers.get("user-agent"),
            }
        user = format_report_user({**delivery_context(request), **context})

        try:
            self.error_reporter.report_exception(http_context=http_context, user=user)
        except Exception as exc:
            logger.warning("Failed to report exception to %s: %s", self.service_name, exc)
            return False
        return True


def setup_gcp_monitoring(service_name: str) -> Monitoring:
    """Attach Cloud Logging to the root logger and create an Error Reporting client."""
    if not monitoring_enabled():
        return Monitoring(service_name=service_name)

    from google.cloud import error_reporting
    from google.cloud import logging as cloud_logging

    project_id = settings.gcp_project_id or None
    logging_enabled = False
    error_reporter = None

    try:
        cloud_logging.Client(project=project_id).setup_logging()
        logging_enabled = True
    except Exception as exc:
        logger.warning("Cloud Logging setup failed for %s: %s", service_name, exc)

    try:
        error_reporter = error_reporting.Client(
            project=project_id,
            service=service_name,
            version=settings.VERSION,
        )
    except Exception as exc:
        logger.warning("Error Reporting setup failed for %s: %s", service_name, exc)

    return Monitoring(
        service_name=service_name,
        error_reporter=error_reporter,
        logging_enabled=logging_enabled,
    )
