"""
Celery application configuration for Safeguard background work.

Runs the authority report redelivery loop: reports that could not be
delivered on the critical path wait in the outbox until this drains them.
"""
from celery import Celery
from celery.signals import task_failure, task_success

from safeguard.core.config import settings

celery_app = Celery(
    "safeguard",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["safeguard.tasks.report_tasks"]
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task result settings
    result_expires=3600,  # 1 hour

    # Task tracking
    task_track_started=True,

    # Redelivery must survive a worker crash
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    beat_schedule={
        "redeliver-pending-authority-reports": {
            "task": "safeguard.redeliver_pending_reports",
            "schedule": settings.report_redelivery_interval_seconds,
        },
    },
)


@task_success.connect
def on_task_success(sender=None, result=None, **kwargs):
    """Handle successful task completion."""
    from safeguard.core.logging import get_logger
    logger = get_logger("celery.signals")

    if result and isinstance(result, dict) and result.get("failed"):
        logger.warning(f"Redelivery left {result['failed']} authority reports undelivered")


@task_failure.connect
def on_task_failure(sender=None, task_id=None, exception=None, **kwargs):
    """Handle task failure."""
    from safeguard.core.logging import get_logger
    logger = get_logger("celery.signals")
    logger.error(f"Task {task_id} failed: {exception}")


if __name__ == "__main__":
    celery_app.start()
