"""
Authority report redelivery task.
"""
import asyncio
from typing import Any, Dict

from safeguard.celery_app import celery_app
from safeguard.clients.http import HttpAuthorityReportingGateway
from safeguard.core.config import settings
from safeguard.core.logging import get_logger
from safeguard.db.repository import SqlAuditStore, SqlReportOutbox
from safeguard.moderation.audit import AuditLogger
from safeguard.moderation.incident import redeliver_pending_reports

logger = get_logger("tasks.reports")


def run_async(coro):
    """Helper to run async code in sync context."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _redeliver(limit: int) -> Dict[str, int]:
    gateway = HttpAuthorityReportingGateway(
        settings.authority_gateway_url, settings.service_token, settings.http_timeout_seconds
    )
    try:
        return await redeliver_pending_reports(
            gateway,
            SqlReportOutbox(),
            AuditLogger(SqlAuditStore()),
            limit=limit,
        )
    finally:
        await gateway.close()


@celery_app.task(name="safeguard.redeliver_pending_reports")
def redeliver_pending_reports_task(limit: int = 100) -> Dict[str, Any]:
    """
    Retry every authority report still waiting in the outbox.

    Returns:
        Counts of delivered and still-failing reports
    """
    logger.info("=== Celery Task: authority report redelivery ===")
    counts = run_async(_redeliver(limit))
    return {"status": "completed", **counts}
