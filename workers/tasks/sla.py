"""SLA breach scan tasks."""

from typing import Any, Dict
import asyncio
import logging

from celery import Task

from api.services import sla as sla_service
from database.engine import db_engine
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def scan_all_companies() -> Dict[int, int]:
    """
    Check every company for SLA breaches.

    Returns:
        Breach count per company id
    """
    counts: Dict[int, int] = {}
    try:
        for company_id in await sla_service.list_company_ids():
            breaches = await sla_service.check_sla_breaches(company_id)
            counts[company_id] = len(breaches)
            if breaches:
                logger.warning(
                    f"Company {company_id} has {len(breaches)} SLA breaches",
                    extra={"company_id": company_id},
                )
    finally:
        # Pooled connections are bound to this event loop
        await db_engine.dispose()
    return counts


@celery_app.task(name="workers.tasks.sla.scan_sla_breaches", bind=True, max_retries=3)
def scan_sla_breaches(self: Task) -> Dict[str, Any]:
    """Periodic scan of candidates past their configured stage thresholds."""
    try:
        logger.info("Starting SLA breach scan", extra={"task_id": self.request.id})
        counts = asyncio.run(scan_all_companies())
    except Exception as exc:
        logger.error(f"SLA breach scan failed: {exc}", extra={"task_id": self.request.id})
        raise self.retry(exc=exc, countdown=2 ** self.request.retries * 60)

    total = sum(counts.values())
    logger.info(
        f"SLA breach scan finished: {total} breaches across {len(counts)} companies",
        extra={"task_id": self.request.id},
    )
    return {
        "status": "completed",
        "companies_scanned": len(counts),
        "total_breaches": total,
        "breaches_by_company": {str(company_id): count for company_id, count in counts.items()},
    }
