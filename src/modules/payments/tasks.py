"""Background tasks of the payments module."""

import structlog
from celery import shared_task

from modules.payments.services import build_payment_service

logger = structlog.get_logger(__name__)


@shared_task(name="payments.purge_stale_pending_orders")
def purge_stale_pending_orders() -> dict:
    """Delete unpaid ONLINE orders older than the retention window.

    Scheduled by Celery beat; COMPLETED orders are never touched.
    """
    purged = build_payment_service().purge_stale()
    logger.info("payment.stale_orders_purged", purged=purged)
    return {"purged": purged}
