"""Background tasks of the core module."""

import structlog
from celery import shared_task
from django.db import transaction

from modules.core.models import EventStatus, OutboxEvent
from shared.infrastructure.bus import event_bus

logger = structlog.get_logger(__name__)

OUTBOX_BATCH_SIZE = 100
OUTBOX_MAX_RETRIES = 5


@shared_task(name="core.publish_outbox_events")
def publish_outbox_events(batch_size: int = OUTBOX_BATCH_SIZE) -> dict:
    """Relay pending outbox rows to the in-process event bus.

    Rows are processed in creation order.  A row whose handler raises is
    marked FAILED and retried on later runs until ``OUTBOX_MAX_RETRIES``.
    """
    published = 0
    failed = 0

    with transaction.atomic():
        rows = list(
            OutboxEvent.objects.select_for_update(skip_locked=True)
            .filter(
                status__in=[EventStatus.PENDING, EventStatus.FAILED],
                retry_count__lt=OUTBOX_MAX_RETRIES,
            )
            .order_by("created_at")[:batch_size]
        )

        for row in rows:
            log = logger.bind(
                outbox_id=str(row.id),
                event_type=row.event_type,
                aggregate_id=row.aggregate_id,
            )
            event_class = event_bus.event_class_for(row.event_type)
            if event_class is None:
                row.mark_as_failed(f"No handler registered for {row.event_type}")
                log.warning("outbox.unroutable_event")
                failed += 1
                continue
            try:
                event_bus.publish(event_class.from_payload(row.payload))
            except Exception as exc:  # noqa: BLE001
                row.mark_as_failed(str(exc))
                log.exception("outbox.publish_failed")
                failed += 1
                continue
            row.mark_as_published()
            published += 1

    logger.info("outbox.relay_completed", published=published, failed=failed)
    return {"published": published, "failed": failed}
