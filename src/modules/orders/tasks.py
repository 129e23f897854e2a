"""Outbox relay: publishes stored order events to the in-process bus."""

from __future__ import annotations

import structlog
from celery import shared_task
from django.conf import settings
from django.db import transaction

from modules.core.models import OutboxEvent
from shared.infrastructure.bus import event_bus

logger = structlog.get_logger(__name__)


@shared_task(name="orders.publish_outbox_events")
def publish_outbox_events(batch_size: int | None = None) -> dict:
    """Drain publishable outbox rows into the event bus.

    Rows are locked with ``SKIP LOCKED`` so concurrent workers never
    publish the same event.  A row whose handler raises is marked failed
    and retried on a later run until ``OUTBOX_MAX_RETRIES`` is reached.
    """
    batch_size = batch_size or settings.OUTBOX_BATCH_SIZE
    published = failed = 0

    with transaction.atomic():
        rows = list(
            OutboxEvent.objects.publishable(settings.OUTBOX_MAX_RETRIES)
            .select_for_update(skip_locked=True)[:batch_size]
        )
        for row in rows:
            log = logger.bind(outbox_event_id=str(row.id), event_type=row.event_type)
            event_class = event_bus.event_class_for(row.event_type)
            if event_class is None:
                log.warning("outbox.unknown_event_type")
                row.mark_as_failed(f"No subscriber for event type {row.event_type}.")
                failed += 1
                continue
            try:
                event_bus.publish(event_class.from_payload(row.payload))
            except Exception as exc:  # noqa: BLE001
                log.exception("outbox.publish_failed")
                row.mark_as_failed(str(exc))
                failed += 1
                continue
            row.mark_as_published()
            published += 1

    logger.info("outbox.drained", published=published, failed=failed)
    return {"published": published, "failed": failed}
