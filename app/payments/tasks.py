"""
Celery tasks of the payments app.

Celery autodiscovers this module, so it also imports the settlement workers
to register their tasks.

Webhook tasks:
- process_webhook_event: Dispatch one stored Stripe event to its handler
- retry_failed_webhooks: Re-queue failed events that have retries left
- cleanup_stuck_webhooks: Fail events whose worker died mid-processing

Usage:
    from payments.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.db import transaction
from django.utils import timezone

from payments.models import WebhookEvent
from payments.models.webhook_event import MAX_WEBHOOK_RETRIES
from payments.state_machines import WebhookEventStatus
from payments.workers import (
    process_due_payouts,
    process_single_payout,
    reconcile_processing_fees,
    release_stale_payout_locks,
)

logger = logging.getLogger(__name__)


STUCK_PROCESSING_THRESHOLD_MINUTES = 30

RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Dispatch a stored WebhookEvent to its registered handler.

    Idempotent: an event already processed is skipped. Handler failures
    mark the event failed; unexpected exceptions also re-raise so Celery
    retries with backoff.
    """
    from payments.webhooks.handlers import dispatch_webhook

    webhook_event_id = str(webhook_event_id)
    try:
        webhook_event = WebhookEvent.objects.get(id=UUID(webhook_event_id))
    except WebhookEvent.DoesNotExist:
        logger.error("WebhookEvent not found", extra={"webhook_event_id": webhook_event_id})
        return {"status": "not_found", "webhook_event_id": webhook_event_id}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={"webhook_event_id": webhook_event_id, "stripe_event_id": webhook_event.stripe_event_id},
        )
        return {"status": "already_processed", "webhook_event_id": webhook_event_id}

    webhook_event.mark_processing()
    webhook_event.save(update_fields=["status", "retry_count", "updated_at"])

    log_context = {
        "webhook_event_id": webhook_event_id,
        "stripe_event_id": webhook_event.stripe_event_id,
        "event_type": webhook_event.event_type,
        "retry_count": webhook_event.retry_count,
    }
    logger.info(f"Dispatching webhook: {webhook_event.event_type}", extra=log_context)

    try:
        with transaction.atomic():
            result = dispatch_webhook(webhook_event)
    except Exception as exc:
        webhook_event.mark_failed(f"{type(exc).__name__}: {exc}")
        webhook_event.save()
        logger.exception("Webhook processing raised", extra=log_context)
        raise

    if not result.success:
        error = result.error or "Handler returned failure"
        webhook_event.mark_failed(error)
        webhook_event.save()
        logger.warning(
            f"Webhook handler failed: {error}",
            extra={**log_context, "error_code": result.error_code},
        )
        return {"status": "handler_failed", "webhook_event_id": webhook_event_id, "error": error}

    webhook_event.mark_processed()
    webhook_event.save()
    logger.info("Webhook processed", extra=log_context)
    return {
        "status": "processed",
        "webhook_event_id": webhook_event_id,
        "stripe_event_id": webhook_event.stripe_event_id,
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """Re-queue failed webhook events that still have retries left."""
    failed = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=MAX_WEBHOOK_RETRIES,
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook_event in failed:
        process_webhook_event.delay(str(webhook_event.id))
        queued_count += 1
        logger.info(
            "Queued failed webhook for retry",
            extra={
                "webhook_event_id": str(webhook_event.id),
                "stripe_event_id": webhook_event.stripe_event_id,
                "retry_count": webhook_event.retry_count,
            },
        )

    if queued_count:
        logger.info(f"Queued {queued_count} failed webhooks for retry", extra={"queued_count": queued_count})
    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """Mark events stuck in processing as failed so the retry task picks them up."""
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    reset_count = 0
    for webhook_event in WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    ):
        stuck_since = webhook_event.updated_at
        webhook_event.mark_failed("Processing timed out, reset for retry")
        webhook_event.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook_event.id),
                "stripe_event_id": webhook_event.stripe_event_id,
                "stuck_since": stuck_since.isoformat(),
            },
        )

    return {"reset_count": reset_count}


__all__ = [
    "cleanup_stuck_webhooks",
    "process_due_payouts",
    "process_single_payout",
    "process_webhook_event",
    "reconcile_processing_fees",
    "release_stale_payout_locks",
    "retry_failed_webhooks",
]
