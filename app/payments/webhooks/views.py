"""
Stripe webhook endpoint.

The view only verifies, stores and queues. Handlers run in the
``process_webhook_event`` Celery task so Stripe gets its 2xx quickly.

Usage:
    # payments/urls.py
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook")
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import StripeAdapter
from payments.exceptions import StripeInvalidRequestError
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive a Stripe event.

    Returns:
        200: Event accepted, or already processed (WebhookEvent.stripe_event_id is unique)
        400: Missing or invalid signature, or malformed event
    """
    signature = request.headers.get("Stripe-Signature", "")
    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        event_data = StripeAdapter.verify_webhook_signature(request.body, signature)
    except StripeInvalidRequestError as exc:
        logger.warning("Webhook signature verification failed", extra={"error": str(exc)})
        return HttpResponse("Invalid signature", status=400)

    stripe_event_id = event_data.get("id")
    event_type = event_data.get("type")
    if not stripe_event_id or not event_type:
        logger.warning("Webhook missing id or type")
        return HttpResponse("Invalid event", status=400)

    webhook_event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id=stripe_event_id,
        defaults={
            "event_type": event_type,
            "payload": event_data,
            "status": WebhookEventStatus.PENDING,
        },
    )

    if not created:
        logger.info(
            f"Duplicate webhook delivery, status {webhook_event.status}",
            extra={"stripe_event_id": stripe_event_id},
        )
        return HttpResponse("Already received", status=200)

    from payments.tasks import process_webhook_event

    try:
        process_webhook_event.delay(str(webhook_event.id))
    except Exception as exc:
        # Failed events are re-queued by retry_failed_webhooks
        logger.exception("Failed to queue webhook", extra={"stripe_event_id": stripe_event_id})
        webhook_event.mark_failed(f"Queueing failed: {exc}")
        webhook_event.save(update_fields=["status", "error_message", "updated_at"])
    else:
        logger.info(
            f"Webhook queued: {event_type}",
            extra={"stripe_event_id": stripe_event_id, "webhook_event_id": str(webhook_event.id)},
        )

    return HttpResponse("Accepted", status=200)
