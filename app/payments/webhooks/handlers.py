"""
Webhook event handlers for Stripe events.

Handlers are registered per event type and translate a stored WebhookEvent
into a ledger or payout operation. Domain errors (unknown payment, invalid
transition) come back as ``ServiceResult.failure`` so the event is marked
failed and retried later; anything unexpected propagates to the Celery task.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from django.db import transaction

from core.exceptions import BaseApplicationError
from core.services import ServiceResult

from payments.models import ConnectedAccount, Payment, WebhookEvent
from payments.money import from_cents
from payments.services import PaymentLedgerService, PayoutOrchestrator
from payments.state_machines import OnboardingStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """Decorator registering ``func`` as the handler of ``event_type``."""

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Route an event to its handler.

    Event types without a handler succeed with no data, so Stripe events we
    do not care about never pile up as failures.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )

    try:
        return handler(webhook_event)
    except BaseApplicationError as exc:
        logger.warning(
            f"{webhook_event.event_type} handler rejected event: {exc.message}",
            extra={"stripe_event_id": webhook_event.stripe_event_id, "error_code": exc.error_code},
        )
        return ServiceResult.from_exception(exc)


def _missing_field(webhook_event: WebhookEvent, field_name: str) -> ServiceResult:
    logger.error(
        f"{webhook_event.event_type}: missing {field_name}",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )
    return ServiceResult.failure(
        f"Could not extract {field_name} from webhook",
        error_code="INVALID_WEBHOOK_PAYLOAD",
    )


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Capture succeeded: record the charge id and complete the payment,
    which schedules its payout.
    """
    data_object = webhook_event.data_object
    payment_intent_id = data_object.get("id")
    if not payment_intent_id:
        return _missing_field(webhook_event, "payment_intent_id")

    amount_received = data_object.get("amount_received")
    captured_amount = from_cents(amount_received) if amount_received is not None else None
    charge_id = data_object.get("latest_charge")
    if isinstance(charge_id, dict):
        charge_id = charge_id.get("id")

    with transaction.atomic():
        payment = PaymentLedgerService.get_by_payment_intent(payment_intent_id)
        if charge_id and not payment.stripe_charge_id:
            Payment.objects.filter(pk=payment.pk, stripe_charge_id__isnull=True).update(stripe_charge_id=charge_id)

        payment = PaymentLedgerService.mark_completed(payment.pk, captured_amount=captured_amount)

    return ServiceResult.success(payment)


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(webhook_event: WebhookEvent) -> ServiceResult:
    data_object = webhook_event.data_object
    payment_intent_id = data_object.get("id")
    if not payment_intent_id:
        return _missing_field(webhook_event, "payment_intent_id")

    last_error = data_object.get("last_payment_error") or {}
    reason = last_error.get("message", "Payment failed")

    payment = PaymentLedgerService.get_by_payment_intent(payment_intent_id)
    return ServiceResult.success(PaymentLedgerService.fail(payment.pk, reason=reason))


@register_handler("payment_intent.canceled")
def handle_payment_intent_canceled(webhook_event: WebhookEvent) -> ServiceResult:
    payment_intent_id = webhook_event.data_object.get("id")
    if not payment_intent_id:
        return _missing_field(webhook_event, "payment_intent_id")

    payment = PaymentLedgerService.get_by_payment_intent(payment_intent_id)
    return ServiceResult.success(PaymentLedgerService.cancel(payment.pk))


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler("charge.dispute.created")
def handle_charge_dispute_created(webhook_event: WebhookEvent) -> ServiceResult:
    data_object = webhook_event.data_object
    charge_id = data_object.get("charge")
    if not charge_id:
        return _missing_field(webhook_event, "charge")

    amount = data_object.get("amount")
    payment = PaymentLedgerService.get_by_charge(charge_id)
    payment = PaymentLedgerService.dispute(
        payment.pk,
        amount=from_cents(amount) if amount is not None else None,
        stripe_dispute_id=data_object.get("id"),
        reason=data_object.get("reason"),
    )
    return ServiceResult.success(payment)


# =============================================================================
# Transfer Handlers
# =============================================================================


@register_handler("transfer.paid")
def handle_transfer_paid(webhook_event: WebhookEvent) -> ServiceResult:
    transfer_id = webhook_event.data_object.get("id")
    if not transfer_id:
        return _missing_field(webhook_event, "transfer_id")

    return ServiceResult.success(PayoutOrchestrator.confirm_transfer_paid(transfer_id))


# =============================================================================
# Connected Account Handlers
# =============================================================================


@register_handler("account.updated")
def handle_account_updated(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Keep the coach's payout readiness in sync with Stripe.

    Accounts we do not know are ignored.
    """
    data_object = webhook_event.data_object
    account_id = data_object.get("id")
    if not account_id:
        return _missing_field(webhook_event, "account_id")

    requirements = data_object.get("requirements") or {}
    outstanding = (requirements.get("currently_due") or []) + (requirements.get("past_due") or [])

    account = ConnectedAccount.objects.filter(stripe_account_id=account_id).first()
    if account is None:
        logger.info("ConnectedAccount not found, ignoring", extra={"stripe_account_id": account_id})
        return ServiceResult.success(None)

    account.payouts_enabled = bool(data_object.get("payouts_enabled", False))
    account.charges_enabled = bool(data_object.get("charges_enabled", False))
    if requirements.get("disabled_reason"):
        account.onboarding_status = OnboardingStatus.REJECTED
    elif outstanding:
        account.onboarding_status = OnboardingStatus.IN_PROGRESS
    else:
        account.onboarding_status = OnboardingStatus.COMPLETE
    account.save(update_fields=["payouts_enabled", "charges_enabled", "onboarding_status", "updated_at"])

    logger.info(
        "ConnectedAccount updated",
        extra={
            "stripe_account_id": account_id,
            "onboarding_status": account.onboarding_status,
            "payouts_enabled": account.payouts_enabled,
        },
    )
    return ServiceResult.success(account)


__all__ = ["WEBHOOK_HANDLERS", "dispatch_webhook", "register_handler"]
