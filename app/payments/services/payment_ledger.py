"""
Payment ledger: the single writer of ``Payment.status``.

Every status change goes through PaymentLedgerService, which locks the row,
runs the django-fsm transition and saves. Completion is special: entering
``completed`` is the one place where payout scheduling happens, through the
pure ``apply_completion_side_effects`` function.

Usage:
    from payments.services import PaymentLedgerService

    payment = PaymentLedgerService.mark_completed(payment.id, captured_amount=Decimal("200.00"))
    payment.payout_status          # "pending"
    payment.next_payout_attempt_at # completed_at + 24h
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from django.utils import timezone
from django_fsm import TransitionNotAllowed

from core.services import BaseService

from payments.config import SettlementConfig
from payments.exceptions import InvalidStateTransitionError, PaymentNotFoundError
from payments.locks import lock_payment
from payments.models import Payment, Transaction
from payments.money import quantize_money
from payments.state_machines import (
    PaymentStatus,
    PayoutStatus,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from collections.abc import Callable


# =============================================================================
# Completion Side Effects
# =============================================================================


def apply_completion_side_effects(payment: Payment, config: SettlementConfig, now: datetime) -> list[str]:
    """
    Initialize payout scheduling for a payment that just completed.

    Payout-eligible payments get ``payout_status=pending`` and a first
    attempt ``payout_delay_hours`` from ``now``; everything else is marked
    ``not_applicable``. Mutates ``payment`` in memory only and returns the
    names of the fields it changed, ready for ``save(update_fields=...)``.
    """
    if payment.is_payout_eligible:
        payment.payout_status = PayoutStatus.PENDING
        payment.next_payout_attempt_at = now + config.payout_delay
        return ["payout_status", "next_payout_attempt_at"]

    payment.payout_status = PayoutStatus.NOT_APPLICABLE
    payment.next_payout_attempt_at = None
    return ["payout_status", "next_payout_attempt_at"]


# =============================================================================
# Ledger Service
# =============================================================================


class PaymentLedgerService(BaseService):
    """
    Locked, validated status transitions for Payment rows.

    Each public method:
        1. locks the payment (``select_for_update``, optional version check)
        2. returns it unchanged when it is already in the target status
        3. runs the django-fsm transition and saves

    Raises:
        PaymentNotFoundError: Unknown payment id
        StaleRecordError: ``expected_version`` no longer current
        InvalidStateTransitionError: Transition not allowed from the current status
    """

    @classmethod
    def get_by_payment_intent(cls, payment_intent_id: str) -> Payment:
        try:
            return Payment.objects.get(stripe_payment_intent_id=payment_intent_id)
        except Payment.DoesNotExist as exc:
            raise PaymentNotFoundError(
                f"No payment for PaymentIntent {payment_intent_id}",
                details={"stripe_payment_intent_id": payment_intent_id},
            ) from exc

    @classmethod
    def get_by_charge(cls, stripe_charge_id: str) -> Payment:
        payment = Payment.objects.filter(stripe_charge_id=stripe_charge_id).order_by("created_at").first()
        if payment is None:
            raise PaymentNotFoundError(
                f"No payment for charge {stripe_charge_id}",
                details={"stripe_charge_id": stripe_charge_id},
            )
        return payment

    @classmethod
    def mark_completed(
        cls,
        payment_id: uuid.UUID,
        captured_amount: Decimal | None = None,
        config: SettlementConfig | None = None,
        now: datetime | None = None,
        expected_version: int | None = None,
    ) -> Payment:
        """
        Capture succeeded: ``pending/authorized → completed``.

        Applies the completion side effects in the same save, so a completed
        payment is never visible without its payout schedule.
        """
        config = config or SettlementConfig.from_settings()
        now = now or timezone.now()

        def complete(payment: Payment) -> list[str]:
            payment.complete(captured_amount=captured_amount)
            payment.completed_at = now
            changed = apply_completion_side_effects(payment, config, now)
            return ["status", "captured_amount", "completed_at", *changed]

        payment = cls._transition(payment_id, PaymentStatus.COMPLETED, "complete", complete, expected_version)
        cls.get_logger().info(
            "Payment completed",
            extra={
                "payment_id": str(payment.id),
                "payout_status": payment.payout_status,
                "next_payout_attempt_at": (
                    payment.next_payout_attempt_at.isoformat() if payment.next_payout_attempt_at else None
                ),
            },
        )
        return payment

    @classmethod
    def submit(cls, payment_id: uuid.UUID, expected_version: int | None = None) -> Payment:
        def submit(payment: Payment) -> list[str]:
            payment.submit()
            return ["status"]

        return cls._transition(payment_id, PaymentStatus.PENDING, "submit", submit, expected_version)

    @classmethod
    def authorize(
        cls,
        payment_id: uuid.UUID,
        amount: Decimal | None = None,
        expected_version: int | None = None,
    ) -> Payment:
        def authorize(payment: Payment) -> list[str]:
            payment.authorize(amount=amount)
            return ["status", "authorized_amount"]

        return cls._transition(payment_id, PaymentStatus.AUTHORIZED, "authorize", authorize, expected_version)

    @classmethod
    def fail(cls, payment_id: uuid.UUID, reason: str | None = None, expected_version: int | None = None) -> Payment:
        def fail(payment: Payment) -> list[str]:
            payment.fail(reason=reason)
            return ["status", "failure_reason"]

        payment = cls._transition(payment_id, PaymentStatus.FAILED, "fail", fail, expected_version)
        cls.get_logger().info("Payment failed", extra={"payment_id": str(payment.id), "reason": reason})
        return payment

    @classmethod
    def cancel(cls, payment_id: uuid.UUID, expected_version: int | None = None) -> Payment:
        def cancel(payment: Payment) -> list[str]:
            payment.cancel()
            return ["status"]

        return cls._transition(payment_id, PaymentStatus.CANCELLED, "cancel", cancel, expected_version)

    @classmethod
    def dispute(
        cls,
        payment_id: uuid.UUID,
        amount: Decimal | None = None,
        stripe_dispute_id: str | None = None,
        reason: str | None = None,
    ) -> Payment:
        """
        Chargeback opened: ``completed/partially_refunded → disputed``.

        Records a negative ``dispute`` Transaction for the disputed amount
        (the full total when Stripe does not say). The payout schedule is
        left alone; operators decide with the hold/release admin actions.
        """

        def dispute(payment: Payment) -> list[str]:
            payment.dispute()
            disputed = quantize_money(amount if amount is not None else payment.total_amount)
            Transaction.objects.create(
                payment=payment,
                transaction_type=TransactionType.DISPUTE,
                amount=-disputed,
                currency=payment.currency,
                status=TransactionStatus.COMPLETED,
                stripe_charge_id=payment.stripe_charge_id,
                description=f"Dispute opened: {reason}" if reason else "Dispute opened",
                metadata={"stripe_dispute_id": stripe_dispute_id, "reason": reason},
            )
            return ["status"]

        payment = cls._transition(payment_id, PaymentStatus.DISPUTED, "dispute", dispute, None)
        cls.get_logger().warning(
            "Payment disputed",
            extra={
                "payment_id": str(payment.id),
                "stripe_dispute_id": stripe_dispute_id,
                "payout_status": payment.payout_status,
            },
        )
        return payment

    # =========================================================================
    # Internals
    # =========================================================================

    @classmethod
    def _transition(
        cls,
        payment_id: uuid.UUID,
        target: str,
        name: str,
        apply: Callable[[Payment], list[str]],
        expected_version: int | None,
    ) -> Payment:
        with cls.atomic():
            payment = lock_payment(payment_id, expected_version=expected_version)

            if payment.status == target:
                cls.get_logger().info(
                    "Payment already in target status",
                    extra={"payment_id": str(payment.id), "status": target, "transition": name},
                )
                return payment

            current = payment.status
            try:
                update_fields = apply(payment)
            except TransitionNotAllowed as exc:
                raise InvalidStateTransitionError(
                    f"Cannot {name} payment {payment.id} from status {current}",
                    details={"current_state": current, "target_state": target, "transition": name},
                ) from exc

            payment.save(update_fields=[*update_fields, "updated_at"])
            return payment


__all__ = ["PaymentLedgerService", "apply_completion_side_effects"]
