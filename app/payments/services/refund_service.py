"""
Refunds to the payer and the clawback of what the coach already received.

A refund always returns money to the payer through Stripe first. What the
coach gives back depends on the refund policy and on how far the payout
had gone when the refund arrived:

    payout pending      debit recorded in the refund history and subtracted
                        when the payout is computed (not_applicable if the
                        charge is now fully refunded)
    submitted/paid_out  best-effort transfer reversal, plus an Adjustment
                        for the full debit that a later payout absorbs
    anything else       no debit mechanism

The flow is three-phase like every money movement here:

    1. Validate     under a Redis lock (refund:{payment_id})
    2. Stripe       create_refund (and create_transfer_reversal)
    3. Ledger       one transaction with the payment row locked

Usage:
    from payments.services import RefundService

    result = RefundService.process_refund(
        payment_id=payment.id,
        amount=Decimal("50.00"),
        reason="Session cancelled by coach",
        policy=RefundPolicy.STANDARD,
        initiated_by=str(admin.id),
    )
    if result.success:
        result.data.coach_debit_amount  # Decimal("40.00")
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult

from payments import notifier
from payments.adapters import IdempotencyKeyGenerator, StripeAdapter
from payments.config import SettlementConfig
from payments.exceptions import (
    ConsistencyRiskError,
    DuplicateRefundError,
    InvalidRefundAmountError,
    LockAcquisitionError,
    PaymentValidationError,
    RefundDeclinedError,
    RefundNotAllowedError,
)
from payments.locks import DistributedLock, lock_payment, refund_lock_key
from payments.models import Payment, Transaction
from payments.money import ZERO, from_cents, quantize_money, to_cents, to_decimal
from payments.services.invoice_service import CoachInvoiceService
from payments.state_machines import (
    PaymentStatus,
    PaymentType,
    PayoutStatus,
    RefundPolicy,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from payments.adapters import RefundResult, ReversalResult


# =============================================================================
# Constants
# =============================================================================

REFUND_LOCK_TTL = 60

REFUND_LOCK_TIMEOUT = 10.0

REFUNDABLE_STATUSES = frozenset([PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED])

# Payout statuses where the coach already holds the money
DISBURSED_PAYOUT_STATUSES = frozenset([PayoutStatus.SUBMITTED, PayoutStatus.PAID_OUT])

# Payout statuses a full refund closes: nothing was sent and nothing is owed
NOTHING_TO_PAY_OUT_STATUSES = frozenset([PayoutStatus.PENDING, PayoutStatus.FAILED])

# Reasons Stripe accepts; anything else is sent as requested_by_customer
STRIPE_REFUND_REASONS = frozenset(["duplicate", "fraudulent", "requested_by_customer"])


# =============================================================================
# Refund Policies
# =============================================================================


@dataclass(frozen=True)
class RefundBreakdown:
    """
    Who bears a refund.

    ``coach_debit_amount`` is what the coach gives back (positive). The
    other three are the refunded portion of each component, for reporting.
    """

    coach_debit_amount: Decimal
    platform_fee_forfeited: Decimal
    vat_reclaimed: Decimal
    stripe_fee_lost: Decimal


def _standard_debit(amount: Decimal, total: Decimal, net_earning: Decimal, processor_fee: Decimal) -> Decimal:
    # Coach returns their share of the refunded portion plus the lost Stripe fee
    portion = amount / total
    return net_earning * portion + processor_fee * portion


def _platform_fault_debit(amount: Decimal, total: Decimal, net_earning: Decimal, processor_fee: Decimal) -> Decimal:
    # Platform absorbs the Stripe fee
    return amount * (net_earning / total)


def _goodwill_debit(amount: Decimal, total: Decimal, net_earning: Decimal, processor_fee: Decimal) -> Decimal:
    return ZERO


POLICY_CALCULATORS: dict[str, Callable[[Decimal, Decimal, Decimal, Decimal], Decimal]] = {
    RefundPolicy.STANDARD: _standard_debit,
    RefundPolicy.PLATFORM_FAULT: _platform_fault_debit,
    RefundPolicy.GOODWILL: _goodwill_debit,
}


def compute_refund_breakdown(
    policy: str,
    amount: Decimal,
    total: Decimal,
    platform_fee: Decimal,
    vat: Decimal,
    processor_fee: Decimal,
) -> RefundBreakdown:
    """
    Split a refund of ``amount`` out of a payment of ``total``.

    Raises:
        ValueError: Unknown policy or non-positive total
    """
    calculator = POLICY_CALCULATORS.get(policy)
    if calculator is None:
        raise ValueError(f"Unknown refund policy: {policy}")

    amount = to_decimal(amount)
    total = to_decimal(total)
    if total <= 0:
        raise ValueError("Cannot split a refund of a payment with no total")

    processor_fee = to_decimal(processor_fee)
    net_earning = total - to_decimal(platform_fee) - to_decimal(vat) - processor_fee
    portion = amount / total

    return RefundBreakdown(
        coach_debit_amount=quantize_money(calculator(amount, total, net_earning, processor_fee)),
        platform_fee_forfeited=quantize_money(to_decimal(platform_fee) * portion),
        vat_reclaimed=quantize_money(to_decimal(vat) * portion),
        stripe_fee_lost=quantize_money(processor_fee * portion),
    )


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class RefundOutcome:
    """
    Result of a processed refund.

    Attributes:
        duplicate: The Stripe refund was already booked; nothing changed
        adjustment_id: Adjustment created for a disbursed payout
        reversal_id: Transfer reversal Stripe accepted, if any
    """

    payment_id: uuid.UUID
    stripe_refund_id: str
    amount: Decimal
    policy: str
    coach_debit_amount: Decimal
    payment_status: str
    payout_status_at_refund: str | None
    payout_status: str | None
    adjustment_id: uuid.UUID | None = None
    reversal_id: str | None = None
    reversal_amount: Decimal | None = None
    duplicate: bool = False


# =============================================================================
# Refund Service
# =============================================================================


class RefundService(BaseService):
    """
    Service for refunding payments.

    Error codes (ServiceResult.failure):
        PAYMENT_NOT_FOUND: Unknown payment
        INVALID_REFUND_AMOUNT: Amount not positive or above the refundable balance
        REFUND_NOT_ALLOWED: Payment status does not allow refunds
        INVALID_REFUND_POLICY: Policy not standard, platform_fault or goodwill

    Raised:
        RefundDeclinedError: Stripe did not accept the refund
        StripeError: Gateway failures, unchanged
        LockAcquisitionError: Another refund of the payment is running
        ConsistencyRiskError: Money was refunded but the ledger write failed
    """

    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        """Swap the Stripe adapter (tests)."""
        cls._stripe_adapter = adapter

    @classmethod
    def process_refund(
        cls,
        payment_id: uuid.UUID,
        amount: Decimal,
        reason: str,
        policy: str = RefundPolicy.STANDARD,
        initiated_by: str | None = None,
        config: SettlementConfig | None = None,
    ) -> ServiceResult[RefundOutcome]:
        config = config or SettlementConfig.from_settings()
        logger = cls.get_logger()
        logger.info(
            "Starting refund",
            extra={"payment_id": str(payment_id), "amount": str(amount), "policy": policy},
        )

        try:
            with DistributedLock(refund_lock_key(payment_id), ttl=REFUND_LOCK_TTL, timeout=REFUND_LOCK_TIMEOUT):
                return cls._process_refund_locked(payment_id, amount, reason, policy, initiated_by, config)
        except LockAcquisitionError as exc:
            logger.warning(
                "Failed to acquire lock for refund",
                extra={"payment_id": str(payment_id), "error": str(exc)},
            )
            raise

    @classmethod
    def _process_refund_locked(
        cls,
        payment_id: uuid.UUID,
        amount: Decimal,
        reason: str,
        policy: str,
        initiated_by: str | None,
        config: SettlementConfig,
    ) -> ServiceResult[RefundOutcome]:
        logger = cls.get_logger()

        # Phase 1: validate
        try:
            payment = Payment.objects.get(pk=payment_id)
        except Payment.DoesNotExist:
            return ServiceResult.failure(f"Payment {payment_id} not found", error_code="PAYMENT_NOT_FOUND")

        try:
            amount = cls._validate(payment, amount, policy)
        except PaymentValidationError as exc:
            logger.info("Refund rejected", extra={"payment_id": str(payment_id), "error_code": exc.error_code})
            return ServiceResult.failure(exc.message, error_code=exc.error_code)

        payout_status_at_refund = payment.payout_status
        breakdown = compute_refund_breakdown(
            policy,
            amount,
            payment.total_amount,
            payment.platform_fee,
            payment.vat_amount,
            cls._processor_fee(payment),
        )

        # Phase 2: Stripe
        stripe_refund = cls._create_stripe_refund(payment, amount, reason, policy)

        reversal = None
        if payout_status_at_refund in DISBURSED_PAYOUT_STATUSES and breakdown.coach_debit_amount > 0:
            reversal = cls._reverse_transfer(payment, breakdown.coach_debit_amount, stripe_refund.id)

        # Phase 3: ledger
        try:
            with cls.atomic():
                outcome = cls._record_refund(
                    payment_id=payment.pk,
                    amount=amount,
                    reason=reason,
                    policy=policy,
                    initiated_by=initiated_by,
                    breakdown=breakdown,
                    stripe_refund=stripe_refund,
                    reversal=reversal,
                    config=config,
                )
        except Exception as exc:
            logger.critical(
                "CONSISTENCY_RISK: refund succeeded at Stripe but ledger write failed",
                extra={
                    "payment_id": str(payment.pk),
                    "stripe_refund_id": stripe_refund.id,
                    "amount": str(amount),
                    "error": str(exc),
                },
                exc_info=True,
            )
            raise ConsistencyRiskError(
                f"Refund {stripe_refund.id} succeeded but payment {payment.pk} could not be updated",
                details={"payment_id": str(payment.pk), "stripe_refund_id": stripe_refund.id, "error": str(exc)},
            ) from exc

        logger.info(
            "Refund processed",
            extra={
                "payment_id": str(outcome.payment_id),
                "stripe_refund_id": outcome.stripe_refund_id,
                "coach_debit_amount": str(outcome.coach_debit_amount),
                "payout_status_at_refund": outcome.payout_status_at_refund,
                "duplicate": outcome.duplicate,
            },
        )
        return ServiceResult.success(outcome)

    # =========================================================================
    # Phase 1
    # =========================================================================

    @classmethod
    def _validate(cls, payment: Payment, amount: Decimal, policy: str) -> Decimal:
        """
        Returns the quantized refund amount.

        Raises:
            InvalidRefundAmountError, RefundNotAllowedError, PaymentValidationError
        """
        try:
            amount = to_decimal(amount)
        except (TypeError, ValueError, ArithmeticError) as exc:
            raise InvalidRefundAmountError(f"Invalid refund amount: {amount!r}") from exc

        if not amount.is_finite() or amount <= 0 or quantize_money(amount) != amount:
            raise InvalidRefundAmountError(
                "Refund amount must be a positive amount in cents",
                details={"amount": str(amount)},
            )

        if payment.status not in REFUNDABLE_STATUSES:
            raise RefundNotAllowedError(
                f"Cannot refund a payment that is {payment.status}",
                details={"payment_id": str(payment.pk), "status": payment.status},
            )

        if amount > payment.refundable_amount:
            raise InvalidRefundAmountError(
                f"Refund of {amount} exceeds refundable balance {payment.refundable_amount}",
                details={"amount": str(amount), "refundable_amount": str(payment.refundable_amount)},
            )

        if policy not in RefundPolicy.values:
            raise PaymentValidationError(
                f"Unknown refund policy: {policy}",
                error_code="INVALID_REFUND_POLICY",
                details={"policy": policy},
            )

        return amount

    @classmethod
    def _processor_fee(cls, payment: Payment) -> Decimal:
        fee_tx = Transaction.objects.filter(payment=payment, transaction_type=TransactionType.FEE).first()
        return fee_tx.amount if fee_tx else ZERO

    # =========================================================================
    # Phase 2
    # =========================================================================

    @classmethod
    def _create_stripe_refund(cls, payment: Payment, amount: Decimal, reason: str, policy: str) -> RefundResult:
        stripe_reason = reason if reason in STRIPE_REFUND_REASONS else "requested_by_customer"
        result = cls.get_stripe_adapter().create_refund(
            payment_intent_id=payment.stripe_payment_intent_id,
            amount_cents=to_cents(amount),
            reason=stripe_reason,
            metadata={"payment_id": str(payment.pk), "refund_policy": policy},
            idempotency_key=IdempotencyKeyGenerator.generate(
                "create_refund", payment.pk, len(payment.refunds or []) + 1
            ),
        )

        if not result.is_accepted:
            cls.get_logger().warning(
                "Stripe declined refund",
                extra={
                    "payment_id": str(payment.pk),
                    "stripe_refund_id": result.id,
                    "refund_status": result.status,
                    "failure_reason": result.failure_reason,
                },
            )
            raise RefundDeclinedError(
                f"Refund {result.id} was not accepted (status {result.status})",
                details={"stripe_refund_id": result.id, "status": result.status, "failure_reason": result.failure_reason},
            )
        return result

    @classmethod
    def _reverse_transfer(cls, payment: Payment, coach_debit: Decimal, stripe_refund_id: str) -> ReversalResult | None:
        """
        Pull back up to ``coach_debit`` from the coach's transfer.

        Best effort: any failure is logged and returns None, the adjustment
        created afterwards still covers the full debit.
        """
        logger = cls.get_logger()
        log_context = {
            "payment_id": str(payment.pk),
            "stripe_transfer_id": payment.stripe_transfer_id,
            "stripe_refund_id": stripe_refund_id,
        }

        if not payment.stripe_transfer_id:
            logger.warning("Disbursed payout has no transfer to reverse", extra=log_context)
            return None

        adapter = cls.get_stripe_adapter()
        try:
            transfer = adapter.retrieve_transfer(payment.stripe_transfer_id)
            reversal_cents = min(to_cents(coach_debit), transfer.reversible_cents)
            if reversal_cents <= 0:
                logger.info("Transfer already fully reversed", extra=log_context)
                return None

            return adapter.create_transfer_reversal(
                transfer_id=payment.stripe_transfer_id,
                amount_cents=reversal_cents,
                metadata={"payment_id": str(payment.pk), "stripe_refund_id": stripe_refund_id},
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "create_transfer_reversal", payment.pk, stripe_refund_id
                ),
            )
        except Exception:
            logger.exception("Transfer reversal failed, relying on adjustment", extra=log_context)
            return None

    # =========================================================================
    # Phase 3
    # =========================================================================

    @classmethod
    def _record_refund(
        cls,
        payment_id: uuid.UUID,
        amount: Decimal,
        reason: str,
        policy: str,
        initiated_by: str | None,
        breakdown: RefundBreakdown,
        stripe_refund: RefundResult,
        reversal: ReversalResult | None,
        config: SettlementConfig,
    ) -> RefundOutcome:
        """Book the refund. Must run inside a transaction."""
        logger = cls.get_logger()
        payment = lock_payment(payment_id)
        payout_status_at_refund = payment.payout_status
        coach_debit = breakdown.coach_debit_amount

        try:
            cls._guard_duplicate(payment, stripe_refund.id)
        except DuplicateRefundError:
            logger.warning(
                "Refund already recorded, skipping",
                extra={"payment_id": str(payment.pk), "stripe_refund_id": stripe_refund.id},
            )
            return RefundOutcome(
                payment_id=payment.pk,
                stripe_refund_id=stripe_refund.id,
                amount=amount,
                policy=policy,
                coach_debit_amount=coach_debit,
                payment_status=payment.status,
                payout_status_at_refund=payout_status_at_refund,
                payout_status=payment.payout_status,
                duplicate=True,
            )

        Transaction.objects.create(
            payment=payment,
            transaction_type=TransactionType.REFUND,
            amount=-amount,
            currency=payment.currency,
            status=TransactionStatus.COMPLETED,
            stripe_charge_id=payment.stripe_charge_id,
            stripe_refund_id=stripe_refund.id,
            description=reason,
            metadata={
                "refund_policy": policy,
                "coach_debit_amount": str(-coach_debit),
                "platform_fee_forfeited": str(breakdown.platform_fee_forfeited),
                "vat_reclaimed": str(breakdown.vat_reclaimed),
                "stripe_fee_lost": str(breakdown.stripe_fee_lost),
                "reason": reason,
                "initiated_by": initiated_by,
            },
        )

        payment.refunded_amount = quantize_money(payment.refunded_amount + amount)
        fully_refunded = payment.total_amount - payment.refunded_amount < config.refund_epsilon
        in_flight = payout_status_at_refund == PayoutStatus.PROCESSING or (
            payout_status_at_refund not in DISBURSED_PAYOUT_STATUSES
            and bool(payment.payout_transfer_key or payment.stripe_transfer_id)
        )

        adjustment = None
        if coach_debit > 0 and payout_status_at_refund in DISBURSED_PAYOUT_STATUSES:
            adjustment = cls._create_adjustment(payment, coach_debit, stripe_refund.id, reversal)
        elif coach_debit > 0 and in_flight:
            # The amount of a transfer already requested is frozen; claw back from the next payout
            adjustment = cls._create_adjustment(
                payment, coach_debit, stripe_refund.id, None, reason="refund_during_payout"
            )
            logger.warning(
                "Refund while payout in flight, coach debit deferred to an adjustment",
                extra={
                    "payment_id": str(payment.pk),
                    "payout_status": payout_status_at_refund,
                    "coach_debit_amount": str(coach_debit),
                    "adjustment_id": str(adjustment.pk),
                },
            )

        entry = {
            "amount": str(amount),
            "currency": payment.currency,
            "reason": reason,
            "policy": policy,
            "status": stripe_refund.status,
            "stripe_refund_id": stripe_refund.id,
            "coach_debit_amount": str(coach_debit),
            "payout_status_at_refund": payout_status_at_refund,
            "processed_by": initiated_by,
            "processed_at": timezone.now().isoformat(),
        }
        if adjustment is not None:
            entry["adjustment_id"] = str(adjustment.pk)
        payment.refunds = [*(payment.refunds or []), entry]

        if fully_refunded:
            payment.refund_full()
        else:
            payment.refund_partial()

        update_fields = ["status", "refunded_amount", "refunds", "updated_at"]

        if fully_refunded and not in_flight and payout_status_at_refund in NOTHING_TO_PAY_OUT_STATUSES:
            payment.payout_status = PayoutStatus.NOT_APPLICABLE
            payment.next_payout_attempt_at = None
            update_fields += ["payout_status", "next_payout_attempt_at"]

        payment.save(update_fields=update_fields)

        cls._after_commit(payment, amount, coach_debit, stripe_refund.id, payout_status_at_refund)

        return RefundOutcome(
            payment_id=payment.pk,
            stripe_refund_id=stripe_refund.id,
            amount=amount,
            policy=policy,
            coach_debit_amount=coach_debit,
            payment_status=payment.status,
            payout_status_at_refund=payout_status_at_refund,
            payout_status=payment.payout_status,
            adjustment_id=adjustment.pk if adjustment else None,
            reversal_id=reversal.id if reversal else None,
            reversal_amount=from_cents(reversal.amount_cents) if reversal else None,
        )

    @classmethod
    def _guard_duplicate(cls, payment: Payment, stripe_refund_id: str) -> None:
        if payment.has_refund(stripe_refund_id) or Transaction.objects.filter(stripe_refund_id=stripe_refund_id).exists():
            raise DuplicateRefundError(
                f"Refund {stripe_refund_id} already recorded",
                details={"payment_id": str(payment.pk), "stripe_refund_id": stripe_refund_id},
            )

    @classmethod
    def _create_adjustment(
        cls,
        payment: Payment,
        coach_debit: Decimal,
        stripe_refund_id: str,
        reversal: ReversalResult | None,
        reason: str = "refund_after_payout",
    ) -> Payment:
        metadata = {"reason": reason, "stripe_refund_id": stripe_refund_id}

        if reversal is not None:
            metadata.update(
                reversal_amount=str(from_cents(reversal.amount_cents)),
                reversal_id=reversal.id,
                potential_double_count=True,
            )

        adjustment = Payment.objects.create(
            payment_type=PaymentType.ADJUSTMENT,
            status=PaymentStatus.PENDING_DEDUCTION,
            recipient_id=payment.recipient_id,
            original_payment=payment,
            total_amount=-coach_debit,
            currency=payment.currency,
            description=f"Refund clawback for payment {payment.pk}",
            metadata=metadata,
        )

        if reversal is not None:
            Transaction.objects.create(
                payment=payment,
                transaction_type=TransactionType.TRANSFER,
                amount=-from_cents(reversal.amount_cents),
                currency=payment.currency,
                status=TransactionStatus.COMPLETED,
                stripe_transfer_id=payment.stripe_transfer_id,
                stripe_reversal_id=reversal.id,
                description="Transfer reversal after refund",
                metadata={"stripe_refund_id": stripe_refund_id, "adjustment_id": str(adjustment.pk)},
            )
            cls.get_logger().warning(
                "SETTLEMENT_DOUBLE_COUNT: transfer reversed and adjustment created for the same debit",
                extra={
                    "payment_id": str(payment.pk),
                    "adjustment_id": str(adjustment.pk),
                    "reversal_id": reversal.id,
                    "reversal_amount": str(from_cents(reversal.amount_cents)),
                    "coach_debit_amount": str(coach_debit),
                },
            )

        cls.get_logger().info(
            "Adjustment created for disbursed payout",
            extra={"payment_id": str(payment.pk), "adjustment_id": str(adjustment.pk), "amount": str(-coach_debit)},
        )
        return adjustment

    @classmethod
    def _after_commit(
        cls,
        payment: Payment,
        amount: Decimal,
        coach_debit: Decimal,
        stripe_refund_id: str,
        payout_status_at_refund: str | None,
    ) -> None:
        if payout_status_at_refund in DISBURSED_PAYOUT_STATUSES:
            transaction.on_commit(lambda: CoachInvoiceService.record_credit_note(payment, amount, stripe_refund_id))

        data = {"amount": amount, "currency": payment.currency.upper(), "payment_id": payment.pk}
        notifier.emit_on_commit(
            notifier.REFUND_PROCESSED_COACH,
            payment.recipient,
            {**data, "coach_debit_amount": coach_debit},
            idempotency_key=f"{notifier.REFUND_PROCESSED_COACH}:{stripe_refund_id}",
        )
        notifier.emit_on_commit(
            notifier.REFUND_PROCESSED_CLIENT,
            payment.payer,
            data,
            idempotency_key=f"{notifier.REFUND_PROCESSED_CLIENT}:{stripe_refund_id}",
        )


__all__ = [
    "POLICY_CALCULATORS",
    "RefundBreakdown",
    "RefundOutcome",
    "RefundService",
    "compute_refund_breakdown",
]
