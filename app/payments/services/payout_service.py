"""
Payout orchestration: moving a coach's earnings to their connected account.

The orchestrator runs as a periodic Celery task. Each run selects payments
whose payout is due and processes them one by one:

    1. Claim    conditional UPDATE pending → processing (attempts += 1).
                Zero rows updated means another worker owns it: skip.
    2. Compute  final payout = total − VAT − platform fee − processor fee,
                decomposition for the invoice, pending adjustments reserved.
    3. Transfer Stripe create_transfer, outside any database transaction.
    4. Store    one transaction: adjustments deducted, payout Transaction,
                transfer id, payout_status=submitted.

Any exception in 2-3 aborts the attempt and goes through _handle_failure,
which walks the backoff ladder or marks the payout failed. An exception in
4 after Stripe accepted the transfer is a consistency risk: the payout is
parked on_hold and never retried automatically.

The claim guards against two workers paying the same payout. The transfer
request (idempotency key and amount) is committed before Stripe is called
and survives a crash or timeout: the next attempt looks the transfer up by
its transfer group and only replays the identical request if Stripe has
none. No Redis lock is taken.

Usage:
    from payments.services import PayoutOrchestrator

    summary = PayoutOrchestrator.run_batch(config)
    PayoutOrchestrator.release_stale_locks(config)
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from core.services import BaseService, ServiceResult

from payments import notifier
from payments.adapters import IdempotencyKeyGenerator, StripeAdapter
from payments.config import SettlementConfig
from payments.exceptions import (
    ConsistencyRiskError,
    DestinationAccountMissingError,
    PaymentNotFoundError,
    PaymentValidationError,
    StaleRecordError,
    StripeAuthenticationError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
)
from payments.models import ConnectedAccount, Payment, Transaction
from payments.money import ZERO, from_cents, quantize_money, to_cents
from payments.services.decomposition import compute_final_payout, decompose_payout
from payments.services.fee_reconciliation import FeeReconciliationService
from payments.services.invoice_service import CoachInvoiceService
from payments.state_machines import (
    PaymentStatus,
    PaymentType,
    PayoutStatus,
    TransactionStatus,
    TransactionType,
)

if TYPE_CHECKING:
    from payments.adapters import ChargeResult, TransferResult
    from payments.services.decomposition import PayoutDecomposition


# Errors that retrying cannot fix; the payout goes straight to failed
TERMINAL_ERRORS = (DestinationAccountMissingError, StripeInvalidAccountError)

# Stripe refused the transfer request without creating anything
TRANSFER_REJECTED = (
    StripeInvalidRequestError,
    StripeInvalidAccountError,
    StripeAuthenticationError,
    StripeRateLimitError,
)

# Outcome statuses reported per payment
SUBMITTED = "submitted"
PAID_OUT = "paid_out"
NOT_APPLICABLE = "not_applicable"
SKIPPED = "skipped"
RETRY_SCHEDULED = "retry_scheduled"
FAILED = "failed"
ON_HOLD = "on_hold"


def _bump(**values):
    """Common columns for every conditional payout UPDATE."""
    return {"version": F("version") + 1, "updated_at": timezone.now(), **values}


def transfer_group_for(payment: Payment) -> str:
    """Stripe transfer_group shared by every transfer request of one payout."""
    return f"payout:{payment.pk}"


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class PayoutOutcome:
    """
    What happened to one payment in a payout run.

    ``amount`` is the amount transferred (or that would have been, for
    below-minimum payouts); ``deductions`` is the (negative) sum of the
    adjustments absorbed.
    """

    payment_id: uuid.UUID
    status: str
    amount: Decimal | None = None
    deductions: Decimal = ZERO
    stripe_transfer_id: str | None = None
    decomposition: PayoutDecomposition | None = None
    next_attempt_at: datetime | None = None
    error: str | None = None


@dataclass
class PayoutBatchSummary:
    processed: int = 0
    submitted: int = 0
    paid_out: int = 0
    not_applicable: int = 0
    skipped: int = 0
    retry_scheduled: int = 0
    failed: int = 0
    on_hold: int = 0
    errors: int = 0
    outcomes: list[PayoutOutcome] = field(default_factory=list)

    def add(self, outcome: PayoutOutcome) -> None:
        self.outcomes.append(outcome)
        setattr(self, outcome.status, getattr(self, outcome.status) + 1)

    def to_dict(self) -> dict[str, int]:
        data = asdict(self)
        data.pop("outcomes")
        return data


# =============================================================================
# Payout Orchestrator
# =============================================================================


class PayoutOrchestrator(BaseService):
    """
    Claims due payouts and disburses them through Stripe.

    Adjustments (negative Payments left by refunds of already-paid
    payouts) are reserved with ``absorbed_by`` while an attempt is in
    flight and marked ``deducted`` in the same transaction that records the
    payout. A failed attempt releases them again.
    """

    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        """Swap the Stripe adapter (tests)."""
        cls._stripe_adapter = adapter

    # =========================================================================
    # Batch Entry Points
    # =========================================================================

    @classmethod
    def due_payment_ids(cls, now: datetime, limit: int) -> list[uuid.UUID]:
        return list(
            Payment.objects.filter(
                payout_status=PayoutStatus.PENDING,
                next_payout_attempt_at__lte=now,
            )
            .order_by("next_payout_attempt_at", "created_at")
            .values_list("pk", flat=True)[:limit]
        )

    @classmethod
    def run_batch(
        cls,
        config: SettlementConfig | None = None,
        now: datetime | None = None,
    ) -> PayoutBatchSummary:
        """
        Process up to ``config.payout_batch_limit`` due payouts sequentially.

        One payment's failure never stops the batch.
        """
        config = config or SettlementConfig.from_settings()
        now = now or timezone.now()
        logger = cls.get_logger()
        summary = PayoutBatchSummary()

        for payment_id in cls.due_payment_ids(now, config.payout_batch_limit):
            summary.processed += 1
            try:
                summary.add(cls.process_due_payment(payment_id, config=config, now=now))
            except Exception:
                # Failure bookkeeping itself failed; the stale-lock sweep reclaims the row
                summary.errors += 1
                logger.exception("Unhandled error while processing payout", extra={"payment_id": str(payment_id)})

        logger.info("Payout batch finished", extra=summary.to_dict())
        return summary

    @classmethod
    def claim(cls, payment_id: uuid.UUID, now: datetime | None = None) -> bool:
        """
        Take ownership of a due payout: ``pending → processing``.

        A single conditional UPDATE, so of two workers racing for the same
        payment exactly one gets a row count of 1.
        """
        now = now or timezone.now()
        claimed = Payment.objects.filter(
            pk=payment_id,
            payout_status=PayoutStatus.PENDING,
            next_payout_attempt_at__lte=now,
        ).update(
            **_bump(
                payout_status=PayoutStatus.PROCESSING,
                payout_attempts=F("payout_attempts") + 1,
                payout_locked_at=now,
            )
        )
        return claimed == 1

    @classmethod
    def process_due_payment(
        cls,
        payment_id: uuid.UUID,
        config: SettlementConfig | None = None,
        now: datetime | None = None,
    ) -> PayoutOutcome:
        """Claim one payment and run a payout attempt for it."""
        config = config or SettlementConfig.from_settings()
        now = now or timezone.now()

        if not cls.claim(payment_id, now):
            cls.get_logger().info("Payout already claimed, skipping", extra={"payment_id": str(payment_id)})
            return PayoutOutcome(payment_id=payment_id, status=SKIPPED)

        payment = Payment.objects.select_related("recipient", "payer").get(pk=payment_id)
        try:
            return cls.process_payment(payment, config=config, now=now)
        except ConsistencyRiskError as exc:
            cls._park_on_hold(payment, exc)
            return PayoutOutcome(
                payment_id=payment.id,
                status=ON_HOLD,
                stripe_transfer_id=exc.details.get("stripe_transfer_id"),
                error=str(exc),
            )
        except Exception as exc:
            return cls._handle_failure(payment, exc, config=config, now=now)

    # =========================================================================
    # Payout Attempt
    # =========================================================================

    @classmethod
    def process_payment(cls, payment: Payment, config: SettlementConfig, now: datetime) -> PayoutOutcome:
        """
        Run one payout attempt for a payment this worker has claimed.

        Raises:
            DestinationAccountMissingError: Recipient cannot receive transfers
            FeeNotAvailableError: Stripe has not settled the charge yet
            StripeError: Gateway failures
            ConsistencyRiskError: Transfer made but not recorded
        """
        logger = cls.get_logger()
        attempt = payment.payout_attempts
        log_context = {"payment_id": str(payment.id), "attempt": attempt}
        logger.info("Starting payout attempt", extra=log_context)

        account = cls._resolve_destination(payment)
        if not payment.stripe_charge_id:
            raise PaymentValidationError(
                f"Payment {payment.id} has no Stripe charge to pay out from",
                details={"payment_id": str(payment.id)},
            )

        if payment.payout_transfer_key:
            return cls._resume_transfer(payment, account, config, now)

        adapter = cls.get_stripe_adapter()
        charge = adapter.retrieve_charge(payment.stripe_charge_id)
        if charge.is_fully_refunded:
            return cls._settle_fully_refunded(payment, charge, now)

        processor_fee = cls._resolve_processor_fee(payment, charge)
        final_payout = compute_final_payout(
            total=payment.total_amount,
            vat=payment.vat_amount,
            platform_fee=payment.platform_fee,
            processor_fee=processor_fee,
            refund_debits=payment.pending_refund_debits,
        )
        decomposition = decompose_payout(
            final_payout,
            account.is_tax_registered,
            account.effective_tax_rate(config.default_tax_rate),
        )

        with cls.atomic():
            adjustments, deductions = cls._reserve_adjustments(payment, final_payout, config)
            net_payout = quantize_money(final_payout + deductions)

            if net_payout < config.minimum_payout_amount:
                cls._close_adjustments(payment, [adj.pk for adj in adjustments])
                cls._set_payout_status(
                    payment,
                    PayoutStatus.PAID_OUT,
                    payout_processed_at=now,
                    payout_locked_at=None,
                    payout_failure_reason=None,
                )
                logger.info(
                    "Payout below minimum, settled without transfer",
                    extra={**log_context, "net_payout": str(net_payout), "deductions": str(deductions)},
                )
                return PayoutOutcome(
                    payment_id=payment.id,
                    status=PAID_OUT,
                    amount=net_payout,
                    deductions=deductions,
                    decomposition=decomposition,
                )

            # Committed before Stripe sees the request, so a lost response
            # is replayed with the same key and amount
            cls._set_payout_status(
                payment,
                PayoutStatus.PROCESSING,
                payout_transfer_key=IdempotencyKeyGenerator.generate("create_transfer", payment.id, attempt),
                payout_transfer_amount=net_payout,
            )

        transfer = cls._send_transfer(payment, account, net_payout)
        return cls._record_transfer(
            payment,
            account,
            transfer,
            final_payout=final_payout,
            adjustments=adjustments,
            decomposition=decomposition,
            now=now,
        )

    @classmethod
    def _resume_transfer(
        cls,
        payment: Payment,
        account: ConnectedAccount,
        config: SettlementConfig,
        now: datetime,
    ) -> PayoutOutcome:
        """
        Finish a transfer request whose outcome an earlier attempt never
        recorded (worker died, gateway timed out).

        The transfer Stripe already holds for this payout is recorded if
        there is one; otherwise the identical request is sent again under
        the stored idempotency key. Amount and adjustments stay as they
        were reserved for that request.
        """
        adjustments = list(
            Payment.objects.filter(
                absorbed_by=payment,
                payment_type=PaymentType.ADJUSTMENT,
                status=PaymentStatus.PENDING_DEDUCTION,
            ).order_by("created_at")
        )
        deductions = quantize_money(sum((adj.total_amount for adj in adjustments), ZERO))
        final_payout = quantize_money(payment.payout_transfer_amount - deductions)
        decomposition = decompose_payout(
            final_payout,
            account.is_tax_registered,
            account.effective_tax_rate(config.default_tax_rate),
        )

        transfer = cls.get_stripe_adapter().find_transfer(transfer_group_for(payment))
        cls.get_logger().warning(
            "Resuming unconfirmed transfer request",
            extra={
                "payment_id": str(payment.id),
                "attempt": payment.payout_attempts,
                "idempotency_key": payment.payout_transfer_key,
                "existing_transfer_id": transfer.id if transfer else None,
            },
        )
        if transfer is None:
            transfer = cls._send_transfer(payment, account, payment.payout_transfer_amount)

        return cls._record_transfer(
            payment,
            account,
            transfer,
            final_payout=final_payout,
            adjustments=adjustments,
            decomposition=decomposition,
            now=now,
        )

    @classmethod
    def _send_transfer(cls, payment: Payment, account: ConnectedAccount, amount: Decimal) -> TransferResult:
        """
        Send the transfer request stored on the payment.

        A request Stripe rejected outright created nothing, so the stored
        request is cleared and the next attempt starts from scratch.
        """
        try:
            return cls.get_stripe_adapter().create_transfer(
                amount_cents=to_cents(amount),
                destination_account=account.stripe_account_id,
                currency=payment.currency,
                source_transaction=payment.stripe_charge_id,
                transfer_group=transfer_group_for(payment),
                metadata={
                    "payment_id": str(payment.id),
                    "recipient_id": str(payment.recipient_id),
                    "payer_id": str(payment.payer_id) if payment.payer_id else "",
                },
                idempotency_key=payment.payout_transfer_key,
            )
        except TRANSFER_REJECTED:
            cls._set_payout_status(
                payment,
                PayoutStatus.PROCESSING,
                payout_transfer_key=None,
                payout_transfer_amount=None,
            )
            raise

    @classmethod
    def _record_transfer(
        cls,
        payment: Payment,
        account: ConnectedAccount,
        transfer: TransferResult,
        final_payout: Decimal,
        adjustments: list[Payment],
        decomposition: PayoutDecomposition,
        now: datetime,
    ) -> PayoutOutcome:
        """
        Book an accepted transfer in one transaction.

        Raises:
            ConsistencyRiskError: The booking failed after Stripe accepted
        """
        logger = cls.get_logger()
        attempt = payment.payout_attempts
        log_context = {"payment_id": str(payment.id), "attempt": attempt}
        net_payout = from_cents(transfer.amount_cents)
        deductions = quantize_money(net_payout - final_payout)

        try:
            with cls.atomic():
                cls._close_adjustments(payment, [adj.pk for adj in adjustments])
                Transaction.objects.create(
                    payment=payment,
                    transaction_type=TransactionType.PAYOUT,
                    amount=net_payout,
                    currency=payment.currency,
                    status=TransactionStatus.PROCESSING,
                    stripe_charge_id=payment.stripe_charge_id,
                    stripe_transfer_id=transfer.id,
                    description="Coach payout",
                    metadata={
                        "attempt": attempt,
                        "final_payout": str(final_payout),
                        "deductions": str(deductions),
                        "adjustment_ids": [str(adj.pk) for adj in adjustments],
                        "destination_account": account.stripe_account_id,
                        **decomposition.as_dict(),
                    },
                )
                cls._set_payout_status(
                    payment,
                    PayoutStatus.SUBMITTED,
                    stripe_transfer_id=transfer.id,
                    payout_processed_at=now,
                    payout_locked_at=None,
                    payout_failure_reason=None,
                    payout_transfer_key=None,
                    payout_transfer_amount=None,
                )
                cls._after_submit(payment, net_payout, decomposition)
        except Exception as exc:
            raise ConsistencyRiskError(
                f"Transfer {transfer.id} succeeded but payout {payment.id} could not be recorded",
                details={"payment_id": str(payment.id), "stripe_transfer_id": transfer.id, "error": str(exc)},
            ) from exc

        logger.info(
            "Payout submitted",
            extra={
                **log_context,
                "stripe_transfer_id": transfer.id,
                "net_payout": str(net_payout),
                "deductions": str(deductions),
            },
        )
        return PayoutOutcome(
            payment_id=payment.id,
            status=SUBMITTED,
            amount=net_payout,
            deductions=deductions,
            stripe_transfer_id=transfer.id,
            decomposition=decomposition,
        )

    @classmethod
    def _resolve_destination(cls, payment: Payment) -> ConnectedAccount:
        account = (
            ConnectedAccount.objects.filter(user_id=payment.recipient_id).first()
            if payment.recipient_id
            else None
        )
        if account is None or not account.stripe_account_id:
            raise DestinationAccountMissingError(
                f"Recipient of payment {payment.id} has no connected account",
                details={"payment_id": str(payment.id), "recipient_id": str(payment.recipient_id)},
            )
        if not account.is_ready_for_payouts:
            raise DestinationAccountMissingError(
                f"Connected account {account.stripe_account_id} cannot receive payouts",
                details={
                    "payment_id": str(payment.id),
                    "stripe_account_id": account.stripe_account_id,
                    "onboarding_status": account.onboarding_status,
                    "payouts_enabled": account.payouts_enabled,
                },
            )
        return account

    @classmethod
    def _resolve_processor_fee(cls, payment: Payment, charge: ChargeResult) -> Decimal:
        fee_tx = Transaction.objects.filter(payment=payment, transaction_type=TransactionType.FEE).first()
        if fee_tx is None:
            fee_tx, _ = FeeReconciliationService.record_fee(payment, charge)
        return fee_tx.amount

    @classmethod
    def _settle_fully_refunded(cls, payment: Payment, charge: ChargeResult, now: datetime) -> PayoutOutcome:
        with cls.atomic():
            Transaction.objects.create(
                payment=payment,
                transaction_type=TransactionType.PAYOUT,
                amount=ZERO,
                currency=payment.currency,
                status=TransactionStatus.SKIPPED,
                stripe_charge_id=charge.id,
                description="Charge fully refunded before payout",
                metadata={"attempt": payment.payout_attempts, "amount_refunded_cents": charge.amount_refunded_cents},
            )
            # Clawbacks booked while a transfer for this payout was in flight; none went out
            cancelled = Payment.objects.filter(
                original_payment=payment,
                payment_type=PaymentType.ADJUSTMENT,
                status=PaymentStatus.PENDING_DEDUCTION,
                absorbed_by__isnull=True,
                metadata__reason="refund_during_payout",
            ).update(**_bump(status=PaymentStatus.CANCELLED))
            cls._set_payout_status(
                payment,
                PayoutStatus.NOT_APPLICABLE,
                payout_processed_at=now,
                payout_locked_at=None,
            )

        cls.get_logger().info(
            "Charge fully refunded, nothing to pay out",
            extra={"payment_id": str(payment.id), "stripe_charge_id": charge.id, "cancelled_adjustments": cancelled},
        )
        return PayoutOutcome(payment_id=payment.id, status=NOT_APPLICABLE, amount=ZERO)

    @classmethod
    def _after_submit(cls, payment: Payment, amount: Decimal, decomposition: PayoutDecomposition) -> None:
        """Notification and invoice record, both once the payout has committed."""
        notifier.emit_on_commit(
            notifier.PAYOUT_SUBMITTED,
            payment.recipient,
            {"amount": amount, "currency": payment.currency.upper(), "payment_id": payment.id},
            idempotency_key=f"{notifier.PAYOUT_SUBMITTED}:{payment.id}",
        )
        transaction.on_commit(lambda: CoachInvoiceService.record_payout_invoice(payment, decomposition))

    # =========================================================================
    # Adjustments
    # =========================================================================

    @classmethod
    def _reserve_adjustments(
        cls,
        payment: Payment,
        final_payout: Decimal,
        config: SettlementConfig,
    ) -> tuple[list[Payment], Decimal]:
        """
        Lock and reserve the recipient's open adjustments, oldest first.

        An adjustment is applied only while the running payout stays at or
        above the minimum; the rest wait for a later payout. Must run inside
        a transaction.
        """
        candidates = (
            Payment.objects.select_for_update()
            .filter(
                recipient_id=payment.recipient_id,
                payment_type=PaymentType.ADJUSTMENT,
                status=PaymentStatus.PENDING_DEDUCTION,
            )
            .filter(Q(absorbed_by__isnull=True) | Q(absorbed_by=payment))
            .order_by("created_at")
        )

        running = final_payout
        deductions = ZERO
        applied: list[Payment] = []
        for adjustment in candidates:
            if running + adjustment.total_amount >= config.minimum_payout_amount:
                running += adjustment.total_amount
                deductions += adjustment.total_amount
                applied.append(adjustment)

        if applied:
            Payment.objects.filter(pk__in=[adj.pk for adj in applied]).update(**_bump(absorbed_by=payment))
            cls.get_logger().info(
                "Adjustments reserved for payout",
                extra={
                    "payment_id": str(payment.id),
                    "adjustment_ids": [str(adj.pk) for adj in applied],
                    "deductions": str(deductions),
                },
            )
        return applied, quantize_money(deductions)

    @classmethod
    def _close_adjustments(cls, payment: Payment, adjustment_ids: list[uuid.UUID]) -> None:
        """Mark reserved adjustments ``deducted``. Must run inside a transaction."""
        if not adjustment_ids:
            return
        for adjustment in Payment.objects.select_for_update().filter(
            pk__in=adjustment_ids,
            status=PaymentStatus.PENDING_DEDUCTION,
        ):
            adjustment.mark_deducted()
            adjustment.absorbed_by = payment
            adjustment.save(update_fields=["status", "absorbed_by", "updated_at"])

    @classmethod
    def _release_adjustments(cls, payment_id: uuid.UUID) -> int:
        return Payment.objects.filter(
            absorbed_by_id=payment_id,
            payment_type=PaymentType.ADJUSTMENT,
            status=PaymentStatus.PENDING_DEDUCTION,
        ).update(**_bump(absorbed_by=None))

    # =========================================================================
    # Failure Handling
    # =========================================================================

    @classmethod
    def _set_payout_status(cls, payment: Payment, status: str, **values) -> None:
        """
        Move a payout this worker owns out of ``processing``.

        Raises:
            StaleRecordError: The payout is no longer processing (reclaimed)
        """
        updated = Payment.objects.filter(pk=payment.pk, payout_status=PayoutStatus.PROCESSING).update(
            **_bump(payout_status=status, **values)
        )
        if updated != 1:
            raise StaleRecordError(
                f"Payout {payment.pk} is no longer processing",
                details={"payment_id": str(payment.pk), "target_status": status},
            )
        payment.payout_status = status
        for name, value in values.items():
            setattr(payment, name, value)

    @classmethod
    def _handle_failure(
        cls,
        payment: Payment,
        exc: Exception,
        config: SettlementConfig,
        now: datetime,
    ) -> PayoutOutcome:
        """
        Release reservations, log a failed payout Transaction, then either
        schedule the next attempt on the backoff ladder or fail the payout.

        A transfer request Stripe may have accepted keeps its reservations
        and idempotency key for the next attempt to resume.
        """
        logger = cls.get_logger()
        attempts = payment.payout_attempts
        reason = f"{type(exc).__name__}: {exc}"
        error_code = getattr(exc, "error_code", type(exc).__name__.upper())

        if not payment.payout_transfer_key:
            cls._release_adjustments(payment.pk)

        try:
            Transaction.objects.create(
                payment=payment,
                transaction_type=TransactionType.PAYOUT,
                amount=ZERO,
                currency=payment.currency,
                status=TransactionStatus.FAILED,
                stripe_charge_id=payment.stripe_charge_id,
                description="Payout attempt failed",
                error={"code": error_code, "message": getattr(exc, "message", str(exc))},
                metadata={"attempt": attempts},
            )
        except Exception:
            logger.exception("Could not record failed payout transaction", extra={"payment_id": str(payment.id)})

        terminal = isinstance(exc, TERMINAL_ERRORS) or attempts >= config.max_payout_attempts
        if terminal:
            updated = Payment.objects.filter(pk=payment.pk, payout_status=PayoutStatus.PROCESSING).update(
                **_bump(
                    payout_status=PayoutStatus.FAILED,
                    payout_failure_reason=reason,
                    payout_locked_at=None,
                    next_payout_attempt_at=None,
                )
            )
            logger.critical(
                "Payout failed permanently, manual intervention required",
                extra={
                    "payment_id": str(payment.id),
                    "attempt": attempts,
                    "error_code": error_code,
                    "reason": reason,
                },
            )
            if updated:
                notifier.emit_on_commit(
                    notifier.PAYOUT_FAILED,
                    payment.recipient,
                    {
                        "amount": payment.total_amount,
                        "currency": payment.currency.upper(),
                        "payment_id": payment.id,
                        "reason": reason,
                    },
                    idempotency_key=f"{notifier.PAYOUT_FAILED}:{payment.id}:{attempts}",
                )
            return PayoutOutcome(payment_id=payment.id, status=FAILED, error=reason)

        next_attempt_at = now + config.retry_delay(attempts)
        Payment.objects.filter(pk=payment.pk, payout_status=PayoutStatus.PROCESSING).update(
            **_bump(
                payout_status=PayoutStatus.PENDING,
                next_payout_attempt_at=next_attempt_at,
                payout_failure_reason=reason,
                payout_locked_at=None,
            )
        )
        logger.warning(
            "Payout attempt failed, retry scheduled",
            extra={
                "payment_id": str(payment.id),
                "attempt": attempts,
                "error_code": error_code,
                "next_payout_attempt_at": next_attempt_at.isoformat(),
                "is_retryable": getattr(exc, "is_retryable", False),
            },
        )
        return PayoutOutcome(
            payment_id=payment.id,
            status=RETRY_SCHEDULED,
            next_attempt_at=next_attempt_at,
            error=reason,
        )

    @classmethod
    def _park_on_hold(cls, payment: Payment, exc: ConsistencyRiskError) -> None:
        """
        Stripe has the transfer, our books do not. Park the payout so that
        no further attempt can transfer again; reservations stay in place.
        """
        logger = cls.get_logger()
        transfer_id = exc.details.get("stripe_transfer_id")
        logger.critical(
            "CONSISTENCY_RISK: transfer succeeded but ledger write failed",
            extra={"payment_id": str(payment.id), "stripe_transfer_id": transfer_id, "error": str(exc)},
        )
        try:
            Payment.objects.filter(pk=payment.pk, payout_status=PayoutStatus.PROCESSING).update(
                **_bump(
                    payout_status=PayoutStatus.ON_HOLD,
                    stripe_transfer_id=transfer_id,
                    payout_failure_reason=f"Consistency risk: transfer {transfer_id} not recorded ({exc.details.get('error')})",
                    payout_locked_at=None,
                )
            )
        except Exception:
            logger.exception("Could not park payout on hold", extra={"payment_id": str(payment.id)})

    # =========================================================================
    # Maintenance
    # =========================================================================

    @classmethod
    def release_stale_locks(
        cls,
        config: SettlementConfig | None = None,
        now: datetime | None = None,
    ) -> dict[str, int]:
        """
        Return payouts stuck in ``processing`` to ``pending``.

        Only claims older than ``config.stale_lock_minutes`` without a
        transfer id qualify: a worker that died before reaching Stripe.
        Their adjustment reservations are released as well, unless a
        transfer request was already sent: the next attempt resumes it.
        """
        config = config or SettlementConfig.from_settings()
        now = now or timezone.now()
        cutoff = now - config.stale_lock_age

        stale = (
            Payment.objects.filter(payout_status=PayoutStatus.PROCESSING)
            .filter(Q(payout_locked_at__lt=cutoff) | Q(payout_locked_at__isnull=True))
            .filter(Q(stripe_transfer_id__isnull=True) | Q(stripe_transfer_id=""))
        )

        released = 0
        stale_rows = list(stale.values_list("pk", "payout_transfer_key"))
        for payment_id, transfer_key in stale_rows:
            with cls.atomic():
                updated = stale.filter(pk=payment_id).update(
                    **_bump(
                        payout_status=PayoutStatus.PENDING,
                        next_payout_attempt_at=now,
                        payout_locked_at=None,
                    )
                )
                if not updated:
                    continue
                adjustments = 0 if transfer_key else cls._release_adjustments(payment_id)
            released += 1
            cls.get_logger().warning(
                "Released stale payout lock",
                extra={
                    "payment_id": str(payment_id),
                    "released_adjustments": adjustments,
                    "unconfirmed_transfer_key": transfer_key,
                },
            )

        return {"examined": len(stale_rows), "released": released}

    @classmethod
    def confirm_transfer_paid(cls, stripe_transfer_id: str) -> Payment:
        """
        Stripe confirmed the transfer: ``submitted → paid_out`` and the
        payout Transaction ``processing → completed``. Idempotent.

        Raises:
            PaymentNotFoundError: No payment carries this transfer id
            StaleRecordError: Payout is in a status that cannot be paid out
        """
        with cls.atomic():
            payment = Payment.objects.select_for_update().filter(stripe_transfer_id=stripe_transfer_id).first()
            if payment is None:
                raise PaymentNotFoundError(
                    f"No payment for transfer {stripe_transfer_id}",
                    details={"stripe_transfer_id": stripe_transfer_id},
                )

            if payment.payout_status == PayoutStatus.SUBMITTED:
                Payment.objects.filter(pk=payment.pk, payout_status=PayoutStatus.SUBMITTED).update(
                    **_bump(payout_status=PayoutStatus.PAID_OUT)
                )
                payment.payout_status = PayoutStatus.PAID_OUT
            elif payment.payout_status != PayoutStatus.PAID_OUT:
                raise StaleRecordError(
                    f"Payout {payment.pk} is {payment.payout_status}, cannot confirm transfer",
                    details={"payment_id": str(payment.pk), "payout_status": payment.payout_status},
                )

            for payout_tx in Transaction.objects.filter(
                payment=payment,
                transaction_type=TransactionType.PAYOUT,
                stripe_transfer_id=stripe_transfer_id,
                status=TransactionStatus.PROCESSING,
            ):
                payout_tx.status = TransactionStatus.COMPLETED
                payout_tx.save(update_fields=["status", "updated_at"])

        cls.get_logger().info(
            "Transfer confirmed paid",
            extra={"payment_id": str(payment.id), "stripe_transfer_id": stripe_transfer_id},
        )
        return payment


# =============================================================================
# Admin Controls
# =============================================================================


class PayoutAdminService(BaseService):
    """
    Operator actions on a payout. Each is one conditional UPDATE, so an
    action never races with a worker that holds the claim.

    Error codes:
        PAYMENT_NOT_FOUND: Unknown payment
        INVALID_PAYOUT_STATUS: Payout not in the status the action starts from
    """

    @classmethod
    def hold(cls, payment_id: uuid.UUID, reason: str | None = None) -> ServiceResult[Payment]:
        """``pending → on_hold``."""
        return cls._apply(
            payment_id,
            "hold",
            PayoutStatus.PENDING,
            payout_status=PayoutStatus.ON_HOLD,
            payout_failure_reason=f"On hold: {reason}" if reason else "On hold",
        )

    @classmethod
    def release(cls, payment_id: uuid.UUID, now: datetime | None = None) -> ServiceResult[Payment]:
        """``on_hold → pending``, due immediately."""
        return cls._apply(
            payment_id,
            "release",
            PayoutStatus.ON_HOLD,
            payout_status=PayoutStatus.PENDING,
            next_payout_attempt_at=now or timezone.now(),
            payout_failure_reason=None,
        )

    @classmethod
    def retry(cls, payment_id: uuid.UUID, now: datetime | None = None) -> ServiceResult[Payment]:
        """``failed → pending`` with a fresh attempt budget."""
        return cls._apply(
            payment_id,
            "retry",
            PayoutStatus.FAILED,
            payout_status=PayoutStatus.PENDING,
            payout_attempts=0,
            next_payout_attempt_at=now or timezone.now(),
            payout_failure_reason=None,
        )

    @classmethod
    def _apply(cls, payment_id: uuid.UUID, action: str, source: str, **values) -> ServiceResult[Payment]:
        updated = Payment.objects.filter(pk=payment_id, payout_status=source).update(**_bump(**values))
        payment = Payment.objects.filter(pk=payment_id).first()

        if payment is None:
            return ServiceResult.failure(f"Payment {payment_id} not found", error_code="PAYMENT_NOT_FOUND")

        if not updated:
            cls.get_logger().warning(
                f"Payout {action} rejected",
                extra={"payment_id": str(payment_id), "payout_status": payment.payout_status},
            )
            return ServiceResult.failure(
                f"Cannot {action} a payout that is {payment.payout_status}",
                error_code="INVALID_PAYOUT_STATUS",
            )

        cls.get_logger().info(f"Payout {action} applied", extra={"payment_id": str(payment_id)})
        return ServiceResult.success(payment)


__all__ = [
    "PayoutAdminService",
    "PayoutBatchSummary",
    "PayoutOrchestrator",
    "PayoutOutcome",
    "TERMINAL_ERRORS",
]
