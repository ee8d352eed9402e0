"""
Fee reconciliation: attach Stripe's processing fee to completed payments.

Stripe reports the fee on the charge's balance transaction, which only
exists once the charge has settled. The job runs every 15 minutes over
completed payments that have no ``fee`` Transaction yet; a payment whose
balance transaction is not ready is simply looked at again next cycle.

Usage:
    from payments.services import FeeReconciliationService

    summary = FeeReconciliationService.run_batch(config)
    # {"processed": 12, "recorded": 10, "already_recorded": 0, "pending": 2, "failed": 0}
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from django.db import IntegrityError, transaction
from django.db.models import Exists, OuterRef

from core.services import BaseService

from payments.adapters import StripeAdapter
from payments.config import SettlementConfig
from payments.exceptions import FeeNotAvailableError, PaymentValidationError
from payments.models import Payment, Transaction
from payments.money import from_cents
from payments.state_machines import PaymentStatus, TransactionStatus, TransactionType

if TYPE_CHECKING:
    from payments.adapters import ChargeResult


# Per-payment outcomes
RECORDED = "recorded"
ALREADY_RECORDED = "already_recorded"
PENDING = "pending"


@dataclass
class FeeReconciliationSummary:
    processed: int = 0
    recorded: int = 0
    already_recorded: int = 0
    pending: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class FeeReconciliationService(BaseService):
    """
    Records one ``fee`` Transaction per completed payment.

    Idempotent: the (payment, fee) partial unique constraint means a second
    run, or a concurrent one, can never create a second fee row.
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
    def payments_missing_fee(cls, limit: int):
        has_fee = Transaction.objects.filter(payment=OuterRef("pk"), transaction_type=TransactionType.FEE)
        return (
            Payment.objects.filter(status=PaymentStatus.COMPLETED)
            .exclude(stripe_charge_id__isnull=True)
            .exclude(stripe_charge_id="")
            .filter(~Exists(has_fee))
            .order_by("completed_at", "created_at")[:limit]
        )

    @classmethod
    def run_batch(cls, config: SettlementConfig | None = None) -> dict[str, int]:
        """
        Reconcile up to ``config.fee_batch_limit`` payments.

        A failing payment is logged and counted; it never stops the batch.
        """
        config = config or SettlementConfig.from_settings()
        logger = cls.get_logger()
        summary = FeeReconciliationSummary()

        for payment in cls.payments_missing_fee(config.fee_batch_limit):
            summary.processed += 1
            try:
                outcome = cls.reconcile_payment(payment)
            except Exception:
                summary.failed += 1
                logger.exception(
                    "Fee reconciliation failed for payment",
                    extra={"payment_id": str(payment.id), "stripe_charge_id": payment.stripe_charge_id},
                )
                continue

            if outcome == RECORDED:
                summary.recorded += 1
            elif outcome == ALREADY_RECORDED:
                summary.already_recorded += 1
            else:
                summary.pending += 1

        logger.info("Fee reconciliation batch finished", extra=summary.to_dict())
        return summary.to_dict()

    @classmethod
    def reconcile_payment(cls, payment: Payment) -> str:
        """
        Fetch the charge and record its fee.

        Returns RECORDED, ALREADY_RECORDED or PENDING (fee not final yet).
        """
        if not payment.stripe_charge_id:
            raise PaymentValidationError(
                f"Payment {payment.id} has no Stripe charge",
                details={"payment_id": str(payment.id)},
            )

        charge = cls.get_stripe_adapter().retrieve_charge(payment.stripe_charge_id)
        try:
            _, created = cls.record_fee(payment, charge)
        except FeeNotAvailableError:
            cls.get_logger().info(
                "Processing fee not available yet, will retry next cycle",
                extra={"payment_id": str(payment.id), "stripe_charge_id": payment.stripe_charge_id},
            )
            return PENDING

        return RECORDED if created else ALREADY_RECORDED

    @classmethod
    def record_fee(cls, payment: Payment, charge: ChargeResult) -> tuple[Transaction, bool]:
        """
        Upsert the payment's ``fee`` Transaction from a retrieved charge.

        Shared with the payout orchestrator, which falls back to it when a
        payout is due before the fee job got to the payment.

        Raises:
            FeeNotAvailableError: Balance transaction not finalized
        """
        fee = from_cents(charge.require_fee())
        defaults = {
            "amount": fee,
            "currency": (charge.currency or payment.currency).lower(),
            "status": TransactionStatus.COMPLETED,
            "stripe_charge_id": charge.id,
            "stripe_balance_transaction_id": charge.balance_transaction_id,
            "description": "Stripe processing fee",
        }

        try:
            with transaction.atomic():
                fee_tx, created = Transaction.objects.get_or_create(
                    payment=payment,
                    transaction_type=TransactionType.FEE,
                    defaults=defaults,
                )
        except IntegrityError:
            # A concurrent run inserted it between our SELECT and INSERT
            fee_tx = Transaction.objects.get(payment=payment, transaction_type=TransactionType.FEE)
            created = False

        if created:
            cls.get_logger().info(
                "Processing fee recorded",
                extra={
                    "payment_id": str(payment.id),
                    "fee": str(fee),
                    "stripe_balance_transaction_id": charge.balance_transaction_id,
                },
            )
        return fee_tx, created


__all__ = ["FeeReconciliationService", "FeeReconciliationSummary"]
