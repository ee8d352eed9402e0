"""
Transaction model: append-only ledger entries attached to a Payment.

Usage:
    from payments.models import Transaction
    from payments.state_machines import TransactionStatus, TransactionType

    Transaction.objects.create(
        payment=payment,
        transaction_type=TransactionType.FEE,
        amount=Decimal("5.00"),
        currency="chf",
        status=TransactionStatus.COMPLETED,
        stripe_charge_id="ch_123",
        stripe_balance_transaction_id="txn_123",
    )
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.exceptions import ValidationError
from core.models import BaseModel
from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin

from payments.state_machines import TransactionStatus, TransactionType

# Only a payout entry's status may move after insert (transfer.paid webhook)
MUTABLE_FIELDS = frozenset({"status", "metadata", "updated_at"})


class Transaction(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    Write-once fact about money moving for a payment.

    Signs: fee and payout entries are positive amounts the platform pays
    out of the charge; refund and reversal entries are negative.

    Invariants:
        - at most one ``fee`` entry per payment (partial unique constraint)
        - a gateway refund id is booked at most once
        - amount/type/payment never change after insert
    """

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="transactions",
        help_text="Payment this entry belongs to",
    )

    transaction_type = models.CharField(
        max_length=20,
        choices=TransactionType.choices,
        db_index=True,
        help_text="Kind of ledger entry",
    )

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Signed amount in settlement-currency units",
    )

    currency = models.CharField(
        max_length=3,
        default="chf",
        help_text="ISO 4217 currency code (lowercase)",
    )

    status = models.CharField(
        max_length=20,
        choices=TransactionStatus.choices,
        default=TransactionStatus.COMPLETED,
        db_index=True,
        help_text="Entry status",
    )

    # ==========================================================================
    # Stripe References
    # ==========================================================================

    stripe_charge_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Charge ID (ch_xxx)",
    )

    stripe_balance_transaction_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe BalanceTransaction ID (txn_xxx)",
    )

    stripe_transfer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe Transfer ID (tr_xxx)",
    )

    stripe_refund_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe Refund ID (re_xxx), booked once",
    )

    stripe_reversal_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe TransferReversal ID (trr_xxx)",
    )

    description = models.TextField(
        blank=True,
        default="",
        help_text="Human-readable description",
    )

    error = models.JSONField(
        null=True,
        blank=True,
        help_text="Error code and message for failed entries",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Transaction"
        verbose_name_plural = "Transactions"
        indexes = [
            models.Index(fields=["payment", "transaction_type"], name="transaction_payment_type_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["payment"],
                condition=Q(transaction_type=TransactionType.FEE),
                name="transaction_single_fee_per_payment",
            ),
        ]

    def __str__(self) -> str:
        return f"Transaction({self.transaction_type}, {self.amount} {self.currency.upper()}, {self.status})"

    def save(self, *args, **kwargs):
        """
        Insert, or update only the fields allowed to move after insert.

        Raises:
            ValidationError: On a full-row update or an update touching
                immutable fields
        """
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if update_fields is None or not set(update_fields) <= MUTABLE_FIELDS:
                raise ValidationError(
                    "Transactions are append-only; only status and metadata may change",
                    error_code="TRANSACTION_IMMUTABLE",
                    details={"transaction_id": str(self.pk)},
                )
        super().save(*args, **kwargs)
