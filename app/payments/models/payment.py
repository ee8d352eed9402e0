"""
Payment model: one row per customer charge, payout adjustment or ledger
movement that needs its own lifecycle.

Usage:
    from payments.models import Payment
    from payments.state_machines import PaymentType

    payment = Payment.objects.create(
        payer=client,
        recipient=coach,
        payment_type=PaymentType.LIVE_SESSION_CHARGE,
        base_amount=Decimal("185.00"),
        platform_fee=Decimal("30.00"),
        vat_rate=Decimal("8.1"),
        vat_amount=Decimal("10.00"),
        total_amount=Decimal("200.00"),
        stripe_charge_id="ch_123",
        stripe_payment_intent_id="pi_123",
    )

    # status moves through django-fsm transitions; completion goes through
    # PaymentLedgerService.mark_completed so payout scheduling runs
    payment.submit()
    payment.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin, VersionedMixin

from payments.money import ZERO, quantize_money, to_decimal
from payments.state_machines import (
    PAYOUT_ELIGIBLE_TYPES,
    PaymentStatus,
    PaymentType,
    PayoutStatus,
)

MONEY = {"max_digits": 12, "decimal_places": 2}

# Payout statuses in which a refund debit waits for the next payout computation
DEFERRED_DEBIT_PAYOUT_STATUSES = frozenset([PayoutStatus.PENDING, PayoutStatus.FAILED, PayoutStatus.ON_HOLD])


class Payment(UUIDPrimaryKeyMixin, VersionedMixin, MetadataMixin, BaseModel):
    """
    Durable record of a charge and its settlement lifecycle.

    Amounts are flattened columns in settlement-currency units:
    ``total_amount`` is the gross amount charged, ``refunded_amount`` the
    running sum of refunds (never above ``total_amount``).

    Adjustments are Payments too: ``payment_type=adjustment``, a negative
    ``total_amount``, ``status`` pending_deduction → deducted, pointing at
    the payment whose refund created the debt (``original_payment``) and,
    once reserved by a payout run, at the payout that absorbs it
    (``absorbed_by``).

    State Flow (status, django-fsm):
        DRAFT -> PENDING -> AUTHORIZED -> COMPLETED
        COMPLETED/PARTIALLY_REFUNDED -> REFUNDED/PARTIALLY_REFUNDED/DISPUTED
        DRAFT/PENDING/AUTHORIZED -> FAILED/CANCELLED
        PENDING_DEDUCTION -> DEDUCTED (adjustments)

    payout_status is written only through conditional queryset updates
    (see PayoutOrchestrator) so two workers can never both own a payout.
    """

    # ==========================================================================
    # Parties
    # ==========================================================================

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payments_made",
        help_text="Client who was charged (empty for adjustments)",
    )

    recipient = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="payments_received",
        help_text="Coach owed the earnings of this payment",
    )

    # ==========================================================================
    # Type & State
    # ==========================================================================

    payment_type = models.CharField(
        max_length=30,
        choices=PaymentType.choices,
        default=PaymentType.CHARGE,
        db_index=True,
        help_text="What this payment represents",
    )

    status = FSMField(
        default=PaymentStatus.DRAFT,
        choices=PaymentStatus.choices,
        db_index=True,
        protected=False,  # refresh_from_db must be able to reload it
        help_text="Lifecycle status (managed by FSM transitions)",
    )

    payout_status = models.CharField(
        max_length=20,
        choices=PayoutStatus.choices,
        null=True,
        blank=True,
        db_index=True,
        help_text="Disbursement status; empty until the payment completes",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    base_amount = models.DecimalField(
        default=ZERO,
        help_text="Service price before platform fee and VAT",
        **MONEY,
    )

    platform_fee = models.DecimalField(
        default=ZERO,
        help_text="Platform commission included in total_amount",
        **MONEY,
    )

    vat_rate = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=ZERO,
        help_text="VAT percentage applied to the charge",
    )

    vat_amount = models.DecimalField(
        default=ZERO,
        help_text="VAT included in total_amount",
        **MONEY,
    )

    vat_included = models.BooleanField(
        default=True,
        help_text="Whether vat_amount is already part of base_amount",
    )

    total_amount = models.DecimalField(
        help_text="Gross amount charged (negative for adjustments)",
        **MONEY,
    )

    authorized_amount = models.DecimalField(
        default=ZERO,
        help_text="Amount authorized on the card",
        **MONEY,
    )

    captured_amount = models.DecimalField(
        default=ZERO,
        help_text="Amount captured from the card",
        **MONEY,
    )

    refunded_amount = models.DecimalField(
        default=ZERO,
        help_text="Cumulative amount refunded to the payer",
        **MONEY,
    )

    currency = models.CharField(
        max_length=3,
        default="chf",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # Payout Control
    # ==========================================================================

    payout_attempts = models.PositiveSmallIntegerField(
        default=0,
        help_text="Payout attempts made so far (incremented by the claim)",
    )

    next_payout_attempt_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Earliest time the orchestrator may claim this payout",
    )

    payout_locked_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the current processing claim was taken",
    )

    payout_processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payout was submitted or settled without transfer",
    )

    payout_failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Last payout failure, for operators",
    )

    payout_transfer_key = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Idempotency key of the transfer request sent for this payout; set until Stripe rejects it",
    )

    payout_transfer_amount = models.DecimalField(
        null=True,
        blank=True,
        help_text="Amount of the transfer request under payout_transfer_key",
        **MONEY,
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    stripe_charge_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Stripe Charge ID (ch_xxx)",
    )

    stripe_payment_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )

    stripe_transfer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Outstanding Stripe Transfer ID (tr_xxx) for this payout",
    )

    # ==========================================================================
    # Adjustments & Refunds
    # ==========================================================================

    original_payment = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="adjustments",
        help_text="Payment whose refund created this adjustment",
    )

    absorbed_by = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="absorbed_adjustments",
        help_text="Payout payment that reserved or absorbed this adjustment",
    )

    refunds = models.JSONField(
        default=list,
        blank=True,
        help_text="Append-only refund history entries",
    )

    description = models.TextField(
        blank=True,
        default="",
        help_text="Human-readable description",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the charge was captured",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Why the charge failed",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["payout_status", "next_payout_attempt_at"], name="payment_payout_due_idx"),
            models.Index(fields=["status", "payment_type"], name="payment_status_type_idx"),
            models.Index(fields=["recipient", "payment_type", "status"], name="payment_recipient_type_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(refunded_amount__gte=0),
                name="payment_refunded_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(refunded_amount__lte=F("total_amount"))
                | Q(payment_type=PaymentType.ADJUSTMENT),
                name="payment_refunded_not_above_total",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.id}, {self.payment_type}, {self.status}, {self.total_amount} {self.currency.upper()})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_payout_eligible(self) -> bool:
        return self.payment_type in PAYOUT_ELIGIBLE_TYPES

    @property
    def is_adjustment(self) -> bool:
        return self.payment_type == PaymentType.ADJUSTMENT

    @property
    def refundable_amount(self) -> Decimal:
        """Remaining amount that can still be refunded."""
        return quantize_money(to_decimal(self.total_amount) - to_decimal(self.refunded_amount))

    @property
    def pending_refund_debits(self) -> Decimal:
        """
        Coach debits of refunds booked before any transfer was requested.

        Counts refunds taken while the payout sat in pending, failed or
        on_hold; the next computation subtracts them. Refunds that
        produced an adjustment are recovered through that adjustment
        instead and are skipped here.
        """
        total = ZERO
        for entry in self.refunds or []:
            if entry.get("adjustment_id"):
                continue
            if entry.get("payout_status_at_refund") in DEFERRED_DEBIT_PAYOUT_STATUSES:
                total += to_decimal(entry.get("coach_debit_amount", "0"))
        return quantize_money(total)

    def has_refund(self, stripe_refund_id: str) -> bool:
        return any(entry.get("stripe_refund_id") == stripe_refund_id for entry in self.refunds or [])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(field=status, source=PaymentStatus.DRAFT, target=PaymentStatus.PENDING)
    def submit(self):
        """DRAFT -> PENDING: the PaymentIntent was created."""

    @transition(field=status, source=PaymentStatus.PENDING, target=PaymentStatus.AUTHORIZED)
    def authorize(self, amount: Decimal | None = None):
        """PENDING -> AUTHORIZED: funds are reserved on the card."""
        self.authorized_amount = quantize_money(amount if amount is not None else self.total_amount)

    @transition(
        field=status,
        source=[PaymentStatus.PENDING, PaymentStatus.AUTHORIZED],
        target=PaymentStatus.COMPLETED,
    )
    def complete(self, captured_amount: Decimal | None = None):
        """
        PENDING/AUTHORIZED -> COMPLETED: the charge was captured.

        Call through PaymentLedgerService.mark_completed, which also applies
        the completion side effects.
        """
        self.captured_amount = quantize_money(
            captured_amount if captured_amount is not None else self.total_amount
        )
        self.completed_at = timezone.now()

    @transition(
        field=status,
        source=[PaymentStatus.DRAFT, PaymentStatus.PENDING, PaymentStatus.AUTHORIZED],
        target=PaymentStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=[PaymentStatus.DRAFT, PaymentStatus.PENDING, PaymentStatus.AUTHORIZED],
        target=PaymentStatus.CANCELLED,
    )
    def cancel(self):
        """Cancel before capture; captured money leaves only through refunds."""

    @transition(
        field=status,
        source=[PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.REFUNDED,
    )
    def refund_full(self):
        """Final refund exhausted the refundable balance."""

    @transition(
        field=status,
        source=[PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.PARTIALLY_REFUNDED,
    )
    def refund_partial(self):
        """A refund left part of the charge in place."""

    @transition(
        field=status,
        source=[PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED],
        target=PaymentStatus.DISPUTED,
    )
    def dispute(self):
        """The payer opened a chargeback."""

    @transition(
        field=status,
        source=PaymentStatus.PENDING_DEDUCTION,
        target=PaymentStatus.DEDUCTED,
    )
    def mark_deducted(self):
        """Adjustment was absorbed by a payout."""
