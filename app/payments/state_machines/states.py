"""
State and type enums for settlement models.

These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Payment.status (django-fsm):
    draft → pending → authorized → completed
    completed → refunded / partially_refunded / disputed
    partially_refunded → refunded / partially_refunded / disputed
    draft / pending / authorized → failed / cancelled
    adjustments: pending_deduction → deducted

Payment.payout_status (conditional UPDATEs only):
    pending → processing → submitted → paid_out
    processing → pending (retry with backoff) / failed / on_hold
    processing → paid_out (below minimum) / not_applicable (fully refunded)
    pending ↔ on_hold, failed → pending (admin)

Transaction.status:
    processing → completed (payout confirmed by webhook)
    completed / failed / skipped are written once
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    Lifecycle of a Payment row.

    COMPLETED is reached only after a successful capture and is the one
    status whose entry runs the completion side effects (payout scheduling).
    PENDING_DEDUCTION / DEDUCTED are used only by adjustments.
    """

    DRAFT = "draft", "Draft"
    PENDING = "pending", "Pending"
    AUTHORIZED = "authorized", "Authorized"
    COMPLETED = "completed", "Completed"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"
    DISPUTED = "disputed", "Disputed"
    FAILED = "failed", "Failed"
    CANCELLED = "cancelled", "Cancelled"
    PENDING_DEDUCTION = "pending_deduction", "Pending Deduction"
    DEDUCTED = "deducted", "Deducted"


class PaymentType(models.TextChoices):
    """
    What a Payment row represents.

    The first four are payout-eligible: completing them creates an
    obligation to pay the recipient.
    """

    CHARGE = "charge", "Charge"
    PROGRAM_PURCHASE = "program_purchase", "Program Purchase"
    LIVE_SESSION_CHARGE = "live_session_charge", "Live Session Charge"
    OVERTIME_CHARGE = "overtime_charge", "Overtime Charge"
    AUTHORIZATION = "authorization", "Authorization"
    PAYOUT = "payout", "Payout"
    REFUND = "refund", "Refund"
    ADJUSTMENT = "adjustment", "Adjustment"


PAYOUT_ELIGIBLE_TYPES = frozenset(
    {
        PaymentType.CHARGE,
        PaymentType.PROGRAM_PURCHASE,
        PaymentType.LIVE_SESSION_CHARGE,
        PaymentType.OVERTIME_CHARGE,
    }
)


class PayoutStatus(models.TextChoices):
    """
    Disbursement state of a payout-eligible Payment.

    Terminal: PAID_OUT, NOT_APPLICABLE. FAILED and ON_HOLD wait for an
    operator (see PayoutAdminService).
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SUBMITTED = "submitted", "Submitted"
    PAID_OUT = "paid_out", "Paid Out"
    FAILED = "failed", "Failed"
    ON_HOLD = "on_hold", "On Hold"
    NOT_APPLICABLE = "not_applicable", "Not Applicable"


class TransactionType(models.TextChoices):
    """Kind of ledger entry attached to a Payment."""

    FEE = "fee", "Processor Fee"
    PAYOUT = "payout", "Payout"
    REFUND = "refund", "Refund"
    TRANSFER = "transfer", "Transfer"
    DISPUTE = "dispute", "Dispute"


class TransactionStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


class RefundPolicy(models.TextChoices):
    """
    Who bears the cost of a refund.

    STANDARD: the coach bears their proportional share, processor fee included
    PLATFORM_FAULT: the coach loses only their earning share
    GOODWILL: the platform absorbs everything
    """

    STANDARD = "standard", "Standard"
    PLATFORM_FAULT = "platform_fault", "Platform Fault"
    GOODWILL = "goodwill", "Goodwill"


class InvoiceKind(models.TextChoices):
    INVOICE = "invoice", "Invoice"
    CREDIT_NOTE = "credit_note", "Credit Note"


class OnboardingStatus(models.TextChoices):
    """
    Stripe Connect onboarding status for ConnectedAccount.

    Only COMPLETE accounts with payouts enabled can receive transfers.
    """

    NOT_STARTED = "not_started", "Not Started"
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETE = "complete", "Complete"
    REJECTED = "rejected", "Rejected"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


__all__ = [
    "PaymentStatus",
    "PaymentType",
    "PAYOUT_ELIGIBLE_TYPES",
    "PayoutStatus",
    "TransactionType",
    "TransactionStatus",
    "RefundPolicy",
    "InvoiceKind",
    "OnboardingStatus",
    "WebhookEventStatus",
]
