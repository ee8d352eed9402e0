"""
State machine enums for settlement models.
"""

from payments.state_machines.states import (
    PAYOUT_ELIGIBLE_TYPES,
    InvoiceKind,
    OnboardingStatus,
    PaymentStatus,
    PaymentType,
    PayoutStatus,
    RefundPolicy,
    TransactionStatus,
    TransactionType,
    WebhookEventStatus,
)

__all__ = [
    "PAYOUT_ELIGIBLE_TYPES",
    "InvoiceKind",
    "OnboardingStatus",
    "PaymentStatus",
    "PaymentType",
    "PayoutStatus",
    "RefundPolicy",
    "TransactionStatus",
    "TransactionType",
    "WebhookEventStatus",
]
