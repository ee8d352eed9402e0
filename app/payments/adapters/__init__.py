"""
Adapters for external payment services.

All Stripe calls of the settlement core go through StripeAdapter so that
timeouts, idempotency, error translation and timing logs stay consistent.

Usage:
    from payments.adapters import StripeAdapter

    charge = StripeAdapter.retrieve_charge("ch_123")
"""

from payments.adapters.stripe_adapter import (
    ACCEPTED_REFUND_STATUSES,
    ChargeResult,
    IdempotencyKeyGenerator,
    RefundResult,
    ReversalResult,
    StripeAdapter,
    TransferResult,
    is_retryable_stripe_error,
)

__all__ = [
    "ACCEPTED_REFUND_STATUSES",
    "ChargeResult",
    "IdempotencyKeyGenerator",
    "RefundResult",
    "ReversalResult",
    "StripeAdapter",
    "TransferResult",
    "is_retryable_stripe_error",
]
