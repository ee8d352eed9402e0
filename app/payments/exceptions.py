"""
Settlement exceptions.

Exception Hierarchy:
    PaymentError (base for the settlement domain)
    ├── PaymentNotFoundError - Payment lookup failures
    ├── PaymentValidationError - Rejected input, no side effects
    │   ├── InvalidRefundAmountError - Amount outside (0, total - refunded]
    │   └── RefundNotAllowedError - Payment status does not allow refunds
    ├── DestinationAccountMissingError - Recipient cannot receive transfers (terminal)
    ├── ConsistencyRiskError - Gateway succeeded, ledger write failed
    └── PaymentProcessingError - Gateway-side failures
        ├── FeeNotAvailableError - Balance transaction not finalized (transient)
        ├── RefundDeclinedError - Gateway refund did not succeed
        └── StripeError - Base for all Stripe errors
            ├── StripeInvalidAccountError - Invalid connected account (permanent)
            ├── StripeInvalidRequestError - Invalid request params (permanent)
            ├── StripeAuthenticationError - Bad API key (permanent)
            ├── StripeRateLimitError - Rate limited (transient)
            ├── StripeAPIUnavailableError - API unavailable (transient)
            └── StripeTimeoutError - Request timeout (transient)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)
    DuplicateRefundError - Gateway refund already booked (inherits ConflictError)

``is_retryable`` tells the jobs whether waiting can fix the error. The
payout orchestrator still walks the backoff ladder for non-terminal
errors; only the classes in ``PayoutOrchestrator.TERMINAL_ERRORS`` stop it.

ConsistencyRiskError is deliberately not a PaymentProcessingError: it must
never be mistaken for a clean, retryable failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """Base exception for settlement operations."""

    default_error_code: str = "PAYMENT_ERROR"
    is_retryable: bool = False


class PaymentNotFoundError(PaymentError):
    """
    Raised when a payment entity cannot be found.

    Example:
        raise PaymentNotFoundError(
            f"Payment {payment_id} not found",
            details={"payment_id": str(payment_id)},
        )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"


class PaymentValidationError(PaymentError):
    """Raised when input is rejected before any side effect happens."""

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


class InvalidRefundAmountError(PaymentValidationError):
    """
    Refund amount is not positive or exceeds the refundable balance.

    details carries ``amount`` and ``refundable`` as strings.
    """

    default_error_code: str = "INVALID_REFUND_AMOUNT"


class RefundNotAllowedError(PaymentValidationError):
    """Payment is not in a refundable status (completed / partially_refunded)."""

    default_error_code: str = "REFUND_NOT_ALLOWED"


class DestinationAccountMissingError(PaymentError):
    """
    The recipient has no usable connected account.

    Terminal for the payout orchestrator: retrying cannot fix it until the
    coach finishes onboarding, so the payout goes straight to ``failed``.
    """

    default_error_code: str = "DESTINATION_ACCOUNT_MISSING"


class ConsistencyRiskError(PaymentError):
    """
    A gateway operation succeeded but the ledger write that should follow failed.

    External state is now ahead of the internal books. There is no safe
    automatic recovery; the error is logged at CRITICAL and the affected
    payment is parked for reconciliation.

    details carries the gateway reference (``stripe_transfer_id`` or
    ``stripe_refund_id``) and the ``payment_id``.
    """

    default_error_code: str = "CONSISTENCY_RISK"


class PaymentProcessingError(PaymentError):
    """Raised when the payment gateway fails to do what was asked."""

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"


class FeeNotAvailableError(PaymentProcessingError):
    """
    The charge's balance transaction has not been finalized yet.

    Transient: the fee job skips the payment for this cycle, the payout
    orchestrator fails the attempt and retries on the ladder.
    """

    default_error_code: str = "FEE_NOT_AVAILABLE"
    is_retryable: bool = True


class RefundDeclinedError(PaymentProcessingError):
    """
    The gateway answered a refund request with a non-success status.

    Raised before any ledger mutation, so the refund has no effect at all.
    """

    default_error_code: str = "REFUND_DECLINED"


# =============================================================================
# Stripe-Specific Exceptions
# =============================================================================


class StripeError(PaymentProcessingError):
    """
    Base exception for all Stripe-related errors.

    Attributes:
        stripe_code: Stripe's error code (e.g. "account_invalid")
        decline_code: Decline code, when Stripe provides one
        is_retryable: Whether the same request may succeed later
    """

    default_error_code: str = "STRIPE_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        stripe_code: str | None = None,
        decline_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if stripe_code:
            details["stripe_code"] = stripe_code
        if decline_code:
            details["decline_code"] = decline_code
        super().__init__(message, error_code=error_code, details=details)
        self.stripe_code = stripe_code
        self.decline_code = decline_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class StripeInvalidAccountError(StripeError):
    """
    The destination connected account is missing, disabled or restricted.

    Requires manual intervention; terminal for payouts.
    """

    default_error_code: str = "INVALID_STRIPE_ACCOUNT"
    is_retryable: bool = False


class StripeInvalidRequestError(StripeError):
    """
    Stripe rejected the request parameters.

    Usually a bug on our side (wrong id, amount above the reversible
    balance). Logged for developer investigation.
    """

    default_error_code: str = "INVALID_STRIPE_REQUEST"
    is_retryable: bool = False


class StripeAuthenticationError(StripeError):
    """The configured API key was rejected."""

    default_error_code: str = "STRIPE_AUTHENTICATION_FAILED"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with the same idempotency key)
# -----------------------------------------------------------------------------


class StripeRateLimitError(StripeError):
    """Rate limited by the Stripe API."""

    default_error_code: str = "STRIPE_RATE_LIMITED"
    is_retryable: bool = True


class StripeAPIUnavailableError(StripeError):
    """Network failure or 5xx from Stripe."""

    default_error_code: str = "STRIPE_UNAVAILABLE"
    is_retryable: bool = True


class StripeTimeoutError(StripeError):
    """
    Stripe API call timed out.

    The operation may have succeeded on Stripe's side. Retries reuse the
    idempotency key so Stripe returns the original result instead of
    performing the operation twice.
    """

    default_error_code: str = "STRIPE_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Optimistic locking detected a concurrent modification.

    details carries pk, expected_version and current_version.
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(ConflictError):
    """
    A distributed lock could not be acquired within its timeout.

    Example:
        raise LockAcquisitionError(
            "Failed to acquire lock 'refund:123' within 10s",
            details={"key": "refund:123", "timeout": 10},
        )
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
    is_retryable: bool = True


class InvalidStateTransitionError(ConflictError):
    """
    Wraps django-fsm's TransitionNotAllowed with our error format.

    details carries current_state, target_state and the transition name.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


class DuplicateRefundError(ConflictError):
    """The gateway refund id is already booked against this payment."""

    default_error_code: str = "DUPLICATE_REFUND"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "PaymentValidationError",
    "InvalidRefundAmountError",
    "RefundNotAllowedError",
    "DestinationAccountMissingError",
    "ConsistencyRiskError",
    "PaymentProcessingError",
    "FeeNotAvailableError",
    "RefundDeclinedError",
    # Stripe-specific
    "StripeError",
    "StripeInvalidAccountError",
    "StripeInvalidRequestError",
    "StripeAuthenticationError",
    "StripeRateLimitError",
    "StripeAPIUnavailableError",
    "StripeTimeoutError",
    # Concurrency control
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
    "DuplicateRefundError",
]
