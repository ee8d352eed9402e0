"""
Stripe API adapter for settlement operations.

Every Stripe call made by the settlement core goes through StripeAdapter so
that timeouts, idempotency keys, error translation and timing logs are
handled in one place. Amounts cross this boundary in integer cents; the
rest of the code works in Decimal currency units (see payments.money).

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Network retries done by the SDK itself (default: 3)

Usage:
    from payments.adapters import IdempotencyKeyGenerator, StripeAdapter

    charge = StripeAdapter.retrieve_charge("ch_123")
    fee_cents = charge.require_fee()

    transfer = StripeAdapter.create_transfer(
        amount_cents=14339,
        destination_account="acct_123",
        currency="chf",
        source_transaction="ch_123",
        idempotency_key=IdempotencyKeyGenerator.generate("create_transfer", payment.id, 1),
    )
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import stripe
from django.conf import settings

from payments.exceptions import (
    FeeNotAvailableError,
    StripeAPIUnavailableError,
    StripeAuthenticationError,
    StripeError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

if TYPE_CHECKING:
    from collections.abc import Callable


# Refund statuses that mean the money is (or will be) returned to the payer
ACCEPTED_REFUND_STATUSES = frozenset({"succeeded", "pending"})


def _get(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a StripeObject, a plain dict or None."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    value = getattr(obj, key, default)
    return default if value is None else value


def _to_dict(obj: Any) -> dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj) if isinstance(obj, dict) else {}


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class ChargeResult:
    """
    A Stripe Charge with its balance transaction expanded.

    ``fee_cents`` and ``balance_transaction_id`` stay None until Stripe has
    settled the charge and created the balance transaction.
    """

    id: str
    amount_cents: int
    amount_refunded_cents: int
    amount_captured_cents: int
    currency: str
    fee_cents: int | None = None
    balance_transaction_id: str | None = None
    payment_intent_id: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def remaining_cents(self) -> int:
        """Amount still held by the platform after refunds."""
        return self.amount_cents - self.amount_refunded_cents

    @property
    def is_fully_refunded(self) -> bool:
        return self.remaining_cents <= 0

    def require_fee(self) -> int:
        """
        Return the processing fee in cents.

        Raises:
            FeeNotAvailableError: Balance transaction not finalized yet
        """
        if self.fee_cents is None:
            raise FeeNotAvailableError(
                f"Balance transaction for charge {self.id} is not available yet",
                details={"stripe_charge_id": self.id},
            )
        return self.fee_cents


@dataclass
class RefundResult:
    """Result of a Stripe Refund. ``status`` is one of Stripe's refund statuses."""

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_accepted(self) -> bool:
        return self.status in ACCEPTED_REFUND_STATUSES


@dataclass
class TransferResult:
    """
    Result of a Stripe Transfer to a connected account.

    Attributes:
        id: Transfer ID (tr_xxx)
        amount_cents: Amount originally transferred
        amount_reversed_cents: Sum of reversals made so far
        destination_account: Connected account ID (acct_xxx)
    """

    id: str
    amount_cents: int
    currency: str
    destination_account: str
    amount_reversed_cents: int = 0
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def reversible_cents(self) -> int:
        return max(self.amount_cents - self.amount_reversed_cents, 0)


@dataclass
class ReversalResult:
    id: str
    transfer_id: str
    amount_cents: int
    currency: str
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Idempotency Keys
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Build deterministic Stripe idempotency keys.

    Format: ``{operation}:{entity_id}:{attempt}``

    The same payout attempt always produces the same key, so a timeout
    followed by a retry of that attempt cannot transfer twice. A new
    attempt number is a new request from Stripe's point of view.

    Example:
        IdempotencyKeyGenerator.generate("create_transfer", payment.id, 2)
        # "create_transfer:550e8400-e29b-41d4-a716-446655440000:2"
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int | str = 1) -> str:
        if not operation:
            raise ValueError("operation is required")
        return f"{operation}:{entity_id}:{attempt}"


def is_retryable_stripe_error(error: Exception) -> bool:
    """True for transient Stripe failures (rate limit, outage, timeout)."""
    return isinstance(error, StripeError) and error.is_retryable


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods; no instance state is kept, so the adapter
    is safe to use from concurrent Celery workers. Services receive it via
    ``get_stripe_adapter()`` so tests can swap in a mock.

    Every call logs "Starting Stripe operation" and "Stripe operation
    completed" with its duration, and translates SDK errors into
    payments.exceptions.StripeError subclasses.
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _configure_stripe() -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 3)
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _execute(cls, log_context: dict[str, Any], call: Callable[[], Any]) -> Any:
        """Run one SDK call with timing logs and error translation."""
        cls._configure_stripe()
        logger = cls.get_logger()

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            response = call()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={**log_context, "stripe_object_id": _get(response, "id"), "duration_ms": duration_ms},
        )
        return response

    # =========================================================================
    # Charges
    # =========================================================================

    @classmethod
    def retrieve_charge(cls, charge_id: str, trace_id: str | None = None) -> ChargeResult:
        """
        Retrieve a charge with ``balance_transaction`` expanded.

        Raises:
            StripeInvalidRequestError: Unknown charge id
        """
        log_context = {"operation": "retrieve_charge", "charge_id": charge_id, "trace_id": trace_id}
        charge = cls._execute(
            log_context,
            lambda: stripe.Charge.retrieve(charge_id, expand=["balance_transaction"]),
        )

        balance_transaction = _get(charge, "balance_transaction")
        fee_cents = None
        balance_transaction_id = None
        # Unexpanded (string id) or missing means not settled yet
        if balance_transaction is not None and not isinstance(balance_transaction, str):
            fee = _get(balance_transaction, "fee")
            if fee is not None:
                fee_cents = int(fee)
                balance_transaction_id = _get(balance_transaction, "id")

        return ChargeResult(
            id=_get(charge, "id"),
            amount_cents=int(_get(charge, "amount", 0)),
            amount_refunded_cents=int(_get(charge, "amount_refunded", 0)),
            amount_captured_cents=int(_get(charge, "amount_captured", 0)),
            currency=_get(charge, "currency", ""),
            fee_cents=fee_cents,
            balance_transaction_id=balance_transaction_id,
            payment_intent_id=_get(charge, "payment_intent"),
            raw_response=_to_dict(charge),
        )

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def create_refund(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        reason: str | None = None,
        metadata: dict[str, str] | None = None,
        trace_id: str | None = None,
    ) -> RefundResult:
        """
        Refund a PaymentIntent, fully or by ``amount_cents``.

        ``reason`` must be one of Stripe's refund reasons (duplicate,
        fraudulent, requested_by_customer); free-text reasons belong in
        metadata.

        The returned status is not checked here; callers decide what a
        non-success status means for them (see RefundResult.is_accepted).
        """
        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
            "trace_id": trace_id,
        }

        params: dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "metadata": metadata or {},
        }
        if amount_cents is not None:
            params["amount"] = amount_cents
        if reason:
            params["reason"] = reason

        refund = cls._execute(
            log_context,
            lambda: stripe.Refund.create(idempotency_key=idempotency_key, **params),
        )

        return RefundResult(
            id=_get(refund, "id"),
            amount_cents=int(_get(refund, "amount", 0)),
            currency=_get(refund, "currency", ""),
            status=_get(refund, "status", ""),
            payment_intent_id=_get(refund, "payment_intent"),
            failure_reason=_get(refund, "failure_reason"),
            metadata=dict(_get(refund, "metadata", {}) or {}),
            raw_response=_to_dict(refund),
        )

    # =========================================================================
    # Transfers
    # =========================================================================

    @classmethod
    def create_transfer(
        cls,
        amount_cents: int,
        destination_account: str,
        idempotency_key: str,
        currency: str = "chf",
        metadata: dict[str, str] | None = None,
        source_transaction: str | None = None,
        transfer_group: str | None = None,
        trace_id: str | None = None,
    ) -> TransferResult:
        """
        Transfer funds to a connected account.

        ``source_transaction`` ties the transfer to the originating charge,
        so the funds become available together with that charge.
        ``transfer_group`` tags the transfer so find_transfer can look it up
        after the outcome of the request was lost.

        Raises:
            StripeInvalidAccountError: Destination is missing or restricted
        """
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")

        log_context = {
            "operation": "create_transfer",
            "amount_cents": amount_cents,
            "destination_account": destination_account,
            "idempotency_key": idempotency_key,
            "trace_id": trace_id,
        }

        params: dict[str, Any] = {
            "amount": amount_cents,
            "currency": currency,
            "destination": destination_account,
            "metadata": metadata or {},
        }
        if source_transaction:
            params["source_transaction"] = source_transaction
        if transfer_group:
            params["transfer_group"] = transfer_group

        transfer = cls._execute(
            log_context,
            lambda: stripe.Transfer.create(idempotency_key=idempotency_key, **params),
        )
        return cls._transfer_result(transfer)

    @classmethod
    def retrieve_transfer(cls, transfer_id: str, trace_id: str | None = None) -> TransferResult:
        log_context = {"operation": "retrieve_transfer", "transfer_id": transfer_id, "trace_id": trace_id}
        transfer = cls._execute(log_context, lambda: stripe.Transfer.retrieve(transfer_id))
        return cls._transfer_result(transfer)

    @classmethod
    def find_transfer(cls, transfer_group: str, trace_id: str | None = None) -> TransferResult | None:
        """Return the most recent transfer tagged with ``transfer_group``, if any."""
        log_context = {"operation": "find_transfer", "transfer_group": transfer_group, "trace_id": trace_id}
        transfers = cls._execute(
            log_context,
            lambda: stripe.Transfer.list(transfer_group=transfer_group, limit=1),
        )
        data = _get(transfers, "data") or []
        return cls._transfer_result(data[0]) if data else None

    @classmethod
    def create_transfer_reversal(
        cls,
        transfer_id: str,
        amount_cents: int,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
        trace_id: str | None = None,
    ) -> ReversalResult:
        """
        Reverse part of a transfer, pulling funds back from the connected account.

        The caller must cap ``amount_cents`` at the transfer's reversible
        balance (``retrieve_transfer(...).reversible_cents``); Stripe rejects
        anything above it as an invalid request.
        """
        if amount_cents <= 0:
            raise ValueError("amount_cents must be positive")

        log_context = {
            "operation": "create_transfer_reversal",
            "transfer_id": transfer_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
            "trace_id": trace_id,
        }

        reversal = cls._execute(
            log_context,
            lambda: stripe.Transfer.create_reversal(
                transfer_id,
                amount=amount_cents,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            ),
        )

        return ReversalResult(
            id=_get(reversal, "id"),
            transfer_id=_get(reversal, "transfer", transfer_id),
            amount_cents=int(_get(reversal, "amount", 0)),
            currency=_get(reversal, "currency", ""),
            metadata=dict(_get(reversal, "metadata", {}) or {}),
            raw_response=_to_dict(reversal),
        )

    @staticmethod
    def _transfer_result(transfer: Any) -> TransferResult:
        return TransferResult(
            id=_get(transfer, "id"),
            amount_cents=int(_get(transfer, "amount", 0)),
            currency=_get(transfer, "currency", ""),
            destination_account=_get(transfer, "destination", ""),
            amount_reversed_cents=int(_get(transfer, "amount_reversed", 0)),
            metadata=dict(_get(transfer, "metadata", {}) or {}),
            raw_response=_to_dict(transfer),
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(cls, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify the Stripe-Signature header and return the parsed event.

        Raises:
            StripeInvalidRequestError: Signature or payload invalid
        """
        try:
            event = stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
        except stripe.SignatureVerificationError as e:
            cls.get_logger().warning("Webhook signature verification failed", extra={"error": str(e)})
            raise StripeInvalidRequestError(
                "Invalid webhook signature",
                stripe_code="signature_verification_failed",
            ) from e
        except ValueError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook payload",
                stripe_code="invalid_payload",
            ) from e
        return _to_dict(event)

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(cls, error: Exception, log_context: dict[str, Any], duration_ms: float) -> None:
        """
        Re-raise ``error`` as a payments.exceptions.StripeError subclass.

        Domain errors raised inside the call (already translated) pass
        through untouched.
        """
        if isinstance(error, StripeError):
            raise error

        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}
        stripe_code = getattr(error, "code", None)

        if isinstance(error, stripe.InvalidRequestError):
            logger.error("Invalid request to Stripe", extra={**log_context, "stripe_code": stripe_code})
            param = getattr(error, "param", None) or ""
            is_account_error = (
                (stripe_code and "account" in stripe_code)
                or param == "destination"
                or "account" in str(error).lower()
            )
            if is_account_error:
                raise StripeInvalidAccountError(str(error), stripe_code=stripe_code) from error
            raise StripeInvalidRequestError(str(error), stripe_code=stripe_code) from error

        if isinstance(error, stripe.PermissionError):
            # Connected account revoked platform access
            logger.error("Stripe permission error", extra={**log_context, "stripe_code": stripe_code})
            raise StripeInvalidAccountError(str(error), stripe_code=stripe_code) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            raise StripeAuthenticationError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError("Stripe rate limit exceeded", stripe_code="rate_limit") from error

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                raise StripeTimeoutError("Stripe request timed out", stripe_code="timeout") from error
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe",
                stripe_code="api_connection_error",
            ) from error

        if isinstance(error, stripe.StripeError):
            # APIError and anything the SDK adds later: server side, retry later
            logger.error("Stripe API error", extra={**log_context, "stripe_code": stripe_code}, exc_info=True)
            raise StripeAPIUnavailableError(
                f"Stripe service error: {error}",
                stripe_code=stripe_code or "api_error",
            ) from error

        logger.error(
            f"Unexpected error from Stripe call: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise error


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
