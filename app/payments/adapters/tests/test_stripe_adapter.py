"""
Tests for Stripe adapter.

Tests cover:
- Idempotency key generation
- Result types (fee availability, refund acceptance, reversible amount)
- Error translation for each exception type
- Successful API operations
- Webhook signature verification
"""

import uuid

import pytest
import stripe
from django.test import override_settings

from payments.adapters import (
    ChargeResult,
    IdempotencyKeyGenerator,
    RefundResult,
    StripeAdapter,
    TransferResult,
    is_retryable_stripe_error,
)
from payments.exceptions import (
    FeeNotAvailableError,
    StripeAPIUnavailableError,
    StripeAuthenticationError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)


# =============================================================================
# IdempotencyKeyGenerator Tests
# =============================================================================


class TestIdempotencyKeyGenerator:
    """Tests for IdempotencyKeyGenerator."""

    def test_generate_key_format(self):
        """Should generate operation:entity:attempt."""
        entity_id = uuid.uuid4()

        key = IdempotencyKeyGenerator.generate("create_transfer", entity_id, 2)

        assert key == f"create_transfer:{entity_id}:2"

    def test_same_inputs_produce_same_key(self):
        """Should be deterministic so a retried request is deduplicated by Stripe."""
        entity_id = uuid.uuid4()

        assert IdempotencyKeyGenerator.generate("create_refund", entity_id, 1) == IdempotencyKeyGenerator.generate(
            "create_refund", entity_id, 1
        )

    def test_different_attempts_produce_different_keys(self):
        entity_id = uuid.uuid4()

        assert IdempotencyKeyGenerator.generate("create_transfer", entity_id, 1) != IdempotencyKeyGenerator.generate(
            "create_transfer", entity_id, 2
        )

    def test_operation_required(self):
        with pytest.raises(ValueError):
            IdempotencyKeyGenerator.generate("", uuid.uuid4())


# =============================================================================
# Result Type Tests
# =============================================================================


class TestResultTypes:
    def test_charge_fee_not_available(self):
        charge = ChargeResult(
            id="ch_1", amount_cents=1000, amount_refunded_cents=0, amount_captured_cents=1000, currency="chf"
        )

        with pytest.raises(FeeNotAvailableError):
            charge.require_fee()

    def test_charge_fully_refunded(self):
        charge = ChargeResult(
            id="ch_1", amount_cents=1000, amount_refunded_cents=1000, amount_captured_cents=1000, currency="chf"
        )

        assert charge.is_fully_refunded
        assert charge.remaining_cents == 0

    @pytest.mark.parametrize("status, accepted", [("succeeded", True), ("pending", True), ("failed", False)])
    def test_refund_acceptance(self, status, accepted):
        assert RefundResult(id="re_1", amount_cents=100, currency="chf", status=status).is_accepted is accepted

    def test_transfer_reversible_cents(self):
        transfer = TransferResult(
            id="tr_1", amount_cents=15500, currency="chf", destination_account="acct_1", amount_reversed_cents=4000
        )

        assert transfer.reversible_cents == 11500


class TestIsRetryableStripeError:
    def test_retryable_errors(self):
        assert is_retryable_stripe_error(StripeRateLimitError("slow down"))
        assert is_retryable_stripe_error(StripeAPIUnavailableError("down"))
        assert is_retryable_stripe_error(StripeTimeoutError("timeout"))

    def test_non_retryable_errors(self):
        assert not is_retryable_stripe_error(StripeInvalidAccountError("bad account"))
        assert not is_retryable_stripe_error(StripeInvalidRequestError("bad request"))

    def test_non_stripe_errors(self):
        assert not is_retryable_stripe_error(ValueError("nope"))


# =============================================================================
# Charge Tests
# =============================================================================


class TestStripeAdapterRetrieveCharge:
    def test_settled_charge(self, mock_stripe_charge):
        """Should read the fee from the expanded balance transaction."""
        charge = StripeAdapter.retrieve_charge("ch_test123456")

        mock_stripe_charge.retrieve.assert_called_once_with("ch_test123456", expand=["balance_transaction"])
        assert charge.fee_cents == 610
        assert charge.balance_transaction_id == "txn_test123"
        assert charge.amount_cents == 20000
        assert charge.payment_intent_id == "pi_test123456"

    @pytest.mark.parametrize("balance_transaction", [None, "txn_unexpanded"])
    def test_unsettled_charge(self, mock_stripe_charge, mock_charge, balance_transaction):
        mock_stripe_charge.retrieve.return_value = mock_charge(balance_transaction=balance_transaction)

        charge = StripeAdapter.retrieve_charge("ch_test123456")

        assert charge.fee_cents is None
        assert charge.balance_transaction_id is None

    def test_refunded_amount(self, mock_stripe_charge, mock_charge):
        mock_stripe_charge.retrieve.return_value = mock_charge(amount_refunded=5000)

        assert StripeAdapter.retrieve_charge("ch_test123456").remaining_cents == 15000


# =============================================================================
# Transfer Tests
# =============================================================================


class TestStripeAdapterTransfers:
    def test_create_transfer(self, mock_stripe_transfer):
        result = StripeAdapter.create_transfer(
            amount_cents=15500,
            destination_account="acct_dest123",
            currency="chf",
            source_transaction="ch_123",
            metadata={"payment_id": "p1"},
            idempotency_key="create_transfer:p1:1",
        )

        mock_stripe_transfer.create.assert_called_once_with(
            idempotency_key="create_transfer:p1:1",
            amount=15500,
            currency="chf",
            destination="acct_dest123",
            metadata={"payment_id": "p1"},
            source_transaction="ch_123",
        )
        assert result.id == "tr_test123456"
        assert result.destination_account == "acct_dest123"

    def test_create_transfer_rejects_non_positive_amount(self, mock_stripe_transfer):
        with pytest.raises(ValueError):
            StripeAdapter.create_transfer(amount_cents=0, destination_account="acct_1", idempotency_key="k")

        mock_stripe_transfer.create.assert_not_called()

    def test_create_transfer_passes_transfer_group(self, mock_stripe_transfer):
        StripeAdapter.create_transfer(
            amount_cents=15500,
            destination_account="acct_dest123",
            transfer_group="payout:p1",
            idempotency_key="create_transfer:p1:1",
        )

        assert mock_stripe_transfer.create.call_args.kwargs["transfer_group"] == "payout:p1"

    def test_find_transfer(self, mock_stripe_transfer, mock_transfer):
        mock_stripe_transfer.list.return_value = {"data": [mock_transfer()]}

        result = StripeAdapter.find_transfer("payout:p1")

        mock_stripe_transfer.list.assert_called_once_with(transfer_group="payout:p1", limit=1)
        assert result.id == "tr_test123456"
        assert result.amount_cents == 15500

    def test_find_transfer_none_on_record(self, mock_stripe_transfer):
        mock_stripe_transfer.list.return_value = {"data": []}

        assert StripeAdapter.find_transfer("payout:p1") is None

    def test_retrieve_transfer(self, mock_stripe_transfer, mock_transfer):
        mock_stripe_transfer.retrieve.return_value = mock_transfer(amount_reversed=1000)

        result = StripeAdapter.retrieve_transfer("tr_test123456")

        assert result.reversible_cents == 14500

    def test_create_transfer_reversal(self, mock_stripe_transfer):
        result = StripeAdapter.create_transfer_reversal(
            transfer_id="tr_test123456",
            amount_cents=4000,
            idempotency_key="create_transfer_reversal:p1:re_1",
        )

        mock_stripe_transfer.create_reversal.assert_called_once_with(
            "tr_test123456",
            amount=4000,
            metadata={},
            idempotency_key="create_transfer_reversal:p1:re_1",
        )
        assert result.id == "trr_test123"
        assert result.amount_cents == 4000
        assert result.transfer_id == "tr_test123456"


# =============================================================================
# Refund Tests
# =============================================================================


class TestStripeAdapterCreateRefund:
    def test_partial_refund(self, mock_stripe_refund):
        result = StripeAdapter.create_refund(
            payment_intent_id="pi_test123456",
            amount_cents=5000,
            reason="requested_by_customer",
            idempotency_key="create_refund:p1:1",
        )

        kwargs = mock_stripe_refund.create.call_args.kwargs
        assert kwargs["amount"] == 5000
        assert kwargs["reason"] == "requested_by_customer"
        assert kwargs["idempotency_key"] == "create_refund:p1:1"
        assert result.is_accepted

    def test_full_refund_omits_amount(self, mock_stripe_refund):
        StripeAdapter.create_refund(payment_intent_id="pi_test123456", idempotency_key="k")

        assert "amount" not in mock_stripe_refund.create.call_args.kwargs

    def test_failed_refund_is_returned(self, mock_stripe_refund, mock_refund):
        """Should leave the decision about a failed refund to the caller."""
        mock_stripe_refund.create.return_value = mock_refund(status="failed", failure_reason="lost_or_stolen_card")

        result = StripeAdapter.create_refund(payment_intent_id="pi_test123456", idempotency_key="k")

        assert not result.is_accepted
        assert result.failure_reason == "lost_or_stolen_card"


# =============================================================================
# Error Translation Tests
# =============================================================================


class TestStripeAdapterErrorTranslation:
    def test_invalid_request_error(self, mock_stripe_charge, invalid_request_error):
        mock_stripe_charge.retrieve.side_effect = invalid_request_error()

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.retrieve_charge("ch_missing")

        assert exc_info.value.stripe_code == "resource_missing"
        assert not exc_info.value.is_retryable

    def test_invalid_destination_is_account_error(self, mock_stripe_transfer, invalid_request_error):
        """Should classify a bad destination as an account problem."""
        mock_stripe_transfer.create.side_effect = invalid_request_error(
            message="No such destination: 'acct_gone'", param="destination", code="resource_missing"
        )

        with pytest.raises(StripeInvalidAccountError):
            StripeAdapter.create_transfer(amount_cents=100, destination_account="acct_gone", idempotency_key="k")

    def test_permission_error_is_account_error(self, mock_stripe_transfer, permission_error):
        mock_stripe_transfer.create.side_effect = permission_error

        with pytest.raises(StripeInvalidAccountError):
            StripeAdapter.create_transfer(amount_cents=100, destination_account="acct_x", idempotency_key="k")

    def test_rate_limit_error(self, mock_stripe_refund, rate_limit_error):
        mock_stripe_refund.create.side_effect = rate_limit_error

        with pytest.raises(StripeRateLimitError) as exc_info:
            StripeAdapter.create_refund(payment_intent_id="pi_1", idempotency_key="k")

        assert exc_info.value.is_retryable

    def test_connection_timeout(self, mock_stripe_charge, api_connection_error):
        mock_stripe_charge.retrieve.side_effect = api_connection_error("Request timed out")

        with pytest.raises(StripeTimeoutError):
            StripeAdapter.retrieve_charge("ch_1")

    def test_connection_error(self, mock_stripe_charge, api_connection_error):
        mock_stripe_charge.retrieve.side_effect = api_connection_error()

        with pytest.raises(StripeAPIUnavailableError):
            StripeAdapter.retrieve_charge("ch_1")

    def test_api_error(self, mock_stripe_charge, api_error):
        mock_stripe_charge.retrieve.side_effect = api_error

        with pytest.raises(StripeAPIUnavailableError):
            StripeAdapter.retrieve_charge("ch_1")

    def test_authentication_error(self, mock_stripe_charge, authentication_error):
        mock_stripe_charge.retrieve.side_effect = authentication_error

        with pytest.raises(StripeAuthenticationError):
            StripeAdapter.retrieve_charge("ch_1")

    def test_unknown_error_passes_through(self, mock_stripe_charge):
        mock_stripe_charge.retrieve.side_effect = KeyError("boom")

        with pytest.raises(KeyError):
            StripeAdapter.retrieve_charge("ch_1")


# =============================================================================
# Webhook Verification Tests
# =============================================================================


class TestStripeAdapterVerifyWebhookSignature:
    @override_settings(STRIPE_WEBHOOK_SECRET="whsec_test")
    def test_verify_webhook_signature_success(self, mock_stripe_webhook):
        event = StripeAdapter.verify_webhook_signature(b"{}", "t=1,v1=sig")

        mock_stripe_webhook.construct_event.assert_called_once_with(b"{}", "t=1,v1=sig", "whsec_test")
        assert event["type"] == "transfer.paid"

    def test_verify_webhook_signature_invalid(self, mocker, signature_verification_error):
        mocker.patch("stripe.Webhook.construct_event", side_effect=signature_verification_error)

        with pytest.raises(StripeInvalidRequestError) as exc_info:
            StripeAdapter.verify_webhook_signature(b"{}", "bad_signature")

        assert exc_info.value.stripe_code == "signature_verification_failed"

    def test_verify_webhook_payload_invalid(self, mocker):
        mocker.patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json"))

        with pytest.raises(StripeInvalidRequestError):
            StripeAdapter.verify_webhook_signature(b"not json", "t=1,v1=sig")


# =============================================================================
# Configuration Tests
# =============================================================================


class TestStripeAdapterConfiguration:
    @override_settings(STRIPE_SECRET_KEY="sk_test_custom")
    def test_uses_settings_api_key(self, mock_stripe_charge):
        StripeAdapter.retrieve_charge("ch_1")

        assert stripe.api_key == "sk_test_custom"

    @override_settings(STRIPE_API_TIMEOUT_SECONDS=30)
    def test_uses_settings_timeout(self, mock_stripe_charge, mock_stripe_http_client):
        StripeAdapter.retrieve_charge("ch_1")

        mock_stripe_http_client.assert_called_with(timeout=30)
