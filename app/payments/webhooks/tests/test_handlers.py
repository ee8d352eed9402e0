"""
Tests for webhook event handlers.

Tests cover:
- Handler registration and dispatch
- payment_intent.succeeded / payment_failed / canceled
- charge.dispute.created
- transfer.paid
- account.updated
"""

from decimal import Decimal

import pytest

from core.services import ServiceResult
from payments.models import ConnectedAccount, Payment, Transaction
from payments.services import PayoutOrchestrator
from payments.state_machines import (
    OnboardingStatus,
    PaymentStatus,
    PayoutStatus,
    TransactionStatus,
    TransactionType,
)
from payments.webhooks.handlers import (
    WEBHOOK_HANDLERS,
    dispatch_webhook,
    register_handler,
)

pytestmark = pytest.mark.django_db


# =============================================================================
# Registry
# =============================================================================


class TestHandlerRegistry:
    def test_settlement_events_registered(self):
        assert {
            "payment_intent.succeeded",
            "payment_intent.payment_failed",
            "payment_intent.canceled",
            "charge.dispute.created",
            "transfer.paid",
            "account.updated",
        } <= set(WEBHOOK_HANDLERS)

    def test_register_handler(self, make_event, mocker):
        mocker.patch.dict(WEBHOOK_HANDLERS)

        @register_handler("test.custom")
        def handle_custom(webhook_event):
            return ServiceResult.success("handled")

        assert dispatch_webhook(make_event("test.custom", {})).data == "handled"

    def test_unknown_event_succeeds(self, make_event):
        """Should accept events nobody handles so they do not pile up as failures."""
        result = dispatch_webhook(make_event("customer.created", {"id": "cus_1"}))

        assert result.success
        assert result.data is None

    def test_domain_error_becomes_failure(self, make_event):
        result = dispatch_webhook(make_event("payment_intent.succeeded", {"id": "pi_unknown"}))

        assert not result.success
        assert result.error_code == "PAYMENT_NOT_FOUND"


# =============================================================================
# Payment Intents
# =============================================================================


class TestPaymentIntentSucceeded:
    def test_completes_payment_and_schedules_payout(self, make_event, authorized_payment):
        event = make_event(
            "payment_intent.succeeded",
            {"id": "pi_webhook_123", "amount_received": 20000, "latest_charge": "ch_webhook_1"},
        )

        result = dispatch_webhook(event)

        assert result.success
        payment = Payment.objects.get(pk=authorized_payment.pk)
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.captured_amount == Decimal("200.00")
        assert payment.stripe_charge_id == "ch_webhook_1"
        assert payment.payout_status == PayoutStatus.PENDING
        assert payment.next_payout_attempt_at is not None

    def test_redelivery_is_idempotent(self, make_event, authorized_payment):
        data = {"id": "pi_webhook_123", "amount_received": 20000, "latest_charge": "ch_webhook_1"}

        dispatch_webhook(make_event("payment_intent.succeeded", data))
        scheduled = Payment.objects.get(pk=authorized_payment.pk).next_payout_attempt_at
        result = dispatch_webhook(make_event("payment_intent.succeeded", data))

        assert result.success
        assert Payment.objects.get(pk=authorized_payment.pk).next_payout_attempt_at == scheduled

    def test_expanded_charge_object(self, make_event, authorized_payment):
        dispatch_webhook(
            make_event("payment_intent.succeeded", {"id": "pi_webhook_123", "latest_charge": {"id": "ch_expanded"}})
        )

        assert Payment.objects.get(pk=authorized_payment.pk).stripe_charge_id == "ch_expanded"

    def test_missing_id(self, make_event):
        result = dispatch_webhook(make_event("payment_intent.succeeded", {}))

        assert result.error_code == "INVALID_WEBHOOK_PAYLOAD"


class TestPaymentIntentFailedAndCanceled:
    def test_failed(self, make_event, authorized_payment):
        event = make_event(
            "payment_intent.payment_failed",
            {"id": "pi_webhook_123", "last_payment_error": {"message": "Your card was declined."}},
        )

        assert dispatch_webhook(event).success
        payment = Payment.objects.get(pk=authorized_payment.pk)
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Your card was declined."

    def test_canceled(self, make_event, authorized_payment):
        assert dispatch_webhook(make_event("payment_intent.canceled", {"id": "pi_webhook_123"})).success
        assert Payment.objects.get(pk=authorized_payment.pk).status == PaymentStatus.CANCELLED

    def test_cancel_after_capture_rejected(self, make_event, completed_payment):
        event = make_event("payment_intent.canceled", {"id": completed_payment.stripe_payment_intent_id})

        result = dispatch_webhook(event)

        assert not result.success
        assert Payment.objects.get(pk=completed_payment.pk).status == PaymentStatus.COMPLETED


# =============================================================================
# Disputes, Transfers, Accounts
# =============================================================================


class TestChargeDisputeCreated:
    def test_disputes_payment(self, make_event, completed_payment):
        event = make_event(
            "charge.dispute.created",
            {"id": "dp_1", "charge": completed_payment.stripe_charge_id, "amount": 20000, "reason": "fraudulent"},
        )

        assert dispatch_webhook(event).success
        assert Payment.objects.get(pk=completed_payment.pk).status == PaymentStatus.DISPUTED
        dispute = Transaction.objects.get(payment=completed_payment, transaction_type=TransactionType.DISPUTE)
        assert dispute.amount == Decimal("-200.00")


class TestTransferPaid:
    def test_confirms_payout(self, make_event, completed_payment, coach_account, stripe_adapter, settlement_config):
        PayoutOrchestrator.process_due_payment(completed_payment.id, config=settlement_config)

        result = dispatch_webhook(make_event("transfer.paid", {"id": "tr_test", "object": "transfer"}))

        assert result.success
        assert Payment.objects.get(pk=completed_payment.pk).payout_status == PayoutStatus.PAID_OUT
        payout_tx = Transaction.objects.get(payment=completed_payment, transaction_type=TransactionType.PAYOUT)
        assert payout_tx.status == TransactionStatus.COMPLETED

    def test_unknown_transfer_fails(self, make_event):
        result = dispatch_webhook(make_event("transfer.paid", {"id": "tr_unknown"}))

        assert not result.success


class TestAccountUpdated:
    def test_onboarding_complete(self, make_event, coach_account):
        ConnectedAccount.objects.filter(pk=coach_account.pk).update(
            onboarding_status=OnboardingStatus.IN_PROGRESS, payouts_enabled=False
        )
        event = make_event(
            "account.updated",
            {
                "id": coach_account.stripe_account_id,
                "payouts_enabled": True,
                "charges_enabled": True,
                "requirements": {"currently_due": [], "past_due": []},
            },
        )

        assert dispatch_webhook(event).success
        account = ConnectedAccount.objects.get(pk=coach_account.pk)
        assert account.onboarding_status == OnboardingStatus.COMPLETE
        assert account.is_ready_for_payouts

    def test_outstanding_requirements(self, make_event, coach_account):
        event = make_event(
            "account.updated",
            {
                "id": coach_account.stripe_account_id,
                "payouts_enabled": False,
                "requirements": {"currently_due": ["external_account"]},
            },
        )

        dispatch_webhook(event)

        account = ConnectedAccount.objects.get(pk=coach_account.pk)
        assert account.onboarding_status == OnboardingStatus.IN_PROGRESS
        assert not account.is_ready_for_payouts

    def test_disabled_account_rejected(self, make_event, coach_account):
        event = make_event(
            "account.updated",
            {"id": coach_account.stripe_account_id, "requirements": {"disabled_reason": "rejected.fraud"}},
        )

        dispatch_webhook(event)

        assert ConnectedAccount.objects.get(pk=coach_account.pk).onboarding_status == OnboardingStatus.REJECTED

    def test_unknown_account_ignored(self, make_event):
        result = dispatch_webhook(make_event("account.updated", {"id": "acct_unknown"}))

        assert result.success
        assert result.data is None
