"""
End-to-end settlement flow.

Capture → fee reconciliation → payout → transfer.paid → refund after
payout → the next payout absorbs the clawback. Only Stripe and Redis are
mocked.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from payments.config import SettlementConfig
from payments.models import CoachInvoice, Payment, Transaction
from payments.services import (
    FeeReconciliationService,
    PaymentLedgerService,
    PayoutOrchestrator,
    RefundService,
)
from payments.state_machines import (
    InvoiceKind,
    PaymentStatus,
    PayoutStatus,
    RefundPolicy,
    TransactionType,
)
from payments.tests.factories import PaymentFactory

pytestmark = pytest.mark.django_db


@pytest.fixture
def config():
    return SettlementConfig(default_tax_rate=Decimal("8.1"))


def capture(client_user, coach, config, now):
    payment = PaymentFactory(payer=client_user, recipient=coach, status=PaymentStatus.AUTHORIZED)
    return PaymentLedgerService.mark_completed(payment.id, captured_amount=Decimal("200.00"), config=config, now=now)


class TestSettlementFlow:
    def test_full_lifecycle(
        self,
        client_user,
        coach,
        tax_registered_account,
        stripe_adapter,
        mock_redis,
        config,
        django_capture_on_commit_callbacks,
    ):
        captured_at = timezone.now()
        payment = capture(client_user, coach, config, captured_at)
        assert payment.payout_status == PayoutStatus.PENDING

        # Fee job runs before the payout is due
        assert FeeReconciliationService.run_batch(config)["recorded"] == 1

        # Not due for 24 hours
        assert PayoutOrchestrator.run_batch(config, now=captured_at + timedelta(hours=23)).processed == 0

        payout_time = captured_at + timedelta(hours=25)
        with django_capture_on_commit_callbacks(execute=True):
            summary = PayoutOrchestrator.run_batch(config, now=payout_time)
        assert summary.submitted == 1
        assert stripe_adapter.create_transfer.call_args.kwargs["amount_cents"] == 15500

        invoice = CoachInvoice.objects.get(payment=payment, kind=InvoiceKind.INVOICE)
        assert (invoice.net_amount, invoice.withheld_tax) == (Decimal("143.39"), Decimal("11.61"))

        PayoutOrchestrator.confirm_transfer_paid("tr_test")
        assert Payment.objects.get(pk=payment.pk).payout_status == PayoutStatus.PAID_OUT

        # Refund after the money reached the coach
        with django_capture_on_commit_callbacks(execute=True):
            result = RefundService.process_refund(
                payment.id, Decimal("50.00"), reason="requested_by_customer", policy=RefundPolicy.STANDARD, config=config
            )
        assert result.data.coach_debit_amount == Decimal("40.00")
        assert CoachInvoice.objects.filter(payment=payment, kind=InvoiceKind.CREDIT_NOTE).count() == 1

        # The coach's next payout absorbs the clawback
        next_payment = capture(client_user, coach, config, payout_time)
        FeeReconciliationService.run_batch(config)
        outcome = PayoutOrchestrator.process_due_payment(
            next_payment.id, config=config, now=payout_time + timedelta(hours=25)
        )

        assert outcome.status == "submitted"
        assert outcome.amount == Decimal("115.00")
        adjustment = Payment.objects.get(pk=result.data.adjustment_id)
        assert adjustment.status == PaymentStatus.DEDUCTED
        assert adjustment.absorbed_by_id == next_payment.id

    def test_refund_before_payout_reduces_transfer(self, client_user, coach, coach_account, stripe_adapter, mock_redis, config):
        now = timezone.now()
        payment = capture(client_user, coach, config, now)
        FeeReconciliationService.run_batch(config)

        RefundService.process_refund(payment.id, Decimal("50.00"), reason="duplicate", config=config)
        outcome = PayoutOrchestrator.process_due_payment(payment.id, config=config, now=now + timedelta(hours=24))

        assert outcome.amount == Decimal("115.00")
        assert Transaction.objects.filter(payment=payment, transaction_type=TransactionType.REFUND).count() == 1
