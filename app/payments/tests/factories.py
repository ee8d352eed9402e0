"""
Factory Boy factories for settlement test data.

Usage:
    from payments.tests.factories import CompletedPaymentFactory, ConnectedAccountFactory

    account = ConnectedAccountFactory()
    payment = CompletedPaymentFactory(recipient=account.user)

    # total 200 / platform fee 30 / VAT 10, payout due now
    payment.payout_status  # "pending"
"""

import uuid
from decimal import Decimal

import factory
from django.utils import timezone

from authentication.tests.factories import UserFactory
from payments.models import CoachInvoice, ConnectedAccount, Payment, Transaction, WebhookEvent
from payments.state_machines import (
    InvoiceKind,
    OnboardingStatus,
    PaymentStatus,
    PaymentType,
    PayoutStatus,
    TransactionStatus,
    TransactionType,
    WebhookEventStatus,
)

__all__ = [
    "AdjustmentFactory",
    "CoachInvoiceFactory",
    "CompletedPaymentFactory",
    "ConnectedAccountFactory",
    "FeeTransactionFactory",
    "PaymentFactory",
    "UserFactory",
    "WebhookEventFactory",
]


class ConnectedAccountFactory(factory.django.DjangoModelFactory):
    """Coach account with onboarding complete and payouts enabled."""

    class Meta:
        model = ConnectedAccount

    user = factory.SubFactory(UserFactory)
    stripe_account_id = factory.LazyFunction(lambda: f"acct_{uuid.uuid4().hex[:16]}")
    onboarding_status = OnboardingStatus.COMPLETE
    payouts_enabled = True
    charges_enabled = True
    is_tax_registered = False
    tax_rate = None

    class Params:
        tax_registered = factory.Trait(is_tax_registered=True, tax_number="CHE-123.456.789 MWST")


class PaymentFactory(factory.django.DjangoModelFactory):
    """
    Draft live-session charge of 200.00 CHF.

    Defaults to the marketplace split used throughout the tests:
    total 200.00, platform fee 30.00, VAT 10.00.
    """

    class Meta:
        model = Payment

    payer = factory.SubFactory(UserFactory)
    recipient = factory.SubFactory(UserFactory)
    payment_type = PaymentType.LIVE_SESSION_CHARGE
    status = PaymentStatus.DRAFT
    base_amount = Decimal("190.00")
    platform_fee = Decimal("30.00")
    vat_rate = Decimal("8.1")
    vat_amount = Decimal("10.00")
    total_amount = Decimal("200.00")
    currency = "chf"
    stripe_payment_intent_id = factory.LazyFunction(lambda: f"pi_{uuid.uuid4().hex[:24]}")
    stripe_charge_id = factory.LazyFunction(lambda: f"ch_{uuid.uuid4().hex[:24]}")


class CompletedPaymentFactory(PaymentFactory):
    """Captured charge whose payout is pending and already due."""

    status = PaymentStatus.COMPLETED
    captured_amount = factory.SelfAttribute("total_amount")
    completed_at = factory.LazyFunction(timezone.now)
    payout_status = PayoutStatus.PENDING
    next_payout_attempt_at = factory.LazyFunction(timezone.now)


class AdjustmentFactory(factory.django.DjangoModelFactory):
    """Open clawback of 20.00 waiting to be absorbed by a payout."""

    class Meta:
        model = Payment

    payer = None
    recipient = factory.SubFactory(UserFactory)
    payment_type = PaymentType.ADJUSTMENT
    status = PaymentStatus.PENDING_DEDUCTION
    total_amount = Decimal("-20.00")
    currency = "chf"
    stripe_payment_intent_id = None
    stripe_charge_id = None
    metadata = factory.LazyFunction(lambda: {"reason": "refund_after_payout"})


class FeeTransactionFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Transaction

    payment = factory.SubFactory(CompletedPaymentFactory)
    transaction_type = TransactionType.FEE
    amount = Decimal("5.00")
    currency = "chf"
    status = TransactionStatus.COMPLETED
    stripe_charge_id = factory.SelfAttribute("payment.stripe_charge_id")
    stripe_balance_transaction_id = factory.LazyFunction(lambda: f"txn_{uuid.uuid4().hex[:24]}")


class CoachInvoiceFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = CoachInvoice

    payment = factory.SubFactory(CompletedPaymentFactory)
    recipient = factory.SelfAttribute("payment.recipient")
    kind = InvoiceKind.INVOICE
    gross_amount = Decimal("155.00")
    net_amount = Decimal("155.00")
    withheld_tax = Decimal("0.00")
    tax_rate = Decimal("0.00")
    currency = "chf"


class WebhookEventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WebhookEvent

    stripe_event_id = factory.LazyFunction(lambda: f"evt_{uuid.uuid4().hex[:24]}")
    event_type = "payment_intent.succeeded"
    payload = factory.LazyAttribute(
        lambda o: {"id": o.stripe_event_id, "type": o.event_type, "data": {"object": {}}}
    )
    status = WebhookEventStatus.PENDING
