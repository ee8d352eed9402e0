"""
Pytest fixtures for webhook tests.

``make_event`` builds a stored WebhookEvent with a Stripe-shaped payload;
the payments conftest provides the users, accounts and Stripe mock.
"""

import uuid

import pytest

from payments.models import WebhookEvent
from payments.state_machines import PaymentStatus, WebhookEventStatus
from payments.tests.factories import PaymentFactory


def build_payload(event_type: str, data_object: dict, event_id: str | None = None) -> dict:
    """Minimal Stripe event envelope."""
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "data": {"object": data_object},
    }


@pytest.fixture
def make_event(db):
    def _make_event(event_type: str, data_object: dict, **kwargs) -> WebhookEvent:
        payload = build_payload(event_type, data_object)
        return WebhookEvent.objects.create(
            stripe_event_id=payload["id"],
            event_type=event_type,
            payload=payload,
            status=kwargs.pop("status", WebhookEventStatus.PENDING),
            **kwargs,
        )

    return _make_event


@pytest.fixture
def authorized_payment(client_user, coach):
    """Charge waiting for capture, charge id not known yet."""
    return PaymentFactory(
        payer=client_user,
        recipient=coach,
        status=PaymentStatus.AUTHORIZED,
        stripe_payment_intent_id="pi_webhook_123",
        stripe_charge_id=None,
    )
