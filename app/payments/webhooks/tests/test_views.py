"""
Tests for the Stripe webhook view.

Tests cover:
- Stripe signature verification
- WebhookEvent creation and duplicate deliveries
- Task queuing and queueing failures
"""

import json

import pytest
from django.test import RequestFactory

from payments.exceptions import StripeInvalidRequestError
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus
from payments.webhooks.tests.conftest import build_payload
from payments.webhooks.views import stripe_webhook

pytestmark = pytest.mark.django_db

WEBHOOK_URL = "/api/v1/payments/webhooks/stripe/"


@pytest.fixture
def rf():
    return RequestFactory()


@pytest.fixture
def verify(mocker):
    """Signature check that accepts and returns the posted JSON."""
    return mocker.patch(
        "payments.webhooks.views.StripeAdapter.verify_webhook_signature",
        side_effect=lambda body, signature: json.loads(body),
    )


@pytest.fixture
def delay(mocker):
    return mocker.patch("payments.tasks.process_webhook_event").delay


def make_webhook_request(rf, payload: dict, signature: str = "t=1,v1=test"):
    return rf.post(
        WEBHOOK_URL,
        data=json.dumps(payload),
        content_type="application/json",
        HTTP_STRIPE_SIGNATURE=signature,
    )


class TestStripeWebhookSignature:
    def test_missing_signature_returns_400(self, rf):
        request = rf.post(WEBHOOK_URL, data="{}", content_type="application/json")

        response = stripe_webhook(request)

        assert response.status_code == 400
        assert not WebhookEvent.objects.exists()

    def test_invalid_signature_returns_400(self, rf, mocker):
        mocker.patch(
            "payments.webhooks.views.StripeAdapter.verify_webhook_signature",
            side_effect=StripeInvalidRequestError("Invalid signature"),
        )

        response = stripe_webhook(make_webhook_request(rf, build_payload("transfer.paid", {"id": "tr_1"})))

        assert response.status_code == 400

    def test_get_not_allowed(self, rf):
        assert stripe_webhook(rf.get(WEBHOOK_URL)).status_code == 405


class TestStripeWebhookEvents:
    def test_stores_and_queues_event(self, rf, verify, delay):
        """Should store the event as pending and hand it to Celery."""
        payload = build_payload("transfer.paid", {"id": "tr_1"}, event_id="evt_1")

        response = stripe_webhook(make_webhook_request(rf, payload))

        assert response.status_code == 200
        event = WebhookEvent.objects.get(stripe_event_id="evt_1")
        assert event.event_type == "transfer.paid"
        assert event.status == WebhookEventStatus.PENDING
        assert event.payload == payload
        delay.assert_called_once_with(str(event.id))

    def test_duplicate_delivery_not_requeued(self, rf, verify, delay):
        """Should acknowledge a redelivered event without processing it again."""
        payload = build_payload("transfer.paid", {"id": "tr_1"}, event_id="evt_dup")

        stripe_webhook(make_webhook_request(rf, payload))
        response = stripe_webhook(make_webhook_request(rf, payload))

        assert response.status_code == 200
        assert WebhookEvent.objects.filter(stripe_event_id="evt_dup").count() == 1
        delay.assert_called_once()

    def test_event_without_type_returns_400(self, rf, verify, delay):
        response = stripe_webhook(make_webhook_request(rf, {"id": "evt_no_type"}))

        assert response.status_code == 400
        delay.assert_not_called()

    def test_queue_failure_marks_event_failed(self, rf, verify, delay):
        """Should keep the event retryable when the broker is down."""
        delay.side_effect = ConnectionError("broker unavailable")
        payload = build_payload("transfer.paid", {"id": "tr_1"}, event_id="evt_broker")

        response = stripe_webhook(make_webhook_request(rf, payload))

        assert response.status_code == 200
        event = WebhookEvent.objects.get(stripe_event_id="evt_broker")
        assert event.status == WebhookEventStatus.FAILED
        assert event.can_retry
