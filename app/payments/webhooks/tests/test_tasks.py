"""
Tests for the webhook Celery tasks.

Tasks are called directly, so Celery's retry machinery re-raises the
original exception instead of scheduling a retry.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from django.utils import timezone

from core.services import ServiceResult
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus
from payments.tasks import cleanup_stuck_webhooks, process_webhook_event, retry_failed_webhooks

pytestmark = pytest.mark.django_db


class TestProcessWebhookEvent:
    def test_processes_event(self, make_event):
        event = make_event("customer.created", {"id": "cus_1"})

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.retry_count == 1
        assert event.processed_at is not None

    def test_already_processed_skipped(self, make_event, mocker):
        dispatch = mocker.patch("payments.webhooks.handlers.dispatch_webhook")
        event = make_event("customer.created", {}, status=WebhookEventStatus.PROCESSED)

        assert process_webhook_event(str(event.id))["status"] == "already_processed"
        dispatch.assert_not_called()

    def test_unknown_event(self):
        assert process_webhook_event(str(uuid4()))["status"] == "not_found"

    def test_handler_failure_marks_failed(self, make_event):
        """Should keep the event for the retry sweep when the handler rejects it."""
        event = make_event("transfer.paid", {"id": "tr_unknown"})

        result = process_webhook_event(str(event.id))

        assert result["status"] == "handler_failed"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert "tr_unknown" in event.error_message

    def test_unexpected_error_marks_failed_and_raises(self, make_event, mocker):
        mocker.patch("payments.webhooks.handlers.dispatch_webhook", side_effect=RuntimeError("boom"))
        event = make_event("transfer.paid", {"id": "tr_1"})

        with pytest.raises(RuntimeError):
            process_webhook_event(str(event.id))

        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message == "RuntimeError: boom"

    def test_failure_result_from_handler(self, make_event, mocker):
        mocker.patch(
            "payments.webhooks.handlers.dispatch_webhook",
            return_value=ServiceResult.failure("nope", error_code="X"),
        )
        event = make_event("transfer.paid", {"id": "tr_1"})

        assert process_webhook_event(str(event.id))["error"] == "nope"


class TestRetryFailedWebhooks:
    def test_requeues_retryable_events(self, make_event, mocker):
        delay = mocker.patch("payments.tasks.process_webhook_event").delay
        retryable = make_event("transfer.paid", {}, status=WebhookEventStatus.FAILED, retry_count=2)
        make_event("transfer.paid", {}, status=WebhookEventStatus.FAILED, retry_count=5)
        make_event("transfer.paid", {}, status=WebhookEventStatus.PROCESSED)

        result = retry_failed_webhooks()

        assert result == {"queued_count": 1}
        delay.assert_called_once_with(str(retryable.id))


class TestCleanupStuckWebhooks:
    def test_resets_old_processing_events(self, make_event):
        stuck = make_event("transfer.paid", {}, status=WebhookEventStatus.PROCESSING)
        recent = make_event("transfer.paid", {}, status=WebhookEventStatus.PROCESSING)
        WebhookEvent.objects.filter(pk=stuck.pk).update(updated_at=timezone.now() - timedelta(hours=1))

        result = cleanup_stuck_webhooks()

        assert result == {"reset_count": 1}
        assert WebhookEvent.objects.get(pk=stuck.pk).status == WebhookEventStatus.FAILED
        assert WebhookEvent.objects.get(pk=recent.pk).status == WebhookEventStatus.PROCESSING
