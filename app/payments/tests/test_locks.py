"""
Tests for payments.locks.

DistributedLock runs against a MagicMock Redis client (``mock_redis``);
the row-lock helpers run against the test database.
"""

import pytest
from django.db import transaction

from payments.exceptions import LockAcquisitionError, PaymentNotFoundError, StaleRecordError
from payments.locks import DistributedLock, check_version, lock_payment, refund_lock_key
from payments.models import Payment
from payments.tests.factories import PaymentFactory


class TestDistributedLock:
    """Tests for DistributedLock class."""

    def test_acquire_sets_key_with_nx_and_ttl(self, mock_redis):
        """Should SET lock:{key} NX with the TTL."""
        lock = DistributedLock("refund:abc", ttl=60, blocking=False)

        assert lock.acquire() is True
        assert lock.is_held

        args, kwargs = mock_redis.set.call_args
        assert args[0] == "lock:refund:abc"
        assert kwargs == {"nx": True, "ex": 60}

    def test_tokens_are_unique(self, mock_redis):
        first = DistributedLock("a", blocking=False)
        second = DistributedLock("b", blocking=False)

        first.acquire()
        second.acquire()

        assert first._token != second._token

    def test_non_blocking_raises_when_held(self, mock_redis):
        """Should fail at once when another holder owns the key."""
        mock_redis.set.return_value = False

        with pytest.raises(LockAcquisitionError) as exc_info:
            DistributedLock("busy", blocking=False).acquire()

        assert exc_info.value.details["key"] == "lock:busy"
        assert exc_info.value.is_retryable
        mock_redis.set.assert_called_once()

    def test_blocking_polls_until_free(self, mock_redis, mocker):
        mock_time = mocker.patch("payments.locks.time")
        mock_time.monotonic.return_value = 0.0
        mock_redis.set.side_effect = [False, False, True]

        lock = DistributedLock("contended", timeout=5)

        assert lock.acquire() is True
        assert mock_redis.set.call_count == 3

    def test_blocking_times_out(self, mock_redis, mocker):
        mock_time = mocker.patch("payments.locks.time")
        mock_time.monotonic.side_effect = [0.0, 0.5, 1.5]
        mock_redis.set.return_value = False

        with pytest.raises(LockAcquisitionError):
            DistributedLock("contended", timeout=1.0).acquire()

    def test_release_uses_token_script(self, mock_redis):
        """Should release through the compare-and-delete script."""
        lock = DistributedLock("key", blocking=False)
        lock.acquire()
        token = lock._token

        assert lock.release() is True

        script, numkeys, key, arg = mock_redis.eval.call_args[0]
        assert script == DistributedLock.RELEASE_SCRIPT
        assert (numkeys, key, arg) == (1, "lock:key", token)
        assert not lock.is_held

    def test_release_reports_lost_lock(self, mock_redis):
        mock_redis.eval.return_value = 0
        lock = DistributedLock("key", blocking=False)
        lock.acquire()

        assert lock.release() is False

    def test_release_without_acquire(self, mock_redis):
        assert DistributedLock("key").release() is False
        mock_redis.eval.assert_not_called()

    def test_extend(self, mock_redis):
        lock = DistributedLock("key", ttl=30, blocking=False)
        assert lock.extend() is False

        lock.acquire()
        assert lock.extend(90) is True
        assert mock_redis.eval.call_args[0][-1] == 90

    def test_context_manager_releases_on_exception(self, mock_redis):
        """Should release the lock when the body raises."""
        with pytest.raises(ValueError), DistributedLock("key", blocking=False):
            raise ValueError("boom")

        mock_redis.eval.assert_called_once()

    def test_refund_lock_key(self):
        assert refund_lock_key("123") == "refund:123"


@pytest.mark.django_db
class TestRowLocks:
    @pytest.mark.django_db(transaction=True)
    def test_lock_payment_requires_transaction(self):
        with pytest.raises(RuntimeError):
            lock_payment(PaymentFactory().pk)

    def test_lock_payment_returns_row(self):
        payment = PaymentFactory()

        with transaction.atomic():
            locked = lock_payment(payment.pk)

        assert locked.pk == payment.pk

    def test_lock_payment_unknown(self):
        with pytest.raises(PaymentNotFoundError), transaction.atomic():
            lock_payment("00000000-0000-0000-0000-000000000000")

    def test_check_version_detects_stale_copy(self):
        """Should reject a version read before another save."""
        payment = PaymentFactory()
        stale_version = payment.version
        payment.save(update_fields=["updated_at"])

        with pytest.raises(StaleRecordError) as exc_info, transaction.atomic():
            check_version(Payment, payment.pk, stale_version)

        assert exc_info.value.details["current_version"] == stale_version + 1

    def test_check_version_current(self):
        payment = PaymentFactory()

        with transaction.atomic():
            locked = lock_payment(payment.pk, expected_version=payment.version)

        assert locked.pk == payment.pk
