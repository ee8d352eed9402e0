"""
Locking helpers for settlement operations.

Two mechanisms, used at different seams:

- DistributedLock: Redis mutex keyed by a string. Refunds take
  ``refund:{payment_id}`` so two refund requests for the same payment
  never interleave their gateway call and ledger write.
- lock_payment: row lock (``SELECT ... FOR UPDATE``) on a Payment, with an
  optional optimistic version check. Used by the ledger service and
  webhook handlers inside ``transaction.atomic``.

Payout claims use neither: they are conditional UPDATEs on payout_status
(see PayoutOrchestrator.claim).

Usage:
    from payments.locks import DistributedLock, lock_payment

    with DistributedLock(refund_lock_key(payment.id), ttl=60):
        ...

    with transaction.atomic():
        payment = lock_payment(payment_id, expected_version=3)
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from payments.exceptions import LockAcquisitionError, PaymentNotFoundError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

    from payments.models import Payment

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=models.Model)

# Seconds between acquisition attempts in blocking mode
POLL_INTERVAL = 0.05


def refund_lock_key(payment_id: Any) -> str:
    return f"refund:{payment_id}"


# =============================================================================
# Distributed Lock
# =============================================================================


class DistributedLock:
    """
    Token-owned Redis lock with a TTL.

    The TTL releases the lock if the holder crashes; the random token
    makes sure only the holder can release or extend it.

    Args:
        key: Lock name, stored as ``lock:{key}``
        ttl: Seconds before Redis expires the lock
        blocking: Wait up to ``timeout`` seconds instead of failing at once
        timeout: Maximum wait in blocking mode

    Raises (from acquire / __enter__):
        LockAcquisitionError: Lock held elsewhere (retryable)
    """

    # Delete / expire only when the stored token is ours
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    end
    return 0
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    end
    return 0
    """

    def __init__(self, key: str, ttl: int = 30, blocking: bool = True, timeout: float = 10.0) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._client: Redis | None = None

    @property
    def redis(self) -> Redis:
        if self._client is None:
            self._client = get_redis_connection("default")
        return self._client

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def acquire(self) -> bool:
        token = uuid.uuid4().hex
        deadline = time.monotonic() + (self.timeout if self.blocking else 0)

        while True:
            if self.redis.set(self.key, token, nx=True, ex=self.ttl):
                self._token = token
                return True
            if time.monotonic() >= deadline:
                break
            time.sleep(POLL_INTERVAL)

        logger.info(
            "Lock busy",
            extra={"lock_key": self.key, "blocking": self.blocking, "timeout": self.timeout},
        )
        raise LockAcquisitionError(
            f"Could not acquire lock '{self.key}'",
            details={"key": self.key, "timeout": self.timeout if self.blocking else 0},
        )

    def release(self) -> bool:
        """Release the lock if still ours. Safe to call twice."""
        if self._token is None:
            return False
        released = self.redis.eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(released)

    def extend(self, ttl: int | None = None) -> bool:
        """Reset the remaining TTL (to ``ttl`` or the original TTL)."""
        if self._token is None:
            return False
        return bool(self.redis.eval(self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl))

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        self.release()
        return False


# =============================================================================
# Row Locks
# =============================================================================


def check_version(model_class: type[M], pk: Any, expected_version: int) -> M:
    """
    Lock a row and verify nobody saved it since ``expected_version`` was read.

    Must run inside ``transaction.atomic``; the row stays locked until the
    outer transaction ends.

    Raises:
        PaymentNotFoundError: No row with that pk
        StaleRecordError: The row exists with a different version
    """
    instance = model_class.objects.select_for_update().filter(pk=pk, version=expected_version).first()
    if instance is not None:
        return instance

    current = model_class.objects.filter(pk=pk).values_list("version", flat=True).first()
    name = model_class.__name__
    if current is None:
        raise PaymentNotFoundError(f"{name} {pk} not found", details={"pk": str(pk)})
    raise StaleRecordError(
        f"{name} {pk} was modified concurrently",
        details={"pk": str(pk), "expected_version": expected_version, "current_version": current},
    )


def lock_payment(payment_id: Any, expected_version: int | None = None) -> Payment:
    """
    Row-lock a Payment for the rest of the current transaction.

    Raises:
        PaymentNotFoundError: Unknown payment
        StaleRecordError: ``expected_version`` given and no longer current
    """
    from payments.models import Payment

    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("lock_payment must be called inside transaction.atomic()")

    if expected_version is not None:
        return check_version(Payment, payment_id, expected_version)

    try:
        return Payment.objects.select_for_update().get(pk=payment_id)
    except Payment.DoesNotExist as exc:
        raise PaymentNotFoundError(
            f"Payment {payment_id} not found",
            details={"payment_id": str(payment_id)},
        ) from exc


__all__ = [
    "DistributedLock",
    "check_version",
    "lock_payment",
    "refund_lock_key",
]
