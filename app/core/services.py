"""
Service layer primitives shared by the domain apps.

- ServiceResult: explicit success/failure value for expected outcomes
- BaseService: logging and transaction helpers for classmethod services

Expected failures (a refund above the refundable balance, an admin action
on a payout in the wrong state) come back as ``ServiceResult.failure``.
Unexpected failures (gateway outages, database errors) are raised.

Usage:
    from core.services import BaseService, ServiceResult

    class PayoutAdminService(BaseService):
        @classmethod
        def hold(cls, payment_id) -> ServiceResult[Payment]:
            with cls.atomic():
                ...
            return ServiceResult.success(payment)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result payload when successful
        error: Human-readable error message when failed
        error_code: Machine-readable error code
        errors: Optional field-level error details
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Example:
            return ServiceResult.failure(
                "Refund exceeds refundable balance",
                error_code="INVALID_REFUND_AMOUNT",
            )
        """
        return cls(success=False, error=error, error_code=error_code, errors=errors)

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Build a failed result from an exception.

        Application errors keep their own error code; anything else falls
        back to the upper-cased class name.
        """
        code = error_code or getattr(exc, "error_code", None) or exc.__class__.__name__.upper()
        message = getattr(exc, "message", None) or str(exc)
        return cls(success=False, error=message, error_code=code)

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for stateless classmethod services.

    Provides a per-class logger, an explicit transaction boundary and
    a uniform way of turning exceptions into ServiceResult failures.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named ``<module>.<ClassName>`` for easy filtering."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Run the enclosed block in a database transaction.

        Example:
            with cls.atomic():
                payment = Payment.objects.select_for_update().get(pk=pk)
                Transaction.objects.create(payment=payment, ...)
        """
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """
        Log an exception and convert it to a failed ServiceResult.

        Args:
            exc: The caught exception
            context: Short description of what was being attempted
            log_level: Logging level for the record (default ERROR)
        """
        message = f"{context}: {exc}" if context else str(exc)
        cls.get_logger().log(log_level, message, exc_info=True)
        return ServiceResult.from_exception(exc)
