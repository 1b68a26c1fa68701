"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with a per-service logger

Pattern Comparison:
    - Exceptions: domain services raise core.exceptions subclasses
    - ServiceResult: boundaries that must not raise (webhook handlers,
      Celery jobs) convert exceptions with ServiceResult.from_exception()

Usage:
    from core.services import BaseService, ServiceResult

    class HoldService(BaseService):
        @classmethod
        def release(cls, order_id):
            with transaction.atomic():
                hold = PaymentHold.objects.select_for_update().get(...)
                ...
            cls.get_logger().info(f"Released hold {hold.id}")
            return hold

    # In a webhook handler
    try:
        hold = HoldService.release(order_id)
    except BaseApplicationError as e:
        return ServiceResult.from_exception(e)
    return ServiceResult.success(hold)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code
        errors: Field-level errors for validation failures
        details: Extra context carried over from a BaseApplicationError
        retryable: Whether the caller may retry the same operation later
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)
    details: dict[str, Any] | None = field(default=None)
    retryable: bool = True

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
        retryable: bool = True,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Example:
            return ServiceResult.failure(
                "Payment reference not found",
                error_code="PAYMENT_NOT_FOUND",
            )
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
            retryable=retryable,
        )

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Create a failed result from an exception.

        Application errors keep their own message, code, and details;
        anything else is reported with the exception class name as the code.
        """
        if isinstance(exc, BaseApplicationError):
            return cls(
                success=False,
                error=exc.message,
                error_code=error_code or exc.error_code,
                details=exc.details or None,
                retryable=getattr(exc, "is_retryable", True),
            )
        return cls(
            success=False,
            error=str(exc),
            error_code=error_code or exc.__class__.__name__.upper(),
        )

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Services are stateless: use @classmethod or @staticmethod only.
    Raise core.exceptions subclasses for failures the caller must handle.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

