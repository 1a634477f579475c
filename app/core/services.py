"""
Service-layer helpers.

Views deal with HTTP, models with persistence; the classes in
``payments.services`` hold the business rules and derive from
``BaseService`` for logging and transaction boundaries.

Two ways to report failure:
    - ServiceResult for outcomes the caller is expected to branch on,
      such as a processor whose credentials no longer verify
    - Exceptions from ``core.exceptions`` for everything the caller must
      not ignore (no active processor, refund above balance)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service call that may fail without raising.

    Truthy on success, so callers can write ``if registry.verify_processor(c):``.
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: str, error_code: str | None = None, data: T | None = None) -> ServiceResult[T]:
        return cls(success=False, data=data, error=error, error_code=error_code)

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Failed result carrying the exception's message and code.

        Application errors keep their own error_code; anything else is
        reported under the upper-cased class name.
        """
        code = error_code or getattr(exc, "error_code", None) or type(exc).__name__.upper()
        return cls(success=False, error=getattr(exc, "message", None) or str(exc), error_code=code)

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """Logging and transaction helpers shared by the payment services."""

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named ``<module>.<ServiceClass>`` so each service can be filtered."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """Explicit transaction boundary; rows written inside commit or roll back together."""
        with transaction.atomic():
            yield

    @classmethod
    def handle_exception(
        cls,
        exc: Exception,
        context: str = "",
        log_level: int = logging.ERROR,
    ) -> ServiceResult:
        """Log ``exc`` (with traceback at ERROR and above) and return it as a failed result."""
        cls.get_logger().log(
            log_level,
            f"{context}: {exc}" if context else str(exc),
            exc_info=log_level >= logging.ERROR,
            extra={"error_type": type(exc).__name__},
        )
        return ServiceResult.from_exception(exc)
