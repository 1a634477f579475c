"""
Shared infrastructure for payflow: base model, service helpers, the
application error hierarchy and the cache-backed circuit breaker.

Models and mixins live in ``core.models`` / ``core.model_mixins`` and are
imported from there directly; importing them here would touch the app
registry before Django is set up.
"""

from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
    http_status_for,
)
from .services import BaseService, ServiceResult

__all__ = [
    "BaseService",
    "ServiceResult",
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "RateLimitError",
    "ExternalServiceError",
    "http_status_for",
]
