"""
Application error hierarchy.

Services raise these; views turn them into JSON error bodies with
``to_dict()`` and pick the status code with ``http_status_for()``.

    BaseApplicationError
    ├── ValidationError        400
    ├── NotFoundError          404
    ├── PermissionDeniedError  403
    ├── ConflictError          409
    ├── RateLimitError         429
    └── ExternalServiceError   502

Request parsing and authentication errors stay with DRF.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Root of the hierarchy.

    Attributes:
        message: Text safe to show to API clients
        error_code: Stable machine-readable code, e.g. "PAYMENT_NOT_FOUND"
        details: Extra context (ids, amounts, per-attempt errors)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Error body: ``error`` and ``error_code``, plus ``details`` when present."""
        body: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            body["details"] = self.details
        return body

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, error_code={self.error_code!r})"


class ValidationError(BaseApplicationError):
    """Input rejected by a service (bad amount, currency, credentials shape)."""

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """The resource's current state does not allow the operation."""

    default_error_code: str = "CONFLICT"


class RateLimitError(BaseApplicationError):
    default_error_code: str = "RATE_LIMIT_EXCEEDED"


class ExternalServiceError(BaseApplicationError):
    """
    A third-party call failed.

    The message is client-facing; provider payloads belong in the logs,
    not in ``details``.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"


HTTP_STATUS_BY_CATEGORY: tuple[tuple[type[BaseApplicationError], int], ...] = (
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (ConflictError, 409),
    (RateLimitError, 429),
    (ExternalServiceError, 502),
)


def http_status_for(exc: BaseApplicationError) -> int:
    """HTTP status for an application error; validation and anything else map to 400."""
    for category, status_code in HTTP_STATUS_BY_CATEGORY:
        if isinstance(exc, category):
            return status_code
    return 400
