"""Exception hierarchy for the ops core.

Expected conditions (missing records, unconfigured channels, malformed
persisted entries) are not exceptions. These types cover malformed caller
input and notification delivery failures inside the dispatcher.
"""

from typing import Any, Dict, Optional


class InsightError(Exception):
    """Base exception for all ops core errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(InsightError):
    """Raised when caller input fails validation."""

    def __init__(self, message: str = "Validation failed", field: Optional[str] = None):
        details = {"field": field} if field else None
        super().__init__(message, details)
        self.field = field


class DeliveryError(InsightError):
    """A notification delivery attempt failed.

    ``retryable`` marks transient failures (timeouts, 408/429/5xx responses,
    transport errors). Permanent failures are reported without retrying.
    """

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        status_code: Optional[int] = None,
    ):
        details = {"status_code": status_code} if status_code is not None else None
        super().__init__(message, details)
        self.retryable = retryable
        self.status_code = status_code
