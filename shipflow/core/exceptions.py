"""
Shipflow Exception Hierarchy

Structured exception classes for the fulfillment subsystem. All exceptions
include code, message, and details for audit trail and debugging.

Exception Hierarchy:
    ShipflowError
    ├── ValidationError      missing/invalid mandatory input (never retried)
    ├── NotFoundError        missing shipment/order/carrier/label
    ├── ConflictError        duplicate unique key
    ├── CarrierError         carrier API failure (retryable or terminal)
    │   └── CarrierTimeoutError
    └── UnknownError         unexpected failure
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class ShipflowError(Exception):
    """
    Base exception for all Shipflow errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context (shipment id, missing field, ...)
        severity: P0-P3 severity level
    """

    default_code: str = "SHIPFLOW_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(ShipflowError):
    """Mandatory input missing or invalid."""
    default_code = "VALIDATION_FAILED"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)


class NotFoundError(ShipflowError):
    """Referenced record does not exist."""
    default_code = "NOT_FOUND"
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        resource_id: Optional[Any] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "resource": resource,
            "resource_id": resource_id,
        })
        super().__init__(message, details=details, **kwargs)


class ConflictError(ShipflowError):
    """Duplicate unique key (tracking number, pickup, label)."""
    default_code = "CONFLICT"
    default_severity = "P3"


class CarrierError(ShipflowError):
    """
    Carrier API failure.

    `retryable` decides whether RetryExecutor re-attempts the call. HTTP 4xx
    responses are terminal; timeouts, 5xx, network errors and malformed
    responses are retryable.
    """
    default_code = "CARRIER_ERROR"
    default_severity = "P1"

    def __init__(
        self,
        message: str,
        carrier_code: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = True,
        **kwargs
    ):
        self.carrier_code = carrier_code
        self.status_code = status_code
        self.retryable = retryable
        details = kwargs.pop("details", {})
        details.update({
            "carrier_code": carrier_code,
            "status_code": status_code,
            "retryable": retryable,
        })
        super().__init__(message, details=details, **kwargs)


class CarrierTimeoutError(CarrierError):
    """Caller-level deadline reached between retry attempts."""
    default_code = "CARRIER_TIMEOUT"

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)


class UnknownError(ShipflowError):
    """Unexpected failure. Always reported."""
    default_code = "UNKNOWN_ERROR"
    default_severity = "P1"
