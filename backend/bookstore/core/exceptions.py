"""
Bookstore shipping exception hierarchy

Every exception carries a human-readable message, a machine-readable code and
a details dict so the same object can be logged, persisted onto an order and
returned from the API.

    ShippingError
    ├── ShipmentValidationError
    ├── CarrierAuthError
    ├── TransientCarrierError
    ├── CarrierBusinessError
    ├── InvalidTransitionError
    ├── OrderNotFoundError
    ├── ProfileNotFoundError
    ├── ShipmentNotBookedError
    └── LabelNotFoundError
"""
from typing import Any, Dict, List, Optional


class ShippingError(Exception):
    """Base exception for shipping-related errors."""

    default_code: str = "SHIPPING_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/persistence."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ShipmentValidationError(ShippingError):
    """Shipment fields are missing or malformed. Never retried."""
    default_code = "SHIPMENT_VALIDATION_FAILED"

    def __init__(self, errors: List[str], **kwargs):
        self.errors = list(errors)
        details = kwargs.pop("details", {})
        details["errors"] = self.errors
        super().__init__("; ".join(self.errors) or "Invalid shipment", details=details, **kwargs)


class CarrierAuthError(ShippingError):
    """Credential exchange with the carrier failed."""
    default_code = "CARRIER_AUTH_FAILED"


class TransientCarrierError(ShippingError):
    """Carrier returned 5xx or timed out and retries were exhausted."""
    default_code = "CARRIER_UNAVAILABLE"


class CarrierBusinessError(ShippingError):
    """Carrier accepted the call but rejected its content."""
    default_code = "CARRIER_REJECTED"

    def __init__(
        self,
        message: str,
        carrier_code: Optional[str] = None,
        raw: Any = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({"carrier_code": carrier_code, "raw": raw})
        self.carrier_code = carrier_code
        self.raw = raw
        super().__init__(message, details=details, **kwargs)


class InvalidTransitionError(ShippingError):
    """Requested state change is not allowed from the current shipment state."""
    default_code = "INVALID_SHIPMENT_TRANSITION"


class OrderNotFoundError(ShippingError):
    default_code = "ORDER_NOT_FOUND"


class ProfileNotFoundError(ShippingError):
    default_code = "PROFILE_NOT_FOUND"


class ShipmentNotBookedError(ShippingError):
    default_code = "SHIPMENT_NOT_BOOKED"


class LabelNotFoundError(ShippingError):
    default_code = "LABEL_NOT_FOUND"
