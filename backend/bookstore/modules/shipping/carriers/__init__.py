"""
Carrier Registry and Factory

Each adapter registers itself with @register_carrier; CarrierFactory builds
one instance per carrier sharing a single TokenManager.
"""
from typing import Dict, Type
import logging

from bookstore.models.carrier_profile import CarrierCode
from bookstore.modules.shipping.carriers.base import BaseCarrier

logger = logging.getLogger(__name__)

_CARRIER_REGISTRY: Dict[CarrierCode, Type[BaseCarrier]] = {}


def register_carrier(carrier_code: CarrierCode):
    """
    Decorator to register a carrier implementation.

    Usage:
        @register_carrier(CarrierCode.SHIPROCKET)
        class ShiprocketCarrier(BaseCarrier):
            ...
    """
    def decorator(cls: Type[BaseCarrier]):
        _CARRIER_REGISTRY[carrier_code] = cls
        logger.debug(f"Registered carrier: {carrier_code.value} -> {cls.__name__}")
        return cls
    return decorator


class CarrierFactory:
    """Builds carrier clients and their authenticators."""

    @classmethod
    def build_all(cls, token_manager, **kwargs) -> Dict[CarrierCode, BaseCarrier]:
        return {code: carrier_cls(token_manager, **kwargs) for code, carrier_cls in _CARRIER_REGISTRY.items()}


def default_authenticators(transport=None) -> Dict:
    """One authenticator per registered carrier, configured from settings."""
    return {
        CarrierCode.SHIPROCKET: ShiprocketAuthenticator(transport=transport),
        CarrierCode.BLUEDART: BlueDartAuthenticator(transport=transport),
    }


# Import carriers to trigger registration
# These imports must be at the bottom to avoid circular imports
from bookstore.modules.shipping.carriers.shiprocket import ShiprocketCarrier, ShiprocketAuthenticator  # noqa: E402, F401
from bookstore.modules.shipping.carriers.bluedart import BlueDartCarrier, BlueDartAuthenticator  # noqa: E402, F401
