"""
Shipping module

Carrier adapters (Shiprocket, Blue Dart) behind the BaseCarrier interface,
plus the shared retrying transport and pre-flight validation.
"""
from bookstore.modules.shipping.carriers import CarrierFactory, default_authenticators

__all__ = ["CarrierFactory", "default_authenticators"]
