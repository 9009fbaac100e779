from bookstore.models.order import Order, PaymentStatus
from bookstore.models.carrier_profile import CarrierProfile, CarrierCode
from bookstore.models.shipment import OrderShipment, ShipmentLog, ShipmentState, LabelStatus

__all__ = [
    "Order",
    "PaymentStatus",
    "CarrierProfile",
    "CarrierCode",
    "OrderShipment",
    "ShipmentLog",
    "ShipmentState",
    "LabelStatus",
]
