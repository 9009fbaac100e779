"""
Base Carrier Interface

Every carrier adapter translates the carrier-agnostic dataclasses below to
and from its own wire format. The orchestrator only ever sees these types,
so carrier field names stay inside the adapter modules.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

from bookstore.core.exceptions import CarrierAuthError, CarrierBusinessError
from bookstore.models.carrier_profile import CarrierCode, CarrierProfile
from bookstore.services.encryption import decrypt_secret

VOLUMETRIC_DIVISOR = 5000


def chargeable_weight(
    actual_weight: float,
    length: float,
    breadth: float,
    height: float,
    divisor: int = VOLUMETRIC_DIVISOR,
) -> float:
    """Greater of actual weight (kg) and volumetric weight L*B*H/divisor (cm)."""
    volumetric = (length * breadth * height) / divisor
    return round(max(actual_weight, volumetric), 3)


# =============================================================================
# Carrier-Agnostic Data Classes
# =============================================================================

@dataclass
class Party:
    """Consignor or consignee."""
    name: str
    phone: str
    address: str
    city: str
    state: str
    pincode: str
    email: Optional[str] = None
    address2: Optional[str] = None
    country: str = "India"
    customer_code: Optional[str] = None
    area_code: Optional[str] = None


@dataclass
class Package:
    """Package weight (kg) and dimensions (cm)."""
    weight: float
    length: float
    breadth: float
    height: float
    count: int = 1

    @property
    def volumetric_weight(self) -> float:
        return (self.length * self.breadth * self.height) / VOLUMETRIC_DIVISOR

    @property
    def chargeable_weight(self) -> float:
        return chargeable_weight(self.weight, self.length, self.breadth, self.height)


@dataclass
class LineItem:
    sku: str
    title: str
    qty: int
    unit_price: float
    tax: float = 0.0


@dataclass
class ShipmentRequest:
    """Normalized booking request built from an order."""
    reference: str
    consignor: Party
    consignee: Party
    package: Package
    declared_value: float
    cod_amount: float = 0.0
    product_code: Optional[str] = None
    sub_product_code: Optional[str] = None
    items: List[LineItem] = field(default_factory=list)
    order_date: Optional[datetime] = None
    pickup_date: Optional[date] = None
    pickup_location: Optional[str] = None

    @property
    def is_cod(self) -> bool:
        return self.cod_amount > 0


@dataclass
class ShipmentResult:
    awb_number: Optional[str]
    shipment_id: Optional[str] = None
    carrier_order_id: Optional[str] = None
    token_number: Optional[str] = None
    courier_name: Optional[str] = None
    raw_response: Any = None


@dataclass
class TrackingEvent:
    status: str
    location: Optional[str] = None
    timestamp: Optional[str] = None


@dataclass
class TrackingResult:
    reference: str
    status: Optional[str]
    location: Optional[str] = None
    last_update: Optional[str] = None
    delivered: bool = False
    events: List[TrackingEvent] = field(default_factory=list)
    raw_response: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "status": self.status,
            "location": self.location,
            "last_update": self.last_update,
            "delivered": self.delivered,
            "events": [
                {"status": e.status, "location": e.location, "timestamp": e.timestamp}
                for e in self.events
            ],
        }


@dataclass
class PickupRequest:
    references: List[str]
    pickup_date: date
    consignor: Optional[Party] = None
    # Sum of chargeable weights (kg) and volumetric weights of the pieces
    weight: float = 0.0
    volumetric_weight: float = 0.0
    piece_count: int = 1
    pickup_time: str = "1600"
    office_close_time: str = "1800"
    product_code: Optional[str] = None
    is_cod: bool = False


@dataclass
class PickupResult:
    confirmation_id: Optional[str]
    scheduled_date: date
    raw_response: Any = None


@dataclass
class CancelResult:
    cancelled: bool
    message: Optional[str] = None
    raw_response: Any = None


@dataclass
class DocumentResult:
    """Either a hosted URL or the document bytes."""
    url: Optional[str] = None
    content: Optional[bytes] = None
    content_type: str = "application/pdf"
    raw_response: Any = None


@dataclass
class NormalizedResponse:
    """Canonical envelope every carrier response is reduced to."""
    success: bool
    code: Optional[str] = None
    message: Optional[str] = None
    payload: Any = None
    raw: Any = None


GENERIC_FAILURE = "operation failed"


def profile_secret(profile: CarrierProfile, column: str) -> str:
    """Decrypted credential column; an unreadable value is a configuration error."""
    try:
        return decrypt_secret(getattr(profile, column))
    except ValueError:
        raise CarrierAuthError(
            "Stored credentials cannot be decrypted; re-save the profile",
            details={"profile_id": profile.id, "field": column},
        )


def pick(data: Any, *paths: str) -> Any:
    """
    First non-empty value found at any of the dotted paths.

    Numeric segments index into lists, e.g. "Status.0.StatusInformation".
    """
    for path in paths:
        node = data
        for part in path.split("."):
            if isinstance(node, dict):
                node = node.get(part)
            elif isinstance(node, list) and part.isdigit() and int(part) < len(node):
                node = node[int(part)]
            else:
                node = None
            if node is None:
                break
        if node not in (None, "", [], {}):
            return node
    return None


def pick_deep(data: Any, key: str, max_depth: int = 6) -> Any:
    """Breadth-first search for the first non-empty value stored under key."""
    queue = [(data, 0)]
    while queue:
        node, depth = queue.pop(0)
        if isinstance(node, dict):
            value = node.get(key)
            if value not in (None, "", [], {}):
                return value
            children = node.values()
        elif isinstance(node, list):
            children = node
        else:
            continue
        if depth < max_depth:
            queue.extend((child, depth + 1) for child in children)
    return None


# =============================================================================
# Base Carrier Interface
# =============================================================================

class BaseCarrier(ABC):
    """
    Abstract base class for shipping carriers.

    Methods take the CarrierProfile explicitly: one client instance serves
    every profile of its carrier and the token manager keys tokens by profile.
    """

    carrier_code: CarrierCode
    carrier_name: str

    @abstractmethod
    def validate(self, request: ShipmentRequest) -> None:
        """Raise ShipmentValidationError before any network call."""

    @abstractmethod
    async def create_shipment(self, profile: CarrierProfile, request: ShipmentRequest) -> ShipmentResult:
        pass

    @abstractmethod
    async def track_shipment(self, profile: CarrierProfile, reference: str) -> TrackingResult:
        pass

    @abstractmethod
    async def schedule_pickup(self, profile: CarrierProfile, request: PickupRequest) -> PickupResult:
        pass

    @abstractmethod
    async def cancel_shipment(self, profile: CarrierProfile, reference: str) -> CancelResult:
        pass

    @abstractmethod
    async def generate_label(self, profile: CarrierProfile, references: Sequence[str]) -> DocumentResult:
        pass

    async def generate_invoice(self, profile: CarrierProfile, references: Sequence[str]) -> DocumentResult:
        raise self._unsupported("invoice generation")

    async def generate_manifest(self, profile: CarrierProfile, references: Sequence[str]) -> DocumentResult:
        raise self._unsupported("manifest generation")

    @abstractmethod
    def normalize(self, body: Any, status_code: int = 200) -> NormalizedResponse:
        """Reduce a carrier response body to a NormalizedResponse."""

    def reference_for(self, shipment, operation: str) -> Optional[str]:
        """Identifier the carrier expects for an operation on an existing booking."""
        return shipment.booking_reference

    async def close(self) -> None:
        pass

    def _unsupported(self, operation: str) -> CarrierBusinessError:
        return CarrierBusinessError(
            f"{self.carrier_name} does not support {operation}",
            code="UNSUPPORTED_OPERATION",
        )
