"""
Shipment request validation

Runs before any carrier call. All problems are collected and raised together
so an admin can fix an order in one pass.
"""
import re
from datetime import date
from typing import List, Optional

from bookstore.core.exceptions import ShipmentValidationError
from bookstore.modules.shipping.carriers.base import Party, ShipmentRequest

NAME_MAX_LENGTH = 30
ADDRESS_LINE_MAX_LENGTH = 30

_PINCODE_RE = re.compile(r"^\d{6}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_ANGLE_RE = re.compile(r"[<>]")


def is_valid_pincode(pincode: Optional[str]) -> bool:
    return bool(pincode) and bool(_PINCODE_RE.match(str(pincode).strip()))


def phone_digits(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", str(phone or ""))


def is_valid_mobile(phone: Optional[str]) -> bool:
    return 10 <= len(phone_digits(phone)) <= 15


def is_valid_name(name: Optional[str]) -> bool:
    if not name or not str(name).strip():
        return False
    value = str(name).strip()
    return len(value) <= NAME_MAX_LENGTH and not _ANGLE_RE.search(value)


def is_valid_address_line(line: Optional[str], max_length: Optional[int]) -> bool:
    if not line:
        return True
    value = str(line).strip()
    if _ANGLE_RE.search(value):
        return False
    return max_length is None or len(value) <= max_length


def is_valid_email(email: Optional[str]) -> bool:
    return bool(_EMAIL_RE.match(str(email or "").strip()))


def sanitize_text(value: Optional[str], max_length: int = ADDRESS_LINE_MAX_LENGTH) -> str:
    """Strip angle brackets and truncate, for fields carriers reject otherwise."""
    return _ANGLE_RE.sub("", str(value or "")).strip()[:max_length]


def _party_errors(role: str, party: Optional[Party], address_limit: Optional[int]) -> List[str]:
    if party is None:
        return [f"{role} details missing"]

    errors = []
    if not is_valid_pincode(party.pincode):
        errors.append(f"{role} pincode must be exactly 6 digits")
    if not is_valid_name(party.name):
        errors.append(f"{role} name: max {NAME_MAX_LENGTH} characters, remove < > characters")
    if not party.address or not str(party.address).strip():
        errors.append(f"{role} address is required")
    for label, line in (("address", party.address), ("address2", party.address2)):
        if not is_valid_address_line(line, address_limit):
            limit = f"max {address_limit} characters, " if address_limit else ""
            errors.append(f"{role} {label}: {limit}remove < > characters")
    if not party.city:
        errors.append(f"{role} city is required")
    if not party.state:
        errors.append(f"{role} state is required")
    if not is_valid_mobile(party.phone):
        errors.append(f"{role} mobile must be 10-15 digits")
    if party.email and not is_valid_email(party.email):
        errors.append(f"{role} email is invalid format")
    return errors


def collect_errors(
    request: ShipmentRequest,
    address_limit: Optional[int] = None,
    today: Optional[date] = None,
) -> List[str]:
    errors = []
    errors.extend(_party_errors("Shipper", request.consignor, address_limit))
    errors.extend(_party_errors("Consignee", request.consignee, address_limit))

    if not request.package or request.package.weight is None or request.package.weight <= 0:
        errors.append("Weight must be > 0")
    if request.declared_value is None or request.declared_value <= 0:
        errors.append("Declared value must be > 0")
    if request.cod_amount < 0:
        errors.append("COD amount cannot be negative")
    elif request.is_cod and request.declared_value and request.cod_amount > request.declared_value:
        errors.append("COD amount cannot exceed declared value")

    if request.pickup_date is not None:
        if request.pickup_date < (today or date.today()):
            errors.append("Pickup date must be today or in future")

    return errors


def validate_shipment_request(
    request: ShipmentRequest,
    address_limit: Optional[int] = None,
    today: Optional[date] = None,
) -> None:
    errors = collect_errors(request, address_limit=address_limit, today=today)
    if errors:
        raise ShipmentValidationError(errors, details={"reference": request.reference})
