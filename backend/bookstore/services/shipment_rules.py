"""
Shipment pricing and package rules

Pure functions that turn order data into the numbers a carrier booking
needs: collectable (COD) amount, product code and package dimensions.
"""
from dataclasses import dataclass
from typing import Optional

from bookstore.core.config import settings
from bookstore.models.carrier_profile import CarrierProfile
from bookstore.models.order import Order, PaymentStatus
from bookstore.modules.shipping.carriers.base import Package

UNPAID_STATUSES = {PaymentStatus.PENDING.value, "unpaid", "cod"}


def compute_cod_amount(order: Order) -> float:
    """
    Amount the carrier must collect on delivery.

    An explicit due-on-delivery amount wins. Otherwise partially paid orders
    collect the outstanding balance, paid orders nothing, and unpaid orders
    the full amount. Any other payment state collects nothing.
    """
    due = float(order.due_on_delivery_amount or 0)
    if due > 0:
        return round(due, 2)

    amount = float(order.amount or 0)
    status = (order.payment_status or PaymentStatus.PENDING.value).lower()

    if status == PaymentStatus.PARTIALLY_PAID.value:
        return round(max(amount - float(order.paid_amount or 0), 0), 2)
    if status == PaymentStatus.PAID.value:
        return 0.0
    if status in UNPAID_STATUSES:
        return round(amount, 2)
    return 0.0


def select_product_code(
    cod_amount: float,
    policy: Optional[str] = None,
    fixed_code: Optional[str] = None,
) -> str:
    """Blue Dart product code under the configured policy."""
    policy = (policy or settings.BLUEDART_PRODUCT_CODE_POLICY).lower()
    if policy == "fixed":
        return fixed_code or settings.BLUEDART_FIXED_PRODUCT_CODE
    if cod_amount > 0:
        return settings.BLUEDART_COD_PRODUCT_CODE
    return settings.BLUEDART_PREPAID_PRODUCT_CODE


@dataclass
class PackageOverride:
    weight: Optional[float] = None
    length: Optional[float] = None
    breadth: Optional[float] = None
    height: Optional[float] = None


def _first_positive(*values) -> Optional[float]:
    for value in values:
        if value is not None and float(value) > 0:
            return float(value)
    return None


def resolve_package(
    order: Order,
    profile: Optional[CarrierProfile] = None,
    override: Optional[PackageOverride] = None,
) -> Package:
    """
    Package weight and dimensions, field by field.

    Precedence: explicit override, then the order's own shipping values,
    then the carrier profile defaults, then the configured fallback.
    """
    override = override or PackageOverride()

    def resolve(field: str, fallback: float) -> float:
        return _first_positive(
            getattr(override, field),
            getattr(order, f"shipping_{field}", None),
            getattr(profile, f"default_{field}", None) if profile is not None else None,
        ) or fallback

    return Package(
        weight=resolve("weight", settings.DEFAULT_PACKAGE_WEIGHT_KG),
        length=resolve("length", settings.DEFAULT_PACKAGE_LENGTH_CM),
        breadth=resolve("breadth", settings.DEFAULT_PACKAGE_BREADTH_CM),
        height=resolve("height", settings.DEFAULT_PACKAGE_HEIGHT_CM),
    )
