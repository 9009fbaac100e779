"""
Shipping Schemas

Pydantic models for the shipment and carrier-profile API.
"""
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator
import re

from bookstore.models.carrier_profile import CarrierCode


# ==================== Shipment Schemas ====================


class PackageOverrideIn(BaseModel):
    """Explicit package values; anything omitted falls back to the order/profile."""
    weight: Optional[float] = Field(None, gt=0, le=500, description="Weight in kg")
    length: Optional[float] = Field(None, gt=0, le=300, description="Length in cm")
    breadth: Optional[float] = Field(None, gt=0, le=300, description="Breadth in cm")
    height: Optional[float] = Field(None, gt=0, le=300, description="Height in cm")


class ShipmentCreateRequest(BaseModel):
    """Book shipments for a list of orders."""
    order_ids: List[int] = Field(..., min_length=1, max_length=200)
    provider: CarrierCode
    profile_id: Optional[int] = None
    package: Optional[PackageOverrideIn] = None
    pickup_date: Optional[date] = None
    assign_awb: bool = Field(False, description="Shiprocket: assign an AWB right after booking")
    courier_id: Optional[int] = None


class ShipmentBatchRequest(BaseModel):
    """Track or cancel shipments for a list of orders."""
    order_ids: List[int] = Field(..., min_length=1, max_length=200)
    provider: CarrierCode


class PickupRequestIn(BaseModel):
    order_ids: List[int] = Field(..., min_length=1, max_length=200)
    provider: CarrierCode
    pickup_date: date
    profile_id: Optional[int] = None


class DocumentRequest(BaseModel):
    order_ids: List[int] = Field(..., min_length=1, max_length=200)
    provider: CarrierCode = CarrierCode.SHIPROCKET


class AssignAwbRequest(BaseModel):
    courier_id: Optional[int] = None


class BatchItemError(BaseModel):
    order_id: int
    error: str
    code: Optional[str] = None


class BatchSummary(BaseModel):
    success: int
    skipped: int
    failed: int


class BatchResponse(BaseModel):
    """Per-order outcome of a bulk operation."""
    success: List[Dict[str, Any]] = []
    skipped: List[Dict[str, Any]] = []
    failed: List[BatchItemError] = []
    summary: BatchSummary


class PickupResponse(BaseModel):
    confirmation_id: Optional[str] = None
    scheduled_date: date
    order_ids: List[int]
    skipped: List[Dict[str, Any]] = []


class TrackingEventResponse(BaseModel):
    status: str
    location: Optional[str] = None
    timestamp: Optional[str] = None


class TrackingResponse(BaseModel):
    reference: str
    status: Optional[str] = None
    location: Optional[str] = None
    last_update: Optional[str] = None
    delivered: bool = False
    events: List[TrackingEventResponse] = []


class LabelResponse(BaseModel):
    url: Optional[str] = None
    file_name: Optional[str] = None


class DocumentResponse(BaseModel):
    url: str
    order_ids: List[int]


class ServiceabilityResponse(BaseModel):
    provider: CarrierCode
    pickup_pincode: Optional[str] = None
    delivery_pincode: str
    serviceable: bool
    couriers: List[Dict[str, Any]] = []
    details: Dict[str, Any] = {}


# ==================== Carrier Profile Schemas ====================


def _check_pincode(v: Optional[str]) -> Optional[str]:
    if v and not re.fullmatch(r"\d{6}", v.strip()):
        raise ValueError("Pincode must be 6 digits")
    return v.strip() if v else v


class CarrierProfileBase(BaseModel):
    label: Optional[str] = Field(None, max_length=100)
    login_id: Optional[str] = Field(None, max_length=255, description="Blue Dart login id / Shiprocket email")
    api_client_id: Optional[str] = Field(None, max_length=255)
    customer_code: Optional[str] = Field(None, max_length=50)
    area_code: Optional[str] = Field(None, max_length=10)
    pickup_location: Optional[str] = Field(None, max_length=100)

    consignor_name: Optional[str] = Field(None, max_length=100)
    consignor_phone: Optional[str] = Field(None, max_length=20)
    consignor_email: Optional[str] = Field(None, max_length=255)
    consignor_address: Optional[str] = Field(None, max_length=255)
    consignor_address2: Optional[str] = Field(None, max_length=255)
    consignor_city: Optional[str] = Field(None, max_length=100)
    consignor_state: Optional[str] = Field(None, max_length=100)
    consignor_pincode: Optional[str] = None

    default_weight: Optional[float] = Field(None, gt=0)
    default_length: Optional[float] = Field(None, gt=0)
    default_breadth: Optional[float] = Field(None, gt=0)
    default_height: Optional[float] = Field(None, gt=0)

    is_active: Optional[bool] = None
    is_default: Optional[bool] = None

    # Write-only secrets
    password: Optional[str] = Field(None, max_length=255)
    license_key: Optional[str] = Field(None, max_length=255)
    tracking_key: Optional[str] = Field(None, max_length=255)
    api_secret: Optional[str] = Field(None, max_length=255)

    @field_validator("consignor_pincode")
    @classmethod
    def validate_pincode(cls, v):
        return _check_pincode(v)

    @field_validator("consignor_phone")
    @classmethod
    def validate_phone(cls, v):
        if v:
            digits = re.sub(r'\D', '', v)
            if len(digits) < 10 or len(digits) > 15:
                raise ValueError("Phone number must be 10-15 digits")
        return v


class CarrierProfileCreate(CarrierProfileBase):
    carrier: CarrierCode
    label: str = Field(..., min_length=1, max_length=100)
    login_id: str = Field(..., min_length=1, max_length=255)


class CarrierProfileUpdate(CarrierProfileBase):
    pass


class CarrierProfileResponse(BaseModel):
    """Profile with secrets reduced to has_* flags."""
    id: int
    carrier: CarrierCode
    label: str
    login_id: Optional[str] = None
    api_client_id: Optional[str] = None
    customer_code: Optional[str] = None
    area_code: Optional[str] = None
    pickup_location: Optional[str] = None
    consignor_name: Optional[str] = None
    consignor_city: Optional[str] = None
    consignor_pincode: Optional[str] = None
    default_weight: Optional[float] = None
    default_length: Optional[float] = None
    default_breadth: Optional[float] = None
    default_height: Optional[float] = None
    is_default: bool
    is_active: bool
    has_password: bool = False
    has_license_key: bool = False
    has_api_secret: bool = False
    license_key_hint: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class CredentialTestResponse(BaseModel):
    ok: bool
    carrier: CarrierCode
    expires_at: Optional[datetime] = None
    message: Optional[str] = None
