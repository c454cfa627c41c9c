"""
Shipment, courier API and courier webhook schemas
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .status import DeliveryStatus, ReferenceType


class ShipmentRequest(BaseModel):
    """Create a courier shipment for an order, buyback or return"""
    reference_id: str = Field(..., min_length=1, description="Id of the order, buyback or return")
    reference_type: ReferenceType

    pickup_name: Optional[str] = None
    pickup_phone: Optional[str] = None
    pickup_address: Optional[str] = None
    pickup_pincode: Optional[str] = None

    drop_name: str = Field(..., min_length=1)
    drop_phone: Optional[str] = None
    drop_address: str = Field(..., min_length=1)
    drop_city: Optional[str] = None
    drop_state: Optional[str] = None
    drop_pincode: Optional[str] = None

    weight: Decimal = Field(..., gt=0, description="Weight in grams")
    total_amount: Optional[Decimal] = Field(None, ge=0)
    is_cod: bool = False
    cod_amount: Decimal = Field(Decimal("0"), ge=0)

    is_international: bool = False
    country_code: Optional[str] = None
    commodity: Optional[str] = None
    declared_value: Optional[Decimal] = Field(None, ge=0)
    currency: Optional[str] = None

    @model_validator(mode='after')
    def check_destination(self):
        if self.is_international and not self.country_code:
            raise ValueError("country_code is required for international shipments")
        if not self.is_international and not self.drop_pincode:
            raise ValueError("drop_pincode is required for domestic shipments")
        return self

    @property
    def is_reverse(self) -> bool:
        return self.reference_type in (ReferenceType.RETURN, ReferenceType.BUYBACK)


class DeliveryDetailsResponse(BaseModel):
    awb: str
    courier: str
    status: DeliveryStatus
    type: ReferenceType
    is_cod: bool = False
    cod_amount: float = 0.0
    is_international: bool = False
    created_at: str
    updated_at: str


class PickupRequest(BaseModel):
    pickup_date: Optional[date] = Field(None, description="Defaults to today (UTC)")


class DeliveryWebhookPayload(BaseModel):
    """Status push from the courier"""
    awb: str = Field(..., min_length=1)
    status: str = Field(..., min_length=1, description="Courier status text, e.g. 'In Transit'")
    status_code: Optional[str] = None
    status_datetime: Optional[str] = None
    location: Optional[str] = None


class DeliveryWebhookResponse(BaseModel):
    success: bool
    awb: str
    reference_type: ReferenceType
    reference_id: str
    status: DeliveryStatus


class CourierResponse(BaseModel):
    """Courier payload passed through to the caller"""
    success: bool = True
    data: Dict[str, Any] = Field(default_factory=dict)


class CourierPackage(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    waybill: Optional[str] = None
    status: Optional[str] = None
    remarks: Optional[Any] = None


class CourierShipmentResponse(BaseModel):
    """Body of a shipment creation call"""
    model_config = ConfigDict(extra="allow")

    success: bool = False
    packages: List[CourierPackage] = Field(default_factory=list)
    rmk: Optional[str] = None


class CourierTrackResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    ShipmentData: List[Dict[str, Any]] = Field(default_factory=list)


class CourierPincodeResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    delivery_codes: List[Dict[str, Any]] = Field(default_factory=list)


class CourierActionResponse(BaseModel):
    """Cancel and pickup bodies; any JSON object is accepted"""
    model_config = ConfigDict(extra="allow")
