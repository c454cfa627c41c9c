"""
Order request/response schemas
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.config import settings
from .payment import GatewayOrderDetails
from .status import OrderStatus, PaymentMethod, PaymentStatus


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1, description="Recipient name")
    phone: str = Field(..., min_length=6, description="Recipient phone number")
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    zip: str = Field(..., min_length=3, description="PIN / postal code")
    country: str = Field(default_factory=lambda: settings.DEFAULT_COUNTRY, description="ISO country code")


class CheckoutRequest(BaseModel):
    """Checkout of the current user's cart"""
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = Field(PaymentMethod.COD, description="COD or razorpay")
    currency: str = Field(default_factory=lambda: settings.DEFAULT_CURRENCY, min_length=3, max_length=3)
    coupon_code: Optional[str] = Field(None, description="Coupon to apply to the subtotal")
    loyalty_discount_amount: Optional[Decimal] = Field(
        None, ge=0, description="Loyalty points converted to an amount by the client"
    )
    gift_card_number: Optional[str] = Field(None, description="Gift card to redeem against the total")
    email: Optional[str] = None

    @field_validator('currency')
    @classmethod
    def upper_currency(cls, v):
        return v.upper()

    @field_validator('coupon_code', 'gift_card_number')
    @classmethod
    def blank_to_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v.strip().upper() if v else v


class LineItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    product_name: str = ""
    size: Optional[str] = None
    color: Optional[str] = None
    quantity: int
    unit_price: float
    line_total: float
    currency: str
    thumbnail_url: Optional[str] = None


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: str
    order_number: str
    user_id: str
    items: List[LineItemResponse]
    subtotal: float
    shipping: float
    tax: float
    discount: float
    total: float
    currency: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    shipping_address: Optional[Dict[str, Any]] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_discount: Optional[float] = None
    coupon_usage_recorded: bool = False
    loyalty_discount_amount: Optional[float] = None
    gift_card_number: Optional[str] = None
    gift_card_applied_amount: Optional[float] = None
    delivery_details: Optional[Dict[str, Any]] = None
    awb: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None


class CheckoutResponse(BaseModel):
    success: bool
    order: Optional[OrderResponse] = None
    gateway: Optional[GatewayOrderDetails] = Field(
        None, description="Details for completing a gateway payment on the client"
    )
    error: Optional[str] = None


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    next_cursor: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus
    note: Optional[str] = Field(None, max_length=500, description="Admin note stored on the order")
