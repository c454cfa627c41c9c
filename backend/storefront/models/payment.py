"""
Payment schemas: API requests and the payment gateway's wire types
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class VerifyPaymentRequest(BaseModel):
    """Client callback after completing the gateway checkout"""
    order_id: str = Field(..., min_length=1)
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class VerifyPaymentResponse(BaseModel):
    success: bool
    order_id: str
    payment_status: str
    status: str
    coupon_usage_recorded: bool = False


class GatewayOrderRequest(BaseModel):
    amount: int
    currency: str
    receipt: str
    payment_capture: int = 1


class GatewayOrderResponse(BaseModel):
    """Body of a successful order creation"""
    model_config = ConfigDict(extra="allow")

    id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None


class GatewayRefundRequest(BaseModel):
    amount: int
    speed: str = "normal"
    notes: Dict[str, str] = Field(default_factory=dict)


class GatewayRefundResponse(BaseModel):
    """Body of a successful refund creation"""
    model_config = ConfigDict(extra="allow")

    id: str
    payment_id: Optional[str] = None
    amount: int
    currency: Optional[str] = None
    status: str
    speed_processed: Optional[str] = None


class GatewayErrorBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    code: Optional[str] = None
    description: Optional[str] = None
    reason: Optional[str] = None


class GatewayErrorResponse(BaseModel):
    error: GatewayErrorBody


class GatewayOrderDetails(BaseModel):
    """Returned to the client to open the gateway checkout"""
    key_id: Optional[str] = None
    gateway_order_id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    raw: Optional[Dict[str, Any]] = None
