"""
Return order request/response schemas
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .order import LineItemResponse
from .status import ReturnStatus


class ReturnItemRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    size: Optional[str] = Field(None, description="Disambiguates products bought in several sizes")
    quantity: int = Field(..., description="Units to return, at most the purchased quantity")
    reason_for_return: Optional[str] = Field(None, max_length=500)


class CreateReturnRequest(BaseModel):
    order_number: str = Field(..., min_length=1)
    items: List[ReturnItemRequest] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=1000)
    images: List[str] = Field(default_factory=list, description="Image URLs supporting the return")


class UpdateReturnRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
    images: Optional[List[str]] = None


class AdminApproveRequest(BaseModel):
    admin_remarks: Optional[str] = Field(None, max_length=1000)
    use_instant_refund: bool = True


class AdminRejectRequest(BaseModel):
    admin_remarks: Optional[str] = Field(None, max_length=1000)


class ReturnResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    return_id: str
    return_number: str
    order_id: str
    order_number: str
    user_id: str
    status: ReturnStatus
    items: List[LineItemResponse]
    reason: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    currency: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_status: Optional[str] = None
    refund_id: Optional[str] = None
    is_refund_processed: bool = False
    refund_created_at: Optional[str] = None
    admin_remarks: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[str] = None
    delivery_details: Optional[dict] = None
    awb: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None


class ReturnListResponse(BaseModel):
    returns: List[ReturnResponse]
    next_cursor: Optional[str] = None


class ApproveReturnResponse(BaseModel):
    success: bool
    return_order: ReturnResponse
    refund_id: Optional[str] = None
    refund_status: Optional[str] = None
    error: Optional[str] = None
