"""
Coupon request/response schemas
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ValidateCouponRequest(BaseModel):
    coupon_code: Optional[str] = Field(None, description="Code to check; blank is reported as missing")
    order_amount: Decimal = Field(..., ge=0)


class ValidateCouponResponse(BaseModel):
    valid: bool
    coupon_code: Optional[str] = None
    discount: float = 0.0
    final_amount: float = 0.0
    reason: Optional[str] = None


class CreateCouponRequest(BaseModel):
    code: str = Field(..., min_length=3, max_length=40)
    type: Literal["percentage", "fixed"]
    value: Decimal = Field(..., gt=0)
    min_order_amount: Optional[Decimal] = Field(None, ge=0)
    max_discount_amount: Optional[Decimal] = Field(None, ge=0)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    global_usage_limit: Optional[int] = Field(None, gt=0)
    per_user_usage_limit: int = Field(1, ge=0, description="1 allows a single use per user; 0 is unlimited")
    first_order_only: bool = False
    description: Optional[str] = Field(None, max_length=500)

    @model_validator(mode='after')
    def check_ranges(self):
        if self.type == "percentage" and self.value > 100:
            raise ValueError("percentage coupons cannot exceed 100")
        if self.start_at and self.end_at and self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self


class CouponResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    coupon_id: str
    type: str
    value: float
    min_order_amount: Optional[float] = None
    max_discount_amount: Optional[float] = None
    start_at: Optional[str] = None
    end_at: Optional[str] = None
    global_usage_limit: Optional[int] = None
    per_user_usage_limit: int = 1
    used_count: int = 0
    first_order_only: bool = False
    is_active: bool = True
    description: Optional[str] = None
    created_at: Optional[str] = None


class CouponListResponse(BaseModel):
    coupons: List[CouponResponse]
