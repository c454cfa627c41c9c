"""
Gift card schemas
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class IssueGiftCardRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: str = Field("INR", min_length=3, max_length=3)
    issued_order_id: Optional[str] = None
    owner_user_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)


class GiftCardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    gift_card_number: str
    balance: float
    currency: str
    is_active: bool
    issued_order_id: Optional[str] = None
    owner_user_id: Optional[str] = None
    issued_at: str
    redeemed_at: Optional[str] = None
