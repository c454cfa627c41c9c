"""
Inventory schemas
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SetStockRequest(BaseModel):
    size: Optional[str] = None
    color: Optional[str] = None
    sku: Optional[str] = None
    quantity: int = Field(..., ge=0, description="Free quantity after the stock count")


class InventoryItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: str
    variant_key: str
    quantity: int
    reserved: int
    size: Optional[str] = None
    color: Optional[str] = None
    sku: Optional[str] = None
    updated_at: Optional[str] = None


class ProductInventoryResponse(BaseModel):
    product_id: str
    variants: List[InventoryItemResponse]
