"""
Inventory endpoints: stock counts per product variant
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...database.inventory_db import InventoryLedger, Variant
from ...core.security import get_current_admin
from ...models.inventory import InventoryItemResponse, ProductInventoryResponse, SetStockRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["inventory"])


def get_inventory_ledger() -> InventoryLedger:
    return InventoryLedger()


@router.put("/{product_id}", response_model=InventoryItemResponse)
async def set_stock(
    product_id: str,
    request: SetStockRequest,
    admin: Dict[str, Any] = Depends(get_current_admin),
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    """Overwrite the free quantity of one variant after a stock count"""
    variant = Variant(size=request.size, color=request.color, sku=request.sku)
    item = await ledger.set_stock(product_id, variant, request.quantity)
    logger.info(f"Stock for {product_id}/{variant.key} set to {request.quantity} by {admin['user_id']}")
    return InventoryItemResponse.model_validate(item)


@router.get("/{product_id}", response_model=ProductInventoryResponse)
async def get_stock(
    product_id: str,
    ledger: InventoryLedger = Depends(get_inventory_ledger),
):
    items = await ledger.list_for_product(product_id)
    return ProductInventoryResponse(
        product_id=product_id,
        variants=[InventoryItemResponse.model_validate(i) for i in items],
    )
