"""
API v1 Router Initialization
Exports all routers for the Storefront API v1
"""

from fastapi import APIRouter
from .orders import router as orders_router
from .payments import router as payments_router
from .coupons import router as coupons_router
from .returns import router as returns_router
from .delivery import router as delivery_router
from .inventory import router as inventory_router
from .gift_cards import router as gift_cards_router

# Create main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(orders_router)
api_v1_router.include_router(payments_router)
api_v1_router.include_router(coupons_router)
api_v1_router.include_router(returns_router)
api_v1_router.include_router(delivery_router)
api_v1_router.include_router(inventory_router)
api_v1_router.include_router(gift_cards_router)

__all__ = ["api_v1_router"]
