"""
Payment endpoints
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ...core.security import get_current_user
from ...models.payment import VerifyPaymentRequest, VerifyPaymentResponse
from ...services.order_service import OrderService, get_order_service

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    request: VerifyPaymentRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """Called by the client after the gateway checkout completes"""
    order = await service.verify_payment(current_user["user_id"], request)
    return VerifyPaymentResponse(
        success=True,
        order_id=order.order_id,
        payment_status=order.payment_status.value,
        status=order.status.value,
        coupon_usage_recorded=order.coupon_usage_recorded,
    )
