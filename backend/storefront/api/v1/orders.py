"""
Order endpoints: checkout, history, cancellation and admin status changes
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from ...core.exceptions import CheckoutError
from ...core.security import get_current_admin, get_current_user
from ...database.order_db import Order
from ...models.order import (
    CancelOrderRequest,
    CheckoutRequest,
    CheckoutResponse,
    OrderListResponse,
    OrderResponse,
    UpdateOrderStatusRequest,
)
from ...models.payment import GatewayOrderDetails
from ...services.order_service import OrderService, get_order_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


def to_response(order: Order) -> OrderResponse:
    return OrderResponse.model_validate(order)


@router.post("/checkout", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    request: CheckoutRequest,
    response: Response,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    """
    Check out the current user's cart.

    COD orders are final on success. Razorpay orders carry the gateway
    order details needed to open the payment sheet on the client.
    """
    result = await service.checkout(current_user["user_id"], request)

    if result.order is None:
        raise CheckoutError(result.error or "Checkout failed", result.error_code or "CHECKOUT_FAILED")

    gateway = None
    if result.gateway and result.gateway.success:
        gateway = GatewayOrderDetails(
            key_id=result.gateway.key_id,
            gateway_order_id=result.gateway.gateway_order_id,
            amount=result.gateway.amount_minor,
            currency=result.gateway.currency,
            receipt=result.order.order_id,
        )

    if not result.success:
        # Order exists but the gateway order could not be created
        response.status_code = status.HTTP_502_BAD_GATEWAY

    return CheckoutResponse(
        success=result.success,
        order=to_response(result.order),
        gateway=gateway,
        error=result.error,
    )


@router.get("", response_model=OrderListResponse)
async def list_orders(
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = Query(None),
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    orders, next_cursor = await service.list_orders_for_user(current_user["user_id"], limit, cursor)
    return OrderListResponse(orders=[to_response(o) for o in orders], next_cursor=next_cursor)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    owner = None if current_user["role"] in ("admin", "super_admin") else current_user["user_id"]
    return to_response(await service.get_order(order_id, owner))


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    request: Optional[CancelOrderRequest] = None,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: OrderService = Depends(get_order_service),
):
    reason = request.reason if request else None
    order = await service.cancel_order(order_id, current_user["user_id"], reason)
    return to_response(order)


@router.patch("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: OrderService = Depends(get_order_service),
):
    logger.info(f"Admin {admin['user_id']} setting order {order_id} to {request.status.value}")
    return to_response(await service.update_status(order_id, request.status, request.note))
