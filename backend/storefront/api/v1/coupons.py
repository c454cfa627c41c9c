"""
Coupon endpoints: customer preview and admin management
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from ...core.exceptions import NotFoundError
from ...core.money import round_money
from ...core.security import get_current_admin, get_current_user
from ...models.coupon import (
    CouponListResponse,
    CouponResponse,
    CreateCouponRequest,
    ValidateCouponRequest,
    ValidateCouponResponse,
)
from ...services.coupon_service import CouponService, get_coupon_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/validate", response_model=ValidateCouponResponse)
async def validate_coupon(
    request: ValidateCouponRequest,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: CouponService = Depends(get_coupon_service),
):
    """Preview a coupon against an order amount; nothing is claimed"""
    result = await service.validate_only(request.coupon_code, current_user["user_id"], request.order_amount)
    return ValidateCouponResponse(
        valid=result.valid,
        coupon_code=result.coupon.code if result.coupon else None,
        discount=result.discount,
        final_amount=result.final_amount if result.valid else round_money(request.order_amount),
        reason=result.reason,
    )


@router.post("", response_model=CouponResponse, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    request: CreateCouponRequest,
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: CouponService = Depends(get_coupon_service),
):
    coupon = await service.create_coupon(
        code=request.code,
        type=request.type,
        value=request.value,
        min_order_amount=request.min_order_amount,
        max_discount_amount=request.max_discount_amount,
        start_at=request.start_at,
        end_at=request.end_at,
        global_usage_limit=request.global_usage_limit,
        per_user_usage_limit=request.per_user_usage_limit,
        first_order_only=request.first_order_only,
        description=request.description,
    )
    logger.info(f"Coupon {coupon.code} created by {admin['user_id']}")
    return CouponResponse.model_validate(coupon)


@router.get("", response_model=CouponListResponse)
async def list_coupons(
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: CouponService = Depends(get_coupon_service),
):
    coupons = await service.list_active()
    return CouponListResponse(coupons=[CouponResponse.model_validate(c) for c in coupons])


@router.post("/{code}/deactivate")
async def deactivate_coupon(
    code: str,
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: CouponService = Depends(get_coupon_service),
):
    if not await service.deactivate(code):
        raise NotFoundError(f"Coupon '{code}' not found", {"code": code})
    logger.info(f"Coupon {code} deactivated by {admin['user_id']}")
    return {"success": True, "code": code.strip().upper()}
