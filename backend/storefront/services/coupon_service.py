"""
Coupon Service - validation preview, discount rules and claim bookkeeping

validate_only never mutates state; it tells the caller what a coupon would
do to an order amount. The atomic claim itself lives in CouponRepository.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from ..core.money import ZERO, round_money, clamp, to_decimal
from ..database.coupon_db import (
    Coupon, CouponRepository, normalize_code,
    COUPON_TYPE_PERCENTAGE, COUPON_TYPE_FIXED,
)

logger = logging.getLogger(__name__)


@dataclass
class CouponValidationResult:
    """Outcome of a read-only coupon check"""
    valid: bool
    discount: Decimal = ZERO
    final_amount: Decimal = ZERO
    reason: Optional[str] = None
    coupon: Optional[Coupon] = None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def compute_discount(coupon: Coupon, order_amount: Decimal) -> Decimal:
    """
    Discount for an order amount.

    Percentage coupons round half away from zero to 2 places and are capped
    by max_discount_amount; fixed coupons use their value. The result is
    clamped to [0, order_amount].
    """
    order_amount = to_decimal(order_amount)
    if coupon.type == COUPON_TYPE_PERCENTAGE:
        discount = round_money(order_amount * coupon.value / Decimal(100))
        if coupon.max_discount_amount is not None and discount > coupon.max_discount_amount:
            discount = coupon.max_discount_amount
    else:
        discount = coupon.value
    return round_money(clamp(discount, ZERO, max(order_amount, ZERO)))


class CouponService:
    """Coupon rules on top of the claim store"""

    def __init__(self, repository: Optional[CouponRepository] = None):
        self.repository = repository or CouponRepository()

    async def validate_only(
        self,
        code: Optional[str],
        user_id: str,
        order_amount: Decimal,
        now: Optional[datetime] = None,
    ) -> CouponValidationResult:
        """Check a coupon against an order amount without claiming it"""
        if not code or not code.strip():
            return CouponValidationResult(valid=False, reason="couponCode is required")

        coupon = await self.repository.get(normalize_code(code))
        if coupon is None or not coupon.is_active:
            return CouponValidationResult(valid=False, reason="Invalid coupon")

        now = now or datetime.now(timezone.utc)
        start_at, end_at = _parse_ts(coupon.start_at), _parse_ts(coupon.end_at)
        if start_at and now < start_at:
            return CouponValidationResult(valid=False, reason="Coupon not active yet", coupon=coupon)
        if end_at and now > end_at:
            return CouponValidationResult(valid=False, reason="Coupon expired", coupon=coupon)

        if coupon.global_usage_limit is not None and coupon.used_count >= coupon.global_usage_limit:
            return CouponValidationResult(valid=False, reason="Coupon usage limit reached", coupon=coupon)

        order_amount = to_decimal(order_amount)
        if coupon.min_order_amount is not None and order_amount < coupon.min_order_amount:
            return CouponValidationResult(
                valid=False,
                reason=f"Order must be at least {coupon.min_order_amount}",
                coupon=coupon
            )

        already_used = user_id in coupon.used_by
        if coupon.first_order_only and already_used:
            return CouponValidationResult(valid=False, reason="Coupon valid only on first order", coupon=coupon)
        if coupon.per_user_usage_limit == 1 and already_used:
            return CouponValidationResult(valid=False, reason="Coupon already used", coupon=coupon)

        discount = compute_discount(coupon, order_amount)
        return CouponValidationResult(
            valid=True,
            discount=discount,
            final_amount=round_money(order_amount - discount),
            coupon=coupon
        )

    async def try_claim(self, code: str, user_id: str) -> Optional[Coupon]:
        return await self.repository.try_claim(code, user_id)

    async def undo_claim(self, code: str, user_id: str) -> bool:
        return await self.repository.undo_claim(code, user_id)

    async def mark_used(
        self,
        code: str,
        user_id: str,
        order_id: str,
        discount: Optional[Decimal] = None,
    ) -> bool:
        """
        Claim and audit a coupon for a paid order whose usage was not yet
        recorded. False if the user already holds a claim on it.
        """
        if not code or not user_id:
            return False
        if await self.repository.has_user_used(code, user_id):
            return False

        coupon = await self.repository.try_claim(code, user_id)
        if coupon is None:
            return False
        await self.repository.record_usage(coupon, user_id, order_id, discount)
        return True

    async def record_usage(self, coupon: Coupon, user_id: str, order_id: str,
                           discount: Optional[Decimal]) -> None:
        await self.repository.record_usage(coupon, user_id, order_id, discount)

    async def create_coupon(
        self,
        code: str,
        type: str,
        value: Decimal,
        min_order_amount: Optional[Decimal] = None,
        max_discount_amount: Optional[Decimal] = None,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        global_usage_limit: Optional[int] = None,
        per_user_usage_limit: int = 1,
        first_order_only: bool = False,
        description: Optional[str] = None,
    ) -> Coupon:
        if type not in (COUPON_TYPE_PERCENTAGE, COUPON_TYPE_FIXED):
            raise ValueError(f"Unknown coupon type '{type}'")
        coupon = Coupon(
            code=normalize_code(code),
            coupon_id=str(uuid.uuid4()),
            type=type,
            value=to_decimal(value),
            min_order_amount=min_order_amount,
            max_discount_amount=max_discount_amount,
            start_at=start_at.isoformat() if start_at else None,
            end_at=end_at.isoformat() if end_at else None,
            global_usage_limit=global_usage_limit,
            per_user_usage_limit=per_user_usage_limit,
            first_order_only=first_order_only,
            description=description,
        )
        return await self.repository.create(coupon)

    async def deactivate(self, code: str) -> bool:
        return await self.repository.deactivate(code)

    async def list_active(self) -> List[Coupon]:
        return await self.repository.list_active()


def get_coupon_service() -> CouponService:
    return CouponService()
