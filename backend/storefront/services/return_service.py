"""
Return Service - return requests and the refund state machine

    Pending --approve--> Approved   (refund: created -> gateway status | failed)
    Pending --reject---> Rejected
    Pending --cancel---> Cancelled

Every transition is a conditional write on status == Pending, so two admins
acting on the same return cannot both win. Approval is persisted before the
gateway is called and is never reverted; a failed refund leaves the return
Approved with refund_status "failed".

Quantities are checked against the purchased quantity of each line only.
Earlier returns against the same order are not subtracted.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from ..core.exceptions import (
    AuthorizationError, InvalidStateTransition, ReturnNotFoundError, ValidationError,
)
from ..core.money import round_money
from ..database.order_db import LineItem, Order, OrderRepository
from ..database.return_db import ReturnOrder, ReturnRepository
from ..database.utils import utc_now_iso
from ..models.returns import CreateReturnRequest
from ..models.status import RefundStatus, ReturnStatus
from .payment_gateway import RazorpayGateway

logger = logging.getLogger(__name__)

NO_PAYMENT_ID_MESSAGE = "Original order has no gateway payment id; automatic refund not possible"


@dataclass
class ReturnResult:
    """Outcome of an approval and its refund attempt"""
    success: bool
    return_order: Optional[ReturnOrder] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    status_code: int = 200


def generate_return_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"REORD/{now.year}/{uuid.uuid4().hex[:6].upper()}"


def _match_line(order: Order, product_id: str, size: Optional[str]) -> Optional[LineItem]:
    for line in order.items:
        if line.product_id != product_id:
            continue
        if size is None or (line.size or "").lower() == size.lower():
            return line
    return None


class ReturnService:

    def __init__(
        self,
        returns: Optional[ReturnRepository] = None,
        orders: Optional[OrderRepository] = None,
        gateway: Optional[RazorpayGateway] = None,
    ):
        self.returns = returns or ReturnRepository()
        self.orders = orders or OrderRepository()
        self.gateway = gateway or RazorpayGateway()

    async def create_return(self, user_id: str, request: CreateReturnRequest) -> ReturnOrder:
        order = await self.orders.get_by_number(request.order_number)
        if order is None:
            raise ValidationError("Order not found", {"order_number": request.order_number})
        if order.user_id != user_id:
            raise AuthorizationError("Order belongs to another user")

        items: List[LineItem] = []
        # Entries naming the same order line count against its quantity together
        requested_per_line: Dict[Tuple[str, Optional[str], Optional[str]], int] = {}
        for requested in request.items:
            matched = _match_line(order, requested.product_id, requested.size)
            if matched is None:
                raise ValidationError(
                    f"Product {requested.product_id} not in order {order.order_number}",
                    {"product_id": requested.product_id}
                )
            if requested.quantity <= 0:
                raise ValidationError("Quantity must be greater than zero",
                                      {"product_id": requested.product_id})
            line_key = (matched.product_id, matched.size, matched.color)
            total_requested = requested_per_line.get(line_key, 0) + requested.quantity
            if total_requested > matched.quantity:
                raise ValidationError(
                    f"Requested return qty ({total_requested}) exceeds purchased qty "
                    f"({matched.quantity}) for {requested.product_id}",
                    {"product_id": requested.product_id, "size": matched.size,
                     "purchased": matched.quantity, "requested": total_requested}
                )
            requested_per_line[line_key] = total_requested

            items.append(LineItem(
                product_id=matched.product_id,
                product_name=matched.product_name,
                size=matched.size,
                color=matched.color,
                quantity=requested.quantity,
                unit_price=matched.unit_price,
                line_total=round_money(matched.unit_price * requested.quantity),
                currency=matched.currency,
                thumbnail_url=matched.thumbnail_url,
                is_returned=True,
                reason_for_return=requested.reason_for_return,
            ))

        return_order = ReturnOrder(
            return_id=str(uuid.uuid4()),
            return_number=generate_return_number(),
            order_id=order.order_id,
            order_number=order.order_number,
            user_id=user_id,
            items=items,
            reason=request.reason,
            images=list(request.images),
            currency=order.currency,
        )
        await self.returns.create(return_order)
        return return_order

    async def get(self, return_id: str, user_id: Optional[str] = None) -> ReturnOrder:
        return_order = await self.returns.get(return_id)
        if return_order is None or (user_id is not None and return_order.user_id != user_id):
            raise ReturnNotFoundError(return_id)
        return return_order

    async def list_for_user(
        self, user_id: str, limit: int = 20, cursor: Optional[str] = None
    ) -> Tuple[List[ReturnOrder], Optional[str]]:
        return await self.returns.list_for_user(user_id, limit=limit, cursor=cursor)

    async def list_by_status(
        self, status: ReturnStatus, limit: int = 50, cursor: Optional[str] = None
    ) -> Tuple[List[ReturnOrder], Optional[str]]:
        return await self.returns.list_by_status(status, limit=limit, cursor=cursor)

    async def list_for_order(self, order_number: str, user_id: Optional[str] = None) -> List[ReturnOrder]:
        returns = await self.returns.list_for_order(order_number)
        if user_id is not None:
            returns = [r for r in returns if r.user_id == user_id]
        return returns

    async def _transition(self, return_id: str, target: ReturnStatus, fields: dict) -> ReturnOrder:
        updated = await self.returns.transition(return_id, ReturnStatus.PENDING, {**fields, 'status': target})
        if updated is None:
            current = await self.returns.get(return_id)
            if current is None:
                raise ReturnNotFoundError(return_id)
            raise InvalidStateTransition("Return", return_id, current.status.value, target.value)
        return updated

    async def approve(
        self,
        return_id: str,
        admin_id: str,
        remarks: Optional[str] = None,
        use_instant_refund: bool = True,
    ) -> ReturnResult:
        """
        Approve a Pending return and refund the sum of its line totals.

        Raises:
            ReturnNotFoundError, InvalidStateTransition, ValidationError
        """
        return_order = await self.get(return_id)
        if return_order.status != ReturnStatus.PENDING:
            raise InvalidStateTransition("Return", return_id, return_order.status.value,
                                         ReturnStatus.APPROVED.value)

        order = await self.orders.get(return_order.order_id)
        if order is None:
            raise ValidationError("Original order not found", {"order_number": return_order.order_number})

        refund_amount = round_money(return_order.items_total)
        now = utc_now_iso()
        approved = await self._transition(return_id, ReturnStatus.APPROVED, {
            'admin_remarks': remarks,
            'processed_by': admin_id,
            'processed_at': now,
            'refund_amount': refund_amount,
            'refund_status': RefundStatus.CREATED,
            'refund_payment_id': order.razorpay_payment_id,
            'refund_idempotency_key': uuid.uuid4().hex,
        })
        logger.info(f"Return {approved.return_number} approved by {admin_id}, refund {refund_amount}")

        if not order.razorpay_payment_id:
            failed = await self.returns.update_fields(return_id, {
                'refund_status': RefundStatus.FAILED,
                'refund_gateway_raw': NO_PAYMENT_ID_MESSAGE,
            })
            logger.warning(f"Return {approved.return_number}: {NO_PAYMENT_ID_MESSAGE}")
            return ReturnResult(
                success=False,
                return_order=failed or approved,
                error=NO_PAYMENT_ID_MESSAGE,
                error_code="REFUND_NOT_POSSIBLE",
                status_code=400,
            )

        notes = {"return_id": approved.return_id, "return_number": approved.return_number}
        try:
            refund = await self.gateway.create_refund(
                order.razorpay_payment_id, refund_amount, use_instant_refund, notes, order.currency
            )
        except Exception as e:
            logger.exception(f"Unexpected error creating refund for return {return_id}")
            failed = await self.returns.update_fields(return_id, {
                'refund_status': RefundStatus.FAILED,
                'refund_gateway_raw': repr(e),
                'refund_created_at': utc_now_iso(),
            })
            return ReturnResult(success=False, return_order=failed or approved, error=str(e),
                                error_code="REFUND_FAILED", status_code=502)

        updated = await self.returns.update_fields(return_id, {
            'refund_id': refund.refund_id,
            'refund_status': (refund.status or RefundStatus.CREATED.value) if refund.success else RefundStatus.FAILED,
            'refund_gateway_raw': refund.raw,
            'is_refund_processed': refund.success,
            'refund_created_at': utc_now_iso(),
        }) or approved

        if not refund.success:
            logger.error(f"Refund failed for return {return_id}: {refund.error}")
            return ReturnResult(success=False, return_order=updated, error=refund.error,
                                error_code="REFUND_FAILED", status_code=502)

        return ReturnResult(success=True, return_order=updated)

    async def reject(self, return_id: str, admin_id: str, remarks: Optional[str] = None) -> ReturnOrder:
        rejected = await self._transition(return_id, ReturnStatus.REJECTED, {
            'admin_remarks': remarks,
            'processed_by': admin_id,
            'processed_at': utc_now_iso(),
        })
        logger.info(f"Return {rejected.return_number} rejected by {admin_id}")
        return rejected

    async def cancel(self, return_id: str, user_id: str) -> ReturnOrder:
        await self.get(return_id, user_id)
        cancelled = await self._transition(return_id, ReturnStatus.CANCELLED, {})
        logger.info(f"Return {cancelled.return_number} cancelled by user")
        return cancelled

    async def update_by_user(
        self,
        return_id: str,
        user_id: str,
        reason: Optional[str] = None,
        images: Optional[List[str]] = None,
    ) -> ReturnOrder:
        """Edit reason/images while the return is still Pending"""
        return_order = await self.get(return_id, user_id)
        fields = {}
        if reason is not None:
            fields['reason'] = reason
        if images is not None:
            fields['images'] = images

        updated = await self.returns.transition(return_id, ReturnStatus.PENDING, fields)
        if updated is None:
            raise InvalidStateTransition("Return", return_id, return_order.status.value,
                                         ReturnStatus.PENDING.value,
                                         {"reason": "Only pending returns can be edited"})
        return updated


def get_return_service() -> ReturnService:
    return ReturnService()
