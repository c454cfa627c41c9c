"""
Order Service - checkout saga, payment verification and order lifecycle

Checkout runs as a saga over single-item conditional writes instead of a
database transaction:

1. Persist the order (Pending / Pending)          undo: delete it
2. Decrement stock for every line item            undo: increment back
3. Claim the coupon, if any                       undo: release the claim
   and record the claim on the order
4. Redeem the gift card, if any                   undo: credit it back
   and record the applied amount on the order

If any step fails, the completed steps are undone in reverse order and the
caller gets a failure result, leaving the system as if checkout never
happened. Loyalty deduction, cart clearing and the gateway order come after
the saga and are not rolled back. A Razorpay order whose total is fully
covered is marked Paid without a gateway order.
"""

import functools
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from ..core.config import settings
from ..core.exceptions import (
    ConflictError, DatabaseError, InvalidStateTransition, OrderNotFoundError, PaymentError,
)
from ..core.money import ZERO, round_money
from ..core.saga import Saga
from ..database.cart_db import CartRepository
from ..database.catalog_db import ProductCatalog
from ..database.counter_db import CounterRepository
from ..database.inventory_db import InventoryLedger, Variant
from ..database.order_db import LineItem, Order, OrderRepository
from ..database.user_db import UserRepository
from ..database.utils import utc_now_iso
from ..models.order import CheckoutRequest
from ..models.payment import VerifyPaymentRequest
from ..models.status import (
    CANCELLABLE_ORDER_STATUSES, OrderStatus, PaymentMethod, PaymentStatus,
)
from .coupon_service import CouponService
from .gift_card_service import GiftCardResult, GiftCardService
from .payment_gateway import GatewayOrderResult, RazorpayGateway

logger = logging.getLogger(__name__)

STEP_PERSIST = "persist_order"
STEP_DECREMENT = "decrement"
STEP_COUPON = "claim_coupon"
STEP_GIFT_CARD = "apply_gift_card"
STEP_RECORD_COUPON = "record_coupon"
STEP_RECORD_GIFT_CARD = "record_gift_card"


@dataclass
class CheckoutResult:
    """Result of a checkout attempt"""
    success: bool
    order: Optional[Order] = None
    gateway: Optional[GatewayOrderResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


def _failure(error: str, error_code: str) -> CheckoutResult:
    logger.info(f"Checkout rejected ({error_code}): {error}")
    return CheckoutResult(success=False, error=error, error_code=error_code)


class OrderService:
    """Checkout and order lifecycle"""

    def __init__(
        self,
        orders: Optional[OrderRepository] = None,
        ledger: Optional[InventoryLedger] = None,
        catalog: Optional[ProductCatalog] = None,
        carts: Optional[CartRepository] = None,
        users: Optional[UserRepository] = None,
        counters: Optional[CounterRepository] = None,
        coupons: Optional[CouponService] = None,
        gift_cards: Optional[GiftCardService] = None,
        gateway: Optional[RazorpayGateway] = None,
    ):
        self.orders = orders or OrderRepository()
        self.ledger = ledger or InventoryLedger()
        self.catalog = catalog or ProductCatalog(ledger=self.ledger)
        self.carts = carts or CartRepository()
        self.users = users or UserRepository()
        self.counters = counters or CounterRepository()
        self.coupons = coupons or CouponService()
        self.gift_cards = gift_cards or GiftCardService()
        self.gateway = gateway or RazorpayGateway()

    async def _build_line_items(
        self, user_id: str, currency: str, country: Optional[str]
    ) -> Tuple[List[LineItem], Decimal, Optional[str]]:
        """Price the cart; returns (items, shipping, error)"""
        lines = await self.carts.get_line_items(user_id)
        if not lines:
            return [], ZERO, "Cart is empty"

        items: List[LineItem] = []
        shipping = ZERO
        for line in lines:
            if line.quantity <= 0:
                return [], ZERO, f"Invalid quantity for product {line.product_id}"

            product = await self.catalog.get(line.product_id)
            if product is None or not product.is_active:
                return [], ZERO, f"Product not found: {line.product_id}"

            unit_price = product.price_for(line.size, currency)
            if unit_price is None:
                return [], ZERO, (
                    f"Price not found for product {line.product_id}, "
                    f"size {line.size}, currency {currency}"
                )

            available = await self.catalog.get_available_qty(line.product_id, line.variant)
            if available < line.quantity:
                return [], ZERO, f"Insufficient stock for product {line.product_id}, size {line.size}"

            items.append(LineItem(
                product_id=line.product_id,
                product_name=product.name,
                size=line.size,
                color=line.color,
                quantity=line.quantity,
                unit_price=unit_price,
                line_total=round_money(unit_price * line.quantity),
                currency=currency,
                thumbnail_url=product.thumbnail_url,
            ))
            shipping += product.shipping_for(country, currency) * line.quantity

        return items, round_money(shipping), None

    async def checkout(self, user_id: str, request: CheckoutRequest) -> CheckoutResult:
        """
        Turn the user's cart into an order.

        Returns:
            CheckoutResult. A failed gateway order still returns the
            persisted order with payment_status Failed and the gateway error.
        """
        currency = request.currency
        country = request.shipping_address.country

        items, shipping, error = await self._build_line_items(user_id, currency, country)
        if error:
            return _failure(error, "CART_INVALID")

        subtotal = round_money(sum((i.line_total for i in items), ZERO))
        tax = ZERO

        coupon = None
        coupon_discount = ZERO
        if request.coupon_code:
            validation = await self.coupons.validate_only(request.coupon_code, user_id, subtotal)
            if not validation.valid:
                return _failure(validation.reason, "COUPON_INVALID")
            coupon = validation.coupon
            coupon_discount = validation.discount

        loyalty_discount = round_money(request.loyalty_discount_amount or ZERO)
        if loyalty_discount > ZERO and settings.VERIFY_LOYALTY_BALANCE:
            balance = await self.users.get_loyalty_balance(user_id)
            if balance < loyalty_discount:
                return _failure("Insufficient loyalty points", "LOYALTY_INSUFFICIENT")

        discount = round_money(coupon_discount + loyalty_discount)
        total = round_money(max(ZERO, subtotal + shipping + tax - discount))

        now = datetime.now(timezone.utc)
        order = Order(
            order_id=str(uuid.uuid4()),
            order_number=await self.counters.next_order_number(now.year),
            user_id=user_id,
            items=items,
            subtotal=subtotal,
            shipping=shipping,
            tax=tax,
            discount=discount,
            total=total,
            currency=currency,
            payment_method=request.payment_method,
            payment_status=PaymentStatus.PENDING,
            status=OrderStatus.PENDING,
            shipping_address=request.shipping_address.model_dump(),
            country=country,
            email=request.email,
            coupon_id=coupon.coupon_id if coupon else None,
            coupon_code=coupon.code if coupon else None,
            coupon_discount=coupon_discount if coupon else None,
            loyalty_discount_amount=loyalty_discount if loyalty_discount > ZERO else None,
            gift_card_number=request.gift_card_number,
        )

        gift_card_outcome: List[GiftCardResult] = []
        saga = Saga(f"checkout:{order.order_id}")
        saga.step(
            STEP_PERSIST,
            functools.partial(self.orders.create, order),
            functools.partial(self.orders.delete, order.order_id),
        )
        for item in items:
            variant = Variant(size=item.size, color=item.color)
            saga.step(
                f"{STEP_DECREMENT}:{item.product_id}:{variant.key}",
                functools.partial(self.ledger.decrement, item.product_id, variant, item.quantity),
                functools.partial(self.ledger.increment, item.product_id, variant, item.quantity),
            )
        if coupon:
            saga.step(
                STEP_COUPON,
                functools.partial(self.coupons.try_claim, coupon.code, user_id),
                functools.partial(self.coupons.undo_claim, coupon.code, user_id),
            )

            # Rolled back by deleting the order
            async def record_coupon():
                applied_at = utc_now_iso()
                stored = await self.orders.update_fields(order.order_id, {
                    'coupon_applied_at': applied_at,
                    'coupon_usage_recorded': True,
                })
                if stored is not None:
                    order.coupon_applied_at = applied_at
                    order.coupon_usage_recorded = True
                return stored

            saga.step(STEP_RECORD_COUPON, record_coupon)
        if request.gift_card_number and total > ZERO:
            async def apply_gift_card():
                outcome = await self.gift_cards.apply(request.gift_card_number, total, currency)
                gift_card_outcome.append(outcome)
                return outcome if outcome.success else None

            async def credit_gift_card():
                await self.gift_cards.credit_back(request.gift_card_number, gift_card_outcome[-1].applied_amount)

            async def record_gift_card():
                applied = gift_card_outcome[-1].applied_amount
                discount_with_card = round_money(order.discount + applied)
                total_with_card = round_money(max(ZERO, order.total - applied))
                stored = await self.orders.update_fields(order.order_id, {
                    'gift_card_applied_amount': applied,
                    'discount': discount_with_card,
                    'total': total_with_card,
                })
                if stored is not None:
                    order.gift_card_applied_amount = applied
                    order.discount = discount_with_card
                    order.total = total_with_card
                return stored

            saga.step(STEP_GIFT_CARD, apply_gift_card, credit_gift_card)
            saga.step(STEP_RECORD_GIFT_CARD, record_gift_card)

        saga_result = await saga.run()
        if not saga_result.success:
            failed = saga_result.failed_step or ""
            if failed.startswith(STEP_DECREMENT):
                return _failure("stock reservation failed", "STOCK_UNAVAILABLE")
            if failed == STEP_COUPON:
                return _failure("could not claim coupon", "COUPON_UNAVAILABLE")
            if failed == STEP_GIFT_CARD:
                message = gift_card_outcome[-1].error if gift_card_outcome else "could not apply gift card"
                return _failure(message, "GIFT_CARD_UNAVAILABLE")
            return _failure("could not create order", "ORDER_CREATE_FAILED")

        if coupon:
            await self.coupons.record_usage(coupon, user_id, order.order_id, coupon_discount)

        if loyalty_discount > ZERO:
            try:
                deducted = await self.users.deduct_loyalty_points(user_id, loyalty_discount, order.order_id)
                if not deducted:
                    logger.warning(f"Loyalty deduction of {loyalty_discount} failed for order {order.order_id}")
            except DatabaseError as e:
                logger.error(f"Loyalty deduction error for order {order.order_id}: {e.message}")

        try:
            await self.carts.clear(user_id)
        except DatabaseError as e:
            logger.error(f"Failed to clear cart for user {user_id}: {e.message}")

        logger.info(f"Order {order.order_number} created for user {user_id}, total {order.total} {currency}")

        if order.payment_method != PaymentMethod.RAZORPAY:
            return CheckoutResult(success=True, order=order)

        if order.total <= ZERO:
            # Fully covered by discounts and gift card; nothing to collect
            fields = {'payment_status': PaymentStatus.PAID, 'status': OrderStatus.PAID}
            paid = await self.orders.update_fields(
                order.order_id, fields, expected_status=CANCELLABLE_ORDER_STATUSES
            )
            if paid is None:
                raise InvalidStateTransition("Order", order.order_id, order.status.value, OrderStatus.PAID.value)
            logger.info(f"Order {order.order_number} fully covered, no gateway payment needed")
            return CheckoutResult(success=True, order=paid)

        gateway_result = await self.gateway.create_order(order.total, currency, order.order_id)
        if not gateway_result.success:
            order.payment_status = PaymentStatus.FAILED
            await self.orders.update_fields(order.order_id, {'payment_status': PaymentStatus.FAILED})
            return CheckoutResult(
                success=False,
                order=order,
                gateway=gateway_result,
                error=gateway_result.error,
                error_code="PAYMENT_GATEWAY_ERROR",
            )

        order.razorpay_order_id = gateway_result.gateway_order_id
        await self.orders.update_fields(order.order_id, {'razorpay_order_id': order.razorpay_order_id})
        return CheckoutResult(success=True, order=order, gateway=gateway_result)

    async def verify_payment(self, user_id: str, request: VerifyPaymentRequest) -> Order:
        """Confirm a gateway payment and mark the order Paid"""
        order = await self.get_order(request.order_id, user_id)

        if order.payment_status == PaymentStatus.PAID:
            if order.razorpay_payment_id == request.razorpay_payment_id:
                return order
            raise ConflictError("Order is already paid", {"order_id": order.order_id})

        if order.razorpay_order_id and order.razorpay_order_id != request.razorpay_order_id:
            raise PaymentError("Gateway order does not match this order", "GATEWAY_ORDER_MISMATCH")

        verified = await self.gateway.verify_signature(
            request.razorpay_order_id, request.razorpay_payment_id,
            request.razorpay_signature, order.currency
        )
        if not verified:
            logger.warning(f"Signature verification failed for order {order.order_id}")
            raise PaymentError("Signature verification failed", "SIGNATURE_INVALID")

        updated = await self.orders.update_fields(
            order.order_id,
            {
                'razorpay_order_id': request.razorpay_order_id,
                'razorpay_payment_id': request.razorpay_payment_id,
                'payment_status': PaymentStatus.PAID,
                'status': OrderStatus.PAID,
            },
            expected_status=CANCELLABLE_ORDER_STATUSES,
        )
        if updated is None:
            raise InvalidStateTransition("Order", order.order_id, order.status.value, OrderStatus.PAID.value)

        if updated.coupon_code and not updated.coupon_usage_recorded:
            marked = await self.coupons.mark_used(
                updated.coupon_code, updated.user_id, updated.order_id, updated.coupon_discount
            )
            if marked:
                updated = await self.orders.update_fields(
                    updated.order_id, {'coupon_usage_recorded': True}
                ) or updated

        logger.info(f"Payment {request.razorpay_payment_id} verified for order {updated.order_number}")
        return updated

    async def get_order(self, order_id: str, user_id: Optional[str] = None) -> Order:
        order = await self.orders.get(order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise OrderNotFoundError(order_id)
        return order

    async def list_orders_for_user(
        self, user_id: str, limit: int = 20, cursor: Optional[str] = None
    ) -> Tuple[List[Order], Optional[str]]:
        return await self.orders.list_for_user(user_id, limit=limit, cursor=cursor)

    async def cancel_order(
        self, order_id: str, user_id: Optional[str] = None, reason: Optional[str] = None
    ) -> Order:
        """
        Cancel a Pending or Confirmed order and restore its stock, coupon
        claim and gift card balance. Loyalty points are not returned.
        """
        order = await self.get_order(order_id, user_id)
        if order.status not in CANCELLABLE_ORDER_STATUSES:
            raise InvalidStateTransition("Order", order_id, order.status.value, OrderStatus.CANCELLED.value)

        updated = await self.orders.update_fields(
            order_id,
            {'status': OrderStatus.CANCELLED, 'cancel_reason': reason},
            expected_status=CANCELLABLE_ORDER_STATUSES,
        )
        if updated is None:
            current = await self.orders.get(order_id)
            raise InvalidStateTransition(
                "Order", order_id, current.status.value if current else None, OrderStatus.CANCELLED.value
            )

        for item in order.items:
            variant = Variant(size=item.size, color=item.color)
            if not await self.ledger.increment(item.product_id, variant, item.quantity):
                logger.critical(f"CRITICAL: Stock restore failed for {item.product_id} ({variant.key}) "
                                f"on cancelled order {order_id}")

        if order.coupon_code and order.coupon_usage_recorded and order.payment_status != PaymentStatus.PAID:
            await self.coupons.undo_claim(order.coupon_code, order.user_id)
        if order.gift_card_number and order.gift_card_applied_amount:
            await self.gift_cards.credit_back(order.gift_card_number, order.gift_card_applied_amount)
        if order.payment_status == PaymentStatus.PAID:
            logger.warning(f"Paid order {order_id} cancelled; refund must be issued separately")

        logger.info(f"Order {order.order_number} cancelled")
        return updated

    async def update_status(
        self, order_id: str, status: OrderStatus, note: Optional[str] = None
    ) -> Order:
        """Admin status change; cancellation goes through cancel_order"""
        if status == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, reason=note)

        open_statuses = [s for s in OrderStatus if s != OrderStatus.CANCELLED]
        updated = await self.orders.update_fields(
            order_id, {'status': status, 'admin_note': note}, expected_status=open_statuses
        )
        if updated is None:
            current = await self.orders.get(order_id)
            if current is None:
                raise OrderNotFoundError(order_id)
            raise InvalidStateTransition("Order", order_id, current.status.value, status.value)

        logger.info(f"Order {order_id} moved to {status.value}")
        return updated


def get_order_service() -> OrderService:
    return OrderService()
