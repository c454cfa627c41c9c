"""
Order records in DynamoDB

Table: storefront-orders-{env}
- PK order_id
- GSI user-index (user_id, created_at), order-number-index (order_number),
  awb-index (awb)

Line items are embedded in the order and are a snapshot of price at checkout.
Orders are only deleted as the compensation of a failed checkout.
"""

import logging
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..core.money import ZERO
from ..models.status import OrderStatus, PaymentStatus, PaymentMethod
from .base import DynamoRepository
from .utils import as_int, as_decimal, utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class LineItem:
    """One purchased product/variant in an order"""
    product_id: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    currency: str
    product_name: str = ""
    size: Optional[str] = None
    color: Optional[str] = None
    thumbnail_url: Optional[str] = None
    is_returned: Optional[bool] = None
    reason_for_return: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "LineItem":
        return cls(
            product_id=item['product_id'],
            quantity=as_int(item.get('quantity')),
            unit_price=as_decimal(item.get('unit_price'), ZERO),
            line_total=as_decimal(item.get('line_total'), ZERO),
            currency=item.get('currency', ''),
            product_name=item.get('product_name', ''),
            size=item.get('size'),
            color=item.get('color'),
            thumbnail_url=item.get('thumbnail_url'),
            is_returned=item.get('is_returned'),
            reason_for_return=item.get('reason_for_return'),
        )


@dataclass
class Order:
    order_id: str
    order_number: str
    user_id: str
    items: List[LineItem]
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    currency: str
    payment_method: PaymentMethod = PaymentMethod.COD
    payment_status: PaymentStatus = PaymentStatus.PENDING
    status: OrderStatus = OrderStatus.PENDING
    shipping_address: Optional[Dict[str, Any]] = None
    country: Optional[str] = None
    email: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_discount: Optional[Decimal] = None
    coupon_applied_at: Optional[str] = None
    coupon_usage_recorded: bool = False
    loyalty_discount_amount: Optional[Decimal] = None
    gift_card_number: Optional[str] = None
    gift_card_applied_amount: Optional[Decimal] = None
    delivery_details: Optional[Dict[str, Any]] = None
    awb: Optional[str] = None
    cancel_reason: Optional[str] = None
    admin_note: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Order":
        return cls(
            order_id=item['order_id'],
            order_number=item.get('order_number', ''),
            user_id=item['user_id'],
            items=[LineItem.from_item(i) for i in item.get('items', [])],
            subtotal=as_decimal(item.get('subtotal'), ZERO),
            shipping=as_decimal(item.get('shipping'), ZERO),
            tax=as_decimal(item.get('tax'), ZERO),
            discount=as_decimal(item.get('discount'), ZERO),
            total=as_decimal(item.get('total'), ZERO),
            currency=item.get('currency', ''),
            payment_method=PaymentMethod(item.get('payment_method', PaymentMethod.COD.value)),
            payment_status=PaymentStatus(item.get('payment_status', PaymentStatus.PENDING.value)),
            status=OrderStatus(item.get('status', OrderStatus.PENDING.value)),
            shipping_address=item.get('shipping_address'),
            country=item.get('country'),
            email=item.get('email'),
            razorpay_order_id=item.get('razorpay_order_id'),
            razorpay_payment_id=item.get('razorpay_payment_id'),
            coupon_id=item.get('coupon_id'),
            coupon_code=item.get('coupon_code'),
            coupon_discount=as_decimal(item.get('coupon_discount')),
            coupon_applied_at=item.get('coupon_applied_at'),
            coupon_usage_recorded=bool(item.get('coupon_usage_recorded', False)),
            loyalty_discount_amount=as_decimal(item.get('loyalty_discount_amount')),
            gift_card_number=item.get('gift_card_number'),
            gift_card_applied_amount=as_decimal(item.get('gift_card_applied_amount')),
            delivery_details=item.get('delivery_details'),
            awb=item.get('awb'),
            cancel_reason=item.get('cancel_reason'),
            admin_note=item.get('admin_note'),
            created_at=item.get('created_at', ''),
            updated_at=item.get('updated_at'),
        )


class OrderRepository(DynamoRepository):
    """Order persistence"""

    table_setting = "DYNAMODB_ORDERS_TABLE"
    key_name = "order_id"

    async def create(self, order: Order) -> bool:
        """Insert the order; False if the id is already taken"""
        created = await self._put_new(order.to_item())
        if created:
            logger.info(f"Order {order.order_id} ({order.order_number}) persisted")
        return created

    async def delete(self, order_id: str) -> bool:
        await self._delete(order_id)
        logger.info(f"Order {order_id} deleted")
        return True

    async def get(self, order_id: str) -> Optional[Order]:
        item = await self._get(order_id)
        return Order.from_item(item) if item else None

    async def get_by_number(self, order_number: str) -> Optional[Order]:
        items, _ = await self._query_index('order-number-index', 'order_number', order_number, limit=1)
        return Order.from_item(items[0]) if items else None

    async def list_for_user(
        self, user_id: str, limit: int = 20, cursor: Optional[str] = None
    ) -> Tuple[List[Order], Optional[str]]:
        items, next_cursor = await self._query_index(
            'user-index', 'user_id', user_id, limit=limit, cursor=cursor, newest_first=True
        )
        return [Order.from_item(i) for i in items], next_cursor

    async def update_fields(
        self,
        order_id: str,
        fields: Dict[str, Any],
        expected_status: Optional[Iterable[OrderStatus]] = None,
    ) -> Optional[Order]:
        """Conditionally update fields; None when missing or status not allowed"""
        expected = {'status': list(expected_status)} if expected_status else None
        item = await self._update(order_id, fields, expected)
        return Order.from_item(item) if item else None

    async def find_by_awb(self, awb: str) -> Optional[str]:
        return await self.find_key_by_awb(awb)
