"""
Return order records in DynamoDB

Table: storefront-returns-{env}
- PK return_id
- GSI user-index (user_id, created_at), order-number-index (order_number),
  awb-index (awb), status-index (status, created_at)

Returned items are an independent copy of the order's line items taken when
the return is created; later changes to the order never touch them.
"""

import logging
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..core.money import ZERO
from ..models.status import ReturnStatus
from .base import DynamoRepository
from .order_db import LineItem
from .utils import as_decimal, utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class ReturnOrder:
    return_id: str
    return_number: str
    order_id: str
    order_number: str
    user_id: str
    items: List[LineItem]
    status: ReturnStatus = ReturnStatus.PENDING
    reason: Optional[str] = None
    images: List[str] = field(default_factory=list)
    currency: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_status: Optional[str] = None
    refund_id: Optional[str] = None
    refund_payment_id: Optional[str] = None
    refund_idempotency_key: Optional[str] = None
    refund_gateway_raw: Optional[str] = None
    is_refund_processed: bool = False
    refund_created_at: Optional[str] = None
    admin_remarks: Optional[str] = None
    processed_by: Optional[str] = None
    processed_at: Optional[str] = None
    delivery_details: Optional[Dict[str, Any]] = None
    awb: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "ReturnOrder":
        return cls(
            return_id=item['return_id'],
            return_number=item.get('return_number', ''),
            order_id=item.get('order_id', ''),
            order_number=item.get('order_number', ''),
            user_id=item['user_id'],
            items=[LineItem.from_item(i) for i in item.get('items', [])],
            status=ReturnStatus(item.get('status', ReturnStatus.PENDING.value)),
            reason=item.get('reason'),
            images=list(item.get('images') or []),
            currency=item.get('currency'),
            refund_amount=as_decimal(item.get('refund_amount')),
            refund_status=item.get('refund_status'),
            refund_id=item.get('refund_id'),
            refund_payment_id=item.get('refund_payment_id'),
            refund_idempotency_key=item.get('refund_idempotency_key'),
            refund_gateway_raw=item.get('refund_gateway_raw'),
            is_refund_processed=bool(item.get('is_refund_processed', False)),
            refund_created_at=item.get('refund_created_at'),
            admin_remarks=item.get('admin_remarks'),
            processed_by=item.get('processed_by'),
            processed_at=item.get('processed_at'),
            delivery_details=item.get('delivery_details'),
            awb=item.get('awb'),
            created_at=item.get('created_at', ''),
            updated_at=item.get('updated_at'),
        )

    @property
    def items_total(self) -> Decimal:
        return sum((i.line_total for i in self.items), ZERO)


class ReturnRepository(DynamoRepository):
    """Return order persistence"""

    table_setting = "DYNAMODB_RETURNS_TABLE"
    key_name = "return_id"

    async def create(self, return_order: ReturnOrder) -> bool:
        created = await self._put_new(return_order.to_item())
        if created:
            logger.info(
                f"Return {return_order.return_number} created for order {return_order.order_number}"
            )
        return created

    async def get(self, return_id: str) -> Optional[ReturnOrder]:
        item = await self._get(return_id)
        return ReturnOrder.from_item(item) if item else None

    async def list_for_user(
        self, user_id: str, limit: int = 20, cursor: Optional[str] = None
    ) -> Tuple[List[ReturnOrder], Optional[str]]:
        items, next_cursor = await self._query_index(
            'user-index', 'user_id', user_id, limit=limit, cursor=cursor, newest_first=True
        )
        return [ReturnOrder.from_item(i) for i in items], next_cursor

    async def list_by_status(
        self, status: ReturnStatus, limit: int = 50, cursor: Optional[str] = None
    ) -> Tuple[List[ReturnOrder], Optional[str]]:
        items, next_cursor = await self._query_index(
            'status-index', 'status', status.value, limit=limit, cursor=cursor, newest_first=True
        )
        return [ReturnOrder.from_item(i) for i in items], next_cursor

    async def list_for_order(self, order_number: str) -> List[ReturnOrder]:
        items, _ = await self._query_index('order-number-index', 'order_number', order_number)
        return [ReturnOrder.from_item(i) for i in items]

    async def transition(
        self,
        return_id: str,
        from_status: ReturnStatus,
        fields: Dict[str, Any],
    ) -> Optional[ReturnOrder]:
        """
        Apply fields only if the return is still in from_status.

        Returns:
            The updated return, or None when it is missing or has moved on
        """
        item = await self._update(return_id, fields, {'status': from_status})
        return ReturnOrder.from_item(item) if item else None

    async def update_fields(self, return_id: str, fields: Dict[str, Any]) -> Optional[ReturnOrder]:
        item = await self._update(return_id, fields)
        return ReturnOrder.from_item(item) if item else None

    async def find_by_awb(self, awb: str) -> Optional[str]:
        return await self.find_key_by_awb(awb)
