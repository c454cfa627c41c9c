"""
Shopping carts in DynamoDB

Table: storefront-carts-{env}, PK user_id, items embedded as a list.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .base import DynamoRepository
from .inventory_db import Variant
from .utils import as_int, as_decimal, utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class CartLine:
    product_id: str
    quantity: int
    size: Optional[str] = None
    color: Optional[str] = None
    price_snapshot: Optional[Decimal] = None
    currency_snapshot: Optional[str] = None

    @property
    def variant(self) -> Variant:
        return Variant(size=self.size, color=self.color)

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "CartLine":
        return cls(
            product_id=item['product_id'],
            quantity=as_int(item.get('quantity'), 1),
            size=item.get('size'),
            color=item.get('color'),
            price_snapshot=as_decimal(item.get('price_snapshot')),
            currency_snapshot=item.get('currency_snapshot'),
        )


class CartRepository(DynamoRepository):
    table_setting = "DYNAMODB_CARTS_TABLE"
    key_name = "user_id"

    async def get_line_items(self, user_id: str) -> List[CartLine]:
        item = await self._get(user_id)
        if not item:
            return []
        return [CartLine.from_item(i) for i in item.get('items', [])]

    async def save(self, user_id: str, lines: List[CartLine]) -> None:
        await self._put({
            'user_id': user_id,
            'items': [line.__dict__ for line in lines],
            'updated_at': utc_now_iso(),
        })

    async def clear(self, user_id: str) -> None:
        await self._delete(user_id)
        logger.debug(f"Cart cleared for user {user_id}")
