"""
Buyback requests in DynamoDB

Table: storefront-buybacks-{env}
- PK buyback_id, GSI awb-index (awb)

Only the parts of a buyback that shipment tracking needs live here.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

from .base import DynamoRepository
from .utils import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class Buyback:
    buyback_id: str
    user_id: str
    order_id: Optional[str] = None
    product_id: Optional[str] = None
    status: str = "Pending"
    delivery_details: Optional[Dict[str, Any]] = None
    awb: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Buyback":
        return cls(
            buyback_id=item['buyback_id'],
            user_id=item.get('user_id', ''),
            order_id=item.get('order_id'),
            product_id=item.get('product_id'),
            status=item.get('status', 'Pending'),
            delivery_details=item.get('delivery_details'),
            awb=item.get('awb'),
            created_at=item.get('created_at', ''),
            updated_at=item.get('updated_at'),
        )


class BuybackRepository(DynamoRepository):
    table_setting = "DYNAMODB_BUYBACKS_TABLE"
    key_name = "buyback_id"

    async def create(self, buyback: Buyback) -> bool:
        return await self._put_new(asdict(buyback))

    async def get(self, buyback_id: str) -> Optional[Buyback]:
        item = await self._get(buyback_id)
        return Buyback.from_item(item) if item else None

    async def find_by_awb(self, awb: str) -> Optional[str]:
        return await self.find_key_by_awb(awb)
