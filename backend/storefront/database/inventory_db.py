"""
Inventory Ledger - per product, per variant stock counters in DynamoDB

Table: storefront-inventory-{env}
- PK product_id, SK variant_key ("{size}#{color}")
- quantity: units free to sell
- reserved: units held for an order but not yet consumed

Every mutation is a single UpdateItem whose ConditionExpression and update
are applied atomically by DynamoDB. There is no read-then-write anywhere in
this module, so two concurrent orders for the last unit cannot both win.
A failed condition is reported as False, never raised.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from ..core.config import settings
from ..core.database import get_db_manager, DatabaseManager
from ..core.exceptions import DatabaseError
from .utils import utc_now_iso, as_int, is_conditional_check_failed

logger = logging.getLogger(__name__)

_EMPTY = "-"


@dataclass(frozen=True)
class Variant:
    """Size/color pair identifying a sellable variant of a product"""
    size: Optional[str] = None
    color: Optional[str] = None
    sku: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.size or _EMPTY}#{self.color or _EMPTY}"


@dataclass
class InventoryItem:
    product_id: str
    variant_key: str
    quantity: int
    reserved: int
    size: Optional[str] = None
    color: Optional[str] = None
    sku: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_item(cls, item: dict) -> "InventoryItem":
        return cls(
            product_id=item['product_id'],
            variant_key=item['variant_key'],
            quantity=as_int(item.get('quantity')),
            reserved=as_int(item.get('reserved')),
            size=item.get('size'),
            color=item.get('color'),
            sku=item.get('sku'),
            updated_at=item.get('updated_at'),
        )


def _as_variant(variant: Union[Variant, str, None]) -> Variant:
    if isinstance(variant, Variant):
        return variant
    return Variant(size=variant)


class InventoryLedger:
    """
    Conditional stock counters.

    reserve/release move units between quantity and reserved; decrement
    consumes free quantity; increment restocks (creating the row if absent).
    """

    def __init__(self, db: Optional[DatabaseManager] = None, table_name: Optional[str] = None):
        self._db = db
        self.table_name = table_name or settings.DYNAMODB_INVENTORY_TABLE

    @property
    def table(self):
        return (self._db or get_db_manager()).table(self.table_name)

    def _key(self, product_id: str, variant: Variant) -> dict:
        return {'product_id': product_id, 'variant_key': variant.key}

    async def _conditional_update(self, op: str, product_id: str, variant: Variant, **params) -> bool:
        try:
            await asyncio.to_thread(
                self.table.update_item,
                Key=self._key(product_id, variant),
                **params
            )
            return True
        except ClientError as e:
            if is_conditional_check_failed(e):
                logger.info(f"Inventory {op} rejected for {product_id}/{variant.key}")
                return False
            logger.error(f"Inventory {op} failed for {product_id}/{variant.key}: {e}")
            raise DatabaseError(
                f"Inventory {op} failed",
                {"product_id": product_id, "variant": variant.key,
                 "aws_error": e.response['Error']['Code']}
            )

    async def reserve(self, product_id: str, variant: Union[Variant, str], qty: int) -> bool:
        """Move qty from free quantity to reserved; False if quantity < qty"""
        variant = _as_variant(variant)
        if qty <= 0:
            return False
        return await self._conditional_update(
            "reserve", product_id, variant,
            UpdateExpression='SET #q = #q - :qty, #r = if_not_exists(#r, :zero) + :qty, #u = :now',
            ConditionExpression='attribute_exists(#q) AND #q >= :qty',
            ExpressionAttributeNames={'#q': 'quantity', '#r': 'reserved', '#u': 'updated_at'},
            ExpressionAttributeValues={':qty': qty, ':zero': 0, ':now': utc_now_iso()},
        )

    async def release(self, product_id: str, variant: Union[Variant, str], qty: int) -> bool:
        """Return qty from reserved to free quantity; False if reserved < qty"""
        variant = _as_variant(variant)
        if qty <= 0:
            return False
        return await self._conditional_update(
            "release", product_id, variant,
            UpdateExpression='SET #q = #q + :qty, #r = #r - :qty, #u = :now',
            ConditionExpression='attribute_exists(#r) AND #r >= :qty',
            ExpressionAttributeNames={'#q': 'quantity', '#r': 'reserved', '#u': 'updated_at'},
            ExpressionAttributeValues={':qty': qty, ':now': utc_now_iso()},
        )

    async def decrement(self, product_id: str, variant: Union[Variant, str], qty: int) -> bool:
        """Consume qty of free stock; False if quantity < qty"""
        variant = _as_variant(variant)
        if qty <= 0:
            return False
        return await self._conditional_update(
            "decrement", product_id, variant,
            UpdateExpression='SET #q = #q - :qty, #u = :now',
            ConditionExpression='attribute_exists(#q) AND #q >= :qty',
            ExpressionAttributeNames={'#q': 'quantity', '#u': 'updated_at'},
            ExpressionAttributeValues={':qty': qty, ':now': utc_now_iso()},
        )

    async def increment(self, product_id: str, variant: Union[Variant, str], qty: int) -> bool:
        """Restock qty units, creating the variant row when it does not exist"""
        variant = _as_variant(variant)
        if qty <= 0:
            return False

        names = {'#q': 'quantity', '#r': 'reserved', '#u': 'updated_at'}
        values = {':qty': qty, ':zero': 0, ':now': utc_now_iso()}
        sets = ['#q = if_not_exists(#q, :zero) + :qty', '#r = if_not_exists(#r, :zero)', '#u = :now']
        for attr, value in (('size', variant.size), ('color', variant.color), ('sku', variant.sku)):
            if value:
                names[f'#{attr}'] = attr
                values[f':{attr}'] = value
                sets.append(f'#{attr} = if_not_exists(#{attr}, :{attr})')

        return await self._conditional_update(
            "increment", product_id, variant,
            UpdateExpression='SET ' + ', '.join(sets),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
        )

    async def set_stock(self, product_id: str, variant: Union[Variant, str], quantity: int) -> InventoryItem:
        """Overwrite free quantity (admin stock count); reserved is preserved"""
        variant = _as_variant(variant)
        if quantity < 0:
            raise ValueError("quantity must be >= 0")

        names = {'#q': 'quantity', '#r': 'reserved', '#u': 'updated_at'}
        values = {':qty': quantity, ':zero': 0, ':now': utc_now_iso()}
        sets = ['#q = :qty', '#r = if_not_exists(#r, :zero)', '#u = :now']
        for attr, value in (('size', variant.size), ('color', variant.color), ('sku', variant.sku)):
            if value:
                names[f'#{attr}'] = attr
                values[f':{attr}'] = value
                sets.append(f'#{attr} = :{attr}')

        response = await asyncio.to_thread(
            self.table.update_item,
            Key=self._key(product_id, variant),
            UpdateExpression='SET ' + ', '.join(sets),
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues='ALL_NEW'
        )
        return InventoryItem.from_item(response['Attributes'])

    async def get_item(self, product_id: str, variant: Union[Variant, str]) -> Optional[InventoryItem]:
        variant = _as_variant(variant)
        response = await asyncio.to_thread(
            self.table.get_item,
            Key=self._key(product_id, variant),
            ConsistentRead=True
        )
        item = response.get('Item')
        return InventoryItem.from_item(item) if item else None

    async def get_available_qty(self, product_id: str, variant: Union[Variant, str]) -> int:
        item = await self.get_item(product_id, variant)
        return item.quantity if item else 0

    async def list_for_product(self, product_id: str) -> List[InventoryItem]:
        response = await asyncio.to_thread(
            self.table.query,
            KeyConditionExpression=Key('product_id').eq(product_id)
        )
        return [InventoryItem.from_item(i) for i in response.get('Items', [])]
