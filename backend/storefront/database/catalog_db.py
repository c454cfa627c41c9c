"""
Product catalog lookups used by checkout

Table: storefront-products-{env}, PK product_id
- prices: [{size, currency, amount}]
- country_prices: [{country, currency, shipping}] per-unit shipping charge
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..core.money import ZERO, round_money
from .base import DynamoRepository
from .inventory_db import InventoryLedger, Variant
from .utils import as_decimal

logger = logging.getLogger(__name__)


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return (a or "").strip().lower() == (b or "").strip().lower()


@dataclass
class Product:
    product_id: str
    name: str
    prices: List[Dict[str, Any]] = field(default_factory=list)
    country_prices: List[Dict[str, Any]] = field(default_factory=list)
    thumbnail_url: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Product":
        return cls(
            product_id=item['product_id'],
            name=item.get('name', ''),
            prices=list(item.get('prices') or []),
            country_prices=list(item.get('country_prices') or []),
            thumbnail_url=item.get('thumbnail_url'),
            is_active=bool(item.get('is_active', True)),
        )

    def price_for(self, size: Optional[str], currency: str) -> Optional[Decimal]:
        for entry in self.prices:
            if _same(entry.get('size'), size) and _same(entry.get('currency'), currency):
                return round_money(as_decimal(entry.get('amount')))
        return None

    def shipping_for(self, country: Optional[str], currency: str) -> Decimal:
        for entry in self.country_prices:
            if _same(entry.get('country'), country) and _same(entry.get('currency'), currency):
                return round_money(as_decimal(entry.get('shipping'), ZERO))
        return ZERO


class ProductCatalog(DynamoRepository):
    """Price, shipping and availability lookups for products"""

    table_setting = "DYNAMODB_PRODUCTS_TABLE"
    key_name = "product_id"

    def __init__(self, db=None, ledger: Optional[InventoryLedger] = None):
        super().__init__(db)
        self.ledger = ledger or InventoryLedger(db)

    async def put(self, product: Product) -> None:
        await self._put(product.__dict__)

    async def get(self, product_id: str) -> Optional[Product]:
        item = await self._get(product_id)
        return Product.from_item(item) if item else None

    async def get_price(self, product_id: str, variant: Variant, currency: str) -> Optional[Decimal]:
        product = await self.get(product_id)
        return product.price_for(variant.size, currency) if product else None

    async def get_available_qty(self, product_id: str, variant: Variant) -> int:
        return await self.ledger.get_available_qty(product_id, variant)
