"""
Gift cards in DynamoDB

Table: storefront-gift-cards-{env}, PK gift_card_number (unique code).
Balance changes are compare-and-swap on the previously read balance.
"""

import asyncio
import logging
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from ..core.money import ZERO
from .base import DynamoRepository
from .utils import as_decimal, utc_now_iso, is_conditional_check_failed

logger = logging.getLogger(__name__)


@dataclass
class GiftCard:
    gift_card_number: str
    gift_card_id: str
    balance: Decimal
    currency: str = "INR"
    is_active: bool = True
    issued_order_id: Optional[str] = None
    owner_user_id: Optional[str] = None
    notes: Optional[str] = None
    issued_at: str = field(default_factory=utc_now_iso)
    redeemed_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_redeemed_fully(self) -> bool:
        return self.balance <= ZERO

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "GiftCard":
        return cls(
            gift_card_number=item['gift_card_number'],
            gift_card_id=item.get('gift_card_id', item['gift_card_number']),
            balance=as_decimal(item.get('balance'), ZERO),
            currency=item.get('currency', 'INR'),
            is_active=bool(item.get('is_active', True)),
            issued_order_id=item.get('issued_order_id'),
            owner_user_id=item.get('owner_user_id'),
            notes=item.get('notes'),
            issued_at=item.get('issued_at', ''),
            redeemed_at=item.get('redeemed_at'),
            updated_at=item.get('updated_at'),
        )


class GiftCardRepository(DynamoRepository):
    table_setting = "DYNAMODB_GIFT_CARDS_TABLE"
    key_name = "gift_card_number"

    async def create(self, card: GiftCard) -> bool:
        """Insert; False when the number collides with an existing card"""
        return await self._put_new(asdict(card))

    async def get(self, gift_card_number: str) -> Optional[GiftCard]:
        item = await self._get(gift_card_number.strip().upper())
        return GiftCard.from_item(item) if item else None

    async def swap_balance(
        self, gift_card_number: str, expected_balance: Decimal, new_balance: Decimal
    ) -> Optional[GiftCard]:
        """
        Set balance to new_balance only if it still equals expected_balance
        and the card is active. Zero balance deactivates the card.

        Returns:
            The updated card, or None if another writer got there first
        """
        now = utc_now_iso()
        exhausted = new_balance <= ZERO
        fields = {
            'balance': new_balance,
            'is_active': not exhausted,
            'redeemed_at': now if exhausted else None,
            'updated_at': now,
        }
        item = await self._update(
            gift_card_number, fields, {'balance': expected_balance, 'is_active': True}
        )
        return GiftCard.from_item(item) if item else None

    async def credit(self, gift_card_number: str, amount: Decimal) -> bool:
        """Add amount back to the card and reactivate it"""
        try:
            await asyncio.to_thread(
                self.table.update_item,
                Key={self.key_name: gift_card_number},
                UpdateExpression='ADD #bal :amount SET #active = :true, #upd = :now REMOVE #redeemed',
                ConditionExpression='attribute_exists(#pk)',
                ExpressionAttributeNames={
                    '#pk': self.key_name,
                    '#bal': 'balance',
                    '#active': 'is_active',
                    '#upd': 'updated_at',
                    '#redeemed': 'redeemed_at',
                },
                ExpressionAttributeValues={':amount': amount, ':true': True, ':now': utc_now_iso()}
            )
            return True
        except ClientError as e:
            if is_conditional_check_failed(e):
                return False
            self._raise("update_item", e)
