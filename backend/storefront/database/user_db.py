"""
User loyalty balances in DynamoDB

Tables:
- storefront-users-{env}: PK user_id, loyalty_points
- storefront-loyalty-audits-{env}: PK audit_id, append-only point movements
"""

import asyncio
import logging
import uuid
from decimal import Decimal
from typing import Optional

from botocore.exceptions import ClientError

from ..core.config import settings
from ..core.database import get_db_manager
from ..core.money import ZERO
from .base import DynamoRepository
from .utils import as_decimal, utc_now_iso, to_item, is_conditional_check_failed

logger = logging.getLogger(__name__)


class UserRepository(DynamoRepository):
    table_setting = "DYNAMODB_USERS_TABLE"
    key_name = "user_id"

    @property
    def audits(self):
        return (self._db or get_db_manager()).table(settings.DYNAMODB_LOYALTY_AUDITS_TABLE)

    async def upsert(self, user_id: str, loyalty_points: Decimal = ZERO) -> None:
        await self._put({'user_id': user_id, 'loyalty_points': loyalty_points,
                         'created_at': utc_now_iso()})

    async def get_loyalty_balance(self, user_id: str) -> Decimal:
        item = await self._get(user_id)
        return as_decimal(item.get('loyalty_points'), ZERO) if item else ZERO

    async def deduct_loyalty_points(self, user_id: str, amount: Decimal,
                                    order_id: Optional[str] = None) -> bool:
        """Atomically subtract points; False if the balance is too low"""
        if amount <= ZERO:
            return True
        try:
            await asyncio.to_thread(
                self.table.update_item,
                Key={'user_id': user_id},
                UpdateExpression='SET #pts = #pts - :amount, #upd = :now',
                ConditionExpression='attribute_exists(#pts) AND #pts >= :amount',
                ExpressionAttributeNames={'#pts': 'loyalty_points', '#upd': 'updated_at'},
                ExpressionAttributeValues={':amount': amount, ':now': utc_now_iso()}
            )
        except ClientError as e:
            if is_conditional_check_failed(e):
                logger.warning(f"Loyalty deduction of {amount} rejected for user {user_id}")
                return False
            self._raise("update_item", e)

        await self._audit(user_id, -amount, "redeemed", order_id)
        return True

    async def _audit(self, user_id: str, change: Decimal, reason: str,
                     order_id: Optional[str]) -> None:
        # Best-effort: the balance change already happened
        try:
            await asyncio.to_thread(
                self.audits.put_item,
                Item=to_item({
                    'audit_id': str(uuid.uuid4()),
                    'user_id': user_id,
                    'change': change,
                    'reason': reason,
                    'order_id': order_id,
                    'created_at': utc_now_iso(),
                })
            )
        except ClientError as e:
            logger.error(f"Failed to write loyalty audit for {user_id}: {e}")
