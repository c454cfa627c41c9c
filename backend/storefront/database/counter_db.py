"""
Atomic sequences for human-readable document numbers

Table: storefront-counters-{env}, PK counter_name, seq (number).
"""

import asyncio
import logging

from botocore.exceptions import ClientError

from .base import DynamoRepository
from .utils import as_int

logger = logging.getLogger(__name__)


class CounterRepository(DynamoRepository):
    table_setting = "DYNAMODB_COUNTERS_TABLE"
    key_name = "counter_name"

    async def next_value(self, counter_name: str) -> int:
        """Increment and return the counter; starts at 1"""
        try:
            response = await asyncio.to_thread(
                self.table.update_item,
                Key={'counter_name': counter_name},
                UpdateExpression='ADD #seq :one',
                ExpressionAttributeNames={'#seq': 'seq'},
                ExpressionAttributeValues={':one': 1},
                ReturnValues='UPDATED_NEW'
            )
        except ClientError as e:
            self._raise("update_item", e)
        return as_int(response['Attributes']['seq'])

    async def next_order_number(self, year: int) -> str:
        seq = await self.next_value(f"order:{year}")
        return f"ORD/{year}/{seq:06d}"
