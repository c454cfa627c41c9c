"""
Base class for single-table DynamoDB repositories.

Provides conditional field updates, index queries with cursor pagination,
and the delivery-linkage operations shared by orders, returns and buybacks.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from ..core.config import settings
from ..core.database import get_db_manager, DatabaseManager
from ..core.exceptions import DatabaseError
from .utils import (
    utc_now_iso, to_item, to_attr, is_conditional_check_failed,
    encode_cursor, decode_cursor,
)

logger = logging.getLogger(__name__)


class DynamoRepository:
    """Shared plumbing; subclasses set table_setting and key_name"""

    table_setting: str = ""
    key_name: str = ""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self._db = db

    @property
    def table_name(self) -> str:
        return getattr(settings, self.table_setting)

    @property
    def table(self):
        return (self._db or get_db_manager()).table(self.table_name)

    def _raise(self, op: str, error: ClientError) -> None:
        logger.error(f"{self.table_name}: {op} failed: {error}")
        raise DatabaseError(
            f"{op} failed on {self.table_name}",
            {"aws_error": error.response['Error']['Code']}
        )

    async def _get(self, key_value: str) -> Optional[Dict[str, Any]]:
        try:
            response = await asyncio.to_thread(
                self.table.get_item,
                Key={self.key_name: key_value},
                ConsistentRead=True
            )
        except ClientError as e:
            self._raise("get_item", e)
        return response.get('Item')

    async def _put_new(self, data: Dict[str, Any]) -> bool:
        """Insert an item; False if the key already exists"""
        try:
            await asyncio.to_thread(
                self.table.put_item,
                Item=to_item(data),
                ConditionExpression='attribute_not_exists(#pk)',
                ExpressionAttributeNames={'#pk': self.key_name}
            )
            return True
        except ClientError as e:
            if is_conditional_check_failed(e):
                return False
            self._raise("put_item", e)

    async def _put(self, data: Dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self.table.put_item, Item=to_item(data))
        except ClientError as e:
            self._raise("put_item", e)

    async def _delete(self, key_value: str) -> None:
        try:
            await asyncio.to_thread(self.table.delete_item, Key={self.key_name: key_value})
        except ClientError as e:
            self._raise("delete_item", e)

    async def _update(
        self,
        key_value: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Conditionally set (or, for None values, remove) top-level fields.

        Args:
            key_value: Partition key of the item; it must already exist
            fields: attribute -> new value; updated_at is stamped automatically
            expected: attribute -> value, or an iterable of allowed values,
                all of which must hold at write time

        Returns:
            The item after the update, or None if a condition failed
        """
        fields = dict(fields)
        fields.setdefault('updated_at', utc_now_iso())

        names = {'#pk': self.key_name}
        values: Dict[str, Any] = {}
        set_parts, remove_parts = [], []

        for i, (attr, value) in enumerate(fields.items()):
            names[f'#f{i}'] = attr
            if value is None:
                remove_parts.append(f'#f{i}')
            else:
                values[f':f{i}'] = to_attr(value)
                set_parts.append(f'#f{i} = :f{i}')

        conditions = ['attribute_exists(#pk)']
        for i, (attr, allowed) in enumerate((expected or {}).items()):
            names[f'#c{i}'] = attr
            if isinstance(allowed, (list, tuple, set, frozenset)):
                placeholders = []
                for j, value in enumerate(allowed):
                    values[f':c{i}_{j}'] = to_attr(value)
                    placeholders.append(f':c{i}_{j}')
                conditions.append(f"#c{i} IN ({', '.join(placeholders)})")
            else:
                values[f':c{i}'] = to_attr(allowed)
                conditions.append(f'#c{i} = :c{i}')

        expression = []
        if set_parts:
            expression.append('SET ' + ', '.join(set_parts))
        if remove_parts:
            expression.append('REMOVE ' + ', '.join(remove_parts))

        params = {
            'Key': {self.key_name: key_value},
            'UpdateExpression': ' '.join(expression),
            'ConditionExpression': ' AND '.join(conditions),
            'ExpressionAttributeNames': names,
            'ReturnValues': 'ALL_NEW',
        }
        if values:
            params['ExpressionAttributeValues'] = values

        try:
            response = await asyncio.to_thread(self.table.update_item, **params)
        except ClientError as e:
            if is_conditional_check_failed(e):
                return None
            self._raise("update_item", e)
        return response['Attributes']

    async def _query_index(
        self,
        index_name: str,
        key_attr: str,
        key_value: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
        newest_first: bool = False,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        params: Dict[str, Any] = {
            'IndexName': index_name,
            'KeyConditionExpression': Key(key_attr).eq(key_value),
            'ScanIndexForward': not newest_first,
        }
        if limit:
            params['Limit'] = limit
        start_key = decode_cursor(cursor)
        if start_key:
            params['ExclusiveStartKey'] = start_key

        try:
            response = await asyncio.to_thread(self.table.query, **params)
        except ClientError as e:
            self._raise("query", e)
        return response.get('Items', []), encode_cursor(response.get('LastEvaluatedKey'))

    # =========================================================================
    # Delivery linkage
    # =========================================================================

    async def find_key_by_awb(self, awb: str) -> Optional[str]:
        """Return the partition key of the item shipped under this AWB"""
        items, _ = await self._query_index('awb-index', 'awb', awb, limit=1)
        return items[0][self.key_name] if items else None

    async def update_delivery_details(self, key_value: str, details: Dict[str, Any]) -> bool:
        """Replace delivery_details and index the shipment by its AWB"""
        fields = {'delivery_details': details}
        if details.get('awb'):
            fields['awb'] = details['awb']
        return await self._update(key_value, fields) is not None

    async def update_delivery_status(self, key_value: str, status: Any,
                                     extra: Optional[Dict[str, Any]] = None) -> bool:
        """Set delivery_details.status; False if the item has no shipment yet"""
        now = utc_now_iso()
        names = {'#pk': self.key_name, '#dd': 'delivery_details', '#st': 'status',
                 '#upd': 'updated_at'}
        values = {':status': to_attr(status), ':now': now}
        sets = ['#dd.#st = :status', '#dd.#upd = :now', '#upd = :now']
        for i, (attr, value) in enumerate((extra or {}).items()):
            if value is None:
                continue
            names[f'#x{i}'] = attr
            values[f':x{i}'] = to_attr(value)
            sets.append(f'#dd.#x{i} = :x{i}')

        try:
            await asyncio.to_thread(
                self.table.update_item,
                Key={self.key_name: key_value},
                UpdateExpression='SET ' + ', '.join(sets),
                ConditionExpression='attribute_exists(#pk) AND attribute_exists(#dd)',
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
            return True
        except ClientError as e:
            if is_conditional_check_failed(e):
                return False
            self._raise("update_item", e)

