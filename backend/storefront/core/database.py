"""
Centralized DynamoDB Connection Manager for the Storefront backend

- boto3 with connection pooling, retries and timeouts via botocore Config
- Does NOT override credential handling; boto3's default chain applies
- Table handles are created lazily so test doubles (moto) can be started
  before the first client is built

Usage:
    from storefront.core.database import get_db_manager

    table = get_db_manager().table(settings.DYNAMODB_ORDERS_TABLE)
    response = await asyncio.to_thread(table.get_item, Key={"order_id": order_id})
"""

import os
import logging
import threading
from typing import Optional, Dict, Any, List

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from .config import settings

logger = logging.getLogger(__name__)


def _create_boto_config(
    max_pool_connections: int = 25,
    connect_timeout: int = 5,
    read_timeout: int = 30,
    max_attempts: int = 3,
    retry_mode: str = 'standard'
) -> BotoConfig:
    """
    Create a boto3 Config object.

    Args:
        max_pool_connections: Maximum connections in the pool (default: 25)
        connect_timeout: Connection timeout in seconds (default: 5)
        read_timeout: Read timeout in seconds (default: 30)
        max_attempts: Maximum retry attempts including initial (default: 3)
        retry_mode: Retry mode - 'legacy', 'standard', or 'adaptive' (default: 'standard')

    Returns:
        BotoConfig object with no credential-related overrides
    """
    return BotoConfig(
        max_pool_connections=max_pool_connections,
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={
            'max_attempts': max_attempts,
            'mode': retry_mode
        }
    )


def _gsi(name: str, hash_key: str, range_key: Optional[str] = None) -> Dict[str, Any]:
    key_schema = [{'AttributeName': hash_key, 'KeyType': 'HASH'}]
    if range_key:
        key_schema.append({'AttributeName': range_key, 'KeyType': 'RANGE'})
    return {
        'IndexName': name,
        'KeySchema': key_schema,
        'Projection': {'ProjectionType': 'ALL'},
    }


def table_definitions() -> List[Dict[str, Any]]:
    """
    CreateTable parameters for every table the application uses.

    Only used to bootstrap local/test environments; production tables are
    provisioned outside the application.
    """
    return [
        {
            'TableName': settings.DYNAMODB_ORDERS_TABLE,
            'KeySchema': [{'AttributeName': 'order_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'order_id', 'AttributeType': 'S'},
                {'AttributeName': 'user_id', 'AttributeType': 'S'},
                {'AttributeName': 'created_at', 'AttributeType': 'S'},
                {'AttributeName': 'order_number', 'AttributeType': 'S'},
                {'AttributeName': 'awb', 'AttributeType': 'S'},
            ],
            'GlobalSecondaryIndexes': [
                _gsi('user-index', 'user_id', 'created_at'),
                _gsi('order-number-index', 'order_number'),
                _gsi('awb-index', 'awb'),
            ],
        },
        {
            'TableName': settings.DYNAMODB_INVENTORY_TABLE,
            'KeySchema': [
                {'AttributeName': 'product_id', 'KeyType': 'HASH'},
                {'AttributeName': 'variant_key', 'KeyType': 'RANGE'},
            ],
            'AttributeDefinitions': [
                {'AttributeName': 'product_id', 'AttributeType': 'S'},
                {'AttributeName': 'variant_key', 'AttributeType': 'S'},
            ],
        },
        {
            'TableName': settings.DYNAMODB_COUPONS_TABLE,
            'KeySchema': [{'AttributeName': 'code', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'code', 'AttributeType': 'S'}],
        },
        {
            'TableName': settings.DYNAMODB_COUPON_USAGES_TABLE,
            'KeySchema': [{'AttributeName': 'usage_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'usage_id', 'AttributeType': 'S'},
                {'AttributeName': 'coupon_code', 'AttributeType': 'S'},
                {'AttributeName': 'used_at', 'AttributeType': 'S'},
            ],
            'GlobalSecondaryIndexes': [_gsi('coupon-index', 'coupon_code', 'used_at')],
        },
        {
            'TableName': settings.DYNAMODB_RETURNS_TABLE,
            'KeySchema': [{'AttributeName': 'return_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'return_id', 'AttributeType': 'S'},
                {'AttributeName': 'user_id', 'AttributeType': 'S'},
                {'AttributeName': 'created_at', 'AttributeType': 'S'},
                {'AttributeName': 'order_number', 'AttributeType': 'S'},
                {'AttributeName': 'awb', 'AttributeType': 'S'},
                {'AttributeName': 'status', 'AttributeType': 'S'},
            ],
            'GlobalSecondaryIndexes': [
                _gsi('user-index', 'user_id', 'created_at'),
                _gsi('order-number-index', 'order_number'),
                _gsi('awb-index', 'awb'),
                _gsi('status-index', 'status', 'created_at'),
            ],
        },
        {
            'TableName': settings.DYNAMODB_BUYBACKS_TABLE,
            'KeySchema': [{'AttributeName': 'buyback_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [
                {'AttributeName': 'buyback_id', 'AttributeType': 'S'},
                {'AttributeName': 'awb', 'AttributeType': 'S'},
            ],
            'GlobalSecondaryIndexes': [_gsi('awb-index', 'awb')],
        },
        {
            'TableName': settings.DYNAMODB_GIFT_CARDS_TABLE,
            'KeySchema': [{'AttributeName': 'gift_card_number', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'gift_card_number', 'AttributeType': 'S'}],
        },
        {
            'TableName': settings.DYNAMODB_PRODUCTS_TABLE,
            'KeySchema': [{'AttributeName': 'product_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'product_id', 'AttributeType': 'S'}],
        },
        {
            'TableName': settings.DYNAMODB_CARTS_TABLE,
            'KeySchema': [{'AttributeName': 'user_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'user_id', 'AttributeType': 'S'}],
        },
        {
            'TableName': settings.DYNAMODB_USERS_TABLE,
            'KeySchema': [{'AttributeName': 'user_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'user_id', 'AttributeType': 'S'}],
        },
        {
            'TableName': settings.DYNAMODB_LOYALTY_AUDITS_TABLE,
            'KeySchema': [{'AttributeName': 'audit_id', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'audit_id', 'AttributeType': 'S'}],
        },
        {
            'TableName': settings.DYNAMODB_SECRETS_TABLE,
            'KeySchema': [{'AttributeName': 'added_for', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'added_for', 'AttributeType': 'S'}],
        },
        {
            'TableName': settings.DYNAMODB_COUNTERS_TABLE,
            'KeySchema': [{'AttributeName': 'counter_name', 'KeyType': 'HASH'}],
            'AttributeDefinitions': [{'AttributeName': 'counter_name', 'AttributeType': 'S'}],
        },
    ]


class DatabaseManager:
    """
    DynamoDB connection manager.

    Thread Safety:
    - The boto3 resource is created once under a lock and shared; every
      repository call is pushed onto a worker thread via asyncio.to_thread
    """

    def __init__(self, region: Optional[str] = None, endpoint_url: Optional[str] = None):
        self._aws_region = region or settings.AWS_REGION
        self._dynamodb_endpoint = endpoint_url or settings.DYNAMODB_ENDPOINT
        self._dynamodb_resource: Optional[Any] = None
        self._lock = threading.Lock()

        self._max_pool_connections = int(os.getenv('BOTO_MAX_POOL_CONNECTIONS', '25'))
        self._connect_timeout = int(os.getenv('BOTO_CONNECT_TIMEOUT', '5'))
        self._read_timeout = int(os.getenv('BOTO_READ_TIMEOUT', '30'))
        self._max_retry_attempts = int(os.getenv('BOTO_MAX_RETRY_ATTEMPTS', '3'))
        self._retry_mode = os.getenv('BOTO_RETRY_MODE', 'standard')

        self._boto_config = _create_boto_config(
            max_pool_connections=self._max_pool_connections,
            connect_timeout=self._connect_timeout,
            read_timeout=self._read_timeout,
            max_attempts=self._max_retry_attempts,
            retry_mode=self._retry_mode
        )

    def get_dynamodb(self):
        """Return the shared DynamoDB resource, creating it on first use"""
        if self._dynamodb_resource is None:
            with self._lock:
                if self._dynamodb_resource is None:
                    kwargs = {
                        'region_name': self._aws_region,
                        'config': self._boto_config
                    }
                    if self._dynamodb_endpoint:
                        kwargs['endpoint_url'] = self._dynamodb_endpoint
                        logger.info(f"Using local DynamoDB endpoint: {self._dynamodb_endpoint}")

                    self._dynamodb_resource = boto3.resource('dynamodb', **kwargs)
                    logger.info(
                        f"DynamoDB initialized: region={self._aws_region}, "
                        f"pool_size={self._max_pool_connections}, retry_mode={self._retry_mode}"
                    )
        return self._dynamodb_resource

    def table(self, name: str):
        """Get a Table handle by name"""
        return self.get_dynamodb().Table(name)

    def create_tables(self) -> List[str]:
        """
        Create any missing application tables (on-demand billing).

        Returns:
            Names of the tables that were created
        """
        dynamodb = self.get_dynamodb()
        existing = {t.name for t in dynamodb.tables.all()}
        created = []

        for definition in table_definitions():
            if definition['TableName'] in existing:
                continue
            params = dict(definition, BillingMode='PAY_PER_REQUEST')
            table = dynamodb.create_table(**params)
            table.wait_until_exists()
            created.append(definition['TableName'])
            logger.info(f"Created table {definition['TableName']}")

        return created

    def health_check(self) -> Dict[str, Any]:
        """Describe the orders table to confirm connectivity"""
        try:
            client = self.get_dynamodb().meta.client
            client.describe_table(TableName=settings.DYNAMODB_ORDERS_TABLE)
            return {"dynamodb": True}
        except ClientError as e:
            logger.error(f"DynamoDB health check failed: {e}")
            return {"dynamodb": False, "error": e.response['Error']['Code']}


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Get or create the global DatabaseManager instance"""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


def reset_db_manager(manager: Optional[DatabaseManager] = None) -> None:
    """Replace (or drop) the global manager; used by tests and scripts"""
    global _db_manager
    _db_manager = manager
