"""
Shared helpers for the DynamoDB repositories
"""

import base64
import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def decimal_to_float(obj: Any) -> Any:
    """Convert Decimal values to float recursively for JSON serialization"""
    if isinstance(obj, Decimal):
        return float(obj)
    elif isinstance(obj, dict):
        return {k: decimal_to_float(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [decimal_to_float(item) for item in obj]
    return obj


def float_to_decimal(obj: Any) -> Any:
    """Convert float values to Decimal recursively for DynamoDB compatibility"""
    if isinstance(obj, float):
        return Decimal(str(obj))
    elif isinstance(obj, dict):
        return {k: float_to_decimal(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [float_to_decimal(item) for item in obj]
    return obj


def to_attr(value: Any) -> Any:
    """Convert a Python value into something the boto3 serializer accepts"""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return to_item(value)
    if isinstance(value, (list, tuple)):
        return [to_attr(v) for v in value]
    return float_to_decimal(value)


def to_item(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Prepare a dict for put_item: floats become Decimal, enums their value,
    and None values are dropped (index key attributes may not be NULL, and
    an absent attribute reads back as None anyway).
    """
    return {key: to_attr(value) for key, value in data.items() if value is not None}


def as_int(value: Any, default: int = 0) -> int:
    return int(value) if value is not None else default


def as_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None:
        return default
    return value if isinstance(value, Decimal) else Decimal(str(value))


def is_conditional_check_failed(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException'


def encode_cursor(last_evaluated_key: Optional[Dict]) -> Optional[str]:
    """Encode LastEvaluatedKey as base64 cursor for pagination"""
    if not last_evaluated_key:
        return None
    json_str = json.dumps(decimal_to_float(last_evaluated_key))
    return base64.urlsafe_b64encode(json_str.encode()).decode()


def decode_cursor(cursor: Optional[str]) -> Optional[Dict]:
    """Decode base64 cursor to LastEvaluatedKey; a malformed cursor restarts paging"""
    if not cursor:
        return None
    try:
        return float_to_decimal(json.loads(base64.urlsafe_b64decode(cursor.encode()).decode()))
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to decode pagination cursor: {e}")
        return None
