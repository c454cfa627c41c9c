"""
Coupon Claim Store - coupons and their usage audit in DynamoDB

Tables:
- storefront-coupons-{env}: PK code (uppercase). used_count is a counter and
  used_by a string set of user ids, both mutated only by conditional updates.
- storefront-coupon-usages-{env}: append-only CouponUsage audit rows.

try_claim checks activity, the global limit and the per-user rule and
records the claim in ONE UpdateItem, so the limit holds under concurrency.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Set

from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from ..core.config import settings
from ..core.database import get_db_manager, DatabaseManager
from ..core.exceptions import ConflictError, DatabaseError
from .utils import utc_now_iso, to_item, as_int, as_decimal, is_conditional_check_failed

logger = logging.getLogger(__name__)

COUPON_TYPE_PERCENTAGE = "percentage"
COUPON_TYPE_FIXED = "fixed"


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


@dataclass
class Coupon:
    code: str
    coupon_id: str
    type: str
    value: Decimal
    min_order_amount: Optional[Decimal] = None
    max_discount_amount: Optional[Decimal] = None
    start_at: Optional[str] = None
    end_at: Optional[str] = None
    global_usage_limit: Optional[int] = None
    per_user_usage_limit: int = 1
    used_count: int = 0
    used_by: Set[str] = field(default_factory=set)
    first_order_only: bool = False
    is_active: bool = True
    description: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_item(cls, item: dict) -> "Coupon":
        limit = item.get('global_usage_limit')
        return cls(
            code=item['code'],
            coupon_id=item.get('coupon_id', item['code']),
            type=item.get('type', COUPON_TYPE_FIXED),
            value=as_decimal(item.get('value'), Decimal("0")),
            min_order_amount=as_decimal(item.get('min_order_amount')),
            max_discount_amount=as_decimal(item.get('max_discount_amount')),
            start_at=item.get('start_at'),
            end_at=item.get('end_at'),
            global_usage_limit=int(limit) if limit is not None else None,
            per_user_usage_limit=as_int(item.get('per_user_usage_limit'), 1),
            used_count=as_int(item.get('used_count')),
            used_by=set(item.get('used_by') or ()),
            first_order_only=bool(item.get('first_order_only', False)),
            is_active=bool(item.get('is_active', True)),
            description=item.get('description'),
            created_at=item.get('created_at'),
            updated_at=item.get('updated_at'),
        )

    def to_item(self) -> dict:
        data = {
            'code': self.code,
            'coupon_id': self.coupon_id,
            'type': self.type,
            'value': self.value,
            'min_order_amount': self.min_order_amount,
            'max_discount_amount': self.max_discount_amount,
            'start_at': self.start_at,
            'end_at': self.end_at,
            'global_usage_limit': self.global_usage_limit,
            'per_user_usage_limit': self.per_user_usage_limit,
            'used_count': self.used_count,
            'first_order_only': self.first_order_only,
            'is_active': self.is_active,
            'description': self.description,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
        item = to_item(data)
        # DynamoDB rejects empty sets
        if self.used_by:
            item['used_by'] = set(self.used_by)
        return item


@dataclass
class CouponUsage:
    """Audit row written after a successful claim"""
    usage_id: str
    coupon_id: str
    coupon_code: str
    user_id: str
    order_id: Optional[str]
    discount_amount: Optional[Decimal]
    used_at: str


class CouponRepository:
    """DynamoDB access for coupons and coupon usage audit"""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self._db = db

    @property
    def coupons(self):
        return (self._db or get_db_manager()).table(settings.DYNAMODB_COUPONS_TABLE)

    @property
    def usages(self):
        return (self._db or get_db_manager()).table(settings.DYNAMODB_COUPON_USAGES_TABLE)

    async def create(self, coupon: Coupon) -> Coupon:
        """Insert a new coupon; the code must be unused"""
        coupon.code = normalize_code(coupon.code)
        coupon.created_at = coupon.created_at or utc_now_iso()
        coupon.updated_at = coupon.created_at
        try:
            await asyncio.to_thread(
                self.coupons.put_item,
                Item=coupon.to_item(),
                ConditionExpression='attribute_not_exists(#code)',
                ExpressionAttributeNames={'#code': 'code'}
            )
        except ClientError as e:
            if is_conditional_check_failed(e):
                raise ConflictError(f"Coupon '{coupon.code}' already exists", {"code": coupon.code})
            raise DatabaseError("Failed to create coupon", {"aws_error": e.response['Error']['Code']})
        logger.info(f"Coupon {coupon.code} created ({coupon.type} {coupon.value})")
        return coupon

    async def get(self, code: str) -> Optional[Coupon]:
        response = await asyncio.to_thread(
            self.coupons.get_item,
            Key={'code': normalize_code(code)},
            ConsistentRead=True
        )
        item = response.get('Item')
        return Coupon.from_item(item) if item else None

    async def list_active(self) -> List[Coupon]:
        items = []
        kwargs = {'FilterExpression': Attr('is_active').eq(True)}
        while True:
            response = await asyncio.to_thread(self.coupons.scan, **kwargs)
            items.extend(response.get('Items', []))
            if 'LastEvaluatedKey' not in response:
                break
            kwargs['ExclusiveStartKey'] = response['LastEvaluatedKey']
        return [Coupon.from_item(i) for i in items]

    async def deactivate(self, code: str) -> bool:
        try:
            await asyncio.to_thread(
                self.coupons.update_item,
                Key={'code': normalize_code(code)},
                UpdateExpression='SET #active = :false, #updated = :now',
                ConditionExpression='attribute_exists(#code)',
                ExpressionAttributeNames={'#active': 'is_active', '#updated': 'updated_at', '#code': 'code'},
                ExpressionAttributeValues={':false': False, ':now': utc_now_iso()}
            )
            return True
        except ClientError as e:
            if is_conditional_check_failed(e):
                return False
            raise DatabaseError("Failed to deactivate coupon", {"aws_error": e.response['Error']['Code']})

    async def try_claim(self, code: str, user_id: str) -> Optional[Coupon]:
        """
        Atomically claim a coupon for a user.

        One conditional update checks that the coupon is active, that
        used_count is below global_usage_limit (when set) and, when the
        per-user limit is 1, that the user is not in used_by. On success
        used_count is incremented and the user recorded.

        Returns:
            The updated coupon, or None when any condition failed
        """
        try:
            response = await asyncio.to_thread(
                self.coupons.update_item,
                Key={'code': normalize_code(code)},
                UpdateExpression='ADD #used :one, #used_by :user_set SET #updated = :now',
                ConditionExpression=(
                    'attribute_exists(#code) AND #active = :true '
                    'AND (attribute_not_exists(#limit) OR #used < #limit) '
                    'AND (attribute_not_exists(#per_user) OR #per_user <> :one '
                    'OR attribute_not_exists(#used_by) OR NOT contains(#used_by, :user_id))'
                ),
                ExpressionAttributeNames={
                    '#code': 'code',
                    '#active': 'is_active',
                    '#used': 'used_count',
                    '#limit': 'global_usage_limit',
                    '#per_user': 'per_user_usage_limit',
                    '#used_by': 'used_by',
                    '#updated': 'updated_at',
                },
                ExpressionAttributeValues={
                    ':one': 1,
                    ':true': True,
                    ':user_set': {user_id},
                    ':user_id': user_id,
                    ':now': utc_now_iso(),
                },
                ReturnValues='ALL_NEW'
            )
        except ClientError as e:
            if is_conditional_check_failed(e):
                logger.info(f"Coupon {code} could not be claimed by {user_id}")
                return None
            raise DatabaseError("Coupon claim failed", {"aws_error": e.response['Error']['Code']})

        return Coupon.from_item(response['Attributes'])

    async def undo_claim(self, code: str, user_id: str) -> bool:
        """Reverse a claim: decrement used_count and drop the user from used_by"""
        # used_by is a set, so with several claims by one user it loses the user
        # after the first undo. It is only consulted when per_user_usage_limit is 1.
        try:
            await asyncio.to_thread(
                self.coupons.update_item,
                Key={'code': normalize_code(code)},
                UpdateExpression='ADD #used :minus_one DELETE #used_by :user_set SET #updated = :now',
                ConditionExpression='attribute_exists(#code) AND #used > :zero',
                ExpressionAttributeNames={
                    '#code': 'code',
                    '#used': 'used_count',
                    '#used_by': 'used_by',
                    '#updated': 'updated_at',
                },
                ExpressionAttributeValues={
                    ':minus_one': -1,
                    ':zero': 0,
                    ':user_set': {user_id},
                    ':now': utc_now_iso(),
                }
            )
            return True
        except ClientError as e:
            if is_conditional_check_failed(e):
                logger.warning(f"Undo claim for coupon {code} / {user_id} had nothing to undo")
                return False
            raise DatabaseError("Coupon undo failed", {"aws_error": e.response['Error']['Code']})

    async def has_user_used(self, code: str, user_id: str) -> bool:
        coupon = await self.get(code)
        return bool(coupon and user_id in coupon.used_by)

    async def record_usage(
        self,
        coupon: Coupon,
        user_id: str,
        order_id: Optional[str],
        discount_amount: Optional[Decimal]
    ) -> Optional[CouponUsage]:
        """
        Append a CouponUsage audit row. Best-effort: a failed write is logged
        and does not undo the claim.
        """
        usage = CouponUsage(
            usage_id=str(uuid.uuid4()),
            coupon_id=coupon.coupon_id,
            coupon_code=coupon.code,
            user_id=user_id,
            order_id=order_id,
            discount_amount=discount_amount,
            used_at=utc_now_iso(),
        )
        try:
            await asyncio.to_thread(self.usages.put_item, Item=to_item(usage.__dict__))
            return usage
        except ClientError as e:
            logger.error(f"Failed to write coupon usage audit for {coupon.code}/{order_id}: {e}")
            return None

    async def list_usages(self, code: str) -> List[CouponUsage]:
        response = await asyncio.to_thread(
            self.usages.query,
            IndexName='coupon-index',
            KeyConditionExpression=Key('coupon_code').eq(normalize_code(code))
        )
        return [
            CouponUsage(
                usage_id=i['usage_id'],
                coupon_id=i['coupon_id'],
                coupon_code=i['coupon_code'],
                user_id=i['user_id'],
                order_id=i.get('order_id'),
                discount_amount=as_decimal(i.get('discount_amount')),
                used_at=i['used_at'],
            )
            for i in response.get('Items', [])
        ]
