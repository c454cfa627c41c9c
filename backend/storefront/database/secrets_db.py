"""
Third-party credentials stored in DynamoDB

Table: storefront-secrets-{env}, PK added_for ("RazorPay", "DELHIVERY", ...).
Read on every call and never cached, so rotated keys take effect on the
next request.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import DynamoRepository

logger = logging.getLogger(__name__)


@dataclass
class PaymentSecrets:
    key_id_inr: Optional[str] = None
    key_secret_inr: Optional[str] = None
    key_id_intl: Optional[str] = None
    key_secret_intl: Optional[str] = None

    def for_currency(self, currency: Optional[str]):
        """(key_id, key_secret) for the currency; INR uses the domestic pair"""
        if (currency or "INR").upper() == "INR":
            return self.key_id_inr, self.key_secret_inr
        return self.key_id_intl, self.key_secret_intl


@dataclass
class CourierSecrets:
    api_token: Optional[str] = None
    pickup_location: Optional[str] = None


class SecretsRepository(DynamoRepository):
    table_setting = "DYNAMODB_SECRETS_TABLE"
    key_name = "added_for"

    async def put(self, added_for: str, values: Dict[str, Any]) -> None:
        await self._put({'added_for': added_for, **values})

    async def get_payment_secrets(self, added_for: str) -> Optional[PaymentSecrets]:
        item = await self._get(added_for)
        if not item:
            return None
        return PaymentSecrets(
            key_id_inr=item.get('key_id_inr'),
            key_secret_inr=item.get('key_secret_inr'),
            key_id_intl=item.get('key_id_intl'),
            key_secret_intl=item.get('key_secret_intl'),
        )

    async def get_courier_secrets(self, added_for: str) -> Optional[CourierSecrets]:
        item = await self._get(added_for)
        if not item:
            return None
        return CourierSecrets(
            api_token=item.get('api_token'),
            pickup_location=item.get('pickup_location'),
        )
