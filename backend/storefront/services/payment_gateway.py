"""
Razorpay Payment Gateway Adapter

Talks to the Razorpay REST API over httpx and checks checkout signatures
with the razorpay SDK. Key pairs are read from the secrets table on every
call so a rotated key is picked up by the next request. Expected failures
(bad amount, network error, non-2xx, malformed body) come back inside the
result objects; callers never see an exception from create_order or
create_refund.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import httpx
import razorpay
from pydantic import ValidationError as PydanticValidationError

from ..core.config import settings
from ..core.exceptions import GatewayDecodeError
from ..core.money import to_minor_units
from ..database.secrets_db import SecretsRepository
from ..models.payment import (
    GatewayErrorResponse,
    GatewayOrderRequest,
    GatewayOrderResponse,
    GatewayRefundRequest,
    GatewayRefundResponse,
)

logger = logging.getLogger(__name__)


@dataclass
class GatewayOrderResult:
    success: bool
    gateway_order_id: Optional[str] = None
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    key_id: Optional[str] = None
    status_code: Optional[int] = None
    raw: Optional[str] = None
    error: Optional[str] = None


@dataclass
class RefundResult:
    success: bool
    refund_id: Optional[str] = None
    status: Optional[str] = None
    status_code: Optional[int] = None
    raw: Optional[str] = None
    error: Optional[str] = None


def _error_message(response: httpx.Response) -> str:
    """Best description of a non-2xx gateway response"""
    try:
        body = GatewayErrorResponse.model_validate_json(response.text)
        if body.error.description:
            return body.error.description
    except PydanticValidationError:
        pass
    return f"Gateway returned HTTP {response.status_code}"


def _decode(model, response: httpx.Response):
    try:
        return model.model_validate_json(response.text)
    except PydanticValidationError as e:
        raise GatewayDecodeError(f"Unexpected {model.__name__} payload: {e.error_count()} error(s)",
                                 raw=response.text)


class RazorpayGateway:
    """Order creation, signature verification and refunds"""

    def __init__(
        self,
        secrets: Optional[SecretsRepository] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secrets = secrets or SecretsRepository()
        self.base_url = (base_url or settings.RAZORPAY_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT_SECONDS
        self._transport = transport

    async def _credentials(self, currency: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
        secrets = await self.secrets.get_payment_secrets(settings.PAYMENT_SECRETS_KEY)
        if secrets is None:
            return None, None
        return secrets.for_currency(currency)

    def _client(self, key_id: str, key_secret: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(key_id, key_secret),
            timeout=self.timeout,
            transport=self._transport,
        )

    async def create_order(self, amount: Decimal, currency: str, receipt: str) -> GatewayOrderResult:
        """Create a gateway order for amount (major units)"""
        amount_minor = to_minor_units(amount)
        if amount_minor <= 0:
            return GatewayOrderResult(success=False, error="Amount must be greater than zero")

        key_id, key_secret = await self._credentials(currency)
        if not key_id or not key_secret:
            logger.error(f"[Razorpay] No key pair configured for {currency}")
            return GatewayOrderResult(success=False, error="Payment gateway is not configured")

        payload = GatewayOrderRequest(amount=amount_minor, currency=currency, receipt=receipt)
        try:
            async with self._client(key_id, key_secret) as client:
                response = await client.post("/v1/orders", json=payload.model_dump())

            if response.status_code >= 400:
                message = _error_message(response)
                logger.error(f"[Razorpay] Order creation failed ({response.status_code}): {message}")
                return GatewayOrderResult(success=False, status_code=response.status_code,
                                          raw=response.text, error=message)

            body = _decode(GatewayOrderResponse, response)
            logger.info(f"[Razorpay] Created order {body.id} for receipt {receipt}")
            return GatewayOrderResult(
                success=True,
                gateway_order_id=body.id,
                amount_minor=body.amount,
                currency=body.currency,
                key_id=key_id,
                status_code=response.status_code,
                raw=response.text,
            )

        except GatewayDecodeError as e:
            logger.error(f"[Razorpay] {e.message}")
            return GatewayOrderResult(success=False, status_code=response.status_code,
                                      raw=e.raw, error=e.message)
        except httpx.TimeoutException:
            logger.error(f"[Razorpay] Timeout creating order for receipt {receipt}")
            return GatewayOrderResult(success=False, error="Payment gateway timed out")
        except httpx.HTTPError as e:
            logger.error(f"[Razorpay] HTTP error: {str(e)}")
            return GatewayOrderResult(success=False, error=f"Payment gateway unreachable: {str(e)}")

    async def verify_signature(
        self,
        order_id: Optional[str],
        payment_id: Optional[str],
        signature: Optional[str],
        currency: Optional[str] = None,
    ) -> bool:
        """Check the checkout signature with the SDK utility; any failure is False"""
        if not order_id or not payment_id or not signature:
            return False
        try:
            key_id, key_secret = await self._credentials(currency)
            if not key_secret:
                logger.error("[Razorpay] Cannot verify signature without a key secret")
                return False

            razorpay_client = razorpay.Client(auth=(key_id or "", key_secret))
            razorpay_client.utility.verify_payment_signature({
                'razorpay_order_id': order_id,
                'razorpay_payment_id': payment_id,
                'razorpay_signature': signature.strip(),
            })
            return True

        except razorpay.errors.SignatureVerificationError:
            logger.warning(f"[Razorpay] Signature mismatch for order {order_id}, payment {payment_id}")
            return False
        except Exception as e:
            logger.warning(f"[Razorpay] Signature verification error: {str(e)}")
            return False

    async def create_refund(
        self,
        payment_id: str,
        amount: Decimal,
        instant: bool = True,
        notes: Optional[Dict[str, Any]] = None,
        currency: Optional[str] = None,
    ) -> RefundResult:
        """Refund amount (major units) against a captured payment"""
        amount_minor = to_minor_units(amount)
        if amount_minor <= 0:
            return RefundResult(success=False, error="Refund amount must be greater than zero")
        if not payment_id:
            return RefundResult(success=False, error="payment_id is required")

        key_id, key_secret = await self._credentials(currency)
        if not key_id or not key_secret:
            logger.error(f"[Razorpay] No key pair configured for {currency or 'INR'}")
            return RefundResult(success=False, error="Payment gateway is not configured")

        payload = GatewayRefundRequest(
            amount=amount_minor,
            speed="optimum" if instant else "normal",
            notes={k: str(v) for k, v in (notes or {}).items()},
        )
        try:
            async with self._client(key_id, key_secret) as client:
                response = await client.post(f"/v1/payments/{payment_id}/refund", json=payload.model_dump())

            if response.status_code >= 400:
                message = _error_message(response)
                logger.error(f"[Razorpay] Refund for {payment_id} failed ({response.status_code}): {message}")
                return RefundResult(success=False, status_code=response.status_code,
                                    raw=response.text, error=message)

            body = _decode(GatewayRefundResponse, response)
            logger.info(f"[Razorpay] Refund {body.id} created for {payment_id}: {body.status}")
            return RefundResult(
                success=True,
                refund_id=body.id,
                status=body.status,
                status_code=response.status_code,
                raw=response.text,
            )

        except GatewayDecodeError as e:
            logger.error(f"[Razorpay] {e.message}")
            return RefundResult(success=False, status_code=response.status_code, raw=e.raw, error=e.message)
        except httpx.TimeoutException:
            logger.error(f"[Razorpay] Timeout refunding {payment_id}")
            return RefundResult(success=False, error="Payment gateway timed out")
        except httpx.HTTPError as e:
            logger.error(f"[Razorpay] HTTP error: {str(e)}")
            return RefundResult(success=False, error=f"Payment gateway unreachable: {str(e)}")
