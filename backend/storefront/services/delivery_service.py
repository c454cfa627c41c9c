"""
Delivery Service - Delhivery courier client and shipment linkage

A shipment always belongs to exactly one Order, Buyback or Return. The
linkage writes delivery_details onto that record and, for courier webhooks
that only carry an AWB, finds the owner by checking orders first, then
buybacks, then returns.
"""

import hmac
import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional, Tuple

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..core.config import settings
from ..core.exceptions import ConfigurationError, CourierError, NotFoundError
from ..database.buyback_db import BuybackRepository
from ..database.order_db import OrderRepository
from ..database.return_db import ReturnRepository
from ..database.secrets_db import CourierSecrets, SecretsRepository
from ..database.utils import utc_now_iso
from ..models.delivery import (
    CourierActionResponse, CourierPincodeResponse, CourierShipmentResponse, CourierTrackResponse,
    DeliveryWebhookPayload, ShipmentRequest,
)
from ..models.status import DeliveryStatus, ReferenceType

logger = logging.getLogger(__name__)

COURIER_NAME = "DELHIVERY"

# Courier status text (normalized) -> internal status
COURIER_STATUS_MAP = {
    "MANIFESTED": DeliveryStatus.PICKUP_SCHEDULED,
    "OPEN": DeliveryStatus.PICKUP_SCHEDULED,
    "SCHEDULED": DeliveryStatus.PICKUP_SCHEDULED,
    "PICKUP_SCHEDULED": DeliveryStatus.PICKUP_SCHEDULED,
    "NOT_PICKED": DeliveryStatus.PICKUP_SCHEDULED,
    "PICKED": DeliveryStatus.PICKED_UP,
    "PICKED_UP": DeliveryStatus.PICKED_UP,
    "IN_TRANSIT": DeliveryStatus.IN_TRANSIT,
    "DISPATCHED": DeliveryStatus.IN_TRANSIT,
    "OUT_FOR_DELIVERY": DeliveryStatus.OUT_FOR_DELIVERY,
    "DELIVERED": DeliveryStatus.DELIVERED,
    "RTO": DeliveryStatus.RTO,
    "RTO_INITIATED": DeliveryStatus.RTO,
    "RTO_IN_TRANSIT": DeliveryStatus.RTO,
    "RTO_DELIVERED": DeliveryStatus.RTO,
    "RETURNED": DeliveryStatus.RTO,
    "CANCELLED": DeliveryStatus.CANCELLED,
    "CANCELED": DeliveryStatus.CANCELLED,
    "FAILED": DeliveryStatus.FAILED,
    "UNDELIVERED": DeliveryStatus.FAILED,
    "LOST": DeliveryStatus.FAILED,
}


def map_courier_status(raw: Optional[str]) -> DeliveryStatus:
    """Map courier status text to the internal vocabulary; unknown is IN_TRANSIT"""
    if not raw:
        return DeliveryStatus.IN_TRANSIT
    normalized = "_".join(raw.strip().upper().replace("-", " ").split())
    return COURIER_STATUS_MAP.get(normalized, DeliveryStatus.IN_TRANSIT)


def verify_webhook_token(token: Optional[str]) -> bool:
    if not token:
        return False
    return hmac.compare_digest(token.encode("utf-8"), settings.DELIVERY_WEBHOOK_TOKEN.encode("utf-8"))


class DelhiveryClient:
    """Thin client for the Delhivery REST API"""

    def __init__(
        self,
        secrets: Optional[SecretsRepository] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.secrets = secrets or SecretsRepository()
        self.base_url = (base_url or settings.DELHIVERY_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.COURIER_TIMEOUT_SECONDS
        self._transport = transport

    async def _credentials(self) -> CourierSecrets:
        secrets = await self.secrets.get_courier_secrets(settings.COURIER_SECRETS_KEY)
        if secrets is None or not secrets.api_token:
            logger.error("[Delhivery] API token missing in secrets")
            raise ConfigurationError("Delhivery API token not configured")
        return secrets

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        credentials: Optional[CourierSecrets] = None,
    ) -> httpx.Response:
        credentials = credentials or await self._credentials()
        headers = {"Authorization": f"Token {credentials.api_token}", "Accept": "application/json"}

        logger.info(f"[Delhivery] {method} {path}")
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                         transport=self._transport) as client:
                response = await client.request(method, path, data=data, params=params, headers=headers)
        except httpx.TimeoutException:
            logger.error(f"[Delhivery] Timeout calling {path}")
            raise CourierError("Courier timed out")
        except httpx.HTTPError as e:
            logger.error(f"[Delhivery] HTTP error: {str(e)}")
            raise CourierError(f"Courier unreachable: {str(e)}")

        logger.debug(f"[Delhivery] Response {response.status_code}: {response.text[:500]}")
        if response.status_code >= 400:
            raise CourierError(f"Delhivery API error on {path}", response.status_code, response.text)
        return response

    @staticmethod
    def _decode(model, response: httpx.Response):
        if response.text.lstrip().lower().startswith("<!doctype html"):
            raise CourierError("Delhivery returned HTML; check endpoint and token",
                               response.status_code, response.text[:500])
        try:
            return model.model_validate_json(response.text)
        except PydanticValidationError as e:
            logger.error(f"[Delhivery] Unexpected {model.__name__} payload: {e.error_count()} error(s)")
            raise CourierError(f"Unexpected {model.__name__} payload", response.status_code, response.text)

    def _shipment_payload(self, request: ShipmentRequest, pickup_location: Optional[str]) -> Dict[str, Any]:
        if request.is_international:
            shipment = {
                "order": request.reference_id,
                "consignee_name": request.drop_name,
                "consignee_address": request.drop_address,
                "add": request.drop_address,
                "phone": request.drop_phone,
                "destination_country": request.country_code,
                "commodity": request.commodity,
                "weight": str(request.weight),
                "declared_value": str(request.declared_value or 0),
                "currency": request.currency,
                "payment_mode": "Prepaid",
            }
        else:
            shipment = {
                "order": request.reference_id,
                "weight": str(request.weight),
                "pin": request.drop_pincode,
                "products_desc": "Clothes",
                "add": request.drop_address,
                "state": request.drop_state,
                "city": request.drop_city,
                "phone": request.drop_phone,
                "name": request.drop_name,
                "payment_mode": "COD" if request.is_cod else "Prepaid",
                "total_amount": str(request.total_amount or 0),
                "cod_amount": str(request.cod_amount if request.is_cod else 0),
                "country": "India",
            }
            if request.is_reverse:
                shipment["payment_mode"] = "Pickup"
                shipment.update({
                    "return_name": request.pickup_name,
                    "return_phone": request.pickup_phone,
                    "return_add": request.pickup_address,
                    "return_pin": request.pickup_pincode,
                })
        return {"pickup_location": {"name": pickup_location}, "shipments": [shipment]}

    async def create_shipment(self, request: ShipmentRequest) -> str:
        """Create the shipment and return its waybill (AWB)"""
        credentials = await self._credentials()
        if not credentials.pickup_location:
            raise ConfigurationError("Delhivery pickup location not configured")

        payload = self._shipment_payload(request, credentials.pickup_location)
        response = await self._request(
            "POST", "/api/cmu/create.json",
            data={"format": "json", "data": json.dumps(payload)},
            credentials=credentials,
        )
        body = self._decode(CourierShipmentResponse, response)

        waybill = body.packages[0].waybill if body.packages else None
        if not body.success or not waybill:
            kind = "International" if request.is_international else "Domestic"
            raise CourierError(f"{kind} shipment failed", response.status_code, response.text)

        logger.info(f"[Delhivery] Shipment {waybill} created for {request.reference_type.value} "
                    f"{request.reference_id}")
        return waybill

    async def track(self, awb: str) -> Dict[str, Any]:
        response = await self._request("GET", "/api/v1/packages/json/", params={"waybill": awb})
        return self._decode(CourierTrackResponse, response).model_dump()

    async def cancel(self, awb: str) -> Dict[str, Any]:
        response = await self._request("POST", "/api/p/edit", data={"waybill": awb, "cancellation": "true"})
        return self._decode(CourierActionResponse, response).model_dump()

    async def schedule_pickup(self, awb: str, pickup_date: Optional[date] = None) -> Dict[str, Any]:
        pickup_date = pickup_date or datetime.now(timezone.utc).date()
        response = await self._request(
            "POST", "/api/p/pickup", data={"waybill": awb, "pickup_date": pickup_date.isoformat()}
        )
        return self._decode(CourierActionResponse, response).model_dump()

    async def check_pincode(self, pincode: str) -> Dict[str, Any]:
        logger.info(f"[Delhivery] Checking pincode serviceability: {pincode}")
        response = await self._request("GET", "/c/api/pin-codes/json/", params={"filter_codes": pincode})
        return self._decode(CourierPincodeResponse, response).model_dump()


class ShipmentLinkage:
    """Routes delivery updates to the record that owns a shipment"""

    def __init__(
        self,
        orders: Optional[OrderRepository] = None,
        buybacks: Optional[BuybackRepository] = None,
        returns: Optional[ReturnRepository] = None,
    ):
        self.orders = orders or OrderRepository()
        self.buybacks = buybacks or BuybackRepository()
        self.returns = returns or ReturnRepository()

    def _repository(self, reference_type: ReferenceType):
        return {
            ReferenceType.ORDER: self.orders,
            ReferenceType.BUYBACK: self.buybacks,
            ReferenceType.RETURN: self.returns,
        }[ReferenceType(reference_type)]

    async def exists(self, reference_id: str, reference_type: ReferenceType) -> bool:
        return await self._repository(reference_type).get(reference_id) is not None

    async def update_delivery_details(
        self, reference_id: str, reference_type: ReferenceType, details: Dict[str, Any]
    ) -> bool:
        return await self._repository(reference_type).update_delivery_details(reference_id, details)

    async def update_delivery_status(
        self,
        reference_id: str,
        reference_type: ReferenceType,
        status: DeliveryStatus,
        extra: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return await self._repository(reference_type).update_delivery_status(reference_id, status, extra)

    async def resolve_by_awb(self, awb: str) -> Optional[Tuple[ReferenceType, str]]:
        """(reference_type, reference_id) owning the AWB; Order, then Buyback, then Return"""
        for reference_type in (ReferenceType.ORDER, ReferenceType.BUYBACK, ReferenceType.RETURN):
            reference_id = await self._repository(reference_type).find_by_awb(awb)
            if reference_id:
                return reference_type, reference_id
        return None


class DeliveryService:

    def __init__(self, client: Optional[DelhiveryClient] = None, linkage: Optional[ShipmentLinkage] = None):
        self.client = client or DelhiveryClient()
        self.linkage = linkage or ShipmentLinkage()

    async def create_shipment(self, request: ShipmentRequest) -> Dict[str, Any]:
        if not await self.linkage.exists(request.reference_id, request.reference_type):
            raise NotFoundError(
                f"{request.reference_type.value} '{request.reference_id}' not found",
                {"reference_id": request.reference_id, "reference_type": request.reference_type.value}
            )

        awb = await self.client.create_shipment(request)
        now = utc_now_iso()
        details = {
            "awb": awb,
            "courier": COURIER_NAME,
            "status": DeliveryStatus.READY_TO_SHIP.value,
            "type": request.reference_type.value,
            "is_cod": request.is_cod,
            "cod_amount": request.cod_amount if request.is_cod else 0,
            "is_international": request.is_international,
            "created_at": now,
            "updated_at": now,
        }
        if not await self.linkage.update_delivery_details(request.reference_id, request.reference_type, details):
            logger.error(f"Shipment {awb} created but could not be linked to "
                         f"{request.reference_type.value} {request.reference_id}")
        return details

    async def handle_webhook(self, payload: DeliveryWebhookPayload) -> Dict[str, Any]:
        """Apply a courier status push to the record that owns the AWB"""
        status = map_courier_status(payload.status)
        resolved = await self.linkage.resolve_by_awb(payload.awb)
        if resolved is None:
            logger.warning(f"Webhook for unknown AWB {payload.awb}")
            raise NotFoundError(f"Shipment '{payload.awb}' not found", {"awb": payload.awb})

        reference_type, reference_id = resolved
        updated = await self.linkage.update_delivery_status(reference_id, reference_type, status, {
            "courier_status": payload.status,
            "status_code": payload.status_code,
            "status_datetime": payload.status_datetime,
            "location": payload.location,
        })
        if not updated:
            raise NotFoundError(f"Shipment '{payload.awb}' has no delivery details", {"awb": payload.awb})

        logger.info(f"AWB {payload.awb} ({reference_type.value} {reference_id}) -> {status.value}")
        return {"awb": payload.awb, "reference_type": reference_type,
                "reference_id": reference_id, "status": status}

    async def _set_status(self, awb: str, status: DeliveryStatus) -> None:
        resolved = await self.linkage.resolve_by_awb(awb)
        if resolved is None:
            logger.warning(f"AWB {awb} is not linked to any order, buyback or return")
            return
        reference_type, reference_id = resolved
        await self.linkage.update_delivery_status(reference_id, reference_type, status)

    async def track(self, awb: str) -> Dict[str, Any]:
        return await self.client.track(awb)

    async def cancel(self, awb: str) -> Dict[str, Any]:
        result = await self.client.cancel(awb)
        await self._set_status(awb, DeliveryStatus.CANCELLED)
        return result

    async def schedule_pickup(self, awb: str, pickup_date: Optional[date] = None) -> Dict[str, Any]:
        result = await self.client.schedule_pickup(awb, pickup_date)
        await self._set_status(awb, DeliveryStatus.PICKUP_SCHEDULED)
        return result

    async def check_pincode(self, pincode: str) -> Dict[str, Any]:
        return await self.client.check_pincode(pincode)


def get_delivery_service() -> DeliveryService:
    return DeliveryService()
