"""
Delivery endpoints: Delhivery shipments, tracking and the courier webhook
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Path, status

from ...core.exceptions import AuthenticationError
from ...core.security import get_current_admin, get_current_user
from ...models.delivery import (
    CourierResponse,
    DeliveryDetailsResponse,
    DeliveryWebhookPayload,
    DeliveryWebhookResponse,
    PickupRequest,
    ShipmentRequest,
)
from ...services.delivery_service import DeliveryService, get_delivery_service, verify_webhook_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/delivery", tags=["delivery"])


@router.post("/shipments", response_model=DeliveryDetailsResponse, status_code=status.HTTP_201_CREATED)
async def create_shipment(
    request: ShipmentRequest,
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: DeliveryService = Depends(get_delivery_service),
):
    details = await service.create_shipment(request)
    logger.info(f"Admin {admin['user_id']} created shipment {details['awb']}")
    return DeliveryDetailsResponse(**details)


@router.get("/track/{awb}", response_model=CourierResponse)
async def track_shipment(
    awb: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: DeliveryService = Depends(get_delivery_service),
):
    return CourierResponse(data=await service.track(awb))


@router.post("/{awb}/cancel", response_model=CourierResponse)
async def cancel_shipment(
    awb: str,
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: DeliveryService = Depends(get_delivery_service),
):
    return CourierResponse(data=await service.cancel(awb))


@router.post("/{awb}/pickup", response_model=CourierResponse)
async def schedule_pickup(
    awb: str,
    request: Optional[PickupRequest] = None,
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: DeliveryService = Depends(get_delivery_service),
):
    pickup_date = request.pickup_date if request else None
    return CourierResponse(data=await service.schedule_pickup(awb, pickup_date))


@router.get("/pincode/{pincode}", response_model=CourierResponse)
async def check_pincode(
    pincode: str = Path(..., pattern=r"^\d{6}$"),
    service: DeliveryService = Depends(get_delivery_service),
):
    return CourierResponse(data=await service.check_pincode(pincode))


@router.post("/webhook", response_model=DeliveryWebhookResponse)
async def delivery_webhook(
    payload: DeliveryWebhookPayload,
    x_delivery_token: Optional[str] = Header(None, alias="X-Delivery-Token"),
    service: DeliveryService = Depends(get_delivery_service),
):
    """Courier status push, authenticated by a shared token header"""
    if not verify_webhook_token(x_delivery_token):
        logger.warning(f"Rejected delivery webhook for AWB {payload.awb}: bad token")
        raise AuthenticationError("Invalid delivery webhook token")

    result = await service.handle_webhook(payload)
    return DeliveryWebhookResponse(success=True, **result)
