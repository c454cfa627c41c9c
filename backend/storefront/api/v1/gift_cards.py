"""
Gift card endpoints
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from ...core.exceptions import NotFoundError, ValidationError
from ...core.security import get_current_admin, get_current_user
from ...models.gift_card import GiftCardResponse, IssueGiftCardRequest
from ...services.gift_card_service import GiftCardService, get_gift_card_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gift-cards", tags=["gift-cards"])


@router.post("", response_model=GiftCardResponse, status_code=status.HTTP_201_CREATED)
async def issue_gift_card(
    request: IssueGiftCardRequest,
    admin: Dict[str, Any] = Depends(get_current_admin),
    service: GiftCardService = Depends(get_gift_card_service),
):
    result = await service.issue(
        request.amount, request.currency, request.issued_order_id, request.owner_user_id, request.notes
    )
    if not result.success:
        raise ValidationError(result.error or "Could not issue gift card")
    logger.info(f"Gift card {result.gift_card.gift_card_number} issued by {admin['user_id']}")
    return GiftCardResponse.model_validate(result.gift_card)


@router.get("/{gift_card_number}", response_model=GiftCardResponse)
async def get_gift_card(
    gift_card_number: str,
    current_user: Dict[str, Any] = Depends(get_current_user),
    service: GiftCardService = Depends(get_gift_card_service),
):
    card = await service.get(gift_card_number)
    if card is None:
        raise NotFoundError(f"Gift card '{gift_card_number}' not found")
    return GiftCardResponse.model_validate(card)
