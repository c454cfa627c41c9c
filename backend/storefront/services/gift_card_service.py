"""
Gift card issuing and redemption
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from ..core.money import ZERO, round_money, to_decimal
from ..database.gift_card_db import GiftCard, GiftCardRepository

logger = logging.getLogger(__name__)

ISSUE_ATTEMPTS = 3


@dataclass
class GiftCardResult:
    success: bool
    gift_card: Optional[GiftCard] = None
    applied_amount: Decimal = ZERO
    error: Optional[str] = None


def generate_gift_card_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"GC{now.strftime('%y%m')}{uuid.uuid4().hex[:8].upper()}"


class GiftCardService:

    def __init__(self, repository: Optional[GiftCardRepository] = None):
        self.repository = repository or GiftCardRepository()

    async def issue(
        self,
        amount: Decimal,
        currency: str = "INR",
        issued_order_id: Optional[str] = None,
        owner_user_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> GiftCardResult:
        amount = round_money(amount)
        if amount <= ZERO:
            return GiftCardResult(success=False, error="Gift card amount must be greater than zero")

        for attempt in range(1, ISSUE_ATTEMPTS + 1):
            card = GiftCard(
                gift_card_number=generate_gift_card_number(),
                gift_card_id=str(uuid.uuid4()),
                balance=amount,
                currency=currency.upper(),
                issued_order_id=issued_order_id,
                owner_user_id=owner_user_id,
                notes=notes,
            )
            if await self.repository.create(card):
                logger.info(f"Issued gift card {card.gift_card_number} for {amount} {card.currency}")
                return GiftCardResult(success=True, gift_card=card)
            logger.warning(f"Gift card number collision on attempt {attempt}")

        return GiftCardResult(success=False, error="Could not allocate a gift card number")

    async def get(self, gift_card_number: str) -> Optional[GiftCard]:
        return await self.repository.get(gift_card_number)

    async def apply(
        self,
        gift_card_number: str,
        max_to_apply: Decimal,
        expected_currency: Optional[str] = None,
    ) -> GiftCardResult:
        """
        Deduct min(balance, max_to_apply) from the card.

        The write only succeeds if the balance is unchanged since it was
        read; a concurrent redemption makes this call fail rather than
        overdraw the card.
        """
        max_to_apply = round_money(to_decimal(max_to_apply))
        if max_to_apply <= ZERO:
            return GiftCardResult(success=False, error="Nothing to apply")

        card = await self.repository.get(gift_card_number)
        if card is None:
            return GiftCardResult(success=False, error="Gift card not found")
        if not card.is_active or card.is_redeemed_fully:
            return GiftCardResult(success=False, gift_card=card, error="Gift card is not active")
        if expected_currency and card.currency.upper() != expected_currency.upper():
            return GiftCardResult(
                success=False, gift_card=card,
                error=f"Gift card currency {card.currency} does not match {expected_currency}"
            )

        deduction = min(card.balance, max_to_apply)
        updated = await self.repository.swap_balance(
            card.gift_card_number, card.balance, round_money(card.balance - deduction)
        )
        if updated is None:
            logger.warning(f"Concurrent update on gift card {card.gift_card_number}")
            return GiftCardResult(success=False, gift_card=card,
                                  error="Gift card was updated concurrently, please retry")

        logger.info(f"Applied {deduction} from gift card {card.gift_card_number}")
        return GiftCardResult(success=True, gift_card=updated, applied_amount=deduction)

    async def credit_back(self, gift_card_number: str, amount: Decimal) -> bool:
        amount = round_money(amount)
        if amount <= ZERO:
            return True
        credited = await self.repository.credit(gift_card_number.strip().upper(), amount)
        if credited:
            logger.info(f"Credited {amount} back to gift card {gift_card_number}")
        return credited


def get_gift_card_service() -> GiftCardService:
    return GiftCardService()
