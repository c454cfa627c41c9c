"""
Integration Tests for gift card issuing, redemption and credit-back
"""

import asyncio
import re
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from storefront.database.gift_card_db import GiftCardRepository
from storefront.services.gift_card_service import GiftCardService


@pytest.fixture
def service(dynamodb):
    return GiftCardService(GiftCardRepository(dynamodb))


@pytest.mark.integration
class TestGiftCards:

    @pytest.mark.asyncio
    async def test_issue(self, service):
        result = await service.issue(Decimal("250"), "inr", owner_user_id="user-1")

        assert result.success is True
        card = result.gift_card
        assert re.fullmatch(r"GC\d{4}[0-9A-F]{8}", card.gift_card_number)
        assert card.currency == "INR"
        assert (await service.get(card.gift_card_number.lower())).balance == Decimal("250")

        assert (await service.issue(Decimal("0"))).success is False

    @pytest.mark.asyncio
    async def test_issue_gives_up_after_repeated_collisions(self, service):
        service.repository.create = AsyncMock(return_value=False)

        result = await service.issue(Decimal("100"))

        assert result.success is False
        assert service.repository.create.await_count == 3

    @pytest.mark.asyncio
    async def test_partial_then_full_redemption(self, service):
        card = (await service.issue(Decimal("300"))).gift_card

        first = await service.apply(card.gift_card_number, Decimal("120"), "INR")
        assert first.applied_amount == Decimal("120.00")
        assert first.gift_card.balance == Decimal("180")

        second = await service.apply(card.gift_card_number, Decimal("500"), "INR")
        assert second.applied_amount == Decimal("180")
        assert second.gift_card.is_active is False
        assert second.gift_card.redeemed_at is not None

        third = await service.apply(card.gift_card_number, Decimal("10"), "INR")
        assert (third.success, third.error) == (False, "Gift card is not active")

    @pytest.mark.asyncio
    async def test_apply_failures(self, service):
        card = (await service.issue(Decimal("100"), "USD")).gift_card

        assert (await service.apply("GC0000DEADBEEF", Decimal("10"))).error == "Gift card not found"
        mismatch = await service.apply(card.gift_card_number, Decimal("10"), "INR")
        assert "does not match" in mismatch.error
        assert (await service.apply(card.gift_card_number, Decimal("0"))).success is False

    @pytest.mark.asyncio
    async def test_concurrent_redemptions_never_overdraw(self, service):
        card = (await service.issue(Decimal("100"))).gift_card

        results = await asyncio.gather(*[
            service.apply(card.gift_card_number, Decimal("100"), "INR") for _ in range(5)
        ])

        applied = sum((r.applied_amount for r in results if r.success), Decimal("0"))
        assert applied == Decimal("100")
        assert (await service.get(card.gift_card_number)).balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_credit_back_reactivates(self, service):
        card = (await service.issue(Decimal("50"))).gift_card
        await service.apply(card.gift_card_number, Decimal("50"))

        assert await service.credit_back(card.gift_card_number, Decimal("50")) is True

        restored = await service.get(card.gift_card_number)
        assert restored.balance == Decimal("50")
        assert restored.is_active is True
        assert restored.redeemed_at is None
        assert await service.credit_back("GC0000DEADBEEF", Decimal("5")) is False
