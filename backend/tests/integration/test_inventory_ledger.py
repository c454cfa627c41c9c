"""
Integration Tests for the Inventory Ledger against mocked DynamoDB

Tests for:
- Conditional decrement / reserve / release / increment
- Exactly one winner when many buyers race for the last unit
- Quantities never going negative
"""

import asyncio
import random

import pytest

from storefront.database.inventory_db import Variant


@pytest.mark.integration
class TestInventoryLedger:

    @pytest.mark.asyncio
    async def test_decrement_and_increment(self, ledger):
        await ledger.set_stock("P1", "M", 3)

        assert await ledger.decrement("P1", "M", 2) is True
        assert await ledger.get_available_qty("P1", "M") == 1
        assert await ledger.decrement("P1", "M", 2) is False
        assert await ledger.get_available_qty("P1", "M") == 1

        assert await ledger.increment("P1", "M", 4) is True
        assert await ledger.get_available_qty("P1", "M") == 5

    @pytest.mark.asyncio
    async def test_unknown_variant_and_bad_quantity(self, ledger):
        assert await ledger.decrement("P404", "M", 1) is False
        assert await ledger.reserve("P404", "M", 1) is False
        assert await ledger.get_available_qty("P404", "M") == 0

        await ledger.set_stock("P1", "M", 3)
        assert await ledger.decrement("P1", "M", 0) is False
        assert await ledger.increment("P1", "M", -1) is False

    @pytest.mark.asyncio
    async def test_increment_creates_row(self, ledger):
        variant = Variant(size="L", color="Blue", sku="SKU-L-BLUE")
        assert await ledger.increment("P2", variant, 2) is True

        item = await ledger.get_item("P2", variant)
        assert item.quantity == 2
        assert item.reserved == 0
        assert item.color == "Blue"
        assert item.variant_key == "L#Blue"

    @pytest.mark.asyncio
    async def test_reserve_and_release(self, ledger):
        await ledger.set_stock("P1", "M", 2)

        assert await ledger.reserve("P1", "M", 2) is True
        item = await ledger.get_item("P1", "M")
        assert (item.quantity, item.reserved) == (0, 2)

        assert await ledger.reserve("P1", "M", 1) is False
        assert await ledger.release("P1", "M", 3) is False
        assert await ledger.release("P1", "M", 2) is True

        item = await ledger.get_item("P1", "M")
        assert (item.quantity, item.reserved) == (2, 0)

    @pytest.mark.asyncio
    async def test_set_stock_preserves_reserved(self, ledger):
        await ledger.set_stock("P1", "M", 5)
        await ledger.reserve("P1", "M", 2)

        item = await ledger.set_stock("P1", "M", 10)
        assert (item.quantity, item.reserved) == (10, 2)

        with pytest.raises(ValueError):
            await ledger.set_stock("P1", "M", -1)

    @pytest.mark.asyncio
    async def test_exactly_one_winner_for_last_unit(self, ledger):
        await ledger.set_stock("P1", "M", 1)

        results = await asyncio.gather(*[ledger.decrement("P1", "M", 1) for _ in range(10)])

        assert results.count(True) == 1
        assert await ledger.get_available_qty("P1", "M") == 0

    @pytest.mark.asyncio
    async def test_random_operations_never_go_negative(self, ledger):
        await ledger.set_stock("P1", "M", 3)
        rng = random.Random(7)
        operations = [ledger.reserve, ledger.release, ledger.decrement, ledger.increment]

        for _ in range(60):
            op = rng.choice(operations)
            await op("P1", "M", rng.randint(1, 3))
            item = await ledger.get_item("P1", "M")
            assert item.quantity >= 0
            assert item.reserved >= 0

    @pytest.mark.asyncio
    async def test_concurrent_mixed_operations_never_go_negative(self, ledger):
        await ledger.set_stock("P1", "M", 4)

        await asyncio.gather(*(
            [ledger.decrement("P1", "M", 1) for _ in range(6)]
            + [ledger.reserve("P1", "M", 1) for _ in range(6)]
        ))

        item = await ledger.get_item("P1", "M")
        assert item.quantity == 0
        assert item.quantity + item.reserved <= 4
        assert await ledger.list_for_product("P1") == [item]
