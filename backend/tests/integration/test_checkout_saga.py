"""
Integration Tests for the checkout saga and order lifecycle

Tests for:
- Happy-path COD and Razorpay checkouts
- Rollback when a stock decrement or gift card redemption fails mid-saga
- Gateway order failure leaving a persisted order with payment Failed
- Payment verification and cancellation
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from storefront.core.exceptions import (
    ConflictError, DatabaseError, InvalidStateTransition, OrderNotFoundError, PaymentError,
)
from storefront.database.counter_db import CounterRepository
from storefront.database.gift_card_db import GiftCardRepository
from storefront.database.user_db import UserRepository
from storefront.models.order import CheckoutRequest
from storefront.models.payment import VerifyPaymentRequest
from storefront.models.status import OrderStatus, PaymentMethod, PaymentStatus
from storefront.services.coupon_service import CouponService
from storefront.services.gift_card_service import GiftCardService
from storefront.services.order_service import OrderService
from storefront.services.payment_gateway import GatewayOrderResult
from conftest import make_coupon, seed_cart, seed_product

ADDRESS = {"full_name": "Asha Rao", "phone": "9876543210", "line1": "12 MG Road",
           "city": "Bengaluru", "zip": "560001", "country": "IN"}


def checkout_request(**overrides) -> CheckoutRequest:
    return CheckoutRequest(shipping_address=ADDRESS, **overrides)


@pytest.fixture
def gift_cards(dynamodb):
    return GiftCardService(GiftCardRepository(dynamodb))


@pytest.fixture
def service(dynamodb, orders, ledger, catalog, carts, coupon_repo, gift_cards, mock_gateway):
    return OrderService(
        orders=orders,
        ledger=ledger,
        catalog=catalog,
        carts=carts,
        users=UserRepository(dynamodb),
        counters=CounterRepository(dynamodb),
        coupons=CouponService(coupon_repo),
        gift_cards=gift_cards,
        gateway=mock_gateway,
    )


@pytest.mark.integration
class TestCheckout:

    @pytest.mark.asyncio
    async def test_cod_checkout(self, service, catalog, ledger, carts, orders):
        await seed_product(catalog, ledger, "P1", stock=5, shipping=Decimal("40"))
        await seed_product(catalog, ledger, "P2", stock=3, price=Decimal("250.00"))
        await seed_cart(carts, "user-1", [("P1", "M", 2), ("P2", "M", 1)])

        result = await service.checkout("user-1", checkout_request())

        assert result.success is True
        order = result.order
        assert order.subtotal == Decimal("1250.00")
        assert order.shipping == Decimal("80.00")
        assert order.total == Decimal("1330.00")
        assert order.status == OrderStatus.PENDING
        assert order.order_number.startswith("ORD/")

        assert await ledger.get_available_qty("P1", "M") == 3
        assert await ledger.get_available_qty("P2", "M") == 2
        assert await carts.get_line_items("user-1") == []
        assert (await orders.get(order.order_id)).total == Decimal("1330.00")

    @pytest.mark.asyncio
    async def test_cart_problems_are_reported(self, service, catalog, ledger, carts):
        result = await service.checkout("user-1", checkout_request())
        assert (result.success, result.error) == (False, "Cart is empty")

        await seed_product(catalog, ledger, "P1", stock=1)
        await seed_cart(carts, "user-1", [("P1", "M", 2)])
        result = await service.checkout("user-1", checkout_request())
        assert result.error == "Insufficient stock for product P1, size M"

        await seed_cart(carts, "user-1", [("P1", "XL", 1)])
        result = await service.checkout("user-1", checkout_request())
        assert result.error == "Price not found for product P1, size XL, currency INR"

        await seed_cart(carts, "user-1", [("P9", "M", 1)])
        result = await service.checkout("user-1", checkout_request())
        assert result.error == "Product not found: P9"

    @pytest.mark.asyncio
    async def test_coupon_applied_and_claimed(self, service, catalog, ledger, carts, coupon_repo, orders):
        await coupon_repo.create(make_coupon())
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 2)])

        result = await service.checkout("user-1", checkout_request(coupon_code="save10"))

        assert result.success is True
        assert result.order.discount == Decimal("50.00")
        assert result.order.total == Decimal("950.00")
        assert result.order.coupon_usage_recorded is True

        coupon = await coupon_repo.get("SAVE10")
        assert coupon.used_count == 1
        assert "user-1" in coupon.used_by
        assert len(await coupon_repo.list_usages("SAVE10")) == 1
        assert (await orders.get(result.order.order_id)).coupon_applied_at is not None

    @pytest.mark.asyncio
    async def test_invalid_coupon_stops_before_any_write(self, service, catalog, ledger, carts, coupon_repo):
        await coupon_repo.create(make_coupon())
        await seed_product(catalog, ledger, "P1", stock=5, price=Decimal("40.00"))
        await seed_cart(carts, "user-1", [("P1", "M", 1)])

        result = await service.checkout("user-1", checkout_request(coupon_code="SAVE10"))

        assert result.success is False
        assert result.error_code == "COUPON_INVALID"
        assert await ledger.get_available_qty("P1", "M") == 5

    @pytest.mark.asyncio
    async def test_stock_race_rolls_back_everything(self, service, catalog, ledger, carts, orders):
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_product(catalog, ledger, "P2", stock=1)
        await seed_cart(carts, "user-1", [("P1", "M", 2), ("P2", "M", 1)])

        real_decrement = ledger.decrement

        async def racing_decrement(product_id, variant, qty):
            if product_id == "P2":
                # another buyer takes the last unit between validation and the write
                await real_decrement(product_id, variant, 1)
            return await real_decrement(product_id, variant, qty)

        ledger.decrement = racing_decrement

        result = await service.checkout("user-1", checkout_request())

        assert result.success is False
        assert result.error == "stock reservation failed"
        assert result.error_code == "STOCK_UNAVAILABLE"
        assert await ledger.get_available_qty("P1", "M") == 5
        assert await ledger.get_available_qty("P2", "M") == 0
        user_orders, _ = await orders.list_for_user("user-1")
        assert user_orders == []
        assert len(await carts.get_line_items("user-1")) == 2

    @pytest.mark.asyncio
    async def test_gift_card_failure_undoes_coupon_and_stock(
        self, service, catalog, ledger, carts, coupon_repo, gift_cards, orders
    ):
        await coupon_repo.create(make_coupon())
        card = (await gift_cards.issue(Decimal("100"), "USD")).gift_card
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 2)])

        result = await service.checkout(
            "user-1", checkout_request(coupon_code="SAVE10", gift_card_number=card.gift_card_number)
        )

        assert result.success is False
        assert result.error_code == "GIFT_CARD_UNAVAILABLE"
        assert "does not match" in result.error
        assert await ledger.get_available_qty("P1", "M") == 5
        coupon = await coupon_repo.get("SAVE10")
        assert coupon.used_count == 0
        assert "user-1" not in coupon.used_by
        user_orders, _ = await orders.list_for_user("user-1")
        assert user_orders == []
        assert (await gift_cards.get(card.gift_card_number)).balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_gift_card_reduces_total(self, service, catalog, ledger, carts, gift_cards):
        card = (await gift_cards.issue(Decimal("300"), "INR")).gift_card
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 1)])

        result = await service.checkout("user-1", checkout_request(gift_card_number=card.gift_card_number))

        assert result.success is True
        assert result.order.gift_card_applied_amount == Decimal("300.00")
        assert result.order.total == Decimal("200.00")
        assert (await gift_cards.get(card.gift_card_number)).balance == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_gift_card_fields_are_stored_for_cancellation(
        self, service, catalog, ledger, carts, gift_cards, orders
    ):
        card = (await gift_cards.issue(Decimal("300"), "INR")).gift_card
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 1)])

        result = await service.checkout("user-1", checkout_request(gift_card_number=card.gift_card_number))

        stored = await orders.get(result.order.order_id)
        assert stored.gift_card_applied_amount == Decimal("300.00")
        assert stored.total == Decimal("200.00")

        await service.cancel_order(stored.order_id, "user-1")
        assert (await gift_cards.get(card.gift_card_number)).balance == Decimal("300.00")

    @pytest.mark.asyncio
    async def test_failed_gift_card_recording_rolls_back(
        self, service, catalog, ledger, carts, gift_cards, orders
    ):
        card = (await gift_cards.issue(Decimal("300"), "INR")).gift_card
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 1)])
        orders.update_fields = AsyncMock(side_effect=DatabaseError("Failed to update order"))

        with pytest.raises(DatabaseError):
            await service.checkout("user-1", checkout_request(gift_card_number=card.gift_card_number))

        assert (await gift_cards.get(card.gift_card_number)).balance == Decimal("300.00")
        assert await ledger.get_available_qty("P1", "M") == 5
        user_orders, _ = await orders.list_for_user("user-1")
        assert user_orders == []

    @pytest.mark.asyncio
    async def test_covered_razorpay_order_is_paid_without_gateway(
        self, service, catalog, ledger, carts, gift_cards, orders, mock_gateway
    ):
        card = (await gift_cards.issue(Decimal("600"), "INR")).gift_card
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 1)])

        result = await service.checkout("user-1", checkout_request(
            payment_method=PaymentMethod.RAZORPAY, gift_card_number=card.gift_card_number
        ))

        assert result.success is True
        assert result.gateway is None
        mock_gateway.create_order.assert_not_awaited()
        stored = await orders.get(result.order.order_id)
        assert stored.total == Decimal("0.00")
        assert stored.payment_status == PaymentStatus.PAID
        assert stored.status == OrderStatus.PAID
        assert (await gift_cards.get(card.gift_card_number)).balance == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_loyalty_discount_is_taken_from_client(self, service, catalog, ledger, carts, dynamodb):
        users = UserRepository(dynamodb)
        await users.upsert("user-1", Decimal("30"))
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 1)])

        result = await service.checkout("user-1", checkout_request(loyalty_discount_amount=Decimal("20")))

        assert result.success is True
        assert result.order.total == Decimal("480.00")
        assert await users.get_loyalty_balance("user-1") == Decimal("10")

    @pytest.mark.asyncio
    async def test_loyalty_balance_checked_when_enabled(self, service, catalog, ledger, carts, monkeypatch):
        from storefront.core.config import settings
        monkeypatch.setattr(settings, "VERIFY_LOYALTY_BALANCE", True)
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 1)])

        result = await service.checkout("user-1", checkout_request(loyalty_discount_amount=Decimal("20")))

        assert result.success is False
        assert result.error_code == "LOYALTY_INSUFFICIENT"
        assert await ledger.get_available_qty("P1", "M") == 5

    @pytest.mark.asyncio
    async def test_razorpay_checkout(self, service, catalog, ledger, carts, orders, mock_gateway):
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 2)])

        result = await service.checkout("user-1", checkout_request(payment_method=PaymentMethod.RAZORPAY))

        assert result.success is True
        assert result.gateway.gateway_order_id == "order_RZP001"
        mock_gateway.create_order.assert_awaited_once_with(Decimal("1000.00"), "INR", result.order.order_id)
        assert (await orders.get(result.order.order_id)).razorpay_order_id == "order_RZP001"

    @pytest.mark.asyncio
    async def test_gateway_failure_marks_payment_failed(self, service, catalog, ledger, carts, orders, mock_gateway):
        mock_gateway.create_order = AsyncMock(return_value=GatewayOrderResult(
            success=False, status_code=500, error="Gateway returned HTTP 500"
        ))
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 1)])

        result = await service.checkout("user-1", checkout_request(payment_method=PaymentMethod.RAZORPAY))

        assert result.success is False
        assert result.error_code == "PAYMENT_GATEWAY_ERROR"
        stored = await orders.get(result.order.order_id)
        assert stored.payment_status == PaymentStatus.FAILED
        assert stored.status == OrderStatus.PENDING
        assert await ledger.get_available_qty("P1", "M") == 4


@pytest.mark.integration
class TestPaymentAndCancellation:

    async def _razorpay_order(self, service, catalog, ledger, carts, **request):
        await seed_product(catalog, ledger, "P1", stock=5)
        await seed_cart(carts, "user-1", [("P1", "M", 2)])
        result = await service.checkout("user-1", checkout_request(payment_method=PaymentMethod.RAZORPAY, **request))
        return result.order

    @pytest.mark.asyncio
    async def test_verify_payment(self, service, catalog, ledger, carts):
        order = await self._razorpay_order(service, catalog, ledger, carts)
        request = VerifyPaymentRequest(order_id=order.order_id, razorpay_order_id="order_RZP001",
                                       razorpay_payment_id="pay_001", razorpay_signature="sig")

        paid = await service.verify_payment("user-1", request)
        assert (paid.status, paid.payment_status) == (OrderStatus.PAID, PaymentStatus.PAID)
        assert paid.razorpay_payment_id == "pay_001"

        # Replaying the same callback is harmless
        again = await service.verify_payment("user-1", request)
        assert again.razorpay_payment_id == "pay_001"

        with pytest.raises(ConflictError):
            await service.verify_payment("user-1", request.model_copy(update={"razorpay_payment_id": "pay_002"}))

    @pytest.mark.asyncio
    async def test_verify_rejects_bad_signature_and_foreign_orders(self, service, catalog, ledger, carts, mock_gateway):
        order = await self._razorpay_order(service, catalog, ledger, carts)
        request = VerifyPaymentRequest(order_id=order.order_id, razorpay_order_id="order_RZP001",
                                       razorpay_payment_id="pay_001", razorpay_signature="sig")

        with pytest.raises(OrderNotFoundError):
            await service.verify_payment("user-2", request)
        with pytest.raises(PaymentError) as exc:
            await service.verify_payment("user-1", request.model_copy(update={"razorpay_order_id": "order_X"}))
        assert exc.value.error_code == "GATEWAY_ORDER_MISMATCH"

        mock_gateway.verify_signature = AsyncMock(return_value=False)
        with pytest.raises(PaymentError) as exc:
            await service.verify_payment("user-1", request)
        assert exc.value.error_code == "SIGNATURE_INVALID"

    @pytest.mark.asyncio
    async def test_cancel_restores_stock_and_coupon(self, service, catalog, ledger, carts, coupon_repo):
        await coupon_repo.create(make_coupon())
        order = await self._razorpay_order(service, catalog, ledger, carts, coupon_code="SAVE10")
        assert await ledger.get_available_qty("P1", "M") == 3

        cancelled = await service.cancel_order(order.order_id, "user-1", "changed my mind")

        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.cancel_reason == "changed my mind"
        assert await ledger.get_available_qty("P1", "M") == 5
        assert (await coupon_repo.get("SAVE10")).used_count == 0

        with pytest.raises(InvalidStateTransition):
            await service.cancel_order(order.order_id, "user-1")

    @pytest.mark.asyncio
    async def test_admin_status_flow(self, service, catalog, ledger, carts):
        order = await self._razorpay_order(service, catalog, ledger, carts)

        shipped = await service.update_status(order.order_id, OrderStatus.SHIPPED, "handed to courier")
        assert shipped.status == OrderStatus.SHIPPED
        assert shipped.admin_note == "handed to courier"

        with pytest.raises(InvalidStateTransition):
            await service.cancel_order(order.order_id)

        with pytest.raises(OrderNotFoundError):
            await service.update_status("missing", OrderStatus.SHIPPED)
