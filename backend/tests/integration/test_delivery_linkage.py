"""
Integration Tests for shipment linkage and courier webhooks

The Delhivery client is mocked; records live in mocked DynamoDB.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from storefront.core.exceptions import NotFoundError
from storefront.database.buyback_db import Buyback, BuybackRepository
from storefront.database.return_db import ReturnOrder, ReturnRepository
from storefront.models.delivery import DeliveryWebhookPayload, ShipmentRequest
from storefront.models.status import DeliveryStatus, ReferenceType
from storefront.services.delivery_service import DeliveryService, ShipmentLinkage
from conftest import make_order


@pytest.fixture
def buybacks(dynamodb):
    return BuybackRepository(dynamodb)


@pytest.fixture
def returns(dynamodb):
    return ReturnRepository(dynamodb)


@pytest.fixture
def linkage(orders, buybacks, returns):
    return ShipmentLinkage(orders, buybacks, returns)


@pytest.fixture
def courier():
    client = MagicMock()
    client.create_shipment = AsyncMock(return_value="AWB100")
    client.cancel = AsyncMock(return_value={"status": True})
    client.schedule_pickup = AsyncMock(return_value={"pickup_id": 42})
    return client


@pytest.fixture
def service(courier, linkage):
    return DeliveryService(client=courier, linkage=linkage)


def shipment_request(reference_id="order-1", reference_type=ReferenceType.ORDER, **overrides):
    values = dict(
        reference_id=reference_id,
        reference_type=reference_type,
        drop_name="Asha Rao",
        drop_address="12 MG Road",
        drop_pincode="560001",
        weight=Decimal("500"),
    )
    values.update(overrides)
    return ShipmentRequest(**values)


def webhook(awb, status="Delivered"):
    return DeliveryWebhookPayload(awb=awb, status=status, status_datetime="2026-10-19T10:00:00",
                                  location="Bengaluru Hub")


@pytest.mark.integration
class TestShipmentLinkage:

    @pytest.mark.asyncio
    async def test_create_shipment_writes_delivery_details(self, service, orders):
        await orders.create(make_order())

        details = await service.create_shipment(shipment_request(is_cod=True, cod_amount=Decimal("1000")))

        assert details["awb"] == "AWB100"
        assert details["courier"] == "DELHIVERY"
        assert details["status"] == "READY_TO_SHIP"
        stored = await orders.get("order-1")
        assert stored.awb == "AWB100"
        assert stored.delivery_details["type"] == "Order"
        assert stored.delivery_details["cod_amount"] == Decimal("1000")

    @pytest.mark.asyncio
    async def test_unknown_reference_never_calls_courier(self, service, courier):
        with pytest.raises(NotFoundError):
            await service.create_shipment(shipment_request("missing"))
        courier.create_shipment.assert_not_called()

    @pytest.mark.asyncio
    async def test_awb_resolution_prefers_order_then_buyback_then_return(
        self, linkage, orders, buybacks, returns
    ):
        details = {"awb": "AWB-SHARED", "status": "READY_TO_SHIP"}
        await returns.create(ReturnOrder(return_id="ret-1", return_number="REORD/2026/ABC123",
                                         order_id="order-9", order_number="ORD/2026/000009",
                                         user_id="user-1", items=[]))
        await returns.update_delivery_details("ret-1", details)
        assert await linkage.resolve_by_awb("AWB-SHARED") == (ReferenceType.RETURN, "ret-1")

        await buybacks.create(Buyback(buyback_id="bb-1", user_id="user-1"))
        await buybacks.update_delivery_details("bb-1", details)
        assert await linkage.resolve_by_awb("AWB-SHARED") == (ReferenceType.BUYBACK, "bb-1")

        await orders.create(make_order())
        await orders.update_delivery_details("order-1", details)
        assert await linkage.resolve_by_awb("AWB-SHARED") == (ReferenceType.ORDER, "order-1")

        assert await linkage.resolve_by_awb("AWB-NONE") is None

    @pytest.mark.asyncio
    async def test_webhook_updates_owner(self, service, buybacks):
        await buybacks.create(Buyback(buyback_id="bb-1", user_id="user-1"))
        await service.create_shipment(shipment_request("bb-1", ReferenceType.BUYBACK, pickup_pincode="560001"))

        result = await service.handle_webhook(webhook("AWB100", "Out for Delivery"))

        assert result["reference_type"] == ReferenceType.BUYBACK
        assert result["status"] == DeliveryStatus.OUT_FOR_DELIVERY
        stored = await buybacks.get("bb-1")
        assert stored.delivery_details["status"] == "OUT_FOR_DELIVERY"
        assert stored.delivery_details["courier_status"] == "Out for Delivery"
        assert stored.delivery_details["location"] == "Bengaluru Hub"

    @pytest.mark.asyncio
    async def test_webhook_for_unknown_awb(self, service):
        with pytest.raises(NotFoundError):
            await service.handle_webhook(webhook("AWB-UNKNOWN"))

    @pytest.mark.asyncio
    async def test_cancel_and_pickup_set_status(self, service, orders):
        await orders.create(make_order())
        await service.create_shipment(shipment_request())

        await service.schedule_pickup("AWB100")
        assert (await orders.get("order-1")).delivery_details["status"] == "PICKUP_SCHEDULED"

        await service.cancel("AWB100")
        assert (await orders.get("order-1")).delivery_details["status"] == "CANCELLED"

    @pytest.mark.asyncio
    async def test_status_update_without_shipment(self, linkage, orders):
        await orders.create(make_order())
        assert await linkage.update_delivery_status("order-1", ReferenceType.ORDER, DeliveryStatus.DELIVERED) is False
