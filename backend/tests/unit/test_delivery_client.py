"""
Unit Tests for the Delhivery client, status mapping and webhook token check
"""

import json
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs

import httpx
import pytest

from storefront.core.exceptions import ConfigurationError, CourierError
from storefront.database.secrets_db import CourierSecrets
from storefront.models.delivery import ShipmentRequest
from storefront.models.status import DeliveryStatus, ReferenceType
from storefront.services.delivery_service import (
    DelhiveryClient, map_courier_status, verify_webhook_token,
)


def make_client(handler, secrets=None):
    repo = MagicMock()
    repo.get_courier_secrets = AsyncMock(return_value=secrets if secrets is not None else CourierSecrets(
        api_token="dlv-token", pickup_location="Main Warehouse"
    ))
    return DelhiveryClient(secrets=repo, base_url="https://track.delhivery.test",
                           transport=httpx.MockTransport(handler))


def shipment_request(**overrides) -> ShipmentRequest:
    values = dict(
        reference_id="order-1",
        reference_type=ReferenceType.ORDER,
        drop_name="Asha Rao",
        drop_phone="9876543210",
        drop_address="12 MG Road",
        drop_city="Bengaluru",
        drop_state="KA",
        drop_pincode="560001",
        weight=Decimal("500"),
        total_amount=Decimal("1000"),
    )
    values.update(overrides)
    return ShipmentRequest(**values)


def form_payload(request: httpx.Request) -> dict:
    form = parse_qs(request.content.decode())
    assert form["format"] == ["json"]
    return json.loads(form["data"][0])


class TestStatusMapping:

    @pytest.mark.parametrize("raw,expected", [
        ("Delivered", DeliveryStatus.DELIVERED),
        ("In Transit", DeliveryStatus.IN_TRANSIT),
        ("out-for-delivery", DeliveryStatus.OUT_FOR_DELIVERY),
        ("Manifested", DeliveryStatus.PICKUP_SCHEDULED),
        ("RTO Initiated", DeliveryStatus.RTO),
        ("Canceled", DeliveryStatus.CANCELLED),
        ("Something New", DeliveryStatus.IN_TRANSIT),
        (None, DeliveryStatus.IN_TRANSIT),
    ])
    def test_map_courier_status(self, raw, expected):
        assert map_courier_status(raw) == expected

    def test_webhook_token(self):
        assert verify_webhook_token("test-delivery-webhook-token") is True
        assert verify_webhook_token("wrong") is False
        assert verify_webhook_token(None) is False


class TestDelhiveryClient:

    @pytest.mark.asyncio
    async def test_create_domestic_shipment(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["payload"] = form_payload(request)
            return httpx.Response(200, json={"success": True, "packages": [{"waybill": "AWB123"}]})

        awb = await make_client(handler).create_shipment(shipment_request(is_cod=True, cod_amount=Decimal("1000")))

        assert awb == "AWB123"
        assert seen["path"] == "/api/cmu/create.json"
        assert seen["auth"] == "Token dlv-token"
        assert seen["payload"]["pickup_location"] == {"name": "Main Warehouse"}
        shipment = seen["payload"]["shipments"][0]
        assert shipment["pin"] == "560001"
        assert shipment["payment_mode"] == "COD"
        assert shipment["cod_amount"] == "1000"

    @pytest.mark.asyncio
    async def test_return_shipment_is_a_pickup(self):
        seen = {}

        def handler(request):
            seen["payload"] = form_payload(request)
            return httpx.Response(200, json={"success": True, "packages": [{"waybill": "AWB-R1"}]})

        request = shipment_request(reference_id="ret-1", reference_type=ReferenceType.RETURN,
                                   pickup_name="Asha Rao", pickup_pincode="560001")
        await make_client(handler).create_shipment(request)

        shipment = seen["payload"]["shipments"][0]
        assert shipment["payment_mode"] == "Pickup"
        assert shipment["return_pin"] == "560001"

    @pytest.mark.asyncio
    async def test_international_shipment(self):
        seen = {}

        def handler(request):
            seen["payload"] = form_payload(request)
            return httpx.Response(200, json={"success": True, "packages": [{"waybill": "INT1"}]})

        request = shipment_request(is_international=True, country_code="AE", drop_pincode=None,
                                   commodity="Apparel", declared_value=Decimal("80"), currency="USD")
        assert await make_client(handler).create_shipment(request) == "INT1"
        assert seen["payload"]["shipments"][0]["destination_country"] == "AE"

    def test_destination_is_required(self):
        with pytest.raises(ValueError):
            shipment_request(drop_pincode=None)
        with pytest.raises(ValueError):
            shipment_request(is_international=True)

    @pytest.mark.asyncio
    async def test_create_without_waybill_fails(self):
        def handler(request):
            return httpx.Response(200, json={"success": False, "rmk": "Pincode not serviceable"})

        with pytest.raises(CourierError) as exc:
            await make_client(handler).create_shipment(shipment_request())
        assert exc.value.message == "Domestic shipment failed"

    @pytest.mark.asyncio
    async def test_missing_token(self):
        with pytest.raises(ConfigurationError):
            await make_client(MagicMock(), secrets=CourierSecrets()).track("AWB1")

    @pytest.mark.asyncio
    async def test_track(self):
        def handler(request):
            assert request.url.path == "/api/v1/packages/json/"
            assert request.url.params["waybill"] == "AWB1"
            return httpx.Response(200, json={"ShipmentData": [{"Shipment": {"Status": {"Status": "In Transit"}}}]})

        data = await make_client(handler).track("AWB1")
        assert data["ShipmentData"][0]["Shipment"]["Status"]["Status"] == "In Transit"

    @pytest.mark.asyncio
    async def test_cancel_and_pickup(self):
        seen = []

        def handler(request):
            seen.append((request.url.path, parse_qs(request.content.decode())))
            return httpx.Response(200, json={"status": True})

        client = make_client(handler)
        await client.cancel("AWB1")
        await client.schedule_pickup("AWB1", date(2026, 10, 20))

        assert seen[0] == ("/api/p/edit", {"waybill": ["AWB1"], "cancellation": ["true"]})
        assert seen[1] == ("/api/p/pickup", {"waybill": ["AWB1"], "pickup_date": ["2026-10-20"]})

    @pytest.mark.asyncio
    async def test_pincode(self):
        def handler(request):
            assert request.url.params["filter_codes"] == "560001"
            return httpx.Response(200, json={"delivery_codes": [{"postal_code": {"pin": 560001}}]})

        data = await make_client(handler).check_pincode("560001")
        assert data["delivery_codes"]

    @pytest.mark.asyncio
    async def test_html_response_is_rejected(self):
        def handler(request):
            return httpx.Response(200, text="<!DOCTYPE html><html>login</html>")

        with pytest.raises(CourierError) as exc:
            await make_client(handler).track("AWB1")
        assert "HTML" in exc.value.message

    @pytest.mark.asyncio
    async def test_malformed_shipment_body_is_a_courier_error(self):
        def handler(request):
            return httpx.Response(200, text='{"success": true, "packages": "AWB1"}')

        with pytest.raises(CourierError) as exc:
            await make_client(handler).create_shipment(shipment_request())
        assert exc.value.message == "Unexpected CourierShipmentResponse payload"
        assert exc.value.raw == '{"success": true, "packages": "AWB1"}'

    @pytest.mark.asyncio
    async def test_numeric_waybill_is_accepted(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "packages": [{"waybill": 1234567890}]})

        assert await make_client(handler).create_shipment(shipment_request()) == "1234567890"

    @pytest.mark.parametrize("body", ['{"ShipmentData": "In Transit"}', '["AWB1"]', 'not json'])
    @pytest.mark.asyncio
    async def test_malformed_track_body_is_a_courier_error(self, body):
        with pytest.raises(CourierError) as exc:
            await make_client(lambda r: httpx.Response(200, text=body)).track("AWB1")
        assert exc.value.message == "Unexpected CourierTrackResponse payload"
        assert exc.value.raw == body

    @pytest.mark.asyncio
    async def test_action_body_must_be_an_object(self):
        with pytest.raises(CourierError):
            await make_client(lambda r: httpx.Response(200, text="true")).cancel("AWB1")

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        with pytest.raises(CourierError) as exc:
            await make_client(lambda r: httpx.Response(401, text="unauthorized")).track("AWB1")
        assert exc.value.courier_status_code == 401
        assert exc.value.status_code == 502

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(CourierError) as exc:
            await make_client(handler).track("AWB1")
        assert exc.value.message == "Courier timed out"
