"""
Storefront Test Configuration and Fixtures

This module provides:
- Test environment variables (set before any storefront import)
- A moto-backed DynamoDB with every application table created
- Repository, service and API client fixtures
- Factories for products, carts, coupons and orders
"""

import os
import sys
import threading
from decimal import Decimal
from typing import Generator, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["JWT_SECRET"] = "test_secret_key_for_testing_only_32chars!"
os.environ["DELIVERY_WEBHOOK_TOKEN"] = "test-delivery-webhook-token"
os.environ["AWS_REGION"] = "ap-south-1"
os.environ["AWS_DEFAULT_REGION"] = "ap-south-1"
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ.pop("DYNAMODB_ENDPOINT", None)

from fastapi.testclient import TestClient
from moto import mock_aws

from storefront.core.config import settings
from storefront.core.database import DatabaseManager, reset_db_manager
from storefront.core.security import create_access_token
from storefront.database.cart_db import CartLine, CartRepository
from storefront.database.catalog_db import Product, ProductCatalog
from storefront.database.coupon_db import Coupon, CouponRepository
from storefront.database.inventory_db import InventoryLedger
from storefront.database.order_db import LineItem, Order, OrderRepository
from storefront.database.secrets_db import SecretsRepository
from storefront.models.status import OrderStatus, PaymentMethod, PaymentStatus
from storefront.services.payment_gateway import GatewayOrderResult, RefundResult

TEST_KEY_ID = "rzp_test_key"
TEST_KEY_SECRET = "rzp_test_secret"


# =============================================================================
# DynamoDB (moto)
# =============================================================================

class LockedTable:
    """
    Table proxy that serializes calls into moto.

    DynamoDB applies a conditional write atomically; moto's in-memory backend
    only does so when calls do not interleave across threads.
    """

    _lock = threading.Lock()

    def __init__(self, table):
        self._table = table

    def __getattr__(self, name):
        attr = getattr(self._table, name)
        if not callable(attr):
            return attr

        def call(*args, **kwargs):
            with self._lock:
                return attr(*args, **kwargs)
        return call


class LockedDatabaseManager(DatabaseManager):
    def table(self, name: str):
        return LockedTable(super().table(name))


@pytest.fixture
def dynamodb() -> Generator[DatabaseManager, None, None]:
    """Fresh mocked DynamoDB with all application tables"""
    with mock_aws():
        manager = LockedDatabaseManager(region="ap-south-1")
        reset_db_manager(manager)
        manager.create_tables()
        yield manager
        reset_db_manager(None)


@pytest.fixture
def ledger(dynamodb) -> InventoryLedger:
    return InventoryLedger(dynamodb)


@pytest.fixture
def catalog(dynamodb, ledger) -> ProductCatalog:
    return ProductCatalog(dynamodb, ledger=ledger)


@pytest.fixture
def carts(dynamodb) -> CartRepository:
    return CartRepository(dynamodb)


@pytest.fixture
def orders(dynamodb) -> OrderRepository:
    return OrderRepository(dynamodb)


@pytest.fixture
def coupon_repo(dynamodb) -> CouponRepository:
    return CouponRepository(dynamodb)


@pytest.fixture
def secrets(dynamodb) -> SecretsRepository:
    return SecretsRepository(dynamodb)


# =============================================================================
# Factories
# =============================================================================

def make_product(
    product_id: str = "P1",
    name: str = "Linen Shirt",
    sizes: Optional[List[str]] = None,
    price: Decimal = Decimal("500.00"),
    currency: str = "INR",
    shipping: Decimal = Decimal("0"),
) -> Product:
    return Product(
        product_id=product_id,
        name=name,
        prices=[{"size": s, "currency": currency, "amount": price} for s in (sizes or ["M"])],
        country_prices=[{"country": "IN", "currency": currency, "shipping": shipping}],
    )


def make_coupon(code: str = "SAVE10", **overrides) -> Coupon:
    """SAVE10: 10% off, at most 50 off, orders of 100 or more"""
    values = dict(
        code=code,
        coupon_id=f"cpn-{code.lower()}",
        type="percentage",
        value=Decimal("10"),
        min_order_amount=Decimal("100"),
        max_discount_amount=Decimal("50"),
        per_user_usage_limit=1,
    )
    values.update(overrides)
    return Coupon(**values)


def make_order(
    order_id: str = "order-1",
    order_number: str = "ORD/2026/000001",
    user_id: str = "user-1",
    quantity: int = 2,
    unit_price: Decimal = Decimal("500.00"),
    razorpay_payment_id: Optional[str] = None,
    **overrides,
) -> Order:
    line_total = unit_price * quantity
    values = dict(
        order_id=order_id,
        order_number=order_number,
        user_id=user_id,
        items=[LineItem(
            product_id="P1", product_name="Linen Shirt", size="M", quantity=quantity,
            unit_price=unit_price, line_total=line_total, currency="INR",
        )],
        subtotal=line_total,
        shipping=Decimal("0"),
        tax=Decimal("0"),
        discount=Decimal("0"),
        total=line_total,
        currency="INR",
        payment_method=PaymentMethod.RAZORPAY if razorpay_payment_id else PaymentMethod.COD,
        payment_status=PaymentStatus.PAID if razorpay_payment_id else PaymentStatus.PENDING,
        status=OrderStatus.PAID if razorpay_payment_id else OrderStatus.PENDING,
        razorpay_payment_id=razorpay_payment_id,
        shipping_address={"full_name": "Asha Rao", "phone": "9876543210", "line1": "12 MG Road",
                          "city": "Bengaluru", "zip": "560001", "country": "IN"},
    )
    values.update(overrides)
    return Order(**values)


async def seed_product(catalog: ProductCatalog, ledger: InventoryLedger, product_id: str = "P1",
                       stock: int = 5, size: str = "M", **kwargs) -> Product:
    product = make_product(product_id, sizes=[size], **kwargs)
    await catalog.put(product)
    await ledger.set_stock(product_id, size, stock)
    return product


async def seed_cart(carts: CartRepository, user_id: str, lines: List[tuple]) -> None:
    """lines: (product_id, size, quantity)"""
    await carts.save(user_id, [CartLine(product_id=p, size=s, quantity=q) for p, s, q in lines])


async def seed_payment_secrets(secrets: SecretsRepository) -> None:
    await secrets.put(settings.PAYMENT_SECRETS_KEY, {
        "key_id_inr": TEST_KEY_ID,
        "key_secret_inr": TEST_KEY_SECRET,
    })


# =============================================================================
# Gateway doubles
# =============================================================================

@pytest.fixture
def mock_gateway():
    """RazorpayGateway double with successful defaults"""
    gateway = MagicMock()
    gateway.create_order = AsyncMock(return_value=GatewayOrderResult(
        success=True, gateway_order_id="order_RZP001", amount_minor=100000,
        currency="INR", key_id=TEST_KEY_ID, status_code=200,
    ))
    gateway.verify_signature = AsyncMock(return_value=True)
    gateway.create_refund = AsyncMock(return_value=RefundResult(
        success=True, refund_id="rfnd_001", status="processed", status_code=200, raw="{}",
    ))
    return gateway


# =============================================================================
# API client and auth
# =============================================================================

@pytest.fixture
def app(dynamodb):
    from storefront.main import app as fastapi_app
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app) -> Generator:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def customer_headers():
    token = create_access_token("user-1", role="customer", extra_claims={"email": "asha@example.com"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_customer_headers():
    return {"Authorization": f"Bearer {create_access_token('user-2', role='customer')}"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_access_token('admin-1', role='admin')}"}
