import os
import tempfile

# ustawienia czytane przy imporcie storefront.utils.settings
_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'storefront.db')}"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "1"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["OPERATOR_TOKEN"] = "back-office-token"

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import requests
from fastapi.testclient import TestClient
from tenacity import wait_none

from storefront.api.deps import get_lock_service, get_payment_gateway
from storefront.client.api_client import StorefrontClient
from storefront.client.cart_engine import CartEngine
from storefront.data.database import Base, SessionLocal, engine
from storefront.data.models import (
    CouponModel,
    GiftCardModel,
    ProductModel,
    ProductVariantModel,
    UserModel,
)
from storefront.domain.errors import PaymentGatewayError
from storefront.domain.pricing import to_minor_units
from storefront.domain.schemas import CreateIntentIn
from storefront.main import app

ADA = {"user_id": 1, "email": "ada@example.com"}
GRACE = {"user_id": 2, "email": "grace@example.com"}

CA_ADDRESS = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "address_line1": "1 Market St",
    "city": "San Francisco",
    "state_province": "CA",
    "postal_code": "94105",
    "country_code": "US",
}

STANDARD = {"id": "standard", "name": "Standard Shipping", "price": "0", "estimated_days": {"min": 5, "max": 7}}
EXPRESS = {"id": "express", "name": "Express Shipping", "price": "25", "estimated_days": {"min": 2, "max": 3}}

# id w katalogu testowym
GOWN, SCARF, SESSION, BAG = 1, 2, 3, 4
GOWN_S, GOWN_M, SCARF_ONE, BAG_ONE = 10, 11, 20, 40


class FakeGateway:
    """Bramka platnosci w pamieci, ten sam interfejs co PaymentGateway."""

    def __init__(self):
        self.intents = {}
        self.customers = {}
        self.coupons = {}
        self.fail = False

    def create_payment_intent(self, amount, currency, metadata, customer_id=None, setup_future_usage=None):
        if self.fail:
            raise PaymentGatewayError("Payment provider error: card network unavailable")
        intent_id = f"pi_{len(self.intents) + 1}"
        self.intents[intent_id] = {
            "amount": to_minor_units(amount),
            "currency": currency,
            "metadata": metadata,
            "customer": customer_id,
            "setup_future_usage": setup_future_usage,
        }
        return {"id": intent_id, "client_secret": f"{intent_id}_secret"}

    def update_payment_intent(self, intent_id, amount, metadata=None):
        self.intents[intent_id]["amount"] = to_minor_units(amount)
        if metadata:
            self.intents[intent_id]["metadata"].update(metadata)
        return {"id": intent_id, "client_secret": f"{intent_id}_secret"}

    def get_or_create_customer(self, email, metadata=None):
        if email not in self.customers:
            self.customers[email] = f"cus_{len(self.customers) + 1}"
        return {"id": self.customers[email]}

    def retrieve_coupon(self, code):
        return self.coupons.get(code)


class FakeLockService:
    def __init__(self):
        self.locks = {}
        self.acquired = []

    def acquire_checkout_lock(self, checkout_key, owner, ttl):
        if checkout_key in self.locks:
            return False
        self.locks[checkout_key] = owner
        self.acquired.append(checkout_key)
        return True

    def release_checkout_lock(self, checkout_key, owner):
        if self.locks.get(checkout_key) == owner:
            del self.locks[checkout_key]
            return True
        return False


class _Response:
    def __init__(self, response):
        self._response = response
        self.status_code = response.status_code

    def json(self):
        return self._response.json()

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class TestClientSession:
    """Zamiast requests.Session: StorefrontClient -> FastAPI TestClient."""

    __test__ = False

    def __init__(self, client: TestClient):
        self.client = client
        self.offline = False
        self.calls = []

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        self.calls.append((method, url))
        if self.offline:
            raise requests.ConnectionError("storefront unreachable")
        return _Response(self.client.request(method, url, json=json, params=params, headers=headers))


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def catalog(_schema):
    db = SessionLocal()
    try:
        db.add_all(
            [
                UserModel(id=1, name="Ada", email=ADA["email"], membership_tier="PEARL"),
                UserModel(id=2, name="Grace", email=GRACE["email"], membership_tier="DIAMOND"),
                ProductModel(
                    id=GOWN,
                    name="Silk Gown",
                    slug="silk-gown",
                    sku="GOWN",
                    price=Decimal("1250.00"),
                    compare_at_price=Decimal("1500.00"),
                ),
                ProductModel(id=SCARF, name="Cashmere Scarf", slug="cashmere-scarf", sku="SCARF", price=Decimal("50.00")),
                ProductModel(id=SESSION, name="Styling Session", slug="styling-session", price=Decimal("99.00")),
                ProductModel(id=BAG, name="Archived Bag", slug="archived-bag", price=Decimal("300.00"), status="ARCHIVED"),
            ]
        )
        db.flush()
        db.add_all(
            [
                # ostatnia sztuka
                ProductVariantModel(id=GOWN_S, product_id=GOWN, sku="GOWN-S", size="S", inventory_quantity=1),
                ProductVariantModel(id=GOWN_M, product_id=GOWN, sku="GOWN-M", size="M", inventory_quantity=5),
                ProductVariantModel(id=SCARF_ONE, product_id=SCARF, sku="SCARF-ONE", inventory_quantity=20),
                ProductVariantModel(id=BAG_ONE, product_id=BAG, sku="BAG-ONE", inventory_quantity=5),
                CouponModel(code="WELCOME10", discount_type="percentage", discount_value=Decimal("10")),
                CouponModel(
                    code="SAVE50",
                    discount_type="fixed",
                    discount_value=Decimal("50"),
                    minimum_amount=Decimal("500"),
                ),
                CouponModel(
                    code="EXPIRED",
                    discount_type="percentage",
                    discount_value=Decimal("20"),
                    valid_until=datetime.now(timezone.utc) - timedelta(days=1),
                ),
                CouponModel(
                    code="FIRST15",
                    discount_type="percentage",
                    discount_value=Decimal("15"),
                    first_purchase_only=True,
                ),
                CouponModel(
                    code="DIAMOND20",
                    discount_type="percentage",
                    discount_value=Decimal("20"),
                    membership_tiers=["DIAMOND"],
                ),
                CouponModel(
                    code="MAXED",
                    discount_type="fixed",
                    discount_value=Decimal("5"),
                    usage_limit=1,
                    usage_count=1,
                ),
                GiftCardModel(code="GIFT-100", balance=Decimal("100.00")),
                GiftCardModel(code="GIFT-EMPTY", balance=Decimal("0.00")),
            ]
        )
        db.commit()
    finally:
        db.close()


@pytest.fixture
def db(catalog):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def variant_stock(catalog):
    """(inventory_quantity, inventory_reserved) czytane swieza sesja."""

    def read(variant_id):
        session = SessionLocal()
        try:
            variant = session.get(ProductVariantModel, variant_id)
            return variant.inventory_quantity, variant.inventory_reserved
        finally:
            session.close()

    return read


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def lock_service():
    return FakeLockService()


@pytest.fixture
def api(catalog, gateway, lock_service):
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_lock_service] = lambda: lock_service
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def transport(api):
    return TestClientSession(api)


@pytest.fixture
def storefront_client(transport, monkeypatch):
    # bez czekania miedzy ponowieniami
    monkeypatch.setattr(StorefrontClient._request.retry, "wait", wait_none())
    return StorefrontClient(base_url="http://testserver", session=transport)


@pytest.fixture
def cart(storefront_client):
    return CartEngine(storefront_client)


@pytest.fixture
def intent_payload():
    def build(items, **overrides):
        data = {
            "items": items,
            "shipping_address": CA_ADDRESS,
            "billing_address": CA_ADDRESS,
            "shipping_method": STANDARD,
            "email": "guest@example.com",
        }
        data.update(overrides)
        return CreateIntentIn.model_validate(data)

    return build


def line(product_id, variant_id, quantity, price):
    return {"product_id": product_id, "variant_id": variant_id, "quantity": quantity, "price": price}
