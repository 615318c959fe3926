from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from storefront.data.database import SessionLocal
from storefront.data.models import CartModel
from storefront.domain.errors import NotFoundError
from storefront.domain.schemas import CartSyncIn, CurrentUser
from storefront.services.cart_service import CartService
from storefront.tasks.expire import abandon_stale_carts_task
from tests.conftest import ADA, GOWN, GOWN_M, SCARF, SCARF_ONE, SESSION


def sync(db, items, user=None, cart_id=None, **extra):
    payload = CartSyncIn.model_validate({"cart_id": cart_id, "items": items, **extra})
    return CartService(db).sync(payload, user)


def test_sync_creates_cart_with_catalog_prices(db):
    cart = sync(
        db,
        [
            {"product_id": SCARF, "variant_id": SCARF_ONE, "quantity": 2, "personalizations": {"monogram": "AL"}},
            {"product_id": SESSION, "quantity": 1},
        ],
        discount_codes=["welcome10"],
        gift_card_codes=["GIFT-100"],
    )

    assert cart["cart_id"]
    assert cart["user_id"] is None
    assert cart["subtotal"] == Decimal("199.00")
    assert cart["coupon_code"] == "WELCOME10"
    assert cart["gift_card_codes"] == ["GIFT-100"]
    assert cart["items"][0]["price"] == Decimal("50.00")
    assert cart["items"][0]["personalizations"] == {"monogram": "AL"}


def test_sync_replaces_lines(db):
    cart = sync(db, [{"product_id": SCARF, "variant_id": SCARF_ONE, "quantity": 2}])
    again = sync(db, [{"product_id": GOWN, "variant_id": GOWN_M, "quantity": 1}], cart_id=cart["cart_id"])

    assert again["cart_id"] == cart["cart_id"]
    assert [(i["product_id"], i["quantity"]) for i in again["items"]] == [(GOWN, 1)]
    assert again["subtotal"] == Decimal("1250.00")


def test_sync_unknown_product(db):
    with pytest.raises(NotFoundError):
        sync(db, [{"product_id": 999, "quantity": 1}])


def test_user_cart_is_private(db):
    cart = sync(db, [{"product_id": SCARF, "variant_id": SCARF_ONE, "quantity": 1}], user=CurrentUser(**ADA))

    with pytest.raises(PermissionError):
        CartService(db).get_cart(cart["cart_id"], None)
    with pytest.raises(PermissionError):
        sync(db, [], user=CurrentUser(user_id=2), cart_id=cart["cart_id"])
    assert CartService(db).get_cart(cart["cart_id"], CurrentUser(**ADA))["user_id"] == 1
    assert CartService(db).get_cart("missing", None) is None


def test_merge_without_duplicates(db):
    ada = CurrentUser(**ADA)
    user_cart = sync(
        db,
        [
            {"product_id": GOWN, "variant_id": GOWN_M, "quantity": 3},
            {"product_id": SESSION, "quantity": 1},
        ],
        user=ada,
    )
    guest = sync(
        db,
        [
            {"product_id": SCARF, "variant_id": SCARF_ONE, "quantity": 1},
            {"product_id": GOWN, "variant_id": GOWN_M, "quantity": 1},
        ],
    )

    result = CartService(db).merge_guest_cart(guest["cart_id"], 1, ada)

    assert result == {"success": True, "cart_id": user_cart["cart_id"]}
    merged = CartService(db).get_cart(user_cart["cart_id"], ada)
    lines = {(i["product_id"], i["variant_id"]): i["quantity"] for i in merged["items"]}
    assert lines == {(GOWN, GOWN_M): 3, (SESSION, None): 1, (SCARF, SCARF_ONE): 1}
    assert merged["subtotal"] == Decimal("3899.00")
    assert CartService(db).get_cart(guest["cart_id"], ada) is None


def test_merge_transfers_guest_cart(db):
    ada = CurrentUser(**ADA)
    guest = sync(db, [{"product_id": SCARF, "variant_id": SCARF_ONE, "quantity": 1}])

    assert CartService(db).merge_guest_cart(guest["cart_id"], 1, ada) == {
        "success": True,
        "cart_id": guest["cart_id"],
    }
    assert CartService(db).get_cart(guest["cart_id"], ada)["user_id"] == 1


def test_merge_edge_cases(db):
    ada = CurrentUser(**ADA)
    assert CartService(db).merge_guest_cart("gone", 1, ada) == {"success": False, "cart_id": None}

    guest = sync(db, [{"product_id": SCARF, "variant_id": SCARF_ONE, "quantity": 1}])
    with pytest.raises(PermissionError):
        CartService(db).merge_guest_cart(guest["cart_id"], 2, ada)


def test_abandon_stale_carts(db):
    stale = sync(db, [{"product_id": SCARF, "variant_id": SCARF_ONE, "quantity": 1}])
    fresh = sync(db, [{"product_id": SCARF, "variant_id": SCARF_ONE, "quantity": 1}])

    session = SessionLocal()
    try:
        session.get(CartModel, stale["cart_id"]).updated_at = datetime.now(timezone.utc) - timedelta(days=60)
        session.commit()
    finally:
        session.close()

    assert abandon_stale_carts_task() == 1

    session = SessionLocal()
    try:
        assert session.get(CartModel, stale["cart_id"]).is_abandoned is True
        assert session.get(CartModel, fresh["cart_id"]).is_abandoned is False
    finally:
        session.close()
