import threading
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from storefront.data.database import SessionLocal
from storefront.data.models import CouponModel, CouponUseModel, OrderModel
from storefront.domain.errors import (
    CheckoutInProgressError,
    NotFoundError,
    PaymentGatewayError,
    PriceMismatchError,
    StockConflictError,
    VariantRequiredError,
)
from storefront.domain.schemas import CheckoutValidateIn, CurrentUser, ShippingMethod, StockCheckItem, TaxIn
from storefront.services.checkout_service import CheckoutService
from storefront.services.discount_service import DiscountService
from storefront.services.stock_service import StockService
from tests.conftest import (
    ADA,
    BAG,
    BAG_ONE,
    EXPRESS,
    GOWN,
    GOWN_M,
    GOWN_S,
    SCARF,
    SCARF_ONE,
    SESSION,
    line,
)


def order_count():
    session = SessionLocal()
    try:
        return session.execute(select(func.count(OrderModel.id))).scalar_one()
    finally:
        session.close()


def test_create_intent_guest(db, gateway, variant_stock, intent_payload):
    result = CheckoutService(db, gateway).create_intent(
        intent_payload([line(SCARF, SCARF_ONE, 2, "50.00")], notes="Gift wrap please")
    )

    assert result["order_number"].startswith("LUX")
    assert result["client_secret"] == "pi_1_secret"
    # 100 + 8.75% CA, standard darmowa od progu
    assert result["amount"] == Decimal("108.75")

    order = db.get(OrderModel, result["order_id"])
    assert order.status == "PENDING"
    assert order.user_id is None
    assert order.subtotal == Decimal("100.00")
    assert order.tax_amount == Decimal("8.75")
    assert order.shipping_amount == Decimal("0.00")
    assert order.payment_intent_id == "pi_1"
    assert order.extra["shipping_method_details"]["id"] == "standard"
    assert [(i.product_name, i.quantity, i.unit_price) for i in order.items] == [
        ("Cashmere Scarf", 2, Decimal("50.00"))
    ]

    intent = gateway.intents["pi_1"]
    assert intent["amount"] == 10875
    assert intent["setup_future_usage"] is None
    assert set(intent["metadata"]) == {
        "order_id",
        "order_number",
        "user_id",
        "customer_email",
        "shipping_method",
        "order_total",
        "item_count",
    }
    assert intent["metadata"]["item_count"] == "2"

    # rezerwacja, nie zdjecie ze stanu
    assert variant_stock(SCARF_ONE) == (20, 2)


def test_create_intent_applies_discount_and_records_use(db, gateway, intent_payload):
    ada = CurrentUser(**ADA)
    result = CheckoutService(db, gateway).create_intent(
        intent_payload(
            [line(SCARF, SCARF_ONE, 2, "50.00")],
            email=ADA["email"],
            discount_codes=["welcome10", "WELCOME10", "NOPE"],
        ),
        ada,
    )

    # 100 - 10 = 90, podatek 7.875 -> 7.88
    assert result["amount"] == Decimal("97.88")

    order = db.get(OrderModel, result["order_id"])
    assert order.discount_amount == Decimal("10.00")
    assert order.user_id == 1
    assert order.extra["discount_codes"] == ["WELCOME10"]
    assert gateway.intents[order.payment_intent_id]["setup_future_usage"] == "on_session"

    session = SessionLocal()
    try:
        use = session.execute(select(CouponUseModel)).scalar_one()
        assert use.user_id == 1
        assert use.order_id == order.id
        assert use.discount_amount == Decimal("10.00")
        assert session.execute(select(CouponModel.usage_count).where(CouponModel.code == "WELCOME10")).scalar_one() == 1
    finally:
        session.close()


def test_guest_discount_not_recorded(db, gateway, intent_payload):
    CheckoutService(db, gateway).create_intent(
        intent_payload([line(SCARF, SCARF_ONE, 1, "50.00")], discount_codes=["WELCOME10"])
    )
    assert db.execute(select(func.count(CouponUseModel.id))).scalar_one() == 0


def test_express_shipping_and_untracked_product(db, gateway, variant_stock, intent_payload):
    result = CheckoutService(db, gateway).create_intent(
        intent_payload(
            [line(SESSION, None, 1, "99.00"), line(GOWN, GOWN_M, 1, "1250.00")],
            shipping_method=EXPRESS,
        )
    )

    order = db.get(OrderModel, result["order_id"])
    assert order.shipping_amount == Decimal("25.00")
    assert order.shipping_method == "Express Shipping"
    assert order.total == Decimal("1349.00") + Decimal("118.04") + Decimal("25.00")
    assert variant_stock(GOWN_M) == (5, 1)


def test_price_mismatch_aborts_without_reservation(db, gateway, variant_stock, intent_payload):
    with pytest.raises(PriceMismatchError, match="Cashmere Scarf"):
        CheckoutService(db, gateway).create_intent(intent_payload([line(SCARF, SCARF_ONE, 1, "45.00")]))

    assert variant_stock(SCARF_ONE) == (20, 0)
    assert order_count() == 0
    assert gateway.intents == {}


def test_price_within_tolerance_accepted(db, gateway, intent_payload):
    result = CheckoutService(db, gateway).create_intent(intent_payload([line(SCARF, SCARF_ONE, 1, "50.01")]))
    assert db.get(OrderModel, result["order_id"]).items[0].unit_price == Decimal("50.00")


def test_stock_conflict_is_all_or_nothing(db, gateway, variant_stock, intent_payload):
    payload = intent_payload([line(SCARF, SCARF_ONE, 2, "50.00"), line(GOWN, GOWN_S, 2, "1250.00")])

    with pytest.raises(StockConflictError) as exc:
        CheckoutService(db, gateway).create_intent(payload)

    assert exc.value.lines == [
        {"product_id": GOWN, "variant_id": GOWN_S, "name": "Silk Gown (S)", "requested": 2, "available": 1}
    ]
    assert str(exc.value) == "Silk Gown (S) is out of stock, only 1 available"
    assert variant_stock(SCARF_ONE) == (20, 0)
    assert variant_stock(GOWN_S) == (1, 0)
    assert order_count() == 0


def test_unavailable_variant_and_inactive_product(db, gateway, variant_stock, intent_payload):
    with pytest.raises(ValueError, match="Archived Bag is not available"):
        CheckoutService(db, gateway).create_intent(intent_payload([line(BAG, BAG_ONE, 1, "300.00")]))
    assert variant_stock(BAG_ONE) == (5, 0)

    with pytest.raises(NotFoundError):
        CheckoutService(db, gateway).create_intent(intent_payload([line(999, None, 1, "10.00")]))


def test_last_unit_race(catalog, gateway, variant_stock, intent_payload):
    barrier = threading.Barrier(2)
    saw_stock = {}
    outcomes = {}

    def buy(email):
        session = SessionLocal()
        try:
            items = [StockCheckItem(product_id=GOWN, variant_id=GOWN_S, quantity=1)]
            # obaj klienci widza jeszcze ostatnia sztuke
            saw_stock[email] = StockService(session).check_availability(items)[0].in_stock
            barrier.wait(timeout=10)
            outcomes[email] = CheckoutService(session, gateway).create_intent(
                intent_payload([line(GOWN, GOWN_S, 1, "1250.00")], email=email)
            )
        except Exception as e:
            outcomes[email] = e
        finally:
            session.close()

    threads = [threading.Thread(target=buy, args=(email,)) for email in ("first@example.com", "second@example.com")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert saw_stock == {"first@example.com": True, "second@example.com": True}
    winners = [o for o in outcomes.values() if isinstance(o, dict)]
    losers = [o for o in outcomes.values() if isinstance(o, StockConflictError)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert losers[0].lines[0]["available"] == 0

    assert variant_stock(GOWN_S) == (1, 1)
    assert order_count() == 1
    assert len(gateway.intents) == 1


def test_tracked_product_needs_variant(db, gateway, variant_stock, intent_payload):
    StockService(db).reserve_lines(
        [
            StockCheckItem(product_id=GOWN, variant_id=GOWN_S, quantity=1),
            StockCheckItem(product_id=GOWN, variant_id=GOWN_M, quantity=5),
        ]
    )
    db.commit()

    with pytest.raises(VariantRequiredError, match="Please choose a size for Silk Gown"):
        CheckoutService(db, gateway).create_intent(intent_payload([line(GOWN, None, 3, "1250.00")]))

    assert order_count() == 0
    assert gateway.intents == {}
    assert variant_stock(GOWN_S) == (1, 1)
    assert variant_stock(GOWN_M) == (5, 5)

    result = CheckoutService(db, gateway).validate(
        CheckoutValidateIn(items=[StockCheckItem(product_id=GOWN, quantity=1)], email="guest@example.com")
    )
    assert result == {"valid": False, "errors": ["Please choose a size for Silk Gown"]}


def test_coupon_limit_claimed_with_order(db, gateway, intent_payload, monkeypatch):
    db.add(CouponModel(code="LAST1", discount_type="fixed", discount_value=Decimal("5"), usage_limit=1))
    db.commit()
    validate = DiscountService.validate_coupon

    def validate_then_lose_last_use(self, code, **kwargs):
        discount = validate(self, code, **kwargs)
        # inny checkout zajal ostatnie uzycie zaraz po walidacji
        self.coupons.db.execute(
            update(CouponModel)
            .where(CouponModel.code == "LAST1")
            .values(usage_count=1)
            .execution_options(synchronize_session=False)
        )
        return discount

    monkeypatch.setattr(DiscountService, "validate_coupon", validate_then_lose_last_use)

    result = CheckoutService(db, gateway).create_intent(
        intent_payload([line(SCARF, SCARF_ONE, 2, "50.00")], email=ADA["email"], discount_codes=["LAST1"]),
        CurrentUser(**ADA),
    )

    order = db.get(OrderModel, result["order_id"])
    assert order.discount_amount == Decimal("0.00")
    assert order.extra["discount_codes"] == []

    session = SessionLocal()
    try:
        assert session.execute(select(CouponModel.usage_count).where(CouponModel.code == "LAST1")).scalar_one() == 1
        assert session.execute(select(func.count(CouponUseModel.id))).scalar_one() == 0
    finally:
        session.close()


def test_gateway_failure_leaves_pending_order(db, gateway, variant_stock, intent_payload):
    gateway.fail = True

    with pytest.raises(PaymentGatewayError):
        CheckoutService(db, gateway).create_intent(intent_payload([line(SCARF, SCARF_ONE, 1, "50.00")]))

    session = SessionLocal()
    try:
        order = session.execute(select(OrderModel)).scalar_one()
        assert order.status == "PENDING"
        assert order.payment_intent_id is None
    finally:
        session.close()
    assert variant_stock(SCARF_ONE) == (20, 1)


def test_checkout_lock(db, gateway, lock_service, intent_payload):
    service = CheckoutService(db, gateway, lock_service)
    payload = intent_payload([line(SCARF, SCARF_ONE, 1, "50.00")], cart_id="cart-1")

    lock_service.locks["cart-1"] = "someone-else"
    with pytest.raises(CheckoutInProgressError):
        service.create_intent(payload)
    assert order_count() == 0

    del lock_service.locks["cart-1"]
    service.create_intent(payload)
    assert lock_service.acquired == ["cart-1"]
    assert lock_service.locks == {}


def test_lock_released_on_failure(db, gateway, lock_service, intent_payload):
    with pytest.raises(PriceMismatchError):
        CheckoutService(db, gateway, lock_service).create_intent(
            intent_payload([line(SCARF, SCARF_ONE, 1, "1.00")])
        )
    # bez cart_id kluczem jest email
    assert lock_service.acquired == ["guest@example.com"]
    assert lock_service.locks == {}


def test_update_shipping(db, gateway, intent_payload):
    service = CheckoutService(db, gateway)
    created = service.create_intent(intent_payload([line(SCARF, SCARF_ONE, 2, "50.00")]))

    result = service.update_shipping(
        created["order_id"], ShippingMethod.model_validate(EXPRESS), email="GUEST@example.com"
    )

    assert result == {"success": True, "new_total": Decimal("133.75")}
    assert gateway.intents["pi_1"]["amount"] == 13375
    order = db.get(OrderModel, created["order_id"])
    assert order.shipping_amount == Decimal("25.00")
    assert order.extra["shipping_method_details"]["id"] == "express"


def test_update_shipping_checks_owner_and_status(db, gateway, intent_payload):
    service = CheckoutService(db, gateway)
    guest = service.create_intent(intent_payload([line(SCARF, SCARF_ONE, 1, "50.00")]))
    owned = service.create_intent(
        intent_payload([line(SCARF, SCARF_ONE, 1, "50.00")], email=ADA["email"]), CurrentUser(**ADA)
    )
    express = ShippingMethod.model_validate(EXPRESS)

    with pytest.raises(PermissionError):
        service.update_shipping(guest["order_id"], express, email="someone@example.com")
    with pytest.raises(PermissionError):
        service.update_shipping(owned["order_id"], express, user=CurrentUser(user_id=2))
    with pytest.raises(NotFoundError):
        service.update_shipping(9999, express, email="guest@example.com")

    order = db.get(OrderModel, guest["order_id"])
    order.status = "CONFIRMED"
    db.commit()
    with pytest.raises(ValueError, match="can no longer be changed"):
        service.update_shipping(guest["order_id"], express, email="guest@example.com")


def test_calculate_tax():
    result = CheckoutService.calculate_tax(
        TaxIn.model_validate(
            {"subtotal": "200", "shipping_address": {"country_code": "US", "state_province": "NY", "postal_code": "10001"}}
        )
    )
    assert result == {
        "tax_rate": Decimal("0.08"),
        "tax_amount": Decimal("16.00"),
        "taxable_amount": Decimal("200.00"),
    }


def test_validate(db, gateway):
    service = CheckoutService(db, gateway)

    ok = service.validate(
        CheckoutValidateIn(
            items=[StockCheckItem(product_id=SCARF, variant_id=SCARF_ONE, quantity=3)],
            email="guest@example.com",
        )
    )
    assert ok == {"valid": True, "errors": []}

    result = service.validate(
        CheckoutValidateIn(
            items=[
                StockCheckItem(product_id=GOWN, variant_id=GOWN_S, quantity=2),
                StockCheckItem(product_id=BAG, variant_id=BAG_ONE, quantity=1),
                StockCheckItem(product_id=999, quantity=1),
            ],
            email="other@example.com",
        ),
        CurrentUser(**ADA),
    )
    assert result["valid"] is False
    assert result["errors"] == [
        "Email does not match your account",
        "Silk Gown (S) - only 1 available",
        "Archived Bag is not available",
        "Product not found",
    ]
