# storefront/services/checkout_service.py
import secrets
import string
import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel, OrderItemModel
from storefront.domain.errors import (
    CheckoutInProgressError,
    DiscountRejectedError,
    NotFoundError,
    PaymentGatewayError,
    PriceMismatchError,
    VariantRequiredError,
)
from storefront.domain.order_status import OrderStatus, UNPAID
from storefront.domain.pricing import (
    ZERO,
    calculate_totals,
    discount_contribution,
    line_total,
    money,
    quote_shipping,
    tax_rate_for,
)
from storefront.domain.schemas import (
    CheckoutItemIn,
    CheckoutValidateIn,
    CreateIntentIn,
    CurrentUser,
    DiscountOut,
    ShippingMethod,
    TaxIn,
)
from storefront.repos.order_repo import OrderRepo
from storefront.repos.product_repo import ProductRepo
from storefront.services.discount_service import DiscountService
from storefront.services.lock_service import LockService
from storefront.services.payment_gateway import PaymentGateway
from storefront.services.stock_service import StockService
from storefront.utils.settings import CHECKOUT_LOCK_TTL_SECONDS, CURRENCY, PRICE_TOLERANCE
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

_ORDER_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number() -> str:
    return "LUX" + "".join(secrets.choice(_ORDER_ALPHABET) for _ in range(10))


class CheckoutService:
    """
    Orkiestracja checkoutu:
    1. rezerwacja stanow (warunkowy UPDATE, all-or-nothing)
    2. ceny z katalogu, cena klienta to tylko podpowiedz
    3. rabaty (niewazne kody sa pomijane), dla zalogowanych warunkowe zajecie limitu kuponu
    4. podatek + wysylka
    5. zapis Order + OrderItems + uzycia kuponow, commit
    6. Stripe customer + payment intent (poza transakcja, bez lockow w bazie)
    """

    def __init__(
        self,
        db: Session,
        gateway: PaymentGateway,
        lock_service: LockService | None = None,
    ):
        self.orders = OrderRepo(db)
        self.products = ProductRepo(db)
        self.stock = StockService(db)
        self.discounts = DiscountService(db, gateway)
        self.gateway = gateway
        self.lock_service = lock_service

    #commands
    def create_intent(self, payload: CreateIntentIn, user: Optional[CurrentUser] = None) -> Dict[str, Any]:
        checkout_key = payload.cart_id or payload.email.lower()
        owner = uuid.uuid4().hex

        if self.lock_service is not None:
            locked = self.lock_service.acquire_checkout_lock(
                checkout_key, owner, ttl=CHECKOUT_LOCK_TTL_SECONDS
            )
            if not locked:
                raise CheckoutInProgressError("Checkout is already in progress for this cart")

        try:
            order = self._create_order(payload, user)
            return self._attach_payment_intent(order, payload, user)
        finally:
            if self.lock_service is not None:
                self.lock_service.release_checkout_lock(checkout_key, owner)

    def _create_order(
        self,
        payload: CreateIntentIn,
        user: Optional[CurrentUser],
    ) -> OrderModel:
        try:
            self.stock.reserve_lines(payload.items)

            order_items = self._price_lines(payload.items)
            lines = [(i.unit_price, i.quantity) for i in order_items]
            subtotal = sum((i.total_price for i in order_items), ZERO)

            applied = self._evaluate_discounts(payload.discount_codes, subtotal, user)
            claimed = self._claim_coupons(applied, user)
            applied = [(d, c) for d, c, _ in claimed]

            shipping = quote_shipping(payload.shipping_method.id, subtotal)
            if money(shipping["price"]) != money(payload.shipping_method.price):
                logger.warning(
                    f"Client shipping quote {payload.shipping_method.price} for "
                    f"{payload.shipping_method.id} differs from {shipping['price']}, using server quote"
                )

            address = payload.shipping_address
            totals = calculate_totals(
                lines,
                [d for d, _ in applied],
                tax_rate_for(address.country_code, address.state_province),
                shipping_amount=shipping["price"],
            )

            order = OrderModel(
                order_number=generate_order_number(),
                user_id=user.user_id if user else None,
                customer_email=payload.email,
                customer_phone=address.phone,
                status=OrderStatus.PENDING.value,
                currency=CURRENCY,
                subtotal=totals.subtotal,
                discount_amount=totals.discount_amount,
                tax_amount=totals.tax_amount,
                shipping_amount=totals.shipping_amount,
                total=totals.total,
                shipping_method=shipping["name"],
                shipping_address=address.model_dump(mode="json"),
                billing_address=payload.billing_address.model_dump(mode="json"),
                notes=payload.notes,
                extra={
                    "shipping_method_details": _method_snapshot(shipping),
                    "discount_codes": [d.code for d, _ in applied],
                    "gift_card_codes": list(payload.gift_card_codes),
                },
                items=order_items,
            )
            self.orders.add_order(order)

            for discount, contribution, coupon_id in claimed:
                if coupon_id is not None:
                    self.discounts.coupons.record_use(coupon_id, user.user_id, order.id, contribution)

            # rezerwacja i kupony commitowane PRZED wywolaniem Stripe
            self.orders.commit()
        except Exception:
            self.orders.rollback()
            raise

        logger.info(
            f"Order {order.order_number} created: subtotal={order.subtotal} "
            f"discount={order.discount_amount} tax={order.tax_amount} "
            f"shipping={order.shipping_amount} total={order.total}"
        )
        return order

    def _price_lines(self, items: List[CheckoutItemIn]) -> List[OrderItemModel]:
        order_items = []

        for item in items:
            product = self.products.get_product(item.product_id)
            if not product:
                raise NotFoundError(f"Product {item.product_id} not found")

            variant = None
            if item.variant_id:
                variant = self.products.get_variant(item.variant_id)
                if not variant or variant.product_id != product.id:
                    raise NotFoundError(f"Product variant {item.variant_id} not found")

            if product.status != "ACTIVE":
                raise ValueError(f"{product.name} is not available")

            unit_price = money(self.products.unit_price(product, variant))

            if abs(unit_price - money(item.price)) > PRICE_TOLERANCE:
                logger.warning(
                    f"Price mismatch for product {product.id}: client={item.price} server={unit_price}"
                )
                raise PriceMismatchError(
                    f"The price of {product.name} has changed to {unit_price}, please review your cart"
                )

            order_items.append(
                OrderItemModel(
                    product_id=product.id,
                    variant_id=variant.id if variant else None,
                    product_name=product.name,
                    sku=(variant.sku if variant and variant.sku else product.sku),
                    quantity=item.quantity,
                    unit_price=unit_price,
                    total_price=line_total(unit_price, item.quantity),
                )
            )

        return order_items

    def _evaluate_discounts(
        self,
        codes: List[str],
        subtotal: Decimal,
        user: Optional[CurrentUser],
    ) -> List[Tuple[DiscountOut, Decimal]]:
        applied = []
        seen = set()

        for code in codes:
            if code.upper() in seen:
                continue
            seen.add(code.upper())

            try:
                discount = self.discounts.validate_coupon(code, subtotal=subtotal, user=user)
            except DiscountRejectedError as e:
                # miekki blad - zamowienie idzie dalej bez tego kodu
                logger.info(f"Discount {code} ignored at checkout: {e.reason}")
                continue

            contribution = discount_contribution(
                discount.type, discount.value, subtotal, discount.minimum_amount
            )
            applied.append((discount, contribution))

        return applied

    def _claim_coupons(
        self,
        applied: List[Tuple[DiscountOut, Decimal]],
        user: Optional[CurrentUser],
    ) -> List[Tuple[DiscountOut, Decimal, Optional[int]]]:
        # kupony liczymy tylko dla zalogowanych
        if user is None:
            return [(d, c, None) for d, c in applied]

        claimed = []
        for discount, contribution in applied:
            coupon_id = self.discounts.coupon_id(discount.code)
            if coupon_id is not None and not self.discounts.coupons.claim_use(coupon_id):
                logger.info(f"Discount {discount.code} ignored at checkout: usage limit reached")
                continue
            claimed.append((discount, contribution, coupon_id))

        return claimed

    def _attach_payment_intent(
        self,
        order: OrderModel,
        payload: CreateIntentIn,
        user: Optional[CurrentUser],
    ) -> Dict[str, Any]:
        address = payload.shipping_address
        email = (user.email if user and user.email else payload.email)

        try:
            customer = self.gateway.get_or_create_customer(
                email,
                {
                    "user_id": str(user.user_id) if user else "guest",
                    "name": f"{address.first_name} {address.last_name}",
                },
            )

            metadata = {
                "order_id": str(order.id),
                "order_number": order.order_number,
                "user_id": str(user.user_id) if user else "",
                "customer_email": payload.email,
                "shipping_method": order.shipping_method,
                "order_total": f"{order.total:.2f}",
                "item_count": str(sum(i.quantity for i in payload.items)),
            }

            intent = self.gateway.create_payment_intent(
                order.total,
                order.currency,
                metadata,
                customer_id=customer["id"],
                setup_future_usage="on_session" if user else None,
            )
        except PaymentGatewayError:
            # zamowienie zostaje PENDING z rezerwacja, zwolni je sweep
            logger.error(f"Payment intent failed for order {order.order_number}, order left PENDING")
            raise

        try:
            order.payment_intent_id = intent["id"]
            self.orders.commit()
        except Exception:
            self.orders.rollback()
            raise

        logger.info(f"Order {order.order_number} linked to payment intent {intent['id']}")

        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "client_secret": intent["client_secret"],
            "amount": order.total,
        }

    def update_shipping(
        self,
        order_id: int,
        shipping_method: ShippingMethod,
        user: Optional[CurrentUser] = None,
        email: Optional[str] = None,
    ) -> Dict[str, Any]:
        order = self.orders.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")

        _ensure_owner(order, user, email)

        if OrderStatus(order.status) not in UNPAID:
            raise ValueError("Shipping can no longer be changed for this order")

        subtotal = Decimal(order.subtotal)
        shipping = quote_shipping(shipping_method.id, subtotal)

        # podatek i rabat zamrozone, zmienia sie tylko wysylka
        taxable = max(ZERO, subtotal - Decimal(order.discount_amount))
        new_total = money(taxable + Decimal(order.tax_amount) + shipping["price"])

        try:
            order.shipping_amount = money(shipping["price"])
            order.shipping_method = shipping["name"]
            order.total = new_total
            order.extra = {**(order.extra or {}), "shipping_method_details": _method_snapshot(shipping)}
            self.orders.db.flush()

            if order.payment_intent_id:
                self.gateway.update_payment_intent(
                    order.payment_intent_id,
                    new_total,
                    {"shipping_method": shipping["name"], "order_total": f"{new_total:.2f}"},
                )

            self.orders.commit()
        except Exception:
            self.orders.rollback()
            raise

        logger.info(f"Order {order.order_number} shipping changed to {shipping['id']}, total {new_total}")
        return {"success": True, "new_total": new_total}

    #query
    @staticmethod
    def calculate_tax(payload: TaxIn) -> Dict[str, Any]:
        address = payload.shipping_address
        rate = tax_rate_for(address.country_code, address.state_province)
        return {
            "tax_rate": rate,
            "tax_amount": money(payload.subtotal * rate),
            "taxable_amount": money(payload.subtotal),
        }

    def validate(self, payload: CheckoutValidateIn, user: Optional[CurrentUser] = None) -> Dict[str, Any]:
        errors = []

        if user and user.email and user.email.lower() != payload.email.lower():
            errors.append("Email does not match your account")

        statuses = self.stock.check_availability(payload.items)
        for item, status in zip(payload.items, statuses):
            product = self.products.get_product(item.product_id)
            if not product:
                errors.append("Product not found")
                continue

            if product.status != "ACTIVE":
                errors.append(f"{product.name} is not available")
                continue

            if not item.variant_id:
                try:
                    self.stock.ensure_untracked(product.id)
                except VariantRequiredError as e:
                    errors.append(str(e))
                    continue

            if status.in_stock:
                continue

            name = product.name
            if item.variant_id:
                variant = self.products.get_variant(item.variant_id)
                if variant is None:
                    errors.append("Product variant not found")
                    continue
                if variant.size:
                    name = f"{name} ({variant.size})"
                if not variant.is_available:
                    errors.append(f"{name} is not available")
                    continue

            errors.append(f"{name} - only {status.available_quantity or 0} available")

        return {"valid": not errors, "errors": errors}


def _method_snapshot(shipping: Dict[str, Any]) -> Dict[str, Any]:
    return {**shipping, "price": str(money(shipping["price"]))}


def _ensure_owner(order: OrderModel, user: Optional[CurrentUser], email: Optional[str]):
    if order.user_id is not None:
        if user is None or user.user_id != order.user_id:
            raise PermissionError("Access to this order is denied")
        return

    # zamowienie goscia - weryfikacja po emailu
    if not email or email.lower() != order.customer_email.lower():
        raise PermissionError("Access to this order is denied")
