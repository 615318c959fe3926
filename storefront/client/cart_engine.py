# storefront/client/cart_engine.py
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from storefront.client.api_client import StorefrontClient, error_detail
from storefront.client.models import CartEvent, CartItem, PersistedCart, make_item_id
from storefront.client.storage import JsonFileCartStorage
from storefront.domain.errors import CheckoutBlockedError
from storefront.domain.pricing import ZERO, Totals, calculate_totals, money
from storefront.domain.schemas import CheckoutItemIn, CreateIntentIn, DiscountOut
from storefront.utils.settings import (
    CURRENCY,
    DEFAULT_TAX_RATE,
    FLAT_SHIPPING_RATE,
    FREE_SHIPPING_THRESHOLD,
)
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

STANDARD_DELIVERY_DAYS = (5, 7)

Subscriber = Callable[[CartEvent], None]


class CartEngine:
    """
    Koszyk po stronie klienta.

    Stan lokalny jest zrodlem prawdy dla UX: kazda komenda zmienia stan od razu,
    przelicza sumy synchronicznie, potem robi best-effort sync z serwerem
    (blad sync jest logowany i polykany) i zapisuje stan lokalnie.
    Twarde bramki to tylko walidacja stanow magazynowych i kodow rabatowych.

    Komendy zwracaja CartEvent, obserwatorzy z subscribe() dostaja te same eventy
    (np. toasty w UI). Silnik nie jest thread-safe, UI nie puszcza rownoleglych
    komend na ten sam koszyk.
    """

    def __init__(
        self,
        client: StorefrontClient,
        storage: JsonFileCartStorage | None = None,
        currency: str = CURRENCY,
        tax_rate: Decimal = DEFAULT_TAX_RATE,
        free_shipping_threshold: Decimal = FREE_SHIPPING_THRESHOLD,
        flat_shipping_rate: Decimal = FLAT_SHIPPING_RATE,
    ):
        self.client = client
        self.storage = storage
        self.currency = currency
        self.tax_rate = Decimal(str(tax_rate))
        self.free_shipping_threshold = Decimal(str(free_shipping_threshold))
        self.flat_shipping_rate = Decimal(str(flat_shipping_rate))

        self._items: Dict[str, CartItem] = {}
        self.discounts: List[DiscountOut] = []
        self.gift_cards: List[str] = []
        self.cart_id: Optional[str] = None
        self.last_synced: Optional[datetime] = None
        self.pending_order: Optional[Dict[str, Any]] = None

        self.is_open = False
        self.is_loading = False

        self._subscribers: List[Subscriber] = []
        self._totals = self.calculate_totals()
        self._rehydrate()

    # ------------------------------------------------------------ stan / selektory

    def _rehydrate(self):
        if self.storage is None:
            return

        state = self.storage.load()
        if state is not None:
            self._items = {item.id: item for item in state.items}
            self.discounts = list(state.discounts)
            self.gift_cards = list(state.gift_cards)
            self.cart_id = state.cart_id
            logger.info(f"Rehydrated cart with {len(self._items)} line(s), cart_id={self.cart_id}")

        self.calculate_totals()

    def _persist(self):
        if self.storage is None:
            return
        self.storage.save(
            PersistedCart(
                items=self.items,
                discounts=self.discounts,
                gift_cards=self.gift_cards,
                cart_id=self.cart_id,
            )
        )

    def _changed(self, sync: bool = True):
        self.calculate_totals()
        if sync:
            self.sync_cart()
        self._persist()

    @property
    def items(self) -> List[CartItem]:
        return list(self._items.values())

    @property
    def totals(self) -> Totals:
        return self._totals

    @property
    def item_count(self) -> int:
        return self._totals.item_count

    @property
    def subtotal(self) -> Decimal:
        return self._totals.subtotal

    @property
    def discount_amount(self) -> Decimal:
        return self._totals.discount_amount

    @property
    def tax_amount(self) -> Decimal:
        return self._totals.tax_amount

    @property
    def shipping_amount(self) -> Decimal:
        return self._totals.shipping_amount

    @property
    def total(self) -> Decimal:
        return self._totals.total

    def get_item(self, item_id: str) -> Optional[CartItem]:
        return self._items.get(item_id)

    def find_item(self, product_id: int, variant_id: Optional[int] = None) -> Optional[CartItem]:
        for item in self._items.values():
            if item.product_id == product_id and (variant_id is None or item.variant_id == variant_id):
                return item
        return None

    # ------------------------------------------------------------ obserwatorzy

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _emit(self, event: CartEvent) -> CartEvent:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                # blad w UI nie moze cofnac zmiany w koszyku
                logger.exception(f"Cart subscriber failed on {event.type}")
        return event

    # ------------------------------------------------------------ UI

    def open_cart(self):
        self.is_open = True

    def close_cart(self):
        self.is_open = False

    def toggle_cart(self):
        self.is_open = not self.is_open

    # ------------------------------------------------------------ pozycje

    def add_item(
        self,
        product_id: int,
        price: Any,
        variant_id: Optional[int] = None,
        quantity: int = 1,
        compare_at_price: Any = None,
        personalizations: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        size: Optional[str] = None,
    ) -> CartEvent:
        if quantity < 1:
            raise ValueError("Quantity must be at least 1")

        item_id = make_item_id(product_id, variant_id, personalizations)
        existing = self._items.get(item_id)

        if existing is not None:
            # ta sama linia -> tylko ilosc
            existing.quantity += quantity
            item = existing
        else:
            item = CartItem(
                id=item_id,
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
                price=money(price),
                compare_at_price=money(compare_at_price) if compare_at_price is not None else None,
                personalizations=personalizations or None,
                metadata=metadata,
                name=name,
                size=size,
            )
            self._items[item_id] = item

        self._changed()
        logger.info(f"Added {quantity} x {item_id}, cart total {self.total}")

        return self._emit(
            CartEvent(type="item_added", message="Added to cart", description=item.label, item=item)
        )

    def update_quantity(self, item_id: str, quantity: int) -> CartEvent:
        if quantity <= 0:
            return self.remove_item(item_id)

        item = self._items.get(item_id)
        if item is None:
            return self._emit(
                CartEvent(type="item_missing", level="error", message="This item is no longer in your cart")
            )

        item.quantity = quantity
        self._changed()

        return self._emit(
            CartEvent(type="quantity_updated", level="info", message="Cart updated", description=item.label, item=item)
        )

    def remove_item(self, item_id: str) -> CartEvent:
        item = self._items.pop(item_id, None)
        if item is None:
            return self._emit(
                CartEvent(type="item_missing", level="error", message="This item is no longer in your cart")
            )

        self._changed()
        logger.info(f"Removed {item_id}")

        return self._emit(
            CartEvent(
                type="item_removed",
                message="Removed from cart",
                description=item.label,
                item=item,
                payload={"undo": True},
            )
        )

    def undo_remove(self, item: CartItem) -> CartEvent:
        """Ponowne dodanie usunietej linii (akcja Undo w toascie)."""
        return self.add_item(
            product_id=item.product_id,
            price=item.price,
            variant_id=item.variant_id,
            quantity=item.quantity,
            compare_at_price=item.compare_at_price,
            personalizations=item.personalizations,
            metadata=item.metadata,
            name=item.name,
            size=item.size,
        )

    def clear_cart(self) -> CartEvent:
        self._items = {}
        self.discounts = []
        self.gift_cards = []
        self._changed()

        return self._emit(CartEvent(type="cart_cleared", message="Cart cleared"))

    # ------------------------------------------------------------ rabaty / karty

    def apply_discount(self, code: str) -> CartEvent:
        code = code.strip()
        if not code:
            return self._emit(CartEvent(type="discount_rejected", level="error", message="Enter a discount code"))

        if any(d.code.upper() == code.upper() for d in self.discounts):
            return self._emit(
                CartEvent(type="discount_rejected", level="error", message="This code is already applied")
            )

        self.is_loading = True
        try:
            discount = DiscountOut.model_validate(self.client.validate_discount(code))
        except requests.RequestException as e:
            # odrzucenie nie zmienia koszyka
            reason = error_detail(e, "Invalid discount code")
            logger.info(f"Discount {code} rejected: {reason}")
            return self._emit(
                CartEvent(type="discount_rejected", level="error", message=reason, payload={"code": code})
            )
        finally:
            self.is_loading = False

        self.discounts.append(discount)
        self._changed()

        if discount.type == "percentage":
            description = f"{discount.value.normalize():f}% off"
        else:
            description = f"{money(discount.value)} off"

        return self._emit(
            CartEvent(
                type="discount_applied",
                message="Discount applied",
                description=description,
                payload={"code": discount.code},
            )
        )

    def remove_discount(self, code: str) -> CartEvent:
        self.discounts = [d for d in self.discounts if d.code.upper() != code.strip().upper()]
        self._changed()
        return self._emit(CartEvent(type="discount_removed", level="info", message="Discount removed"))

    def apply_gift_card(self, code: str) -> CartEvent:
        code = code.strip()
        if any(gc.upper() == code.upper() for gc in self.gift_cards):
            return self._emit(
                CartEvent(type="gift_card_rejected", level="error", message="This gift card is already applied")
            )

        self.is_loading = True
        try:
            card = self.client.validate_gift_card(code)
        except requests.RequestException as e:
            reason = error_detail(e, "Invalid gift card")
            logger.info(f"Gift card {code} rejected: {reason}")
            return self._emit(
                CartEvent(type="gift_card_rejected", level="error", message=reason, payload={"code": code})
            )
        finally:
            self.is_loading = False

        self.gift_cards.append(card.get("code", code))
        self._changed()

        return self._emit(
            CartEvent(
                type="gift_card_applied",
                message="Gift card applied",
                description=f"{money(card['balance'])} {card.get('currency', self.currency)} available",
                payload={"code": card.get("code", code)},
            )
        )

    def remove_gift_card(self, code: str) -> CartEvent:
        self.gift_cards = [gc for gc in self.gift_cards if gc.upper() != code.strip().upper()]
        self._changed()
        return self._emit(CartEvent(type="gift_card_removed", level="info", message="Gift card removed"))

    # ------------------------------------------------------------ obliczenia

    def calculate_totals(self) -> Totals:
        self._totals = calculate_totals(
            [(i.price, i.quantity) for i in self.items],
            self.discounts,
            self.tax_rate,
            free_shipping_threshold=self.free_shipping_threshold,
            flat_shipping_rate=self.flat_shipping_rate,
        )
        return self._totals

    @staticmethod
    def item_subtotal(item: CartItem) -> Decimal:
        return money(item.price * item.quantity)

    @staticmethod
    def item_savings(item: CartItem) -> Decimal:
        if item.compare_at_price is None:
            return ZERO
        return money((item.compare_at_price - item.price) * item.quantity)

    def is_eligible_for_free_shipping(self) -> bool:
        return self.subtotal >= self.free_shipping_threshold

    @staticmethod
    def estimate_delivery(today: Optional[date] = None) -> Tuple[date, date]:
        today = today or date.today()
        low, high = STANDARD_DELIVERY_DAYS
        return today + timedelta(days=low), today + timedelta(days=high)

    # ------------------------------------------------------------ serwer

    def _lines(self) -> List[Dict[str, Any]]:
        return [
            {
                "product_id": i.product_id,
                "variant_id": i.variant_id,
                "quantity": i.quantity,
                "personalizations": i.personalizations,
            }
            for i in self.items
        ]

    def sync_cart(self) -> Optional[str]:
        """Best-effort push do serwera, zwraca cart_id albo None."""
        if not self._items and not self.cart_id:
            return None

        payload = {
            "cart_id": self.cart_id,
            "items": self._lines(),
            "discount_codes": [d.code for d in self.discounts],
            "gift_card_codes": list(self.gift_cards),
        }

        try:
            synced = self.client.sync_cart(payload)
        except requests.RequestException as e:
            logger.error(f"Failed to sync cart {self.cart_id}: {e}")
            return None

        self.cart_id = synced["cart_id"]
        self.last_synced = datetime.now(timezone.utc)
        return self.cart_id

    def validate_stock(self) -> bool:
        """Musi zwrocic True przed checkoutem."""
        items = self.items
        if not items:
            return True

        try:
            statuses = self.client.validate_stock(
                [{"product_id": i.product_id, "variant_id": i.variant_id, "quantity": i.quantity} for i in items]
            )
        except requests.RequestException as e:
            logger.error(f"Failed to validate stock: {e}")
            self._emit(
                CartEvent(
                    type="stock_check_failed",
                    level="error",
                    message="We could not verify stock right now, please try again",
                )
            )
            return False

        ok = True
        # odpowiedz w tej samej kolejnosci co linie
        for item, status in zip(items, statuses):
            if status.get("in_stock"):
                continue

            ok = False
            available = status.get("available_quantity")
            self._emit(
                CartEvent(
                    type="out_of_stock",
                    level="error",
                    message=f"{item.label} is out of stock",
                    description=(
                        f"Only {available} available" if available else "This item is no longer available"
                    ),
                    item=item,
                    payload=status,
                )
            )

        return ok

    def merge_guest_cart(self, user_id: int) -> Optional[str]:
        """
        Po logowaniu: koszyk goscia trafia do koszyka usera na serwerze,
        lokalnie przejmujemy wynik (linie usera wygrywaja przy tej samej parze product/variant).
        """
        if not self.cart_id:
            return None

        try:
            merged = self.client.merge_guest_cart(self.cart_id, user_id)
            if not merged.get("success"):
                # koszyka goscia nie ma juz na serwerze, kolejny sync zalozy nowy
                self.cart_id = None
                self._changed()
                return self.cart_id

            self.cart_id = merged["cart_id"]
            server_cart = self.client.get_cart(self.cart_id)
        except requests.RequestException as e:
            logger.error(f"Failed to merge guest cart {self.cart_id}: {e}")
            return None

        merged_items: Dict[str, CartItem] = {}
        for line in server_cart.get("items", []):
            item_id = make_item_id(line["product_id"], line.get("variant_id"), line.get("personalizations"))
            local = self._items.get(item_id)
            merged_items[item_id] = CartItem(
                id=item_id,
                product_id=line["product_id"],
                variant_id=line.get("variant_id"),
                quantity=line["quantity"],
                price=money(line["price"]),
                personalizations=line.get("personalizations") or None,
                compare_at_price=local.compare_at_price if local else None,
                metadata=local.metadata if local else None,
                name=local.name if local else None,
                size=local.size if local else None,
            )

        server_keys = {item.key for item in merged_items.values()}
        for item in self._items.values():
            if item.key not in server_keys:
                merged_items[item.id] = item

        self._items = merged_items
        self._changed()
        logger.info(f"Guest cart merged into {self.cart_id} for user {user_id}")
        return self.cart_id

    # ------------------------------------------------------------ checkout

    def begin_checkout(
        self,
        shipping_address: Any,
        billing_address: Any,
        shipping_method: Any,
        email: str,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Walidacja stanow (twarda bramka) i utworzenie zamowienia + payment intent.
        Zwraca {order_id, order_number, client_secret, amount}, koszyk zostaje nietkniety
        do czasu complete_checkout().
        """
        if not self._items:
            raise CheckoutBlockedError("Your cart is empty")

        if not self.validate_stock():
            raise CheckoutBlockedError("Some items in your cart are no longer available")

        payload = CreateIntentIn(
            items=[
                CheckoutItemIn(
                    product_id=i.product_id,
                    variant_id=i.variant_id,
                    quantity=i.quantity,
                    price=i.price,
                )
                for i in self.items
            ],
            shipping_address=shipping_address,
            billing_address=billing_address,
            shipping_method=shipping_method,
            email=email,
            notes=notes,
            discount_codes=[d.code for d in self.discounts],
            gift_card_codes=list(self.gift_cards),
            cart_id=self.cart_id,
        )

        self.is_loading = True
        try:
            result = self.client.create_intent(payload.model_dump(mode="json"))
        except requests.RequestException as e:
            message = error_detail(e, "Checkout failed, please try again")
            logger.error(f"Checkout failed: {message}")
            self._emit(CartEvent(type="checkout_failed", level="error", message=message))
            raise CheckoutBlockedError(message) from e
        finally:
            self.is_loading = False

        self.pending_order = result
        self._emit(
            CartEvent(
                type="checkout_started",
                level="info",
                message="Order created",
                description=result.get("order_number"),
                payload={"order_id": result.get("order_id")},
            )
        )
        return result

    def complete_checkout(self) -> CartEvent:
        """Callback po udanej platnosci: czyscimy koszyk."""
        order = self.pending_order or {}
        self.pending_order = None
        self._items = {}
        self.discounts = []
        self.gift_cards = []
        self._changed()

        return self._emit(
            CartEvent(
                type="order_completed",
                message="Thank you for your order",
                description=order.get("order_number"),
                payload={"order_id": order.get("order_id")},
            )
        )
