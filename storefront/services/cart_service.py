import secrets
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.domain.errors import NotFoundError
from storefront.domain.pricing import ZERO, line_total, money
from storefront.domain.schemas import CartSyncIn, CurrentUser
from storefront.repos.cart_repo import CartRepo
from storefront.repos.product_repo import ProductRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def new_cart_id() -> str:
    # losowy token, koszyk goscia dostepny tylko po znajomosci id
    return secrets.token_urlsafe(16)


class CartService:
    """
    Serwerowa kopia koszyka klienta.
    Prawda dla UX jest po stronie klienta, tutaj tylko mirror (sync) + merge po logowaniu.
    commands (sync, merge) modyfikuja stan
    query (get) tylko odczyt
    """

    def __init__(self, db: Session):
        self.repo = CartRepo(db)
        self.products = ProductRepo(db)

    @staticmethod
    def _serialize(cart: CartModel) -> Dict[str, Any]:
        return {
            "cart_id": cart.id,
            "user_id": cart.user_id,
            "items": [
                {
                    "product_id": i.product_id,
                    "variant_id": i.variant_id,
                    "quantity": i.quantity,
                    "price": i.price_at_time,
                    "personalizations": i.personalization,
                }
                for i in cart.items
            ],
            "subtotal": cart.subtotal,
            "coupon_code": cart.coupon_code,
            "gift_card_codes": list(cart.gift_card_codes or []),
        }

    @staticmethod
    def _ensure_access(cart: CartModel, user: Optional[CurrentUser]):
        if cart.user_id is not None and (user is None or cart.user_id != user.user_id):
            raise PermissionError("Access to this cart is denied")

    #query - odczyt
    def get_cart(self, cart_id: str, user: Optional[CurrentUser]) -> Dict[str, Any] | None:
        cart = self.repo.get_cart(cart_id)

        if not cart:
            return None

        self._ensure_access(cart, user)
        return self._serialize(cart)

    #commands
    def sync(self, payload: CartSyncIn, user: Optional[CurrentUser]) -> Dict[str, Any]:
        cart = self.repo.get_cart(payload.cart_id) if payload.cart_id else None

        try:
            if cart is None:
                cart = self.repo.create_cart(
                    CartModel(
                        id=new_cart_id(),
                        user_id=user.user_id if user else None,
                        gift_card_codes=[],
                    )
                )
                logger.info(f"Created server cart {cart.id} for user {user.user_id if user else 'guest'}")
            else:
                self._ensure_access(cart, user)

            # ceny zawsze z katalogu, nie od klienta
            items = []
            subtotal = ZERO
            for line in payload.items:
                product = self.products.get_product(line.product_id)
                if not product:
                    raise NotFoundError(f"Product {line.product_id} not found")

                variant = None
                if line.variant_id:
                    variant = self.products.get_variant(line.variant_id)
                    if not variant or variant.product_id != product.id:
                        raise NotFoundError(f"Product variant {line.variant_id} not found")

                price = money(self.products.unit_price(product, variant))
                subtotal += line_total(price, line.quantity)
                items.append(
                    CartItemModel(
                        product_id=product.id,
                        variant_id=line.variant_id,
                        quantity=line.quantity,
                        price_at_time=price,
                        personalization=line.personalizations,
                    )
                )

            self.repo.replace_items(cart, items)
            cart.subtotal = subtotal
            cart.coupon_code = payload.discount_codes[0].upper() if payload.discount_codes else None
            cart.gift_card_codes = list(payload.gift_card_codes)
            cart.is_abandoned = False
            cart.updated_at = datetime.now(timezone.utc)

            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Cart {cart.id} synced with {len(items)} line(s), subtotal {subtotal}")
        return self._serialize(cart)

    def merge_guest_cart(self, guest_cart_id: str, user_id: int, user: Optional[CurrentUser]) -> Dict[str, Any]:
        """
        Po logowaniu: koszyk goscia dolaczany do istniejacego koszyka usera
        (tylko pary product/variant ktorych tam nie ma), albo po prostu przepisany na usera.
        """
        if user is None or user.user_id != user_id:
            raise PermissionError("Cannot merge a cart into another user's account")

        guest = self.repo.get_cart(guest_cart_id)
        if not guest:
            return {"success": False, "cart_id": None}

        if guest.user_id is not None and guest.user_id != user_id:
            raise PermissionError("Access to this cart is denied")

        try:
            user_cart = self.repo.get_active_cart_by_user(user_id, exclude_id=guest.id)

            if user_cart is None:
                guest.user_id = user_id
                guest.updated_at = datetime.now(timezone.utc)
                self.repo.commit()
                logger.info(f"Guest cart {guest.id} transferred to user {user_id}")
                return {"success": True, "cart_id": guest.id}

            existing = {(i.product_id, i.variant_id) for i in user_cart.items}
            added = 0
            for item in guest.items:
                if (item.product_id, item.variant_id) in existing:
                    continue
                user_cart.items.append(
                    CartItemModel(
                        product_id=item.product_id,
                        variant_id=item.variant_id,
                        quantity=item.quantity,
                        price_at_time=item.price_at_time,
                        personalization=item.personalization,
                    )
                )
                existing.add((item.product_id, item.variant_id))
                added += 1

            user_cart.subtotal = sum(
                (line_total(i.price_at_time, i.quantity) for i in user_cart.items),
                ZERO,
            )
            user_cart.updated_at = datetime.now(timezone.utc)
            self.repo.delete_cart(guest)
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Merged {added} line(s) from guest cart {guest_cart_id} into cart {user_cart.id}")
        return {"success": True, "cart_id": user_cart.id}
