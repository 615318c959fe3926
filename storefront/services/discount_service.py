# storefront/services/discount_service.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from storefront.data.models.coupon import CouponModel
from storefront.domain.errors import DiscountRejectedError
from storefront.domain.schemas import CurrentUser, DiscountOut, GiftCardOut
from storefront.repos.coupon_repo import CouponRepo
from storefront.repos.order_repo import OrderRepo
from storefront.repos.user_repo import UserRepo
from storefront.services.payment_gateway import PaymentGateway
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    # sqlite zwraca naive datetime
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DiscountService:
    """
    Walidacja kodow rabatowych i kart podarunkowych.
    Zwraca znormalizowany rabat albo rzuca DiscountRejectedError z powodem.
    """

    def __init__(self, db: Session, gateway: PaymentGateway | None = None):
        self.coupons = CouponRepo(db)
        self.orders = OrderRepo(db)
        self.users = UserRepo(db)
        self.gateway = gateway

    def validate_coupon(
        self,
        code: str,
        subtotal: Optional[Decimal] = None,
        user: Optional[CurrentUser] = None,
        now: Optional[datetime] = None,
    ) -> DiscountOut:
        coupon = self.coupons.get_by_code(code)

        if coupon is None:
            return self._gateway_coupon(code)

        self._check_rules(coupon, subtotal, user, now or datetime.now(timezone.utc))

        return DiscountOut(
            code=coupon.code,
            type=coupon.discount_type,
            value=Decimal(coupon.discount_value),
            minimum_amount=Decimal(coupon.minimum_amount) if coupon.minimum_amount is not None else None,
            expires_at=_as_utc(coupon.valid_until) if coupon.valid_until else None,
        )

    def _check_rules(
        self,
        coupon: CouponModel,
        subtotal: Optional[Decimal],
        user: Optional[CurrentUser],
        now: datetime,
    ):
        code = coupon.code

        if coupon.valid_from and _as_utc(coupon.valid_from) > now:
            raise DiscountRejectedError(code, "Coupon is not yet valid")

        if coupon.valid_until and _as_utc(coupon.valid_until) < now:
            raise DiscountRejectedError(code, "Coupon has expired")

        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            raise DiscountRejectedError(code, "Coupon usage limit reached")

        if coupon.minimum_amount is not None and subtotal is not None:
            if subtotal < Decimal(coupon.minimum_amount):
                raise DiscountRejectedError(
                    code, f"Minimum order amount of {coupon.minimum_amount} required"
                )

        #reguly per uzytkownik tylko dla zalogowanych
        if user is None:
            return

        if coupon.first_purchase_only and self.orders.count_paid_orders(user.user_id) > 0:
            raise DiscountRejectedError(code, "Coupon is only valid for first purchase")

        if coupon.usage_limit_per_user is not None:
            used = self.coupons.count_user_uses(coupon.id, user.user_id)
            if used >= coupon.usage_limit_per_user:
                raise DiscountRejectedError(code, "You have already used this coupon")

        if coupon.membership_tiers:
            if self.users.membership_tier(user.user_id) not in coupon.membership_tiers:
                raise DiscountRejectedError(code, "Coupon is not valid for your membership tier")

    def _gateway_coupon(self, code: str) -> DiscountOut:
        if self.gateway is None:
            raise DiscountRejectedError(code, "Invalid discount code")

        found = self.gateway.retrieve_coupon(code)
        if not found:
            raise DiscountRejectedError(code, "Invalid discount code")

        logger.info(f"Coupon {code} resolved from payment provider")
        return DiscountOut(**found)

    def coupon_id(self, code: str) -> Optional[int]:
        coupon = self.coupons.get_by_code(code)
        return coupon.id if coupon else None

    def validate_gift_card(self, code: str, now: Optional[datetime] = None) -> GiftCardOut:
        card = self.coupons.get_gift_card(code)
        now = now or datetime.now(timezone.utc)

        if card is None or not card.is_active:
            raise DiscountRejectedError(code, "Invalid gift card")

        if card.expires_at and _as_utc(card.expires_at) < now:
            raise DiscountRejectedError(code, "Gift card has expired")

        if Decimal(card.balance) <= 0:
            raise DiscountRejectedError(code, "Gift card has no remaining balance")

        return GiftCardOut(code=card.code, balance=Decimal(card.balance), currency=card.currency)
