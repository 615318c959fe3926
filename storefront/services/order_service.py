# storefront/services/order_service.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from storefront.data.models.order import OrderModel
from storefront.domain.errors import NotFoundError
from storefront.domain.order_status import OrderStatus, UNPAID, ensure_transition
from storefront.domain.schemas import CurrentUser
from storefront.repos.coupon_repo import CouponRepo
from storefront.repos.order_repo import OrderRepo
from storefront.services.notification_service import NotificationService
from storefront.services.stock_service import StockService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


def serialize_order(order: OrderModel) -> Dict[str, Any]:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "customer_email": order.customer_email,
        "status": order.status,
        "currency": order.currency,
        "subtotal": order.subtotal,
        "discount_amount": order.discount_amount,
        "tax_amount": order.tax_amount,
        "shipping_amount": order.shipping_amount,
        "total": order.total,
        "shipping_method": order.shipping_method,
        "payment_intent_id": order.payment_intent_id,
        "tracking_number": order.tracking_number,
        "items": [
            {
                "product_id": i.product_id,
                "variant_id": i.variant_id,
                "product_name": i.product_name,
                "sku": i.sku,
                "quantity": i.quantity,
                "unit_price": i.unit_price,
                "total_price": i.total_price,
            }
            for i in order.items
        ],
        "created_at": order.created_at,
    }


class OrderService:
    """
    Serwis odpowiedzialny za domene zamowien po checkoucie.
    Po utworzeniu zmienia sie tylko status i pola wysylki.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repo = OrderRepo(db)
        self.coupons = CouponRepo(db)
        self.stock = StockService(db)
        self.notification_service = NotificationService()

    def get_order(self, order_id: int, user: Optional[CurrentUser], email: Optional[str] = None):
        """
        Use Case: Pobranie zamowienia (Query).
        """
        order = self.repo.get_order(order_id)

        if not order:
            raise NotFoundError("Order not found")

        if order.user_id is not None:
            if user is None or order.user_id != user.user_id:
                raise PermissionError("Access to this order is denied")
        elif not email or email.lower() != order.customer_email.lower():
            raise PermissionError("Access to this order is denied")

        return serialize_order(order)

    def list_orders(self, user: CurrentUser) -> List[Dict[str, Any]]:
        return [serialize_order(o) for o in self.repo.list_user_orders(user.user_id)]

    def transition(self, order_id: int, status: str, tracking_number: Optional[str] = None):
        """
        Use Case: zmiana statusu zamowienia.

        CANCELLED - zwalnia rezerwacje, przed platnoscia takze uzycia kuponow
        SHIPPED - rezerwacja -> zdjecie ze stanu, numer przesylki
        CONFIRMED - potwierdzenie mailem (async)
        """
        order = self.repo.get_order(order_id)
        if not order:
            raise NotFoundError("Order not found")

        previous = order.status
        target = ensure_transition(order.status, status)

        try:
            if target == OrderStatus.CANCELLED:
                self.stock.release_order(order)
                if OrderStatus(previous) in UNPAID:
                    self.coupons.release_order_uses(order.id)
            elif target == OrderStatus.SHIPPED:
                self.stock.deduct_order(order)
                order.tracking_number = tracking_number
                order.shipped_at = datetime.now(timezone.utc)

            order.status = target.value
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Order {order.order_number}: {previous} -> {target.value}")

        if target == OrderStatus.CONFIRMED:
            self.notification_service.send_order_confirmation(order.id, order.customer_email)

        return serialize_order(order)

    def release_stale_reservations(self, created_before: datetime) -> int:
        """
        Zamowienia dalej PENDING po TTL: zwolnij rezerwacje i kupony, anuluj.
        """
        stale = self.repo.stale_orders(OrderStatus.PENDING.value, created_before)
        released = 0

        for order in stale:
            try:
                self.stock.release_order(order)
                self.coupons.release_order_uses(order.id)
                order.status = OrderStatus.CANCELLED.value
                self.repo.commit()
            except Exception as e:
                self.repo.rollback()
                logger.warning(f"Failed to release reservation for order {order.order_number}: {e}")
                continue

            logger.info(f"Order {order.order_number} expired, reservation released")
            released += 1

        return released
