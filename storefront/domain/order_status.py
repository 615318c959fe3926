# storefront/domain/order_status.py
from enum import Enum

from storefront.domain.errors import InvalidTransitionError


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAYMENT_PROCESSING = "PAYMENT_PROCESSING"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    RETURNED = "RETURNED"


TRANSITIONS = {
    OrderStatus.PENDING: {
        OrderStatus.PAYMENT_PROCESSING,
        OrderStatus.PAYMENT_FAILED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PAYMENT_PROCESSING: {
        OrderStatus.CONFIRMED,
        OrderStatus.PAYMENT_FAILED,
    },
    # retry platnosci
    OrderStatus.PAYMENT_FAILED: {OrderStatus.PAYMENT_PROCESSING},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED, OrderStatus.RETURNED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
    OrderStatus.RETURNED: set(),
}

TERMINAL = frozenset(
    {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
        OrderStatus.RETURNED,
    }
)

# zamowienia na ktorych jeszcze nie pobrano platnosci
UNPAID = frozenset(
    {
        OrderStatus.PENDING,
        OrderStatus.PAYMENT_PROCESSING,
        OrderStatus.PAYMENT_FAILED,
    }
)

# platnosc pobrana, liczone jako zakup klienta
PAID = frozenset(
    {
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.DELIVERED,
        OrderStatus.REFUNDED,
        OrderStatus.RETURNED,
    }
)


def can_transition(current: str, target: str) -> bool:
    return OrderStatus(target) in TRANSITIONS[OrderStatus(current)]


def ensure_transition(current: str, target: str) -> OrderStatus:
    try:
        target_status = OrderStatus(target)
    except ValueError:
        raise InvalidTransitionError(f"Unknown order status {target}")

    if not can_transition(current, target_status):
        raise InvalidTransitionError(
            f"Cannot move order from {current} to {target_status.value}"
        )
    return target_status
