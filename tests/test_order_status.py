import pytest

from storefront.domain.errors import InvalidTransitionError
from storefront.domain.order_status import TERMINAL, TRANSITIONS, OrderStatus, can_transition, ensure_transition


@pytest.mark.parametrize(
    "current, target",
    [
        ("PENDING", "PAYMENT_PROCESSING"),
        ("PAYMENT_PROCESSING", "CONFIRMED"),
        ("PAYMENT_PROCESSING", "PAYMENT_FAILED"),
        ("PAYMENT_FAILED", "PAYMENT_PROCESSING"),
        ("CONFIRMED", "CANCELLED"),
        ("PROCESSING", "SHIPPED"),
        ("DELIVERED", "RETURNED"),
    ],
)
def test_allowed(current, target):
    assert can_transition(current, target)
    assert ensure_transition(current, target) == OrderStatus(target)


@pytest.mark.parametrize(
    "current, target",
    [
        ("PENDING", "SHIPPED"),
        ("SHIPPED", "CANCELLED"),
        ("CANCELLED", "PENDING"),
        ("PROCESSING", "CANCELLED"),
    ],
)
def test_rejected(current, target):
    with pytest.raises(InvalidTransitionError):
        ensure_transition(current, target)


def test_unknown_status():
    with pytest.raises(InvalidTransitionError):
        ensure_transition("PENDING", "LOST")


def test_only_delivered_terminal_state_has_exits():
    for status in TERMINAL - {OrderStatus.DELIVERED}:
        assert TRANSITIONS[status] == set()
