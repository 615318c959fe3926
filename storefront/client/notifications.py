# storefront/client/notifications.py
import logging

from storefront.client.models import CartEvent
from storefront.utils.logging import get_logger

_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "error": logging.WARNING,
}


class LoggingNotifier:
    """Obserwator koszyka: zamiast toastow w UI pisze eventy do logu."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or get_logger("storefront.cart.notifications")

    def __call__(self, event: CartEvent):
        text = event.message if not event.description else f"{event.message}: {event.description}"
        self.logger.log(_LEVELS.get(event.level, logging.INFO), f"[{event.type}] {text}")
