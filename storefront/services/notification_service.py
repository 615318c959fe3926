# storefront/services/notification_service.py
from storefront.celery_worker import celery_app
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Serwis do wysylania powiadomien.
    Uzywa Celery do asynchronicznego przetwarzania.
    """

    @staticmethod
    def send_order_confirmation(order_id: int, email: str):
        send_order_confirmation_task.delay(order_id, email)


@celery_app.task(name="storefront.services.notification_service.send_order_confirmation_task")
def send_order_confirmation_task(order_id: int, email: str):
    """
    Celery task - szablony maili sa poza zakresem, tylko logujemy.
    """
    logger.info(f"[NOTIFICATION] Order {order_id} confirmed, confirmation queued for {email}")

    return {"order_id": order_id, "email": email, "status": "sent"}
