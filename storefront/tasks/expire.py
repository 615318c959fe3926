# storefront/tasks/expire.py
from datetime import datetime, timezone, timedelta

from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.repos.cart_repo import CartRepo
from storefront.services.order_service import OrderService
from storefront.utils.settings import RESERVATION_TTL_SECONDS, CART_ABANDON_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="storefront.tasks.expire.release_stale_reservations_task")
def release_stale_reservations_task():
    logger.info("Release stale reservations task started")

    db = SessionLocal()
    try:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=RESERVATION_TTL_SECONDS)
        released = OrderService(db).release_stale_reservations(cutoff)
        logger.info(f"Released reservations of {released} stale order(s)")
        return released
    finally:
        db.close()


@celery_app.task(name="storefront.tasks.expire.abandon_stale_carts_task")
def abandon_stale_carts_task():
    logger.info("Abandon stale carts task started")

    db = SessionLocal()
    try:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=CART_ABANDON_SECONDS)
        repo = CartRepo(db)
        count = repo.abandon_stale(cutoff)
        repo.commit()
        logger.info(f"Marked {count} cart(s) as abandoned")
        return count
    finally:
        db.close()
