# storefront/celery_worker.py
from celery import Celery

from storefront.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    CELERY_TASK_ALWAYS_EAGER,
)

celery_app = Celery(
    "storefront",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# WAZNE: explicite importuj taski, zeby Celery je zarejestrowal
celery_app.conf.imports = (
    "storefront.tasks.expire",
    "storefront.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "release-stale-reservations-every-minute": {
        "task": "storefront.tasks.expire.release_stale_reservations_task",
        "schedule": 60.0,
    },
    "abandon-stale-carts-hourly": {
        "task": "storefront.tasks.expire.abandon_stale_carts_task",
        "schedule": 60.0 * 60,
    },
}

celery_app.conf.timezone = "UTC"
# testy / lokalnie bez brokera
celery_app.conf.task_always_eager = CELERY_TASK_ALWAYS_EAGER
