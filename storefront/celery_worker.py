# storefront/celery_worker.py
from celery import Celery

from storefront.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    CELERY_TASK_ALWAYS_EAGER,
    CHECKOUT_EXPIRY_INTERVAL_SECONDS,
    SWEEP_INTERVAL_SECONDS,
)

celery_app = Celery(
    "storefront",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# WAŻNE: Explicite importuj taski, żeby Celery je zarejestrował
celery_app.conf.imports = (
    "storefront.tasks.expire",
    "storefront.tasks.orders",
    "storefront.services.notification_service",
)

celery_app.conf.beat_schedule = {
    "release-expired-reservations": {
        "task": "storefront.tasks.expire.release_expired_reservations_task",
        "schedule": SWEEP_INTERVAL_SECONDS,
    },
    "expire-stale-checkouts": {
        "task": "storefront.tasks.expire.expire_stale_checkouts_task",
        "schedule": CHECKOUT_EXPIRY_INTERVAL_SECONDS,
    },
    "deliver-shipped-orders": {
        "task": "storefront.tasks.orders.deliver_shipped_orders_task",
        "schedule": 60.0 * 60,  # co godzine
    },
}

celery_app.conf.timezone = "UTC"
celery_app.conf.task_always_eager = CELERY_TASK_ALWAYS_EAGER
