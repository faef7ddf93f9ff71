# storefront/tasks/expire.py
import uuid

from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.services.cart_service import CartService
from storefront.services.lock_service import LockService, sweep_lock_key
from storefront.services.order_service import OrderService
from storefront.services.payment_client import PaymentClient
from storefront.utils.logging import get_logger
from storefront.utils.settings import SWEEP_LOCK_TTL_SECONDS

logger = get_logger(__name__)
lock_service = LockService()


@celery_app.task(name="storefront.tasks.expire.release_expired_reservations_task")
def release_expired_reservations_task():
    logger.info("Reservation sweep task started")

    # jeden sweep naraz, nawet przy kilku workerach / beat replikach
    key = sweep_lock_key()
    token = uuid.uuid4().hex
    if not lock_service.acquire(key, token, SWEEP_LOCK_TTL_SECONDS):
        logger.info("Reservation sweep already running elsewhere, skipping")
        return 0

    db = SessionLocal()
    try:
        return CartService(db, lock_service=lock_service).release_expired_reservations()
    finally:
        db.close()
        try:
            lock_service.release(key, token)
        except Exception as e:
            logger.warning(f"Failed to release sweep lock: {e}")


@celery_app.task(name="storefront.tasks.expire.expire_stale_checkouts_task")
def expire_stale_checkouts_task():
    logger.info("Stale checkout expiry task started")

    db = SessionLocal()
    try:
        return OrderService(db, payment_client=PaymentClient()).expire_stale_checkouts()
    finally:
        db.close()
