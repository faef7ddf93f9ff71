# storefront/tasks/orders.py
from storefront.celery_worker import celery_app
from storefront.data.database import SessionLocal
from storefront.services.order_service import OrderService
from storefront.services.payment_client import PaymentClient
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@celery_app.task(name="storefront.tasks.orders.deliver_shipped_orders_task")
def deliver_shipped_orders_task():
    """Orders left in shipping for longer than AUTO_DELIVER_AFTER_SECONDS become delivered."""
    logger.info("Auto-delivery task started")

    db = SessionLocal()
    try:
        return OrderService(db, payment_client=PaymentClient()).deliver_shipped_orders()
    finally:
        db.close()
