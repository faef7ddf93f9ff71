# storefront/services/notification_service.py
from storefront.celery_worker import celery_app
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class NotificationService:
    """
    Powiadomienia o zmianach zamowienia.
    Uzywa Celery do asynchronicznego przetwarzania.
    """

    @staticmethod
    def order_event(order_id: int, order_number: str, event: str, recipient: str | None = None):
        send_order_notification_task.delay(order_id, order_number, event, recipient)


@celery_app.task(name="storefront.services.notification_service.send_order_notification_task")
def send_order_notification_task(order_id: int, order_number: str, event: str, recipient: str | None = None):
    """
    Celery task - kanal dostarczenia (email/SMS) jest poza tym serwisem.
    Teraz tylko loguje.
    """
    logger.info(f"[NOTIFICATION] {recipient or 'customer'}: order {order_number} ({order_id}) {event}")

    return {"order_id": order_id, "event": event, "status": "sent"}
