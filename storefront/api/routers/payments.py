# storefront/api/routers/payments.py
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from storefront.api.auth import get_payment_client
from storefront.data.database import get_db
from storefront.domain.errors import PaymentError
from storefront.domain.order_state import PaymentOutcome
from storefront.services.order_service import OrderService
from storefront.services.payment_client import PaymentClient
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

# zdarzenia Stripe -> wynik platnosci, reszta jest tylko potwierdzana
EVENT_OUTCOMES = {
    "payment_intent.succeeded": PaymentOutcome.SUCCEEDED,
    "payment_intent.payment_failed": PaymentOutcome.FAILED,
    "payment_intent.canceled": PaymentOutcome.CANCELLED,
    "checkout.session.expired": PaymentOutcome.CANCELLED,
}


def _order_id_from(data_object: dict) -> int | None:
    metadata = data_object.get("metadata") or {}
    order_id = metadata.get("order_id")
    return int(order_id) if str(order_id).isdigit() else None


@router.post("/webhook", include_in_schema=False)
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    """Stripe webhook endpoint (at-least-once delivery).

    Answers 200 for every verified event, including replays and events we do not handle.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = payment_client.parse_webhook(payload, signature)
    except PaymentError as e:
        raise HTTPException(status_code=400, detail=e.detail())

    outcome = EVENT_OUTCOMES.get(event["type"])
    if outcome is None:
        logger.info(f"Ignoring payment event {event['type']} ({event['id']})")
        return {"received": True, "result": None}

    data_object = event["object"] or {}
    reference = data_object.get("payment_intent") or data_object.get("id")

    svc = OrderService(db, payment_client=payment_client)
    result = await run_in_threadpool(
        svc.reconcile_payment_reference, reference, outcome, order_id=_order_id_from(data_object)
    )

    # zawsze 200, inaczej Stripe ponawia w nieskonczonosc
    return {"received": True, "result": result.value if result else None}
