# storefront/api/routers/admin_orders.py
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront.api.auth import get_current_admin, get_payment_client
from storefront.data.database import get_db
from storefront.domain.errors import StorefrontError
from storefront.domain.order_state import OrderStatus
from storefront.domain.schemas import OrderOut, ShipIn
from storefront.services.order_service import OrderService
from storefront.services.payment_client import PaymentClient

router = APIRouter(
    prefix="/api/admin/orders",
    tags=["admin"],
    dependencies=[Depends(get_current_admin)],
)


def get_service(db: Session, payment_client: PaymentClient):
    return OrderService(db, payment_client=payment_client)


@router.get("", response_model=List[OrderOut])
def list_orders(
    status: OrderStatus | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    svc = get_service(db, payment_client)
    return svc.admin_list_orders(status=status.value if status else None, limit=limit, offset=offset)


@router.get("/counts", response_model=Dict[str, int])
def status_counts(
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    return get_service(db, payment_client).status_counts()


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    svc = get_service(db, payment_client)
    try:
        return svc.admin_get_order(order_id)
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())


@router.post("/{order_id}/confirm", response_model=OrderOut)
def confirm_order(
    order_id: int,
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    svc = get_service(db, payment_client)
    try:
        return svc.confirm_order(order_id)
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())


@router.post("/{order_id}/ship", response_model=OrderOut)
def ship_order(
    order_id: int,
    payload: ShipIn | None = None,
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    svc = get_service(db, payment_client)
    try:
        return svc.ship_order(order_id, tracking_number=payload.tracking_number if payload else None)
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())


@router.post("/{order_id}/deliver", response_model=OrderOut)
def deliver_order(
    order_id: int,
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    svc = get_service(db, payment_client)
    try:
        return svc.deliver_order(order_id)
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: int,
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    """
    Anuluje niezapłacone zamówienie i zwalnia zarezerwowany stock.
    """
    svc = get_service(db, payment_client)
    try:
        return svc.cancel_order(order_id)
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())
