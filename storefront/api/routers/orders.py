# storefront/api/routers/orders.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront.api.auth import get_optional_user_id, get_payment_client
from storefront.data.database import get_db
from storefront.domain.errors import StorefrontError
from storefront.domain.owner import resolve_owner
from storefront.domain.schemas import BuyNowIn, CheckoutOut, CreateOrderIn, OrderOut
from storefront.services.order_service import OrderService
from storefront.services.payment_client import PaymentClient

router = APIRouter(prefix="/api/orders", tags=["orders"])


def get_service(db: Session, payment_client: PaymentClient):
    return OrderService(db, payment_client=payment_client)


def _owner(user_id: str | None, session_id: str | None, generate: bool = False):
    owner = resolve_owner(user_id, session_id, generate=generate)
    if owner is None:
        raise HTTPException(status_code=400, detail="Pass a session_id or a bearer token")
    return owner


@router.post("", response_model=CheckoutOut, status_code=201)
def create_order(
    payload: CreateOrderIn,
    session_id: str | None = Query(None, max_length=64),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    """
    Tworzy zamówienie z koszyka i przejmuje rezerwacje.
    Dla karty zwraca client_secret do dokończenia płatności.
    """
    owner = _owner(user_id, payload.session_id or session_id)
    svc = get_service(db, payment_client)
    try:
        result = svc.create_order_from_cart(owner, payload.shipping, payload.payment_method)
        return {"order": result.order, "client_secret": result.client_secret}
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())


@router.post("/buy-now", response_model=CheckoutOut, status_code=201)
def buy_now(
    payload: BuyNowIn,
    session_id: str | None = Query(None, max_length=64),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    owner = _owner(user_id, payload.session_id or session_id, generate=True)
    svc = get_service(db, payment_client)
    try:
        result = svc.create_buy_now_order(
            owner,
            product_id=payload.product_id,
            variant_id=payload.variant_id,
            quantity=payload.quantity,
            shipping=payload.shipping,
            payment_method=payload.payment_method,
        )
        return {"order": result.order, "client_secret": result.client_secret}
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())


@router.get("", response_model=List[OrderOut])
def list_orders(
    session_id: str | None = Query(None, max_length=64),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    svc = get_service(db, payment_client)
    return svc.list_orders(_owner(user_id, session_id), limit=limit, offset=offset)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    session_id: str | None = Query(None, max_length=64),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    payment_client: PaymentClient = Depends(get_payment_client),
):
    """
    Pobiera szczegóły zamówienia.
    """
    svc = get_service(db, payment_client)
    try:
        return svc.get_order(_owner(user_id, session_id), order_id)
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())
