#storefront/api/routers/carts.py
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront.api.auth import get_current_user_id, get_lock_service, get_optional_user_id
from storefront.data.database import get_db
from storefront.domain.errors import StorefrontError
from storefront.domain.owner import GuestOwner, UserOwner, resolve_owner
from storefront.domain.schemas import (
    AddItemIn,
    CartOut,
    CartSummaryOut,
    MergeIn,
    MergeOut,
    SessionIn,
    UpdateItemIn,
)
from storefront.services.cart_service import CartService
from storefront.services.lock_service import LockService

router = APIRouter(prefix="/api/cart", tags=["cart"])


def get_service(db: Session, lock_service: LockService):
    return CartService(db=db, lock_service=lock_service)


def _owner(user_id: str | None, session_id: str | None, generate: bool = False):
    owner = resolve_owner(user_id, session_id, generate=generate)
    if owner is None:
        raise HTTPException(status_code=400, detail="Pass a session_id or a bearer token")
    return owner


@router.get("", response_model=CartOut)
def get_cart(
    session_id: str | None = Query(None, max_length=64),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    """
    Koszyk usera albo gościa. Gość bez session_id dostaje nową sesję (pusty koszyk).
    """
    svc = get_service(db, lock_service)
    return svc.get_cart(_owner(user_id, session_id, generate=True))


@router.post("/items", response_model=CartOut, status_code=201)
def add_item(
    payload: AddItemIn,
    session_id: str | None = Query(None, max_length=64),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    owner = _owner(user_id, payload.session_id or session_id, generate=True)
    svc = get_service(db, lock_service)
    try:
        svc.add_item(
            owner,
            product_id=payload.product_id,
            variant_id=payload.variant_id,
            quantity=payload.quantity,
        )
        return svc.get_cart(owner)
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())


@router.put("/items/{item_id}", response_model=CartOut)
def update_item(
    item_id: int,
    payload: UpdateItemIn,
    session_id: str | None = Query(None, max_length=64),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    owner = _owner(user_id, payload.session_id or session_id)
    svc = get_service(db, lock_service)
    try:
        svc.update_quantity(owner, item_id, payload.quantity)
        return svc.get_cart(owner)
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())


@router.delete("/items/{item_id}", response_model=CartOut)
def remove_item(
    item_id: int,
    session_id: str | None = Query(None, max_length=64),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    owner = _owner(user_id, session_id)
    svc = get_service(db, lock_service)
    try:
        svc.remove_item(owner, item_id)
        return svc.get_cart(owner)
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())


@router.post("/clear", response_model=CartOut)
def clear_cart(
    payload: SessionIn | None = None,
    session_id: str | None = Query(None, max_length=64),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    owner = _owner(user_id, (payload.session_id if payload else None) or session_id)
    svc = get_service(db, lock_service)
    try:
        svc.clear_cart(owner)
        return svc.get_cart(owner)
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())


@router.get("/summary", response_model=CartSummaryOut)
def get_summary(
    session_id: str | None = Query(None, max_length=64),
    user_id: str | None = Depends(get_optional_user_id),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    svc = get_service(db, lock_service)
    return svc.get_summary(_owner(user_id, session_id, generate=True))


@router.post("/merge", response_model=MergeOut)
def merge_cart(
    payload: MergeIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    lock_service: LockService = Depends(get_lock_service),
):
    """
    Po zalogowaniu: przenosi koszyk gościa (session_id) do koszyka usera.
    """
    svc = get_service(db, lock_service)
    try:
        return svc.merge_guest_cart(GuestOwner(session_id=payload.session_id), UserOwner(user_id=user_id))
    except StorefrontError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail())
