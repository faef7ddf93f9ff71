# storefront/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import List
from decimal import Decimal
from datetime import datetime

from storefront.domain.order_state import PaymentMethod


class AddItemIn(BaseModel):
    """Schema dla dodawania wariantu do koszyka."""

    product_id: int = Field(..., gt=0, description="ID produktu (musi być > 0)")
    variant_id: int = Field(..., gt=0, description="ID wariantu (musi być > 0)")
    quantity: int = Field(1, ge=1, le=999, description="Ilość (1..999)")
    session_id: str | None = Field(None, max_length=64, description="Sesja gościa")


class UpdateItemIn(BaseModel):
    """Nowa ilość pozycji; 0 lub mniej usuwa pozycję."""

    quantity: int = Field(..., le=999)
    session_id: str | None = Field(None, max_length=64)


class SessionIn(BaseModel):
    session_id: str | None = Field(None, max_length=64)


class MergeIn(BaseModel):
    """Schema dla scalania koszyka gościa z koszykiem użytkownika."""

    session_id: str = Field(..., min_length=1, max_length=64)


class ShippingInfo(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    phone: str | None = Field(None, max_length=32)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    address: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str | None = Field(None, max_length=100)
    zip: str = Field(..., min_length=1, max_length=20)
    country: str = Field("US", min_length=2, max_length=2)


class CreateOrderIn(BaseModel):
    """Schema dla tworzenia zamówienia z koszyka."""

    session_id: str | None = Field(None, max_length=64)
    shipping: ShippingInfo
    payment_method: PaymentMethod = PaymentMethod.CARD


class BuyNowIn(BaseModel):
    """Zamówienie jednego wariantu z pominięciem koszyka."""

    session_id: str | None = Field(None, max_length=64)
    product_id: int = Field(..., gt=0)
    variant_id: int = Field(..., gt=0)
    quantity: int = Field(1, ge=1, le=999)
    shipping: ShippingInfo
    payment_method: PaymentMethod = PaymentMethod.CARD


class ShipIn(BaseModel):
    tracking_number: str | None = Field(None, max_length=100)


class CartItemOut(BaseModel):
    """Schema dla pozycji koszyka (response)."""

    id: int
    product_id: int
    variant_id: int
    product_name: str | None = None
    sku: str | None = None
    title: str | None = None
    quantity: int
    price_at_time: Decimal
    line_total: Decimal
    inventory_reserved_until: datetime | None = None
    holds_reservation: bool

    model_config = ConfigDict(from_attributes=True)


class CartOut(BaseModel):
    """Schema dla koszyka (response)."""

    user_id: str | None = None
    session_id: str | None = None
    items: List[CartItemOut]
    item_count: int
    subtotal: Decimal


class CartSummaryOut(BaseModel):
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    item_count: int

    model_config = ConfigDict(from_attributes=True)


class MergeOut(BaseModel):
    combined: List[int]
    moved: List[int]
    dropped: List[int]

    model_config = ConfigDict(from_attributes=True)


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    variant_id: int
    product_name: str
    sku: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    """Schema dla zamówienia (response)."""

    id: int
    order_number: str
    user_id: str | None = None
    session_id: str | None = None
    customer_email: str
    status: str
    payment_status: str
    payment_method: str
    payment_reference: str | None = None
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    shipping_first_name: str
    shipping_last_name: str
    shipping_address: str
    shipping_city: str
    shipping_state: str | None = None
    shipping_zip: str
    shipping_country: str
    tracking_number: str | None = None
    checkout_expires_at: datetime | None = None
    created_at: datetime
    confirmed_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    items: List[OrderItemOut]

    model_config = ConfigDict(from_attributes=True)


class CheckoutOut(BaseModel):
    """Zamówienie + uchwyt płatności (client_secret) dla płatności kartą."""

    order: OrderOut
    client_secret: str | None = None

    model_config = ConfigDict(from_attributes=True)
