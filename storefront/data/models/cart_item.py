# storefront/data/models/cart_item.py
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import relationship

from storefront.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class CartItemModel(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True)

    # wlasciciel: user albo sesja goscia, nigdy oba
    user_id = Column(String(64), nullable=True)
    session_id = Column(String(64), nullable=True)

    product_id = Column(Integer, nullable=False)
    variant_id = Column(Integer, ForeignKey("product_variants.id"), nullable=False)

    quantity = Column(Integer, nullable=False)
    price_at_time = Column(Numeric(10, 2), nullable=False)

    # null = pozycja nie trzyma rezerwacji (wygasla albo przejeta przez zamowienie)
    inventory_reserved_until = Column(DateTime(timezone=True), nullable=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    variant = relationship("VariantModel")

    __table_args__ = (
        CheckConstraint("(user_id IS NULL) <> (session_id IS NULL)", name="ck_cart_item_single_owner"),
        CheckConstraint("quantity >= 1 AND quantity <= 999", name="ck_cart_item_quantity_range"),
        Index("ix_cart_items_user_variant", "user_id", "variant_id"),
        Index("ix_cart_items_session_variant", "session_id", "variant_id"),
        Index("ix_cart_items_reserved_until", "inventory_reserved_until"),
    )

    @property
    def holds_reservation(self) -> bool:
        return self.inventory_reserved_until is not None and self.order_id is None
