# storefront/data/models/variant.py
from sqlalchemy import CheckConstraint, Column, Integer, Numeric, String

from storefront.data.database import Base


class VariantModel(Base):
    """Stock ledger row for one purchasable variant.

    ``reserved_quantity`` is only ever changed through ``StockLedger``.
    """

    __tablename__ = "product_variants"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, nullable=False, index=True)
    product_name = Column(String(200), nullable=False)
    sku = Column(String(64), nullable=False, unique=True)
    title = Column(String(100), nullable=True)  # np. "M / Black"

    price = Column(Numeric(10, 2), nullable=False)
    inventory_quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("inventory_quantity >= 0", name="ck_variant_inventory_non_negative"),
        CheckConstraint(
            "reserved_quantity >= 0 AND reserved_quantity <= inventory_quantity",
            name="ck_variant_reserved_within_inventory",
        ),
    )

    @property
    def available_quantity(self) -> int:
        return self.inventory_quantity - self.reserved_quantity
