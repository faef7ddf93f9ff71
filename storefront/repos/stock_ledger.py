# storefront/repos/stock_ledger.py
from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from storefront.data.models.variant import VariantModel
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class StockLedger:
    """
    Jedyne miejsce ktore zmienia reserved_quantity.

    Kazda zmiana to jeden warunkowy UPDATE po id wariantu, baza sama pilnuje
    ze available = inventory - reserved nie spadnie ponizej zera.
    Nie ma osobnego odczytu i zapisu z aplikacji, wiec nie ma lost update.
    Commit robi wywolujacy serwis (ledger + koszyk w jednej transakcji).
    """

    def __init__(self, db: Session):
        self.db = db

    def get_variant(self, variant_id: int) -> VariantModel | None:
        return self.db.get(VariantModel, variant_id)

    def available(self, variant_id: int) -> int | None:
        #swiezy odczyt z bazy, z pominieciem identity map
        row = self.db.execute(
            select(VariantModel.inventory_quantity, VariantModel.reserved_quantity)
            .where(VariantModel.id == variant_id)
        ).one_or_none()

        if row is None:
            return None
        return row.inventory_quantity - row.reserved_quantity

    def reserve(self, variant_id: int, quantity: int) -> bool:
        """Hold ``quantity`` units; False when not enough stock is available (or no such variant)."""
        if quantity <= 0:
            return True

        # UPDATE product_variants SET reserved_quantity = reserved_quantity + :q
        # WHERE id = :id AND inventory_quantity - reserved_quantity >= :q
        result = self.db.execute(
            update(VariantModel)
            .where(
                VariantModel.id == variant_id,
                VariantModel.inventory_quantity - VariantModel.reserved_quantity >= quantity,
            )
            .values(reserved_quantity=VariantModel.reserved_quantity + quantity)
            .execution_options(synchronize_session=False)
        )

        reserved = result.rowcount == 1
        logger.info(f"Reserve {quantity} of variant {variant_id}: {'ok' if reserved else 'rejected'}")
        return reserved

    def release(self, variant_id: int, quantity: int) -> bool:
        """Give back ``quantity`` units, floored at zero to tolerate drift."""
        if quantity <= 0:
            return True

        floored = case(
            (VariantModel.reserved_quantity > quantity, VariantModel.reserved_quantity - quantity),
            else_=0,
        )
        result = self.db.execute(
            update(VariantModel)
            .where(VariantModel.id == variant_id)
            .values(reserved_quantity=floored)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.warning(f"Release {quantity} of variant {variant_id}: variant not found")
            return False

        logger.info(f"Released {quantity} of variant {variant_id}")
        return True
