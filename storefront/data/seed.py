# storefront/data/seed.py
from decimal import Decimal

from storefront.data.database import Base, SessionLocal, engine
from storefront.data.models import VariantModel
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

# (product_id, product_name, sku, title, price, inventory)
DEMO_VARIANTS = [
    (1, "Keyboard", "KB-STD-BLK", "Standard / Black", Decimal("199.99"), 25),
    (1, "Keyboard", "KB-STD-WHT", "Standard / White", Decimal("199.99"), 10),
    (2, "Mouse", "MS-WRL-BLK", "Wireless / Black", Decimal("49.50"), 100),
    (3, "Monitor", "MN-27-4K", '27" / 4K', Decimal("899.00"), 5),
]


def seed():
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        # not forcing: only seed if empty
        if db.query(VariantModel).first():
            logger.info("Variants already present, skipping seed")
            return

        for product_id, name, sku, title, price, inventory in DEMO_VARIANTS:
            db.add(
                VariantModel(
                    product_id=product_id,
                    product_name=name,
                    sku=sku,
                    title=title,
                    price=price,
                    inventory_quantity=inventory,
                    reserved_quantity=0,
                )
            )
        db.commit()
        logger.info(f"Seeded {len(DEMO_VARIANTS)} variants")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
