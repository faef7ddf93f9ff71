# storefront/repos/cart_repo.py
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, joinedload

from storefront.data.models.cart_item import CartItemModel
from storefront.domain.owner import Owner, UserOwner


def _owner_clause(owner: Owner):
    if isinstance(owner, UserOwner):
        return CartItemModel.user_id == owner.user_id
    return CartItemModel.session_id == owner.session_id


class CartRepo:
    def __init__(self, db: Session):
        self.db = db

    #query
    def get_item(self, item_id: int) -> CartItemModel | None:
        return self.db.get(CartItemModel, item_id)

    def get_items(self, owner: Owner) -> list[CartItemModel]:
        """Lines still in the owner's cart (lines claimed by an order are excluded)."""
        return list(
            self.db.execute(
                select(CartItemModel)
                .options(joinedload(CartItemModel.variant))
                .where(_owner_clause(owner), CartItemModel.order_id.is_(None))
                .order_by(CartItemModel.id)
            ).scalars().all()
        )

    def get_item_for_variant(self, owner: Owner, variant_id: int) -> CartItemModel | None:
        return self.db.execute(
            select(CartItemModel)
            .where(
                _owner_clause(owner),
                CartItemModel.variant_id == variant_id,
                CartItemModel.order_id.is_(None),
            )
            .order_by(CartItemModel.id)
            .limit(1)
        ).scalar_one_or_none()

    def find_expired(self, now: datetime, limit: int = 500) -> list[CartItemModel]:
        return list(
            self.db.execute(
                select(CartItemModel)
                .where(
                    CartItemModel.inventory_reserved_until.is_not(None),
                    CartItemModel.inventory_reserved_until < now,
                    CartItemModel.order_id.is_(None),
                )
                .order_by(CartItemModel.inventory_reserved_until)
                .limit(limit)
            ).scalars().all()
        )

    #commands
    def add_item(self, item: CartItemModel) -> CartItemModel:
        self.db.add(item)
        self.db.flush()
        return item

    def update_item_version(self, item_id: int, old_version: int, new_data: dict) -> int:
        # Optimistic locking, np. update set version 2 where id 1 and version 1
        result = self.db.execute(
            update(CartItemModel)
            .where(CartItemModel.id == item_id, CartItemModel.version == old_version)
            .values(version=old_version + 1, **new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def delete_item_version(self, item_id: int, old_version: int) -> int:
        result = self.db.execute(
            delete(CartItemModel)
            .where(CartItemModel.id == item_id, CartItemModel.version == old_version)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def clear_reservation(self, item_id: int, old_version: int) -> int:
        """Null the expiry of a line that still holds stock; 0 when it no longer does."""
        result = self.db.execute(
            update(CartItemModel)
            .where(
                CartItemModel.id == item_id,
                CartItemModel.version == old_version,
                CartItemModel.inventory_reserved_until.is_not(None),
                CartItemModel.order_id.is_(None),
            )
            .values(inventory_reserved_until=None, version=old_version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def claim_item(self, item_id: int, old_version: int, order_id: int) -> int:
        result = self.db.execute(
            update(CartItemModel)
            .where(
                CartItemModel.id == item_id,
                CartItemModel.version == old_version,
                CartItemModel.order_id.is_(None),
            )
            .values(order_id=order_id, inventory_reserved_until=None, version=old_version + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def rehome_item(self, item_id: int, old_version: int, owner: UserOwner) -> int:
        return self.update_item_version(
            item_id, old_version, {"user_id": owner.user_id, "session_id": None}
        )

    def delete_claimed_items(self, order_id: int) -> int:
        result = self.db.execute(
            delete(CartItemModel)
            .where(CartItemModel.order_id == order_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
