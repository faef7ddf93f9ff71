# storefront/repos/order_repo.py
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from storefront.data.models.order import OrderModel
from storefront.domain.order_state import OrderStatus, PaymentMethod, PaymentStatus
from storefront.domain.owner import Owner, UserOwner


class OrderRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_order(self, order: OrderModel) -> OrderModel:
        self.db.add(order)
        self.db.flush()
        return order

    def get_order(self, order_id: int) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel)
            .options(selectinload(OrderModel.items))
            .where(OrderModel.id == order_id)
        ).scalar_one_or_none()

    def get_by_payment_reference(self, reference: str) -> OrderModel | None:
        return self.db.execute(
            select(OrderModel).where(OrderModel.payment_reference == reference)
        ).scalar_one_or_none()

    def list_for_owner(self, owner: Owner, limit: int = 50, offset: int = 0) -> list[OrderModel]:
        if isinstance(owner, UserOwner):
            clause = OrderModel.user_id == owner.user_id
        else:
            clause = OrderModel.session_id == owner.session_id
        return list(
            self.db.execute(
                select(OrderModel)
                .options(selectinload(OrderModel.items))
                .where(clause)
                .order_by(OrderModel.created_at.desc(), OrderModel.id.desc())
                .offset(offset)
                .limit(limit)
            ).scalars().all()
        )

    def list_orders(self, status: str | None = None, limit: int = 50, offset: int = 0) -> list[OrderModel]:
        stmt = select(OrderModel).options(selectinload(OrderModel.items))
        if status:
            stmt = stmt.where(OrderModel.status == status)
        stmt = stmt.order_by(OrderModel.created_at.desc(), OrderModel.id.desc()).offset(offset).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def count_by_status(self) -> dict[str, int]:
        rows = self.db.execute(
            select(OrderModel.status, func.count(OrderModel.id)).group_by(OrderModel.status)
        ).all()
        return {status: count for status, count in rows}

    def find_stale_checkouts(self, now: datetime) -> list[int]:
        return list(
            self.db.execute(
                select(OrderModel.id).where(
                    OrderModel.payment_method == PaymentMethod.CARD.value,
                    OrderModel.payment_status == PaymentStatus.PENDING.value,
                    OrderModel.checkout_expires_at.is_not(None),
                    OrderModel.checkout_expires_at < now,
                )
            ).scalars().all()
        )

    def find_shipped_before(self, cutoff: datetime) -> list[int]:
        return list(
            self.db.execute(
                select(OrderModel.id).where(
                    OrderModel.status == OrderStatus.SHIPPING.value,
                    OrderModel.shipped_at.is_not(None),
                    OrderModel.shipped_at < cutoff,
                )
            ).scalars().all()
        )

    def settle_payment(self, order_id: int, new_data: dict) -> int:
        """Move payment out of ``pending``; 0 when another delivery already settled it."""
        result = self.db.execute(
            update(OrderModel)
            .where(
                OrderModel.id == order_id,
                OrderModel.payment_status == PaymentStatus.PENDING.value,
            )
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def update_status(self, order_id: int, old_status: str, new_data: dict) -> int:
        result = self.db.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.status == old_status)
            .values(**new_data)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
