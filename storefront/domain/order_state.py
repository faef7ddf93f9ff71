# storefront/domain/order_state.py
"""Order status and payment status state machines.

Happy path: pending -> preparing -> shipping -> delivered.
Any non-terminal status may move to cancelled while the order is not paid.
Payment: pending -> paid | failed, nothing leaves a terminal payment status.
"""
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    SHIPPING = "shipping"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    CARD = "card"
    CASH_ON_DELIVERY = "cash_on_delivery"

    @property
    def is_async(self) -> bool:
        return self is PaymentMethod.CARD


class PaymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ReconcileResult(str, Enum):
    APPLIED = "applied"
    REPLAY = "replay"


_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PREPARING, OrderStatus.CANCELLED},
    OrderStatus.PREPARING: {OrderStatus.SHIPPING, OrderStatus.CANCELLED},
    OrderStatus.SHIPPING: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
}


def can_transition(current: str, target: str) -> bool:
    return OrderStatus(target) in _TRANSITIONS.get(OrderStatus(current), set())


def can_settle_payment(current: str) -> bool:
    return PaymentStatus(current) is PaymentStatus.PENDING
