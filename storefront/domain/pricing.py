# storefront/domain/pricing.py
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from storefront.utils.settings import FLAT_SHIPPING_FEE, FREE_SHIPPING_THRESHOLD, TAX_RATE

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceSummary:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    item_count: int


def shipping_for(subtotal: Decimal) -> Decimal:
    if subtotal >= FREE_SHIPPING_THRESHOLD:
        return ZERO
    return money(FLAT_SHIPPING_FEE)


def summarize(lines: Iterable[tuple[Decimal, int]], discount: Decimal = ZERO) -> PriceSummary:
    """Price a list of ``(unit_price, quantity)`` pairs.

    An empty list prices to all zeros (no shipping fee for an empty cart).
    """
    lines = list(lines)
    if not lines:
        return PriceSummary(ZERO, ZERO, ZERO, ZERO, ZERO, 0)

    subtotal = money(sum((Decimal(str(price)) * qty for price, qty in lines), ZERO))
    item_count = sum(qty for _, qty in lines)
    tax = money(subtotal * TAX_RATE)
    shipping = shipping_for(subtotal)
    discount = money(discount)
    total = money(subtotal + tax + shipping - discount)

    return PriceSummary(
        subtotal=subtotal,
        tax=tax,
        shipping=shipping,
        discount=discount,
        total=total,
        item_count=item_count,
    )
