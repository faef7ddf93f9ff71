import re
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from storefront.data.database import SessionLocal
from storefront.data.models import CartItemModel
from storefront.domain.errors import (
    ConflictingReservation,
    EmptyCart,
    Forbidden,
    InsufficientStock,
    InvalidTransition,
    PaymentError,
)
from storefront.domain.order_state import PaymentMethod, PaymentOutcome, ReconcileResult
from storefront.domain.owner import GuestOwner, UserOwner
from storefront.domain.schemas import ShippingInfo
from storefront.utils.clock import utcnow

BUYER = UserOwner(user_id="7")
OTHER = GuestOwner(session_id="other-cart")


@pytest.fixture
def ship_to(shipping):
    return ShippingInfo(**shipping)


@pytest.fixture
def two_line_cart(cart_service, variant_id, other_variant_id):
    cart_service.add_item(BUYER, product_id=1, variant_id=variant_id, quantity=2)
    cart_service.add_item(BUYER, product_id=2, variant_id=other_variant_id, quantity=1)


def _checkout(order_service, ship_to, method=PaymentMethod.CARD):
    return order_service.create_order_from_cart(BUYER, ship_to, method)


def test_card_checkout_claims_reservations(
    two_line_cart, order_service, cart_service, payment_client, ship_to, variant_id, other_variant_id, reserved, cart_rows
):
    result = _checkout(order_service, ship_to)
    order = order_service.admin_get_order(result.order.id)

    assert re.fullmatch(r"ORD-\d{8}-[0-9A-F]{6}", order.order_number)
    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert order.subtotal == Decimal("200.00")
    assert order.tax_amount == Decimal("17.00")
    assert order.shipping_amount == Decimal("0.00")
    assert order.total_amount == Decimal("217.00")
    assert [(i.variant_id, i.quantity, i.unit_price) for i in order.items] == [
        (variant_id, 2, Decimal("50.00")),
        (other_variant_id, 1, Decimal("100.00")),
    ]

    assert result.client_secret == f"{order.payment_reference}_secret_abc"
    assert payment_client.intents[order.payment_reference]["amount"] == Decimal("217.00")
    assert order.checkout_expires_at is not None

    # ledger bez zmian, linie przejete przez zamowienie
    assert reserved(variant_id) == 2
    assert reserved(other_variant_id) == 1
    assert cart_service.get_cart(BUYER)["items"] == []
    assert {r["order_id"] for r in cart_rows()} == {order.id}


def test_payment_failure_releases_claimed_stock(
    two_line_cart, order_service, cart_service, ship_to, variant_id, other_variant_id, reserved, cart_rows
):
    cart_service.add_item(OTHER, product_id=1, variant_id=variant_id, quantity=3)
    order_id = _checkout(order_service, ship_to).order.id

    assert order_service.reconcile_payment(order_id, PaymentOutcome.FAILED) is ReconcileResult.APPLIED

    assert reserved(variant_id) == 3
    assert reserved(other_variant_id) == 0
    order = order_service.admin_get_order(order_id)
    assert order.status == "cancelled"
    assert order.payment_status == "failed"
    assert [r for r in cart_rows() if r["order_id"] == order_id] == []


def test_replayed_failure_does_not_release_twice(
    two_line_cart, order_service, cart_service, ship_to, variant_id, reserved
):
    cart_service.add_item(OTHER, product_id=1, variant_id=variant_id, quantity=3)
    order_id = _checkout(order_service, ship_to).order.id

    order_service.reconcile_payment(order_id, PaymentOutcome.FAILED)
    assert order_service.reconcile_payment(order_id, PaymentOutcome.FAILED) is ReconcileResult.REPLAY
    assert order_service.reconcile_payment(order_id, PaymentOutcome.CANCELLED) is ReconcileResult.REPLAY

    assert reserved(variant_id) == 3


def test_payment_success_keeps_ledger_and_drops_cart_lines(
    two_line_cart, order_service, ship_to, variant_id, other_variant_id, reserved, cart_rows
):
    order_id = _checkout(order_service, ship_to).order.id

    assert order_service.reconcile_payment(order_id, PaymentOutcome.SUCCEEDED) is ReconcileResult.APPLIED

    assert order_service.admin_get_order(order_id).payment_status == "paid"
    assert reserved(variant_id) == 2
    assert reserved(other_variant_id) == 1
    assert cart_rows() == []

    # pozny failed po sukcesie niczego nie zwalnia
    assert order_service.reconcile_payment(order_id, PaymentOutcome.FAILED) is ReconcileResult.REPLAY
    assert reserved(variant_id) == 2


def test_reconcile_by_payment_reference(two_line_cart, order_service, ship_to):
    order = _checkout(order_service, ship_to).order
    reference = order.payment_reference

    assert order_service.reconcile_payment_reference(reference, PaymentOutcome.SUCCEEDED) is ReconcileResult.APPLIED
    assert order_service.reconcile_payment_reference("pi_unknown", PaymentOutcome.SUCCEEDED) is None


def test_cash_on_delivery_checkout(two_line_cart, order_service, ship_to, variant_id, reserved, cart_rows):
    result = _checkout(order_service, ship_to, PaymentMethod.CASH_ON_DELIVERY)

    assert result.client_secret is None
    assert cart_rows() == []
    assert reserved(variant_id) == 2

    order_id = result.order.id
    order_service.confirm_order(order_id)
    order_service.ship_order(order_id, tracking_number="TRACK-1")
    order = order_service.deliver_order(order_id)

    assert order.status == "delivered"
    assert order.payment_status == "paid"
    assert order.tracking_number == "TRACK-1"
    assert order.delivered_at is not None


def test_checkout_of_empty_cart(order_service, ship_to):
    with pytest.raises(EmptyCart):
        _checkout(order_service, ship_to)


def test_checkout_re_reserves_swept_lines(cart_service, order_service, ship_to, variant_id, reserved):
    cart_service.add_item(BUYER, product_id=1, variant_id=variant_id, quantity=3)
    cart_service.release_expired_reservations(now=utcnow() + timedelta(minutes=16))
    assert reserved(variant_id) == 0

    _checkout(order_service, ship_to)

    assert reserved(variant_id) == 3


def test_checkout_fails_whole_when_swept_line_cannot_be_reserved(
    cart_service, order_service, ship_to, variant_id, reserved, cart_rows
):
    cart_service.add_item(BUYER, product_id=1, variant_id=variant_id, quantity=3)
    cart_service.release_expired_reservations(now=utcnow() + timedelta(minutes=16))
    cart_service.add_item(OTHER, product_id=1, variant_id=variant_id, quantity=8)

    with pytest.raises(InsufficientStock):
        _checkout(order_service, ship_to)

    assert reserved(variant_id) == 8
    assert all(r["order_id"] is None for r in cart_rows())
    assert order_service.admin_list_orders() == []


def test_payment_provider_error_rolls_back_checkout(
    two_line_cart, order_service, cart_service, payment_client, ship_to, variant_id, reserved
):
    payment_client.fail_create = True

    with pytest.raises(PaymentError):
        _checkout(order_service, ship_to)

    assert reserved(variant_id) == 2
    assert len(cart_service.get_cart(BUYER)["items"]) == 2
    assert order_service.admin_list_orders() == []


def test_buy_now_reserves_and_claims_directly(order_service, ship_to, other_variant_id, reserved, cart_rows):
    result = order_service.create_buy_now_order(
        BUYER, product_id=2, variant_id=other_variant_id, quantity=2,
        shipping=ship_to, payment_method=PaymentMethod.CARD,
    )

    assert reserved(other_variant_id) == 2
    assert cart_rows() == []
    assert result.order.total_amount == Decimal("217.00")

    order_service.reconcile_payment(result.order.id, PaymentOutcome.CANCELLED)
    assert reserved(other_variant_id) == 0


def test_buy_now_insufficient_stock(order_service, ship_to, other_variant_id, reserved):
    with pytest.raises(InsufficientStock) as exc:
        order_service.create_buy_now_order(
            BUYER, product_id=2, variant_id=other_variant_id, quantity=6,
            shipping=ship_to, payment_method=PaymentMethod.CARD,
        )

    assert exc.value.available == 5
    assert reserved(other_variant_id) == 0


def test_card_order_must_be_paid_before_confirm(two_line_cart, order_service, ship_to):
    order_id = _checkout(order_service, ship_to).order.id

    with pytest.raises(InvalidTransition):
        order_service.confirm_order(order_id)

    order_service.reconcile_payment(order_id, PaymentOutcome.SUCCEEDED)
    assert order_service.confirm_order(order_id).status == "preparing"


def test_admin_transitions_follow_the_state_machine(two_line_cart, order_service, ship_to):
    order_id = _checkout(order_service, ship_to).order.id
    order_service.reconcile_payment(order_id, PaymentOutcome.SUCCEEDED)

    with pytest.raises(InvalidTransition):
        order_service.ship_order(order_id)

    order_service.confirm_order(order_id)
    order_service.ship_order(order_id)
    order_service.deliver_order(order_id)

    with pytest.raises(InvalidTransition):
        order_service.cancel_order(order_id)


def test_cancel_unpaid_order_releases_stock(
    two_line_cart, order_service, payment_client, ship_to, variant_id, other_variant_id, reserved
):
    order = _checkout(order_service, ship_to).order
    order_id, reference = order.id, order.payment_reference

    cancelled = order_service.cancel_order(order_id)

    assert cancelled.status == "cancelled"
    assert cancelled.payment_status == "failed"
    assert reserved(variant_id) == 0
    assert reserved(other_variant_id) == 0
    assert payment_client.cancelled == [reference]

    # spozniony webhook sukcesu nie wskrzesza zamowienia
    assert order_service.reconcile_payment(order_id, PaymentOutcome.SUCCEEDED) is ReconcileResult.REPLAY


def test_cancel_paid_order_is_refused(two_line_cart, order_service, ship_to, variant_id, reserved):
    order_id = _checkout(order_service, ship_to).order.id
    order_service.reconcile_payment(order_id, PaymentOutcome.SUCCEEDED)

    with pytest.raises(InvalidTransition):
        order_service.cancel_order(order_id)

    assert reserved(variant_id) == 2


def test_stale_checkouts_expire_once(two_line_cart, order_service, payment_client, ship_to, variant_id, reserved):
    order = _checkout(order_service, ship_to).order
    order_id, reference = order.id, order.payment_reference
    later = utcnow() + timedelta(minutes=31)

    assert order_service.expire_stale_checkouts(now=utcnow()) == 0
    assert order_service.expire_stale_checkouts(now=later) == 1
    assert order_service.expire_stale_checkouts(now=later) == 0

    assert reserved(variant_id) == 0
    assert order_service.admin_get_order(order_id).status == "cancelled"
    assert payment_client.cancelled == [reference]


def test_shipped_orders_are_delivered_after_two_days(two_line_cart, order_service, ship_to):
    order_id = _checkout(order_service, ship_to, PaymentMethod.CASH_ON_DELIVERY).order.id
    order_service.confirm_order(order_id)
    order_service.ship_order(order_id)

    assert order_service.deliver_shipped_orders(now=utcnow() + timedelta(days=1)) == 0
    assert order_service.deliver_shipped_orders(now=utcnow() + timedelta(days=3)) == 1
    assert order_service.admin_get_order(order_id).status == "delivered"


def test_orders_are_private_to_their_owner(two_line_cart, order_service, ship_to):
    order_id = _checkout(order_service, ship_to).order.id

    assert order_service.get_order(BUYER, order_id).id == order_id
    assert [o.id for o in order_service.list_orders(BUYER)] == [order_id]
    assert order_service.list_orders(OTHER) == []

    with pytest.raises(Forbidden):
        order_service.get_order(OTHER, order_id)


def test_status_counts(two_line_cart, order_service, ship_to):
    order_id = _checkout(order_service, ship_to).order.id
    order_service.cancel_order(order_id)

    assert order_service.status_counts() == {"cancelled": 1}


def test_stale_checkout_paid_at_the_provider_is_kept(
    two_line_cart, order_service, payment_client, ship_to, variant_id, other_variant_id, reserved
):
    order = _checkout(order_service, ship_to).order
    order_id, reference = order.id, order.payment_reference
    payment_client.pay(reference)

    assert order_service.expire_stale_checkouts(now=utcnow() + timedelta(minutes=31)) == 0

    kept = order_service.admin_get_order(order_id)
    assert kept.status == "pending"
    assert kept.payment_status == "paid"
    assert reserved(variant_id) == 2
    assert reserved(other_variant_id) == 1
    assert payment_client.cancelled == []

    # webhook sukcesu dochodzi pozniej i nic juz nie zmienia
    assert order_service.reconcile_payment(order_id, PaymentOutcome.SUCCEEDED) is ReconcileResult.REPLAY


def test_stale_checkout_stays_pending_while_provider_is_down(
    two_line_cart, order_service, payment_client, ship_to, variant_id, reserved
):
    order_id = _checkout(order_service, ship_to).order.id
    later = utcnow() + timedelta(minutes=31)
    payment_client.provider_down = True

    assert order_service.expire_stale_checkouts(now=later) == 0
    assert order_service.admin_get_order(order_id).payment_status == "pending"
    assert reserved(variant_id) == 2

    payment_client.provider_down = False
    assert order_service.expire_stale_checkouts(now=later) == 1
    assert reserved(variant_id) == 0


def test_cancel_of_order_paid_in_the_meantime_is_refused(
    two_line_cart, order_service, payment_client, ship_to, variant_id, reserved
):
    order = _checkout(order_service, ship_to).order
    order_id = order.id
    payment_client.pay(order.payment_reference)

    with pytest.raises(InvalidTransition):
        order_service.cancel_order(order_id)

    assert order_service.admin_get_order(order_id).payment_status == "paid"
    assert reserved(variant_id) == 2


def test_cancel_keeps_stock_when_payment_cannot_be_cancelled(
    two_line_cart, order_service, payment_client, ship_to, variant_id, reserved
):
    order_id = _checkout(order_service, ship_to).order.id
    payment_client.provider_down = True

    with pytest.raises(PaymentError):
        order_service.cancel_order(order_id)

    order = order_service.admin_get_order(order_id)
    assert order.status == "pending"
    assert order.payment_status == "pending"
    assert reserved(variant_id) == 2


def _bump_line_version(item_id):
    with SessionLocal() as session:
        session.execute(
            update(CartItemModel).where(CartItemModel.id == item_id).values(version=CartItemModel.version + 1)
        )
        session.commit()


def test_checkout_retries_once_when_a_line_changes_underneath(
    two_line_cart, order_service, monkeypatch, ship_to, variant_id, reserved, cart_rows
):
    get_items = order_service.cart_repo.get_items
    reads = []

    def get_items_then_touch_first_line(owner):
        lines = get_items(owner)
        if not reads:
            _bump_line_version(lines[0].id)
        reads.append(owner)
        return lines

    monkeypatch.setattr(order_service.cart_repo, "get_items", get_items_then_touch_first_line)

    order_id = _checkout(order_service, ship_to).order.id

    assert len(reads) == 2
    assert len(order_service.admin_list_orders()) == 1
    assert {r["order_id"] for r in cart_rows()} == {order_id}
    assert reserved(variant_id) == 2


def test_checkout_gives_up_after_second_conflict(
    two_line_cart, order_service, monkeypatch, ship_to, variant_id, reserved, cart_rows
):
    get_items = order_service.cart_repo.get_items

    def get_items_then_touch_first_line(owner):
        lines = get_items(owner)
        _bump_line_version(lines[0].id)
        return lines

    monkeypatch.setattr(order_service.cart_repo, "get_items", get_items_then_touch_first_line)

    with pytest.raises(ConflictingReservation):
        _checkout(order_service, ship_to)

    assert order_service.admin_list_orders() == []
    assert all(r["order_id"] is None for r in cart_rows())
    assert reserved(variant_id) == 2
