# storefront/services/order_service.py
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import stripe
from sqlalchemy.orm import Session

from storefront.data.models.order import OrderItemModel, OrderModel
from storefront.domain.errors import (
    ConflictingReservation,
    EmptyCart,
    Forbidden,
    InsufficientStock,
    InvalidQuantity,
    InvalidTransition,
    NotFound,
    PaymentError,
)
from storefront.domain.order_state import (
    OrderStatus,
    PaymentMethod,
    PaymentOutcome,
    PaymentStatus,
    ReconcileResult,
    can_settle_payment,
    can_transition,
)
from storefront.domain.owner import Owner, owner_columns, owns
from storefront.domain.pricing import PriceSummary, summarize
from storefront.domain.schemas import ShippingInfo
from storefront.repos.cart_repo import CartRepo
from storefront.repos.order_repo import OrderRepo
from storefront.repos.stock_ledger import StockLedger
from storefront.services.notification_service import NotificationService
from storefront.services.payment_client import PaymentClient, PaymentHandle
from storefront.utils.clock import seconds_from_now, utcnow
from storefront.utils.logging import get_logger
from storefront.utils.retry import conflict_retry
from storefront.utils.settings import AUTO_DELIVER_AFTER_SECONDS, CHECKOUT_TTL_SECONDS, MAX_LINE_QUANTITY

logger = get_logger(__name__)


@dataclass
class CheckoutResult:
    order: OrderModel
    client_secret: str | None = None


def _order_number(now: datetime) -> str:
    return f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


class OrderService:
    """
    Serwis odpowiedzialny za domenę zamówień.

    Zamowienie przejmuje rezerwacje z koszyka bez zmiany ledgera;
    dopiero wynik platnosci (albo anulowanie) decyduje czy stock wraca.
    """

    def __init__(
        self,
        db: Session,
        payment_client: PaymentClient,
        notification_service: NotificationService | None = None,
    ):
        self.db = db
        self.repo = OrderRepo(db)
        self.cart_repo = CartRepo(db)
        self.ledger = StockLedger(db)
        self.payment_client = payment_client
        self.notification_service = notification_service or NotificationService()

    #commands - checkout
    @conflict_retry()
    def create_order_from_cart(
        self,
        owner: Owner,
        shipping: ShippingInfo,
        payment_method: PaymentMethod,
    ) -> CheckoutResult:
        """
        Use Case: Tworzenie zamówienia z koszyka.

        1. Linie ktore trzymaja rezerwacje sa przejmowane bez zmiany ledgera
        2. Linie po sweepie rezerwuja stock od nowa (albo caly checkout pada)
        3. Karta: PaymentIntent, linie zostaja do webhooka
           Pobranie: linie usuwane od razu
        4. Linia zmieniona w trakcie: rollback calosci i jedna ponowna proba
        """
        lines = self.cart_repo.get_items(owner)
        if not lines:
            raise EmptyCart("Cart is empty")

        try:
            for line in lines:
                if line.inventory_reserved_until is None:
                    if not self.ledger.reserve(line.variant_id, line.quantity):
                        raise InsufficientStock(self.ledger.available(line.variant_id) or 0, line.quantity)

            summary = summarize((line.price_at_time, line.quantity) for line in lines)
            order = self._new_order(owner, shipping, payment_method, summary)
            order.items = [
                OrderItemModel(
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    product_name=line.variant.product_name,
                    sku=line.variant.sku,
                    quantity=line.quantity,
                    unit_price=line.price_at_time,
                    total_price=line.price_at_time * line.quantity,
                )
                for line in lines
            ]
            self.repo.create_order(order)

            for line in lines:
                if self.cart_repo.claim_item(line.id, line.version, order.id) == 0:
                    raise ConflictingReservation(f"Cart item {line.id} was modified during checkout")

            handle = self._start_payment(order, payment_method)
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Order {order.id} created from cart {owner.key} ({len(lines)} line(s), {payment_method.value})")
        self._notify(order, "created")

        return CheckoutResult(order=order, client_secret=handle.client_secret if handle else None)

    def create_buy_now_order(
        self,
        owner: Owner,
        product_id: int,
        variant_id: int,
        quantity: int,
        shipping: ShippingInfo,
        payment_method: PaymentMethod,
    ) -> CheckoutResult:
        """Reserve a single variant and hand the hold straight to a new order."""
        if quantity < 1 or quantity > MAX_LINE_QUANTITY:
            raise InvalidQuantity(f"Quantity must be between 1 and {MAX_LINE_QUANTITY}")

        variant = self.ledger.get_variant(variant_id)
        if not variant or variant.product_id != product_id:
            raise NotFound(f"Variant {variant_id} of product {product_id} not found")

        try:
            if not self.ledger.reserve(variant_id, quantity):
                raise InsufficientStock(self.ledger.available(variant_id) or 0, quantity)

            summary = summarize([(variant.price, quantity)])
            order = self._new_order(owner, shipping, payment_method, summary)
            order.items = [
                OrderItemModel(
                    product_id=product_id,
                    variant_id=variant_id,
                    product_name=variant.product_name,
                    sku=variant.sku,
                    quantity=quantity,
                    unit_price=variant.price,
                    total_price=variant.price * quantity,
                )
            ]
            self.repo.create_order(order)

            handle = self._start_payment(order, payment_method)
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Buy-now order {order.id} created for variant {variant_id} x {quantity}")
        self._notify(order, "created")

        return CheckoutResult(order=order, client_secret=handle.client_secret if handle else None)

    def _new_order(
        self,
        owner: Owner,
        shipping: ShippingInfo,
        payment_method: PaymentMethod,
        summary: PriceSummary,
    ) -> OrderModel:
        return OrderModel(
            order_number=_order_number(utcnow()),
            **owner_columns(owner),
            customer_email=shipping.email,
            customer_phone=shipping.phone,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            payment_method=payment_method.value,
            subtotal=summary.subtotal,
            tax_amount=summary.tax,
            shipping_amount=summary.shipping,
            discount_amount=summary.discount,
            total_amount=summary.total,
            shipping_first_name=shipping.first_name,
            shipping_last_name=shipping.last_name,
            shipping_address=shipping.address,
            shipping_city=shipping.city,
            shipping_state=shipping.state,
            shipping_zip=shipping.zip,
            shipping_country=shipping.country,
        )

    def _start_payment(self, order: OrderModel, payment_method: PaymentMethod) -> PaymentHandle | None:
        if payment_method.is_async:
            handle = self.payment_client.create_payment_intent(
                order_id=order.id,
                order_number=order.order_number,
                amount=order.total_amount,
                email=order.customer_email,
            )
            order.payment_reference = handle.reference
            order.checkout_expires_at = seconds_from_now(CHECKOUT_TTL_SECONDS)
            return handle

        # platnosc przy odbiorze, koszyk mozna wyczyscic od razu
        self.cart_repo.delete_claimed_items(order.id)
        return None

    #commands - payment
    def reconcile_payment(self, order_id: int, outcome: PaymentOutcome) -> ReconcileResult:
        """
        Use Case: wynik platnosci z webhooka (at-least-once).

        Tylko pending -> paid albo pending -> failed; powtorka na
        zamknietej platnosci to no-op, nic nie zwalniamy drugi raz.
        """
        order = self.repo.get_order(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found")

        if not can_settle_payment(order.payment_status):
            logger.warning(
                f"Payment {outcome.value} replayed for order {order_id} "
                f"(already {order.payment_status}), ignoring"
            )
            return ReconcileResult.REPLAY

        now = utcnow()
        if outcome is PaymentOutcome.SUCCEEDED:
            new_data = {
                "payment_status": PaymentStatus.PAID.value,
                "checkout_expires_at": None,
                "updated_at": now,
            }
        else:
            new_data = {
                "payment_status": PaymentStatus.FAILED.value,
                "status": OrderStatus.CANCELLED.value,
                "checkout_expires_at": None,
                "cancelled_at": now,
                "updated_at": now,
            }

        try:
            if self.repo.settle_payment(order.id, new_data) == 0:
                self.repo.rollback()
                logger.warning(f"Order {order_id} payment settled concurrently, ignoring {outcome.value}")
                return ReconcileResult.REPLAY

            if outcome is not PaymentOutcome.SUCCEEDED:
                self._release_order_stock(order)
            self.cart_repo.delete_claimed_items(order.id)
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Order {order_id} payment {outcome.value}")
        self._notify(order, "paid" if outcome is PaymentOutcome.SUCCEEDED else "cancelled")
        return ReconcileResult.APPLIED

    def reconcile_payment_reference(
        self,
        reference: str,
        outcome: PaymentOutcome,
        order_id: int | None = None,
    ) -> ReconcileResult | None:
        """Reconcile by our order id (event metadata) or the provider reference; None when nothing matches."""
        order = self.repo.get_order(order_id) if order_id else None
        if order is None and reference:
            order = self.repo.get_by_payment_reference(reference)

        if order is None:
            logger.error(f"No order found for payment {reference}")
            return None

        return self.reconcile_payment(order.id, outcome)

    def _release_order_stock(self, order: OrderModel) -> None:
        for item in order.items:
            self.ledger.release(item.variant_id, item.quantity)

    #commands - admin
    def confirm_order(self, order_id: int) -> OrderModel:
        order = self._get(order_id)

        if order.payment_method == PaymentMethod.CARD.value and order.payment_status != PaymentStatus.PAID.value:
            raise InvalidTransition("Card orders can only be confirmed once paid")

        return self._transition(order, OrderStatus.PREPARING, {"confirmed_at": utcnow()})

    def ship_order(self, order_id: int, tracking_number: str | None = None) -> OrderModel:
        order = self._get(order_id)
        extra = {"shipped_at": utcnow()}
        if tracking_number:
            extra["tracking_number"] = tracking_number
        order = self._transition(order, OrderStatus.SHIPPING, extra)
        self._notify(order, "shipped")
        return order

    def deliver_order(self, order_id: int) -> OrderModel:
        order = self._get(order_id)
        extra = {"delivered_at": utcnow()}
        if order.payment_method == PaymentMethod.CASH_ON_DELIVERY.value:
            extra["payment_status"] = PaymentStatus.PAID.value
        return self._transition(order, OrderStatus.DELIVERED, extra)

    def cancel_order(self, order_id: int) -> OrderModel:
        """
        Anulowanie przez admina. Zaplacone zamowienie idzie przez zwrot,
        nie przez zwolnienie rezerwacji.
        """
        order = self._get(order_id)

        if not can_transition(order.status, OrderStatus.CANCELLED.value):
            raise InvalidTransition(f"Cannot cancel an order in status {order.status}")
        if order.payment_status == PaymentStatus.PAID.value:
            raise InvalidTransition("Paid orders must go through a refund instead of cancellation")

        # najpierw Stripe, stock zwalniamy dopiero gdy platnosc na pewno nie przejdzie
        outcome = self._close_provider_payment(order)
        if outcome is None:
            raise PaymentError(f"Could not cancel the payment for order {order_id}, try again later")
        if outcome is PaymentOutcome.SUCCEEDED:
            self.reconcile_payment(order.id, PaymentOutcome.SUCCEEDED)
            raise InvalidTransition("Order was paid in the meantime and must go through a refund instead")

        now = utcnow()
        try:
            rowcount = self.repo.settle_payment(
                order.id,
                {
                    "payment_status": PaymentStatus.FAILED.value,
                    "status": OrderStatus.CANCELLED.value,
                    "checkout_expires_at": None,
                    "cancelled_at": now,
                    "updated_at": now,
                },
            )
            if rowcount == 0:
                raise ConflictingReservation(f"Order {order_id} payment changed concurrently")

            self._release_order_stock(order)
            self.cart_repo.delete_claimed_items(order.id)
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Order {order_id} cancelled, reserved stock released")
        self._notify(order, "cancelled")
        return self._get(order_id)

    def _transition(self, order: OrderModel, target: OrderStatus, extra: dict) -> OrderModel:
        if not can_transition(order.status, target.value):
            raise InvalidTransition(f"Cannot move order from {order.status} to {target.value}")

        try:
            rowcount = self.repo.update_status(
                order.id,
                order.status,
                {"status": target.value, "updated_at": utcnow(), **extra},
            )
            if rowcount == 0:
                raise InvalidTransition(f"Order {order.id} changed status concurrently")
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Order {order.id} moved to {target.value}")
        return self._get(order.id)

    #background jobs
    def expire_stale_checkouts(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        expired = 0

        for order_id in self.repo.find_stale_checkouts(now):
            outcome = self._close_provider_payment(self._get(order_id))
            if outcome is None:
                # stan platnosci nieznany, zamowienie czeka na webhook albo nastepny przebieg
                continue
            result = self.reconcile_payment(order_id, outcome)
            if outcome is PaymentOutcome.SUCCEEDED:
                logger.info(f"Stale checkout {order_id} was paid at the provider, kept")
            elif result is ReconcileResult.APPLIED:
                expired += 1

        if expired:
            logger.info(f"Expired {expired} stale checkout(s)")
        return expired

    def deliver_shipped_orders(self, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(seconds=AUTO_DELIVER_AFTER_SECONDS)
        delivered = 0

        for order_id in self.repo.find_shipped_before(cutoff):
            try:
                self.deliver_order(order_id)
            except InvalidTransition as e:
                logger.warning(f"Auto-delivery skipped order {order_id}: {e}")
                continue
            delivered += 1

        if delivered:
            logger.info(f"Moved {delivered} shipping order(s) to delivered")
        return delivered

    #query
    def get_order(self, owner: Owner, order_id: int) -> OrderModel:
        order = self._get(order_id)
        if not owns(owner, order):
            raise Forbidden("Order belongs to another customer")
        return order

    def list_orders(self, owner: Owner, limit: int = 50, offset: int = 0) -> list[OrderModel]:
        return self.repo.list_for_owner(owner, limit=limit, offset=offset)

    def admin_get_order(self, order_id: int) -> OrderModel:
        return self._get(order_id)

    def admin_list_orders(self, status: str | None = None, limit: int = 50, offset: int = 0) -> list[OrderModel]:
        return self.repo.list_orders(status=status, limit=limit, offset=offset)

    def status_counts(self) -> dict[str, int]:
        return self.repo.count_by_status()

    #helpers
    def _get(self, order_id: int) -> OrderModel:
        order = self.repo.get_order(order_id)
        if not order:
            raise NotFound(f"Order {order_id} not found")
        return order

    def _close_provider_payment(self, order: OrderModel) -> PaymentOutcome | None:
        """
        Anuluje PaymentIntent zanim zamowienie zostanie anulowane.

        CANCELLED - Stripe potwierdzil anulowanie (albo nie ma czego anulowac)
        SUCCEEDED - klient zdazyl zaplacic, anulowac nie wolno
        None - stanu nie da sie ustalic, zamowienie zostaje pending
        """
        if order.payment_method != PaymentMethod.CARD.value or not order.payment_reference:
            return PaymentOutcome.CANCELLED

        reference = order.payment_reference
        try:
            self.payment_client.cancel_payment_intent(reference)
            return PaymentOutcome.CANCELLED
        except (PaymentError, stripe.StripeError) as e:
            logger.warning(f"Failed to cancel payment {reference} for order {order.id}: {e}")

        try:
            status = self.payment_client.get_payment_status(reference)
        except (PaymentError, stripe.StripeError) as e:
            logger.error(f"Failed to fetch payment {reference} for order {order.id}: {e}")
            return None

        if status == "succeeded":
            return PaymentOutcome.SUCCEEDED
        if status == "canceled":
            return PaymentOutcome.CANCELLED

        logger.warning(f"Payment {reference} for order {order.id} is {status}, leaving order pending")
        return None

    def _notify(self, order: OrderModel, event: str) -> None:
        self.notification_service.order_event(order.id, order.order_number, event, order.customer_email)
