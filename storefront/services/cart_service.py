import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

from sqlalchemy.orm import Session

from storefront.data.models.cart_item import CartItemModel
from storefront.domain.errors import (
    ConflictingReservation,
    Forbidden,
    InsufficientStock,
    InvalidQuantity,
    NotFound,
    StorefrontError,
)
from storefront.domain.owner import GuestOwner, Owner, UserOwner, owner_columns, owns
from storefront.domain.pricing import PriceSummary, summarize
from storefront.repos.cart_repo import CartRepo
from storefront.repos.stock_ledger import StockLedger
from storefront.services.lock_service import LockService, merge_lock_key
from storefront.utils.clock import as_utc, seconds_from_now, utcnow
from storefront.utils.logging import get_logger
from storefront.utils.retry import conflict_retry, db_retry
from storefront.utils.settings import (
    MAX_LINE_QUANTITY,
    MERGE_LOCK_TTL_SECONDS,
    RESERVATION_TTL_SECONDS,
    SWEEP_BATCH_SIZE,
)

logger = get_logger(__name__)


@dataclass
class MergeReport:
    combined: list[int] = field(default_factory=list)
    moved: list[int] = field(default_factory=list)
    dropped: list[int] = field(default_factory=list)


def _reservation_deadline(now: datetime | None = None) -> datetime:
    return seconds_from_now(RESERVATION_TTL_SECONDS, now)


class CartService:
    """
    Koszyk + rezerwacje magazynu.

    commands (add, update, remove, clear, merge, sweep) zmieniaja stan,
    ledger i pozycja koszyka zawsze w jednej transakcji
    query (get, summary) tylko odczyt
    """

    def __init__(self, db: Session, lock_service: LockService):
        self.db = db
        self.repo = CartRepo(db)
        self.ledger = StockLedger(db)
        self.lock_service = lock_service

    #query - odczyt
    def get_cart(self, owner: Owner) -> Dict[str, Any]:
        items = self.repo.get_items(owner)
        summary = summarize((i.price_at_time, i.quantity) for i in items)

        return {
            **owner_columns(owner),
            "items": [self._item_view(i) for i in items],
            "item_count": summary.item_count,
            "subtotal": summary.subtotal,
        }

    def get_summary(self, owner: Owner) -> PriceSummary:
        items = self.repo.get_items(owner)
        return summarize((i.price_at_time, i.quantity) for i in items)

    @staticmethod
    def _item_view(item: CartItemModel) -> Dict[str, Any]:
        variant = item.variant
        return {
            "id": item.id,
            "product_id": item.product_id,
            "variant_id": item.variant_id,
            "product_name": variant.product_name if variant else None,
            "sku": variant.sku if variant else None,
            "title": variant.title if variant else None,
            "quantity": item.quantity,
            "price_at_time": item.price_at_time,
            "line_total": item.price_at_time * item.quantity,
            "inventory_reserved_until": as_utc(item.inventory_reserved_until),
            "holds_reservation": item.holds_reservation,
        }

    #commands
    def add_item(self, owner: Owner, product_id: int, variant_id: int, quantity: int) -> CartItemModel:
        self._check_quantity(quantity)

        existing = self.repo.get_item_for_variant(owner, variant_id)
        if existing:
            logger.info(
                f"Variant {variant_id} already in cart {owner.key}, "
                f"quantity {existing.quantity} -> {existing.quantity + quantity}"
            )
            return self.update_quantity(owner, existing.id, existing.quantity + quantity)

        variant = self.ledger.get_variant(variant_id)
        if not variant or variant.product_id != product_id:
            raise NotFound(f"Variant {variant_id} of product {product_id} not found")

        price = variant.price

        try:
            if not self.ledger.reserve(variant_id, quantity):
                raise InsufficientStock(self.ledger.available(variant_id) or 0, quantity)

            item = self.repo.add_item(
                CartItemModel(
                    **owner_columns(owner),
                    product_id=product_id,
                    variant_id=variant_id,
                    quantity=quantity,
                    price_at_time=price,
                    inventory_reserved_until=_reservation_deadline(),
                    version=1,
                )
            )
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Added {quantity} x variant {variant_id} to cart {owner.key} (item {item.id})")
        return item

    @conflict_retry()
    def update_quantity(self, owner: Owner, item_id: int, quantity: int) -> CartItemModel | None:
        """Set a line's quantity; zero or less removes the line and returns None."""
        item = self._owned_item(owner, item_id)

        if quantity <= 0:
            self._commit_or_rollback(lambda: self._remove(item))
            logger.info(f"Item {item_id} removed from cart {owner.key} (quantity {quantity})")
            return None

        self._check_quantity(quantity)
        return self._set_quantity(item, quantity)

    def _set_quantity(self, item: CartItemModel, quantity: int) -> CartItemModel:
        # linia bez rezerwacji (po sweepie) musi zarezerwowac cala ilosc od nowa
        held = item.quantity if item.holds_reservation else 0
        delta = quantity - held
        variant_id = item.variant_id

        try:
            if delta > 0 and not self.ledger.reserve(variant_id, delta):
                raise InsufficientStock(self.ledger.available(variant_id) or 0, delta)
            if delta < 0:
                self.ledger.release(variant_id, -delta)

            rowcount = self.repo.update_item_version(
                item_id=item.id,
                old_version=item.version,
                new_data={
                    "quantity": quantity,
                    "inventory_reserved_until": _reservation_deadline(),
                },
            )
            if rowcount == 0:
                raise ConflictingReservation(f"Cart item {item.id} was modified by another request")

            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        logger.info(f"Cart item {item.id} quantity set to {quantity} (ledger delta {delta})")
        return self.repo.get_item(item.id)

    @conflict_retry()
    def remove_item(self, owner: Owner, item_id: int) -> None:
        item = self._owned_item(owner, item_id)
        self._commit_or_rollback(lambda: self._remove(item))
        logger.info(f"Item {item_id} removed from cart {owner.key}")

    @conflict_retry()
    def clear_cart(self, owner: Owner) -> int:
        items = self.repo.get_items(owner)

        def _clear():
            for item in items:
                self._remove(item)

        self._commit_or_rollback(_clear)
        logger.info(f"Cleared {len(items)} item(s) from cart {owner.key}")
        return len(items)

    def _remove(self, item: CartItemModel) -> None:
        # bez commita, wywolujacy decyduje o transakcji
        holding = item.holds_reservation
        variant_id, quantity = item.variant_id, item.quantity

        if self.repo.delete_item_version(item.id, item.version) == 0:
            raise ConflictingReservation(f"Cart item {item.id} was modified by another request")

        # wygasla pozycja nic juz nie trzyma, nie zwalniamy drugi raz
        if holding:
            self.ledger.release(variant_id, quantity)

    @db_retry()
    def release_expired_reservations(self, now: datetime | None = None, batch_size: int = SWEEP_BATCH_SIZE) -> int:
        """Release stock held by lines whose reservation window has passed.

        The lines stay in the cart with ``inventory_reserved_until`` cleared; they hold
        no stock until the owner touches them again or checks out. Safe to run twice.
        Works in pages of ``batch_size`` until a short page comes back.
        """
        now = now or utcnow()
        released = 0

        while True:
            expired = [
                (i.id, i.version, i.variant_id, i.quantity)
                for i in self.repo.find_expired(now, limit=batch_size)
            ]
            if not expired:
                break

            logger.info(f"Found {len(expired)} expired reservation(s)")

            page_released = 0
            for item_id, version, variant_id, quantity in expired:
                try:
                    if self.repo.clear_reservation(item_id, version) == 0:
                        # ktos inny juz zmienil linie (update/remove/inny sweep)
                        self.repo.rollback()
                        continue
                    self.ledger.release(variant_id, quantity)
                    self.repo.commit()
                except Exception:
                    self.repo.rollback()
                    raise
                page_released += 1

            released += page_released
            # krotka strona = koniec; strona bez zwolnien = same konflikty, reszta w nastepnym przebiegu
            if len(expired) < batch_size or page_released == 0:
                break

        if released:
            logger.info(f"Released {released} expired reservation(s)")
        return released

    def merge_guest_cart(self, guest: GuestOwner, user: UserOwner) -> MergeReport:
        key = merge_lock_key(guest.session_id)
        token = uuid.uuid4().hex

        if not self.lock_service.acquire(key, token, MERGE_LOCK_TTL_SECONDS):
            raise ConflictingReservation(f"Guest cart {guest.session_id} is already being merged")

        try:
            return self._merge(guest, user)
        finally:
            self.lock_service.release(key, token)

    def _merge(self, guest: GuestOwner, user: UserOwner) -> MergeReport:
        report = MergeReport()
        guest_item_ids = [i.id for i in self.repo.get_items(guest)]

        if not guest_item_ids:
            return report

        logger.info(f"Merging {len(guest_item_ids)} guest item(s) from {guest.key} into {user.key}")

        for item_id in guest_item_ids:
            try:
                self._merge_line(item_id, user, report)
            except StorefrontError as e:
                # best effort, pozostale pozycje mergujemy dalej
                self.repo.rollback()
                guest_item = self.repo.get_item(item_id)
                if guest_item is not None:
                    report.dropped.append(guest_item.variant_id)
                logger.warning(f"Skipping guest item {item_id} during merge: {e}")

        leftovers = self.repo.get_items(guest)

        def _drop_leftovers():
            for item in leftovers:
                self._remove(item)

        self._commit_or_rollback(_drop_leftovers)

        logger.info(
            f"Merge {guest.key} -> {user.key} done: combined={report.combined} "
            f"moved={report.moved} dropped={report.dropped}"
        )
        return report

    def _merge_line(self, item_id: int, user: UserOwner, report: MergeReport) -> None:
        guest_item = self.repo.get_item(item_id)
        if guest_item is None or guest_item.order_id is not None:
            return

        variant_id = guest_item.variant_id
        user_item = self.repo.get_item_for_variant(user, variant_id)

        try:
            if user_item is None:
                # przepinamy linie na usera, rezerwacja juz istnieje
                if self.repo.rehome_item(guest_item.id, guest_item.version, user) == 0:
                    raise ConflictingReservation(f"Cart item {guest_item.id} was modified by another request")
                self.repo.commit()
                report.moved.append(variant_id)
                return

            combined = user_item.quantity + guest_item.quantity
            self._check_quantity(combined)

            # rezerwujemy tylko to czego zadna z linii juz nie trzyma
            needed = (0 if guest_item.holds_reservation else guest_item.quantity) + (
                0 if user_item.holds_reservation else user_item.quantity
            )
            if needed and not self.ledger.reserve(variant_id, needed):
                raise InsufficientStock(self.ledger.available(variant_id) or 0, needed)

            rowcount = self.repo.update_item_version(
                item_id=user_item.id,
                old_version=user_item.version,
                new_data={"quantity": combined, "inventory_reserved_until": _reservation_deadline()},
            )
            if rowcount == 0 or self.repo.delete_item_version(guest_item.id, guest_item.version) == 0:
                raise ConflictingReservation(f"Cart item for variant {variant_id} was modified during merge")

            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise

        report.combined.append(variant_id)

    #helpers
    def _owned_item(self, owner: Owner, item_id: int) -> CartItemModel:
        item = self.repo.get_item(item_id)

        # linie przejete przez zamowienie nie naleza juz do koszyka
        if not item or item.order_id is not None:
            raise NotFound(f"Cart item {item_id} not found")

        if not owns(owner, item):
            raise Forbidden("Cart item belongs to another cart")

        return item

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if quantity < 1 or quantity > MAX_LINE_QUANTITY:
            raise InvalidQuantity(f"Quantity must be between 1 and {MAX_LINE_QUANTITY}")

    def _commit_or_rollback(self, work) -> None:
        try:
            work()
            self.repo.commit()
        except Exception:
            self.repo.rollback()
            raise
