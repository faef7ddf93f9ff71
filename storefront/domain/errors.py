# storefront/domain/errors.py
"""Business errors raised by the cart and order services.

Each error knows the HTTP status it maps to, so routers can turn any
``StorefrontError`` into an ``HTTPException`` the same way.
"""


class StorefrontError(Exception):
    status_code = 400
    code = "storefront_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def detail(self) -> dict:
        return {"error": self.code, "message": self.message}


class InsufficientStock(StorefrontError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, available: int, requested: int | None = None):
        self.available = max(0, available)
        self.requested = requested
        super().__init__(f"Only {self.available} items available")

    def detail(self) -> dict:
        data = super().detail()
        data["available"] = self.available
        if self.requested is not None:
            data["requested"] = self.requested
        return data


class NotFound(StorefrontError):
    status_code = 404
    code = "not_found"


class Forbidden(StorefrontError):
    status_code = 403
    code = "forbidden"


class ConflictingReservation(StorefrontError):
    """A conditional update lost a race with another writer."""

    status_code = 409
    code = "conflicting_reservation"


class InvalidQuantity(StorefrontError):
    code = "invalid_quantity"


class EmptyCart(StorefrontError):
    code = "empty_cart"


class InvalidTransition(StorefrontError):
    status_code = 409
    code = "invalid_transition"


class PaymentError(StorefrontError):
    status_code = 502
    code = "payment_error"
