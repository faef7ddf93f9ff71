import os
import tempfile
from decimal import Decimal

# konfiguracja musi byc ustawiona zanim storefront.utils.settings zostanie zaimportowany
_DB_DIR = tempfile.mkdtemp(prefix="storefront-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'storefront.db')}"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy import select  # noqa: E402

from storefront.api import create_app  # noqa: E402
from storefront.api.auth import get_lock_service, get_payment_client  # noqa: E402
from storefront.data.database import Base, SessionLocal, engine  # noqa: E402
from storefront.data.models import CartItemModel, VariantModel  # noqa: E402
from storefront.services.cart_service import CartService  # noqa: E402
from storefront.services.order_service import OrderService  # noqa: E402
from storefront.utils.settings import JWT_ALGORITHM, SECRET_KEY  # noqa: E402

from tests.fakes import FakeLockService, FakePaymentClient  # noqa: E402


@pytest.fixture(autouse=True)
def tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def lock_service():
    return FakeLockService()


@pytest.fixture
def payment_client():
    return FakePaymentClient()


@pytest.fixture
def cart_service(db, lock_service):
    return CartService(db, lock_service=lock_service)


@pytest.fixture
def order_service(db, payment_client):
    return OrderService(db, payment_client=payment_client)


def _add_variant(product_id, sku, price, inventory, name="Keyboard"):
    with SessionLocal() as session:
        variant = VariantModel(
            product_id=product_id,
            product_name=name,
            sku=sku,
            title="Standard",
            price=Decimal(price),
            inventory_quantity=inventory,
            reserved_quantity=0,
        )
        session.add(variant)
        session.commit()
        return variant.id


@pytest.fixture
def variant_id():
    """Product 1, price 50.00, inventory 10."""
    return _add_variant(1, "KB-1", "50.00", 10)


@pytest.fixture
def other_variant_id():
    """Product 2, price 100.00, inventory 5."""
    return _add_variant(2, "MN-1", "100.00", 5, name="Monitor")


@pytest.fixture
def reserved():
    """Current reserved_quantity read through a fresh session."""

    def _reserved(variant_id):
        with SessionLocal() as session:
            return session.execute(
                select(VariantModel.reserved_quantity).where(VariantModel.id == variant_id)
            ).scalar_one()

    return _reserved


@pytest.fixture
def cart_rows():
    """All cart rows (claimed ones included) as plain dicts."""

    def _rows():
        with SessionLocal() as session:
            items = session.execute(select(CartItemModel).order_by(CartItemModel.id)).scalars().all()
            return [
                {
                    "id": i.id,
                    "user_id": i.user_id,
                    "session_id": i.session_id,
                    "variant_id": i.variant_id,
                    "quantity": i.quantity,
                    "order_id": i.order_id,
                    "inventory_reserved_until": i.inventory_reserved_until,
                }
                for i in items
            ]

    return _rows


@pytest.fixture
def shipping():
    return {
        "email": "jan@example.com",
        "phone": "+48 600 000 000",
        "first_name": "Jan",
        "last_name": "Kowalski",
        "address": "Main St 1",
        "city": "Springfield",
        "state": "IL",
        "zip": "62701",
        "country": "US",
    }


@pytest.fixture
def token():
    def _token(user_id, is_admin=False):
        return jwt.encode({"sub": user_id, "is_admin": is_admin}, SECRET_KEY, algorithm=JWT_ALGORITHM)

    return _token


@pytest.fixture
def auth(token):
    def _auth(user_id, is_admin=False):
        return {"Authorization": f"Bearer {token(user_id, is_admin)}"}

    return _auth


@pytest.fixture
def client(lock_service, payment_client):
    app = create_app()
    app.dependency_overrides[get_lock_service] = lambda: lock_service
    app.dependency_overrides[get_payment_client] = lambda: payment_client

    with TestClient(app) as c:
        yield c
