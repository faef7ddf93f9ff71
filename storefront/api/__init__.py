# storefront/api/__init__.py
from fastapi import FastAPI

from storefront.api.routers import admin_orders, carts, health, orders, payments


def create_app() -> FastAPI:
    app = FastAPI(
        title="Storefront",
        version="1.0.0",
    )

    # Include routers
    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(orders.router)
    app.include_router(payments.router)
    app.include_router(admin_orders.router)

    return app
