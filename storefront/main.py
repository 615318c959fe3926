# storefront/main.py
from fastapi import FastAPI
import uvicorn

from storefront.api.errors import register_error_handlers
from storefront.api.routers import carts, checkout, health, orders, rpc
from storefront.data.database import Base, engine, init_db
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

try:
    init_db()
    logger.info(f"Database tables ready: {list(Base.metadata.tables.keys())} ({engine.url.drivername})")
except Exception as e:
    logger.error(f"Failed to create tables: {e}")
    raise


def create_app() -> FastAPI:
    app = FastAPI(
        title="Storefront Commerce Service",
        version="1.0.0",
    )

    register_error_handlers(app)

    # Include routers
    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(checkout.router)
    app.include_router(orders.router)
    app.include_router(rpc.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
