import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .db import make_engine, make_sessionmaker, init_schema
from .notifications import EventNotificationSink, NotificationSink
from .numbering import make_generator
from .pricing import PricingPolicy
from .routes import cart_router, guest_router, order_router
from .transaction import OrderTransaction

from . import models  # noqa: F401  (register tables on Base.metadata)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine=None,
    notifier: Optional[NotificationSink] = None,
) -> FastAPI:
    """
    Build one checkout app. The engine, session factory, order transaction
    and notification sink all live on app.state; nothing is module-global.

    Run with: uvicorn checkout.main:create_app --factory
    """
    settings = settings or Settings.from_env()

    if engine is None:
        engine = make_engine(settings.database_url, db_schema=settings.db_schema, pool=settings.db_pool)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Keep cold start lightweight for Lambda.
        Do schema creation/migrations at deploy-time unless CREATE_TABLES=true.
        """
        if settings.create_tables:
            init_schema(engine, settings.db_schema)
        yield
        engine.dispose()

    app = FastAPI(title="checkout-service", lifespan=lifespan)

    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = make_sessionmaker(engine)
    app.state.checkout = OrderTransaction(
        numbers=make_generator(settings.order_number_strategy),
        pricing=PricingPolicy(tax_rate=settings.tax_rate, flat_shipping=settings.shipping_flat_fee),
        default_payment_method=settings.default_payment_method,
    )
    app.state.notifier = notifier or EventNotificationSink()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,  # tighten in prod
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(order_router)
    app.include_router(guest_router)
    app.include_router(cart_router)

    @app.get("/health")
    def health():
        return {"ok": True}

    logger.info("checkout-service ready schema=%s numbers=%s", settings.db_schema, settings.order_number_strategy)
    return app
