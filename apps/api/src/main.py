from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import get_settings
from db import get_engine
from observability import (
    TraceIdMiddleware,
    configure_logging,
    register_exception_handlers,
)
from rate_limit import RateLimitMiddleware, create_redis_client
from routers.products import router as products_router
from store import ProductStore

logger = logging.getLogger("api.request")


def create_app(store: Optional[ProductStore] = None) -> FastAPI:
    settings = get_settings()
    configure_logging(debug=settings.api.debug, log_level=settings.api.log_level)

    app = FastAPI(title="Product Catalog API", debug=settings.api.debug)

    product_store = store or ProductStore(get_engine())
    app.state.product_store = product_store
    app.state.cache_max_age_seconds = settings.api.cache_max_age_seconds

    rate_limit = settings.api.rate_limit
    redis_client = None
    if rate_limit.enabled:
        redis_client = create_redis_client(settings.redis.url)
        app.add_middleware(
            RateLimitMiddleware,
            config=rate_limit,
            redis_client=redis_client,
        )

    app.add_middleware(TraceIdMiddleware)

    @app.on_event("shutdown")
    async def _release_resources() -> None:
        product_store.close()
        if redis_client is not None:
            await redis_client.aclose()
        logger.info("app.shutdown")

    if settings.api.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.api.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["ETag", "X-Trace-Id"],
        )

    register_exception_handlers(app)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(products_router)
    app.include_router(api_v1)

    return app
