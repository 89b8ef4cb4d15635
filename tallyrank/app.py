"""HTTP surface over one BucketAnalytics engine."""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from .config import get_settings
from .engine import BucketAnalytics
from .logging_config import logger, setup_logging
from .routes import analytics, health

settings = get_settings()
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    owned = getattr(app.state, "analytics", None) is None
    if owned:
        app.state.analytics = BucketAnalytics.from_settings(settings)
    logger.info("app.start", prefix=settings.prefix, window=settings.window, retention=settings.retention)
    try:
        yield
    finally:
        if owned:
            await app.state.analytics.aclose()
            app.state.analytics = None


app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    logger.warning("value.error", path=str(request.url), reason=str(exc))
    return JSONResponse(status_code=400, content={"error_code": "VALUE_ERROR", "message": str(exc)})


@app.exception_handler(RedisError)
async def store_error_handler(request: Request, exc: RedisError) -> JSONResponse:
    logger.error("store.error", path=str(request.url), reason=str(exc))
    return JSONResponse(status_code=503, content={"error_code": "STORE_UNAVAILABLE", "message": str(exc)})


app.include_router(health.router)
app.include_router(analytics.router)
