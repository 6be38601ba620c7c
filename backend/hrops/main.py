import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from hrops.core.config import settings
from hrops.core.logging import setup_logging

setup_logging(settings.debug)

from hrops.api.middleware.rate_limit import RateLimitMiddleware
from hrops.api.middleware.request_id import RequestIdMiddleware
from hrops.api.routes import birthday_review, health
from hrops.api.routes.admin import jobs as admin_jobs
from hrops.api.routes.admin import offers as admin_offers
from hrops.core.exceptions import HROpsError
from hrops.services.scheduler import start_scheduler, stop_scheduler
from hrops.services.settings_service import (
    InMemorySettingsStore,
    JsonFileSettingsStore,
    load_hr_config,
    set_hr_config,
)

logger = logging.getLogger(__name__)

try:
    settings.validate_secrets()
except ValueError as e:
    logger.critical("Secret validation failed: %s", e)
    raise SystemExit(f"FATAL: {e}") from e


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    store = (
        JsonFileSettingsStore(settings.hr_settings_file)
        if settings.hr_settings_file
        else InMemorySettingsStore()
    )
    try:
        set_hr_config(load_hr_config(store))
    except HROpsError as e:
        logger.critical("Business settings invalid: %s", e.message)
        raise SystemExit(f"FATAL: {e.message}") from e

    if settings.scheduler_enabled:
        start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="HR Operations API",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestIdMiddleware)

# Public routes
app.include_router(health.router, prefix="/api")
app.include_router(birthday_review.router, prefix="/api")

# Admin routes
app.include_router(admin_jobs.router, prefix="/api/admin")
app.include_router(admin_offers.router, prefix="/api/admin")
