"""FastAPI application exposing the order and payment core."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings

from . import db
from .core import Core, build_core
from .errors import (
    CoreError,
    EntityNotFound,
    InvalidSignature,
    InvalidTransition,
    ItemNotTracked,
    PayloadError,
    PersistenceFailure,
    RecordNotFound,
    RewardNotActive,
    ValidationFailure,
)
from .middlewares import RequestIdMiddleware
from .obs.logging import configure_logging
from .routes_orders import router as orders_router
from .routes_payment_webhooks import router as webhooks_router
from .routes_rewards import router as rewards_router
from .utils.responses import err

logger = logging.getLogger("wawa")

# first match wins; subclasses are listed before their bases
ERROR_STATUS: list[tuple[type[CoreError], int]] = [
    (InvalidSignature, 401),
    (PayloadError, 400),
    (InvalidTransition, 409),
    (RewardNotActive, 409),
    (EntityNotFound, 404),
    (RecordNotFound, 404),
    (ItemNotTracked, 409),
    (ValidationFailure, 422),
    (PersistenceFailure, 503),
]


def status_for(exc: CoreError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "core", None) is None:
        db.SessionLocal, db.engine = db.init_db()
        app.state.core = build_core(db.SessionLocal)
        logger.info("core ready")
    yield


def create_app(core: Optional[Core] = None) -> FastAPI:
    """Build the application; ``core`` is injected by tests."""

    settings = core.settings if core is not None else get_settings()
    configure_logging(getattr(logging, settings.log_level.upper(), logging.INFO))

    app = FastAPI(title="Wawa order and payment core", lifespan=lifespan)
    app.state.core = core
    app.add_middleware(RequestIdMiddleware)
    app.include_router(webhooks_router)
    app.include_router(orders_router)
    app.include_router(rewards_router)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.exception_handler(CoreError)
    async def core_error_handler(request: Request, exc: CoreError):
        status_code = status_for(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            exc.message,
            extra={"status": status_code, "route": request.url.path},
        )
        return JSONResponse(
            err(exc.code, exc.message, exc.details or None), status_code=status_code
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(
            "request validation failed", extra={"status": 422, "route": request.url.path}
        )
        fields = [".".join(map(str, e["loc"])) for e in exc.errors()]
        return JSONResponse(
            err("VALIDATION_ERROR", "Invalid request", {"fields": fields}),
            status_code=422,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(
            exc.detail,
            extra={"status": exc.status_code, "route": request.url.path},
        )
        return JSONResponse(err(exc.status_code, exc.detail), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_error", extra={"status": 500, "route": request.url.path}
        )
        return JSONResponse(err(500, "Internal Server Error"), status_code=500)

    return app


app = create_app()

__all__ = ["app", "create_app", "status_for"]
