"""
FastAPI application factory and error mapping.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tagline.config import Settings, get_settings
from tagline.dependencies import configure
from tagline.errors import BackendUnavailableError, TaglineError, UnauthorizedError
from tagline.routes import photos_router, router

logger = logging.getLogger(__name__)


def _tagline_error_handler(request: Request, exc: TaglineError) -> JSONResponse:
    if isinstance(exc, BackendUnavailableError):
        logger.warning("%s %s failed: backend unavailable", request.method, request.url.path)
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    return JSONResponse(
        status_code=exc.status_code, content={"detail": exc.detail}, headers=headers
    )


def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return 422 with the first validation problem as a single detail string."""
    errors = exc.errors()
    detail = "Request validation failed"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "invalid value")
        detail = f"{location}: {message}" if location else message
    return JSONResponse(status_code=422, content={"detail": detail})


def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    if settings is None:
        settings = get_settings()
    configure(settings)
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="Tagline Backend (FastAPI)", version="0.1.0")
    app.add_exception_handler(TaglineError, _tagline_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(photos_router, prefix=settings.api_prefix)
    return app
