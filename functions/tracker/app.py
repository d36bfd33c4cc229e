"""
FastAPI application entry point for the long-running service.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from tracker.config import Settings, get_settings
from tracker.cors import cors_headers
from tracker.errors import TrackerError, ValidationError
from tracker.routes import health, router

logger = logging.getLogger(__name__)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(TrackerError)
    async def tracker_error_handler(request: Request, exc: TrackerError):
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s", request.method, request.url.path, exc, exc_info=exc
            )
        return _error_response(exc.status_code, exc.public_message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error_response(400, ValidationError.public_message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = "Not found" if exc.status_code == 404 else str(exc.detail)
        return _error_response(exc.status_code, message)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Net Worth Tracker API", version="0.1.0")
    allowed_origins = settings.allowed_origin_list

    @app.middleware("http")
    async def apply_cors(request: Request, call_next):
        headers = cors_headers(request.headers.get("origin"), allowed_origins)
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=headers)
        try:
            response = await call_next(request)
        except Exception:
            # Last resort; the 500 still needs the CORS headers.
            logger.exception(
                "Unhandled error on %s %s", request.method, request.url.path
            )
            response = _error_response(500, "Server error")
        response.headers.update(headers)
        return response

    _register_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    if settings.api_prefix:
        app.add_api_route("/health", health, methods=["GET"])
    return app


app = create_app()
