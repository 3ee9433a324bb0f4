"""FastAPI application for the Prompt Library server."""

import logging
import secrets
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from .config import ServerSettings
from .db import open_database
from .errors import PromptLibError
from .routes import create_router

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add standard security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the connection pool lifecycle."""
    settings: ServerSettings = app.state.settings
    app.state.db = await open_database(settings.db_path, pool_size=settings.pool_size)
    logger.info(f"[SERVER] Ready on {settings.host}:{settings.port}")
    yield
    await app.state.db.close()
    logger.info("[SERVER] Database connections closed")


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _handle_app_error(request: Request, exc: PromptLibError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message}")
    return _error_response(exc.status_code, exc.message)


async def _handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Unknown paths and wrong methods, e.g. 404 "Not Found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Report the first problem in plain words, e.g. "content: must not be empty"
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request").removeprefix("Value error, ")
        if location:
            message = f"{location}: {message}"
    else:
        message = "Invalid request"
    return _error_response(400, message)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"[API] Unhandled error on {request.method} {request.url.path}")
    return _error_response(500, str(exc) or type(exc).__name__)


def create_app(settings: ServerSettings | None = None) -> FastAPI:
    """Create the FastAPI application."""
    if settings is None:
        settings = ServerSettings()

    app = FastAPI(
        title="Prompt Library",
        description="Capture and organize the prompts you use with AI tools",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    app.state.settings = settings
    if settings.secret_key:
        app.state.secret_key = settings.secret_key
    else:
        app.state.secret_key = secrets.token_urlsafe(32)
        logger.warning(
            "[SERVER] PROMPTLIB_SECRET_KEY is not set; sessions will not survive a restart"
        )

    app.add_middleware(SecurityHeadersMiddleware)

    app.add_exception_handler(PromptLibError, _handle_app_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(Exception, _handle_unexpected)

    app.include_router(create_router())

    return app
