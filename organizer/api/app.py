"""
FastAPI application factory and server entrypoint.

Run with: python main.py --serve   (or: uvicorn organizer.api.app:create_app --factory)
"""
from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from organizer import __version__
from organizer.api.auth_routes import router as auth_router
from organizer.api.routes import router as api_router
from organizer.api.services import Services, build_services
from organizer.auth.middleware import RequestContextMiddleware
from organizer.auth.provider import IdentityProvider
from organizer.config import Settings, load_settings
from organizer.errors import OrganizerError, SessionError
from organizer.storage import Backends, open_backends

logger = logging.getLogger(__name__)


def _error_response(settings: Settings, status_code: int, message: str, exc: Exception, **extra: Any) -> JSONResponse:
    error: Dict[str, Any] = {}
    # Diagnostic detail only outside production; never stack traces or secrets.
    if not settings.production:
        error = {"type": type(exc).__name__, "detail": str(exc), **extra}
    return JSONResponse(status_code=status_code, content={"message": message, "error": error})


def _install_error_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(OrganizerError)
    async def _organizer_error(request: Request, exc: OrganizerError) -> JSONResponse:
        logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code)
        return _error_response(settings, exc.status_code, exc.message, exc, code=exc.code)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        resp = _error_response(settings, exc.status_code, str(exc.detail), exc)
        for k, v in (exc.headers or {}).items():
            resp.headers[k] = v
        return resp

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(settings, 422, "Invalid request", exc, errors=jsonable_encoder(exc.errors()))

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(settings, 500, "Internal Server Error", exc)


def create_app(
    settings: Optional[Settings] = None,
    *,
    backends: Optional[Backends] = None,
    provider: Optional[IdentityProvider] = None,
) -> FastAPI:
    """
    Build the application.

    Configuration is loaded (and validated) before anything else; a ConfigError propagates to the
    caller so the server never binds with a partial configuration.
    """
    settings = settings or load_settings()
    backends = backends or open_backends(settings)
    services: Services = build_services(settings, backends, provider)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting Organizer API (env=%s auth_mode=%s app_id=%s)",
            settings.app_env,
            settings.auth_mode,
            settings.app_id,
        )
        try:
            purged = services.sessions.purge_expired()
            if purged:
                logger.info("Purged %d expired session(s)", purged)
        except SessionError as e:
            logger.warning("Expired session purge failed: %s", e.message)
        yield
        logger.info("Shutting down Organizer API")
        backends.close()

    app = FastAPI(title="Organizer API", version=__version__, lifespan=lifespan)
    app.state.services = services
    _install_error_handlers(app, settings)

    # Order matters: last added is outermost.
    app.add_middleware(RequestContextMiddleware, settings=settings, sessions=services.sessions)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming HTTP requests."""
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
            raise
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    app.include_router(auth_router)
    app.include_router(api_router)

    if settings.static_dir and Path(settings.static_dir).is_dir():
        app.mount("/", StaticFiles(directory=settings.static_dir, html=True), name="static")

    return app


def configure_logging() -> str:
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return log_level


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    import uvicorn

    log_level = configure_logging()
    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    # Fails with ConfigError/StorageError before any listener is bound.
    app = create_app()
    logger.info("Starting server on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
