"""orgbase FastAPI application."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orgbase import __version__
from orgbase.api.middleware import RequestLoggingMiddleware
from orgbase.api.routes import health, projects, tenants, users
from orgbase.config.settings import Settings, settings
from orgbase.multitenancy.backend import DataBackend, select_backend
from orgbase.multitenancy.errors import DegradedModeError, TenancyError
from orgbase.multitenancy.resolver import ResolverConfig, TenantResolver

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR = "An unexpected error occurred"


def resolver_config(app_settings: Settings) -> ResolverConfig:
    return ResolverConfig(
        header_name=app_settings.TENANT_HEADER,
        route_param=app_settings.TENANT_ROUTE_PARAM,
        subdomain_extraction=app_settings.SUBDOMAIN_EXTRACTION,
        domain_extraction=app_settings.DOMAIN_EXTRACTION,
        required=app_settings.TENANT_REQUIRED,
        reserved_subdomains=tuple(app_settings.RESERVED_SUBDOMAINS),
    )


def _install_backend(app: FastAPI, backend: DataBackend) -> None:
    app.state.backend = backend
    app.state.resolver = TenantResolver(backend.registry, resolver_config(app.state.settings))


def create_app(app_settings: Settings | None = None, backend: DataBackend | None = None) -> FastAPI:
    """Build the application.

    Args:
        app_settings: Configuration; defaults to the environment.
        backend: A ready backend. When omitted, the lifespan selects one
            from ``app_settings`` at startup and shuts it down on exit.
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logging.getLogger("orgbase").setLevel(app_settings.LOG_LEVEL.upper())
        if backend is None:
            _install_backend(app, await select_backend(app_settings))
        else:
            await app.state.backend.startup()
        logger.info(f"orgbase {__version__} started in {app.state.backend.mode.value} mode")
        try:
            yield
        finally:
            await app.state.backend.shutdown()

    app = FastAPI(title="orgbase", version=__version__, lifespan=lifespan)
    app.state.settings = app_settings
    if backend is not None:
        _install_backend(app, backend)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router)
    app.include_router(tenants.router)
    tenant_prefix = f"/api/t/{{{app_settings.TENANT_ROUTE_PARAM}}}"
    for router in (projects.router, users.router):
        app.include_router(router, prefix="/api")
        app.include_router(router, prefix=tenant_prefix)

    # --- Exception handlers ---

    @app.exception_handler(TenancyError)
    async def tenancy_error_handler(request: Request, exc: TenancyError) -> JSONResponse:
        body = exc.to_dict()
        if exc.is_server_error:
            logger.error(
                f"{type(exc).__name__} on {request.method} {request.url.path}: "
                f"{exc.message} {exc.details}"
            )
            if not isinstance(exc, DegradedModeError) and not app_settings.expose_internal_errors:
                body["message"] = GENERIC_SERVER_ERROR
        return JSONResponse(status_code=exc.status_code, content=body)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid')}" if location else "Invalid request"
        return JSONResponse(
            status_code=400,
            content={"error": "Validation failed", "message": message},
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        message = str(exc) if app_settings.expose_internal_errors else GENERIC_SERVER_ERROR
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": message},
        )

    return app


app = create_app()
