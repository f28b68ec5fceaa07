"""FastAPI dependencies binding requests to tenants and their data."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextvars import Token

from fastapi import Depends, Request, Response

from orgbase.config import Settings
from orgbase.multitenancy.backend import DataBackend
from orgbase.multitenancy.context import TenantContext, reset_current_tenant, set_current_tenant
from orgbase.multitenancy.resolver import RequestDescriptor, TenantResolution, TenantResolver

logger = logging.getLogger(__name__)


def get_backend(request: Request) -> DataBackend:
    return request.app.state.backend


def get_resolver(request: Request) -> TenantResolver:
    return request.app.state.resolver


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def describe_request(request: Request) -> RequestDescriptor:
    """Framework-neutral view of the parts resolution looks at."""
    return RequestDescriptor(
        headers=request.headers,
        path_params=request.path_params,
        host=request.headers.get("host", ""),
    )


def _bind(request: Request, response: Response, resolution: TenantResolution) -> Token:
    for name, value in resolution.response_headers().items():
        response.headers[name] = value
    request.state.tenant = resolution.context
    return set_current_tenant(resolution.context)


async def get_tenant_context(
    request: Request,
    response: Response,
    resolver: TenantResolver = Depends(get_resolver),
) -> AsyncIterator[TenantContext]:
    """Resolve the request's tenant; a tenant is mandatory.

    Echoes ``x-tenant-id`` and ``x-tenant-slug`` on the response and binds
    the context variable for the rest of the request.
    """
    resolution = await resolver.resolve(describe_request(request), required=True)
    token = _bind(request, response, resolution)
    try:
        yield resolution.context
    finally:
        reset_current_tenant(token)


async def get_optional_tenant_context(
    request: Request,
    response: Response,
    resolver: TenantResolver = Depends(get_resolver),
) -> AsyncIterator[TenantContext | None]:
    """Like :func:`get_tenant_context`, but None when nothing identifies one."""
    resolution = await resolver.resolve(describe_request(request), required=False)
    if resolution is None:
        yield None
        return
    token = _bind(request, response, resolution)
    try:
        yield resolution.context
    finally:
        reset_current_tenant(token)


async def get_scoped_accessor(
    context: TenantContext = Depends(get_tenant_context),
    backend: DataBackend = Depends(get_backend),
):
    """Lease the tenant's handle for the duration of the request."""
    async with backend.accessor(context) as accessor:
        yield accessor
