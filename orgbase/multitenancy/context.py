"""
Tenant context management for orgbase.

This module provides the per-request tenant context using Python's
contextvars. The web layer binds the resolved :class:`TenantContext` at
request entry and resets it when the request finishes, so code running
inside the request can reach it without explicit passing and it never
leaks into another request.

Example:
    from orgbase.multitenancy.context import (
        TenantContext, tenant_scope, get_current_tenant,
    )

    ctx = TenantContext(tenant_id="5f0c...", tenant_slug="acme")
    with tenant_scope(ctx):
        get_current_tenant()  # ctx
    get_current_tenant()      # None
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Iterator
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    """The tenant an in-flight request acts for.

    Attributes:
        tenant_id: Registry id of the tenant.
        tenant_slug: The tenant's slug.
    """

    tenant_id: str
    tenant_slug: str

    def to_dict(self) -> dict[str, str]:
        return {"tenant_id": self.tenant_id, "tenant_slug": self.tenant_slug}


_current_tenant: ContextVar[TenantContext | None] = ContextVar(
    "current_tenant", default=None
)


def get_current_tenant() -> TenantContext | None:
    """Get the tenant context bound to the current execution context.

    Returns:
        The current TenantContext, or None if not set.
    """
    return _current_tenant.get()


def set_current_tenant(context: TenantContext | None) -> Token[TenantContext | None]:
    """Bind ``context`` and return a token for :func:`reset_current_tenant`."""
    logger.debug(f"Setting current tenant to: {context}")
    return _current_tenant.set(context)


def reset_current_tenant(token: Token[TenantContext | None]) -> None:
    _current_tenant.reset(token)


def require_tenant() -> TenantContext:
    """Get current tenant or raise an error.

    Use this when a tenant context is required and its absence
    indicates a programming error.

    Raises:
        RuntimeError: If no tenant is set in context.
    """
    context = get_current_tenant()
    if context is None:
        raise RuntimeError(
            "No tenant set in context. Ensure tenant resolution runs "
            "before accessing tenant-scoped resources."
        )
    return context


@contextmanager
def tenant_scope(context: TenantContext) -> Iterator[TenantContext]:
    """Bind ``context`` for the duration of a ``with`` block.

    Restores the previous binding on exit, so scopes nest.
    """
    token = _current_tenant.set(context)
    try:
        yield context
    finally:
        _current_tenant.reset(token)

