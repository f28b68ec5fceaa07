"""Tenant-scoped user listing.

Mounted alongside the project routes, under ``/api`` and
``/api/t/{tenant_slug}``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from orgbase.api.dependencies import get_scoped_accessor
from orgbase.models import User
from orgbase.multitenancy.scoped import ScopedDataAccessor

router = APIRouter(prefix="/users", tags=["users"])

_PUBLIC_FIELDS = ("id", "email", "name", "role", "status", "created_at")


def _public(user: User) -> dict[str, Any]:
    return {name: getattr(user, name) for name in _PUBLIC_FIELDS}


@router.get("")
async def list_users(
    role: str | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    data: ScopedDataAccessor = Depends(get_scoped_accessor),
) -> dict:
    """The current tenant's users, without internal columns."""
    filters = {key: value for key, value in (("role", role), ("status", status)) if value}
    users = await data.users.list(limit=limit, offset=offset, **filters)
    return {
        "tenant": data.context.tenant_slug,
        "items": [_public(u) for u in users],
        "total": await data.users.count(**filters),
    }
