"""
Degraded-mode stand-ins for the registry and the scoped accessor.

When the database is unavailable at startup (and degraded start is
allowed) the service keeps answering: every read returns an empty result
and every write raises :class:`DegradedModeError` carrying the reason
the service is degraded. The stand-ins mirror the real surfaces so the
web layer never branches on the mode.
"""

from __future__ import annotations

from typing import Any
import logging

from orgbase.multitenancy.context import TenantContext
from orgbase.multitenancy.errors import DegradedModeError
from orgbase.multitenancy.registry import TenantPage
from orgbase.multitenancy.tenant import TenantPlan, TenantRecord

logger = logging.getLogger(__name__)


class DegradedTenantRegistry:
    """Registry that knows no tenants and refuses writes."""

    def __init__(self, cause: str):
        self.cause = cause

    def _refuse(self, operation: str) -> DegradedModeError:
        logger.warning(f"Refusing to {operation} in degraded mode: {self.cause}")
        return DegradedModeError(operation, self.cause)

    async def create(
        self,
        name: str,
        slug: str,
        domain: str | None = None,
        plan: TenantPlan | str = TenantPlan.BASIC,
    ) -> TenantRecord:
        raise self._refuse("create organization")

    async def get_by_id(self, tenant_id: str) -> TenantRecord | None:
        return None

    async def get_by_slug(self, slug: str) -> TenantRecord | None:
        return None

    async def get_by_domain(self, domain: str) -> TenantRecord | None:
        return None

    async def list(self, page: int = 1, page_size: int = 50) -> TenantPage:
        return TenantPage(items=[], total=0, page=page, page_size=page_size)

    async def update(self, tenant_id: str, **fields: Any) -> TenantRecord:
        raise self._refuse("update organization")

    async def delete(self, tenant_id: str) -> None:
        raise self._refuse("delete organization")

    async def ping(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"<DegradedTenantRegistry cause={self.cause!r}>"


class DegradedRepository:
    """Empty repository for one entity name."""

    def __init__(self, entity: str, cause: str):
        self.entity = entity
        self.cause = cause

    async def list(self, limit: int | None = None, offset: int = 0, **filters: Any) -> list[Any]:
        return []

    async def get(self, record_id: str) -> Any | None:
        return None

    async def first(self, **filters: Any) -> Any | None:
        return None

    async def count(self, **filters: Any) -> int:
        return 0

    async def create(self, **fields: Any) -> Any:
        raise DegradedModeError(f"create {self.entity}", self.cause)

    async def update(self, record_id: str, **fields: Any) -> Any:
        raise DegradedModeError(f"update {self.entity}", self.cause)

    async def delete(self, record_id: str) -> None:
        raise DegradedModeError(f"delete {self.entity}", self.cause)


class DegradedDataAccessor:
    """Accessor with the real accessor's surface and no data."""

    def __init__(self, context: TenantContext, cause: str):
        self.context = context
        self.cause = cause
        self.users = DegradedRepository("user", cause)
        self.projects = DegradedRepository("project", cause)
        self.categories = DegradedRepository("category", cause)
        self.products = DegradedRepository("product", cause)
        self.carts = DegradedRepository("cart", cause)
        self.orders = DegradedRepository("order", cause)

    async def execute_raw(self, statement: str, params: dict[str, Any] | None = None) -> Any:
        raise DegradedModeError("execute raw statement", self.cause)

    def transaction(self) -> Any:
        raise DegradedModeError("open transaction", self.cause)

    def __repr__(self) -> str:
        return f"<DegradedDataAccessor tenant={self.context.tenant_slug}>"
