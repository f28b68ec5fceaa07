"""
Tenant registry: the authoritative store of tenant records.

Every other component asks the registry who a tenant is. It enforces the
two uniqueness invariants (one tenant per slug, one tenant per domain)
both with explicit lookups before writing and with the unique
constraints on the ``organizations`` table, so concurrent registrations
racing past the lookup still end in a :class:`ConflictError`.

Example:
    from orgbase.db import create_engine, make_session_factory
    from orgbase.multitenancy.registry import SqlTenantRegistry

    registry = SqlTenantRegistry(make_session_factory(create_engine(url)))
    tenant = await registry.create("Acme Inc.", "acme", plan="pro")
    same = await registry.get_by_slug("acme")
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable
import logging
import math

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orgbase.models.tenant import Tenant
from orgbase.multitenancy.errors import ConflictError, NotFoundError, ValidationError
from orgbase.multitenancy.tenant import (
    TenantPlan,
    TenantRecord,
    TenantStatus,
    default_settings,
    normalize_domain,
    parse_plan,
    parse_status,
    validate_slug,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"name", "domain", "status", "plan", "settings"})


@dataclass
class TenantPage:
    """One page of tenants.

    Attributes:
        items: Tenants on this page, newest first.
        total: Total number of tenants.
        page: 1-indexed page number.
        page_size: Maximum items per page.
    """

    items: list[TenantRecord]
    total: int
    page: int
    page_size: int

    @property
    def page_count(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.page_count

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [t.to_dict() for t in self.items],
            "total": self.total,
            "page_count": self.page_count,
            "pagination": {
                "current_page": self.page,
                "page_size": self.page_size,
                "total_pages": self.page_count,
                "total_items": self.total,
                "has_next": self.has_next,
                "has_prev": self.has_prev,
            },
        }


@runtime_checkable
class TenantRegistry(Protocol):
    """Operations every registry implementation provides."""

    async def create(
        self,
        name: str,
        slug: str,
        domain: str | None = None,
        plan: TenantPlan | str = TenantPlan.BASIC,
    ) -> TenantRecord: ...

    async def get_by_id(self, tenant_id: str) -> TenantRecord | None: ...

    async def get_by_slug(self, slug: str) -> TenantRecord | None: ...

    async def get_by_domain(self, domain: str) -> TenantRecord | None: ...

    async def list(self, page: int = 1, page_size: int = 50) -> TenantPage: ...

    async def update(self, tenant_id: str, **fields: Any) -> TenantRecord: ...

    async def delete(self, tenant_id: str) -> None: ...


def _check_page(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if page_size < 1:
        raise ValidationError("page_size must be >= 1")


class SqlTenantRegistry:
    """Registry backed by the ``organizations`` table.

    Attributes:
        _session_factory: Session factory bound to the control-plane
            database (``Settings.DATABASE_URL``).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        name: str,
        slug: str,
        domain: str | None = None,
        plan: TenantPlan | str = TenantPlan.BASIC,
    ) -> TenantRecord:
        """Register a new active tenant.

        Args:
            name: Organization name (required).
            slug: Unique slug matching ``[a-z0-9-]+``.
            domain: Optional unique custom domain.
            plan: Subscription plan deciding the default settings.

        Returns:
            The created tenant.

        Raises:
            ValidationError: If name or slug is empty, the slug is
                malformed, or the plan is unknown.
            ConflictError: If the slug or domain is already registered.
        """
        if name is None or not name.strip():
            raise ValidationError("Organization name is required")
        slug = validate_slug(slug)
        domain = normalize_domain(domain)
        plan = parse_plan(plan)

        async with self._session_factory() as session:
            if await self._find(session, Tenant.slug, slug) is not None:
                raise ConflictError(f"Organization with slug '{slug}' already exists")
            if domain and await self._find(session, Tenant.domain, domain) is not None:
                raise ConflictError(f"Organization with domain '{domain}' already exists")

            row = Tenant(
                name=name.strip(),
                slug=slug,
                domain=domain,
                plan=plan.value,
                status=TenantStatus.ACTIVE.value,
                settings=default_settings(plan),
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ConflictError(
                    f"Organization with slug '{slug}' or domain '{domain}' already exists"
                ) from None
            await session.refresh(row)
            record = TenantRecord.from_model(row)

        logger.info(f"Registered tenant {record.id} (slug={slug}, plan={plan.value})")
        return record

    async def get_by_id(self, tenant_id: str) -> TenantRecord | None:
        return await self._get(Tenant.id, tenant_id)

    async def get_by_slug(self, slug: str) -> TenantRecord | None:
        return await self._get(Tenant.slug, slug)

    async def get_by_domain(self, domain: str) -> TenantRecord | None:
        domain = normalize_domain(domain)
        if domain is None:
            return None
        return await self._get(Tenant.domain, domain)

    async def list(self, page: int = 1, page_size: int = 50) -> TenantPage:
        """List tenants newest first.

        Args:
            page: 1-indexed page number.
            page_size: Maximum tenants per page.

        Returns:
            A :class:`TenantPage`; ``page_count = ceil(total / page_size)``.
        """
        _check_page(page, page_size)
        async with self._session_factory() as session:
            total = await session.scalar(select(func.count()).select_from(Tenant))
            result = await session.execute(
                select(Tenant)
                .order_by(Tenant.created_at.desc(), Tenant.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            items = [TenantRecord.from_model(row) for row in result.scalars()]
        return TenantPage(items=items, total=total or 0, page=page, page_size=page_size)

    async def update(self, tenant_id: str, **fields: Any) -> TenantRecord:
        """Merge ``fields`` into a tenant.

        Only ``name``, ``domain``, ``status``, ``plan`` and ``settings``
        may change. Changing the plan does not rewrite settings.

        Raises:
            NotFoundError: If the tenant id is unknown.
            ValidationError: On unknown fields or invalid values.
            ConflictError: If the new domain belongs to another tenant.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        values = self._clean_updates(fields)

        async with self._session_factory() as session:
            row = await session.get(Tenant, tenant_id)
            if row is None:
                raise NotFoundError(f"Tenant '{tenant_id}' not found")

            domain = values.get("domain")
            if domain and domain != row.domain:
                other = await self._find(session, Tenant.domain, domain)
                if other is not None and other.id != tenant_id:
                    raise ConflictError(f"Organization with domain '{domain}' already exists")

            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = datetime.now(timezone.utc)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ConflictError(f"Organization with domain '{domain}' already exists") from None
            await session.refresh(row)
            record = TenantRecord.from_model(row)

        logger.info(f"Updated tenant {tenant_id}: {sorted(values)}")
        return record

    async def delete(self, tenant_id: str) -> None:
        """Delete a tenant.

        Cached handles for the tenant are left to the connection cache.

        Raises:
            NotFoundError: If the tenant id is unknown.
        """
        async with self._session_factory() as session:
            row = await session.get(Tenant, tenant_id)
            if row is None:
                raise NotFoundError(f"Tenant '{tenant_id}' not found")
            await session.delete(row)
            await session.commit()
        logger.info(f"Deleted tenant {tenant_id}")

    async def ping(self) -> None:
        """Run a trivial query; raises if the control-plane store is down."""
        async with self._session_factory() as session:
            await session.execute(select(1))

    @staticmethod
    def _clean_updates(fields: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        if "name" in fields:
            name = fields["name"]
            if name is None or not str(name).strip():
                raise ValidationError("Organization name is required")
            values["name"] = str(name).strip()
        if "domain" in fields:
            values["domain"] = normalize_domain(fields["domain"])
        if "status" in fields:
            values["status"] = parse_status(fields["status"]).value
        if "plan" in fields:
            values["plan"] = parse_plan(fields["plan"]).value
        if "settings" in fields:
            if not isinstance(fields["settings"], dict):
                raise ValidationError("settings must be an object")
            values["settings"] = fields["settings"]
        return values

    @staticmethod
    async def _find(session: AsyncSession, column: Any, value: str) -> Tenant | None:
        result = await session.execute(select(Tenant).where(column == value))
        return result.scalar_one_or_none()

    async def _get(self, column: Any, value: str) -> TenantRecord | None:
        if not value:
            return None
        async with self._session_factory() as session:
            row = await self._find(session, column, value)
            return TenantRecord.from_model(row) if row is not None else None

    def __repr__(self) -> str:
        return "<SqlTenantRegistry>"
