"""
Tenant provisioning: seeding a new tenant and reporting its usage.

Bootstrapping gives a freshly registered tenant an admin user and, when
its plan enables ecommerce, a starter set of product categories.
"""

from dataclasses import dataclass, field
from typing import Any
import logging

from orgbase.multitenancy.backend import DataBackend
from orgbase.multitenancy.context import TenantContext, require_tenant, tenant_scope
from orgbase.multitenancy.errors import ConflictError, ValidationError
from orgbase.multitenancy.tenant import TenantPlan, TenantRecord

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: tuple[tuple[str, str], ...] = (
    ("Electronics", "electronics"),
    ("Clothing", "clothing"),
    ("Books", "books"),
    ("Home & Garden", "home-garden"),
)


@dataclass
class BootstrapResult:
    """What :func:`bootstrap_tenant` created."""

    tenant_id: str
    admin_user_id: str
    categories_created: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "admin_user_id": self.admin_user_id,
            "categories_created": self.categories_created,
        }


async def bootstrap_tenant(
    backend: DataBackend,
    tenant: TenantRecord,
    admin_email: str,
    admin_name: str | None = None,
) -> BootstrapResult:
    """Seed a tenant with an admin user and default categories.

    Args:
        backend: Backend whose accessor writes the seed data.
        tenant: The tenant to seed.
        admin_email: Email of the admin user.
        admin_name: Display name; defaults to ``"Admin"``.

    Returns:
        The ids and slugs that were created.

    Raises:
        ValidationError: If ``admin_email`` is empty.
        ConflictError: If the admin email is already taken in the tenant.
    """
    if not admin_email or not admin_email.strip():
        raise ValidationError("Admin user email is required")

    context = TenantContext(tenant_id=tenant.id, tenant_slug=tenant.slug)
    with tenant_scope(context):
        result = await _seed(backend, tenant, admin_email.strip(), admin_name)

    logger.info(
        f"Bootstrapped tenant {tenant.slug}: admin {result.admin_user_id}, "
        f"{len(result.categories_created)} categories"
    )
    return result


async def _seed(
    backend: DataBackend,
    tenant: TenantRecord,
    admin_email: str,
    admin_name: str | None,
) -> BootstrapResult:
    async with backend.accessor(require_tenant()) as data:
        admin = await data.users.create(
            email=admin_email,
            name=admin_name or "Admin",
            role="admin",
            status="active",
        )
        result = BootstrapResult(tenant_id=tenant.id, admin_user_id=admin.id)

        if tenant.has_feature("ecommerce"):
            for name, slug in DEFAULT_CATEGORIES:
                if await data.categories.first(slug=slug) is not None:
                    logger.warning(f"Category {slug} already exists for tenant {tenant.id}")
                    continue
                try:
                    await data.categories.create(name=name, slug=slug, status="active")
                except ConflictError:
                    logger.warning(f"Category {slug} already exists for tenant {tenant.id}")
                    continue
                result.categories_created.append(slug)
    return result


async def register_and_bootstrap(
    backend: DataBackend,
    name: str,
    slug: str,
    admin_email: str,
    admin_name: str | None = None,
    domain: str | None = None,
    plan: TenantPlan | str = TenantPlan.BASIC,
) -> tuple[TenantRecord, BootstrapResult]:
    """Register a tenant and seed it in one step."""
    tenant = await backend.registry.create(name, slug, domain=domain, plan=plan)
    result = await bootstrap_tenant(backend, tenant, admin_email, admin_name)
    return tenant, result


async def collect_usage(accessor: Any) -> dict[str, int]:
    """Count the tenant's users, projects, categories, products and orders."""
    return {
        "users": await accessor.users.count(),
        "projects": await accessor.projects.count(),
        "categories": await accessor.categories.count(),
        "products": await accessor.products.count(),
        "orders": await accessor.orders.count(),
    }
