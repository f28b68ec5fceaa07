"""ORM models: the tenant registry table and tenant-scoped entities."""

from orgbase.models.tenant import Tenant, TenantScopedMixin
from orgbase.models.base import Cart, Category, Order, Product, Project, User

__all__ = [
    "Cart",
    "Category",
    "Order",
    "Product",
    "Project",
    "Tenant",
    "TenantScopedMixin",
    "User",
]
