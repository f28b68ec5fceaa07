"""
Tenant value types and plan defaults for orgbase.

A tenant is one customer organization. The registry stores it as an ORM
row (:class:`orgbase.models.tenant.Tenant`); everything outside the
registry works with the immutable :class:`TenantRecord` defined here, so
no caller ever holds a live ORM object across sessions.

Plans:
    - BASIC: Small teams, projects only.
    - PRO: Adds ecommerce (products, categories, orders).
    - ENTERPRISE: Adds webhooks, no numeric limits.

Example:
    from orgbase.multitenancy.tenant import TenantPlan, default_settings

    settings = default_settings(TenantPlan.PRO)
    settings["limits"]["users"]  # 50
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
import copy
import re

from orgbase.multitenancy.errors import ValidationError

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")

# Marks a limit with no ceiling.
UNLIMITED = -1


class TenantStatus(str, Enum):
    """Lifecycle status of a tenant. Only ACTIVE tenants serve traffic."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


class TenantPlan(str, Enum):
    """Subscription plans.

    The plan only decides the default ``settings`` written when the tenant
    is created; nothing in the core enforces the limits at runtime.
    """

    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


PLAN_DEFAULTS: dict[TenantPlan, dict[str, Any]] = {
    TenantPlan.BASIC: {
        "features": {"projects": True, "ecommerce": False, "webhooks": False},
        "limits": {"users": 5, "projects": 3, "products": 100},
    },
    TenantPlan.PRO: {
        "features": {"projects": True, "ecommerce": True, "webhooks": False},
        "limits": {"users": 50, "projects": 25, "products": 1000},
    },
    TenantPlan.ENTERPRISE: {
        "features": {"projects": True, "ecommerce": True, "webhooks": True},
        "limits": {"users": UNLIMITED, "projects": UNLIMITED, "products": UNLIMITED},
    },
}


def default_settings(plan: TenantPlan | str) -> dict[str, Any]:
    """Return a fresh copy of the default settings for ``plan``.

    Raises:
        ValidationError: If the plan is unknown.
    """
    return copy.deepcopy(PLAN_DEFAULTS[parse_plan(plan)])


def parse_plan(plan: TenantPlan | str) -> TenantPlan:
    try:
        return TenantPlan(plan)
    except ValueError:
        allowed = ", ".join(p.value for p in TenantPlan)
        raise ValidationError(f"Plan must be one of: {allowed}") from None


def parse_status(status: TenantStatus | str) -> TenantStatus:
    try:
        return TenantStatus(status)
    except ValueError:
        allowed = ", ".join(s.value for s in TenantStatus)
        raise ValidationError(f"Status must be one of: {allowed}") from None


def validate_slug(slug: str | None) -> str:
    """Validate a tenant slug and return it stripped.

    Raises:
        ValidationError: If the slug is empty or has characters outside
            ``[a-z0-9-]``.
    """
    if slug is None or not slug.strip():
        raise ValidationError("Slug is required")
    slug = slug.strip()
    if not SLUG_PATTERN.match(slug):
        raise ValidationError(
            "Slug must contain only lowercase letters, numbers, and hyphens"
        )
    return slug


def normalize_domain(domain: str | None) -> str | None:
    """Lowercase and strip a custom domain; blank becomes None."""
    if domain is None:
        return None
    domain = domain.strip().lower().rstrip(".")
    return domain or None


@dataclass(frozen=True)
class TenantRecord:
    """Read-only snapshot of one registered tenant.

    Attributes:
        id: Opaque unique identifier assigned at creation.
        name: Human-readable organization name.
        slug: Unique URL-safe identifier.
        domain: Optional unique custom domain.
        status: Lifecycle status.
        plan: Subscription plan.
        settings: Feature flags and limits.
        created_at: Creation timestamp.
        updated_at: Timestamp of the last mutation.
    """

    id: str
    name: str
    slug: str
    status: TenantStatus
    plan: TenantPlan
    domain: str | None = None
    settings: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, row: Any) -> "TenantRecord":
        """Build a record from an ORM ``Tenant`` row."""
        return cls(
            id=row.id,
            name=row.name,
            slug=row.slug,
            domain=row.domain,
            status=TenantStatus(row.status),
            plan=TenantPlan(row.plan),
            settings=copy.deepcopy(row.settings or {}),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @property
    def is_active(self) -> bool:
        return self.status == TenantStatus.ACTIVE

    def has_feature(self, feature_name: str) -> bool:
        """Check if a feature flag is enabled.

        Args:
            feature_name: The name of the feature to check.

        Returns:
            True if the feature is enabled, False otherwise.
        """
        return bool(self.settings.get("features", {}).get(feature_name, False))

    def limit(self, name: str) -> int | None:
        """Return a numeric limit, ``UNLIMITED`` (-1), or None if unset."""
        return self.settings.get("limits", {}).get(name)

    def to_dict(self) -> dict[str, Any]:
        """Convert tenant to a dictionary.

        Returns:
            Dictionary representation of the tenant.
        """
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "domain": self.domain,
            "status": self.status.value,
            "plan": self.plan.value,
            "settings": self.settings,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<TenantRecord {self.id} slug={self.slug!r} plan={self.plan.value} {self.status.value}>"
