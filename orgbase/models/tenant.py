"""Tenant (organization) SQLAlchemy model.

Provides the database-backed tenant registry table and the column mixin
that scopes every other entity to one tenant:

- **Tenant**: one row per customer organization, with slug/domain
  uniqueness enforced by the database as well as by the registry.
- **TenantScopedMixin**: Column mixin that adds the ``org_id`` foreign key
  used by :mod:`orgbase.multitenancy.scoped` to filter and tag records.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from orgbase.db import Base, JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Mixin
# ---------------------------------------------------------------------------


class TenantScopedMixin:
    """Column mixin that adds an indexed ``org_id`` foreign key.

    Apply to any model that should be scoped to an organisation::

        class MyModel(Base, TenantScopedMixin):
            __tablename__ = "my_models"
            ...
    """

    org_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )


# ---------------------------------------------------------------------------
# Tenant
# ---------------------------------------------------------------------------


class Tenant(Base):
    """Top-level tenant record.

    Attributes
    ----------
    id:          Primary key (uuid4 text).
    name:        Human-readable name.
    slug:        URL-safe short identifier (unique).
    domain:      Optional custom domain (unique when set).
    status:      One of ``active``, ``inactive``, ``pending``.
    plan:        One of ``basic``, ``pro``, ``enterprise``.
    settings:    Feature flags and limits derived from the plan.
    created_at:  UTC creation timestamp.
    updated_at:  UTC timestamp of the last mutation.
    """

    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    slug: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    domain: Mapped[str | None] = mapped_column(String(253), nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    plan: Mapped[str] = mapped_column(String(16), nullable=False, default="basic")
    settings: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
