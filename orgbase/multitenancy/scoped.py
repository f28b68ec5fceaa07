"""
Tenant-scoped data access.

A :class:`ScopedDataAccessor` is handed to request code once the tenant
has been resolved and its handle fetched from the connection cache. Every
repository it exposes pins ``org_id`` to the resolved tenant:

    - reads add ``org_id == tenant_id`` to the caller's filters,
    - creates force ``org_id = tenant_id``, whatever the caller passed,
    - updates and deletes match on ``id`` AND ``org_id``, so an id that
      belongs to another tenant behaves exactly like a missing one.

Example:
    async with backend.accessor(context) as data:
        project = await data.projects.create(name="Launch", archetype="nonprofit")
        mine = await data.projects.list(status="planning")
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from functools import cached_property
from typing import Any, AsyncIterator, Generic, TypeVar
import logging

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orgbase.models import Cart, Category, Order, Product, Project, TenantScopedMixin, User
from orgbase.multitenancy.context import TenantContext
from orgbase.multitenancy.errors import ConflictError, NotFoundError, ValidationError
from orgbase.multitenancy.handles import TenantHandle

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=TenantScopedMixin)

_PROTECTED_FIELDS = frozenset({"id", "org_id"})


def row_to_dict(row: Any) -> dict[str, Any]:
    """Plain-dict view of an ORM row, one key per column."""
    return {column.key: getattr(row, column.key) for column in row.__table__.columns}


class ScopedRepository(Generic[M]):
    """CRUD over one tenant-scoped model, restricted to one tenant.

    Attributes:
        model: The mapped class, which must mix in ``TenantScopedMixin``.
        context: The tenant every query is pinned to.
    """

    def __init__(
        self,
        model: type[M],
        session_factory: async_sessionmaker[AsyncSession],
        context: TenantContext,
    ):
        if not (isinstance(model, type) and issubclass(model, TenantScopedMixin)):
            raise TypeError(f"{model!r} is not a tenant-scoped model")
        self.model = model
        self.context = context
        self._session_factory = session_factory
        self._columns = frozenset(model.__table__.columns.keys())

    @property
    def tenant_id(self) -> str:
        return self.context.tenant_id

    def _check_fields(self, fields: dict[str, Any]) -> None:
        unknown = set(fields) - self._columns
        if unknown:
            raise ValidationError(
                f"Unknown field(s) for {self.model.__name__}: {', '.join(sorted(unknown))}"
            )

    def _scoped(self, **filters: Any):
        self._check_fields(filters)
        clauses = [self.model.org_id == self.tenant_id]
        clauses.extend(getattr(self.model, key) == value for key, value in filters.items())
        return clauses

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list(self, limit: int | None = None, offset: int = 0, **filters: Any) -> list[M]:
        """Rows of this tenant matching ``filters``, in insertion order."""
        stmt = select(self.model).where(*self._scoped(**filters)).order_by(self.model.created_at)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars())

    async def get(self, record_id: str) -> M | None:
        return await self.first(id=record_id)

    async def first(self, **filters: Any) -> M | None:
        stmt = select(self.model).where(*self._scoped(**filters)).limit(1)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalars().first()

    async def count(self, **filters: Any) -> int:
        stmt = select(func.count()).select_from(self.model).where(*self._scoped(**filters))
        async with self._session_factory() as session:
            return (await session.scalar(stmt)) or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, **fields: Any) -> M:
        """Insert a row owned by the current tenant.

        Any ``org_id`` in ``fields`` is replaced by the tenant's id.

        Raises:
            ValidationError: On unknown fields.
            ConflictError: On a uniqueness violation within the tenant.
        """
        self._check_fields(fields)
        fields["org_id"] = self.tenant_id
        row = self.model(**fields)
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError(
                    f"{self.model.__name__} conflicts with an existing record",
                    cause=str(e.orig),
                ) from None
            await session.refresh(row)
        logger.debug(f"Created {self.model.__name__} {row.id} for tenant {self.context.tenant_slug}")
        return row

    async def update(self, record_id: str, **fields: Any) -> M:
        """Update one of the tenant's rows.

        Raises:
            ValidationError: On unknown fields, or an attempt to change
                ``id`` or ``org_id``.
            NotFoundError: If the tenant has no row with ``record_id``.
        """
        protected = _PROTECTED_FIELDS & set(fields)
        if protected:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(protected))}")
        self._check_fields(fields)

        async with self._session_factory() as session:
            result = await session.execute(
                select(self.model).where(*self._scoped(id=record_id))
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise NotFoundError(f"{self.model.__name__} '{record_id}' not found")
            for key, value in fields.items():
                setattr(row, key, value)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise ConflictError(
                    f"{self.model.__name__} conflicts with an existing record",
                    cause=str(e.orig),
                ) from None
            await session.refresh(row)
        return row

    async def delete(self, record_id: str) -> None:
        """Delete one of the tenant's rows.

        Raises:
            NotFoundError: If the tenant has no row with ``record_id``.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                sa_delete(self.model).where(*self._scoped(id=record_id))
            )
            await session.commit()
        if not result.rowcount:
            raise NotFoundError(f"{self.model.__name__} '{record_id}' not found")

    def __repr__(self) -> str:
        return f"<ScopedRepository {self.model.__name__} tenant={self.context.tenant_slug}>"


class ScopedDataAccessor:
    """Per-request entry point to a tenant's data.

    Attributes:
        handle: The cached handle the repositories run on.
        context: The resolved tenant.
    """

    def __init__(self, handle: TenantHandle, context: TenantContext):
        if handle.tenant_id != context.tenant_id:
            raise ValueError(
                f"Handle for tenant {handle.tenant_id} used with context {context.tenant_id}"
            )
        self.handle = handle
        self.context = context

    def repository(self, model: type[M]) -> ScopedRepository[M]:
        return ScopedRepository(model, self.handle.session_factory, self.context)

    @cached_property
    def users(self) -> ScopedRepository[User]:
        return self.repository(User)

    @cached_property
    def projects(self) -> ScopedRepository[Project]:
        return self.repository(Project)

    @cached_property
    def categories(self) -> ScopedRepository[Category]:
        return self.repository(Category)

    @cached_property
    def products(self) -> ScopedRepository[Product]:
        return self.repository(Product)

    @cached_property
    def carts(self) -> ScopedRepository[Cart]:
        return self.repository(Cart)

    @cached_property
    def orders(self) -> ScopedRepository[Order]:
        return self.repository(Order)

    async def execute_raw(
        self, statement: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]] | int:
        """Run raw SQL on the tenant's handle.

        Not scoped: the statement sees every tenant sharing the handle's
        database, so callers must filter on ``org_id`` themselves.

        Returns:
            Row dicts for statements that return rows, else the rowcount.
        """
        logger.debug(f"Raw statement for tenant {self.context.tenant_slug}: {statement}")
        async with self._transaction() as session:
            result = await session.execute(text(statement), params or {})
            if result.returns_rows:
                return [dict(row) for row in result.mappings()]
            return result.rowcount

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """A session in a transaction, committed on success.

        Not scoped: queries issued on the session are not filtered by
        tenant.
        """
        async with self._transaction() as session:
            yield session

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self.handle.session_factory() as session:
            async with session.begin():
                yield session

    def __repr__(self) -> str:
        return f"<ScopedDataAccessor tenant={self.context.tenant_slug}>"
