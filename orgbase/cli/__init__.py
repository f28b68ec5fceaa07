"""
orgbase - Command Line Interface

Operator CLI for the tenant registry. Built with Typer for the command
surface and Rich for output.

Usage:
    $ orgbase --help
    $ orgbase db init
    $ orgbase tenants create "Acme Inc." acme --plan pro
    $ orgbase tenants list
    $ orgbase tenants show acme

Sub-command Groups:
    tenants - Register, inspect, update and delete tenants
    db      - Database connectivity and development schema setup

Every command talks to the database named by ``--database-url`` (or the
``DATABASE_URL`` environment variable).
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Coroutine, Optional

import typer

from orgbase import __version__
from orgbase.cli.output import (
    console,
    print_error,
    print_json,
    print_status,
    print_success,
    print_tenant,
    print_tenants,
    print_warning,
)
from orgbase.config import Settings
from orgbase.db import create_engine, init_models
from orgbase.multitenancy.backend import SqlBackend
from orgbase.multitenancy.context import TenantContext
from orgbase.multitenancy.errors import TenancyError, TenantNotFoundError
from orgbase.multitenancy.provisioning import collect_usage, register_and_bootstrap
from orgbase.multitenancy.tenant import TenantPlan, TenantStatus

logger = logging.getLogger(__name__)

# Create main application
app = typer.Typer(
    name="orgbase",
    help="orgbase - multi-tenant registry and connection cache",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

tenants_app = typer.Typer(
    name="tenants",
    help="Register, inspect, update and delete tenants",
    no_args_is_help=True,
)

db_app = typer.Typer(
    name="db",
    help="Database connectivity and development schema setup",
    no_args_is_help=True,
)

app.add_typer(tenants_app, name="tenants")
app.add_typer(db_app, name="db")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"orgbase version {__version__}")
        raise typer.Exit()


def verbose_callback(value: bool) -> None:
    """Set verbose mode."""
    if value:
        logging.basicConfig(level=logging.DEBUG)


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        callback=verbose_callback,
        help="Enable verbose output.",
    ),
    database_url: Optional[str] = typer.Option(
        None,
        "--database-url",
        "-d",
        help="Control-plane database URL.",
        envvar="DATABASE_URL",
    ),
) -> None:
    """
    orgbase - multi-tenant registry and connection cache

    Use --help on any subcommand for detailed information.
    """
    ctx.obj = _settings_for(database_url)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings_for(database_url: Optional[str]) -> Settings:
    if database_url:
        return Settings(DATABASE_URL=database_url)
    return Settings()


@asynccontextmanager
async def open_backend(app_settings: Settings) -> AsyncIterator[SqlBackend]:
    """A started SQL backend, shut down on exit."""
    backend = SqlBackend.from_settings(app_settings)
    try:
        await backend.startup()
        yield backend
    finally:
        await backend.shutdown()


def _run(coro: Coroutine[Any, Any, Any]) -> Any:
    try:
        return asyncio.run(coro)
    except TenancyError as e:
        logger.debug(f"Command failed: {e!r}")
        print_error(e.message, exit_code=1)


# ---------------------------------------------------------------------------
# tenants
# ---------------------------------------------------------------------------


@tenants_app.command("create")
def tenants_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Organization name."),
    slug: str = typer.Argument(..., help="Unique slug ([a-z0-9-])."),
    domain: Optional[str] = typer.Option(None, "--domain", help="Custom domain."),
    plan: TenantPlan = typer.Option(TenantPlan.BASIC, "--plan", "-p", help="Subscription plan."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
) -> None:
    """Register a new tenant."""

    async def _create():
        async with open_backend(ctx.obj) as backend:
            return await backend.registry.create(name, slug, domain=domain, plan=plan)

    tenant = _run(_create())
    if as_json:
        print_json(tenant.to_dict())
    else:
        print_success(f"Created tenant {tenant.slug}", details=f"id {tenant.id}")


@tenants_app.command("list")
def tenants_list(
    ctx: typer.Context,
    page: int = typer.Option(1, "--page", min=1),
    limit: int = typer.Option(50, "--limit", "-n", min=1),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
) -> None:
    """List tenants, newest first."""

    async def _list():
        async with open_backend(ctx.obj) as backend:
            return await backend.registry.list(page=page, page_size=limit)

    result = _run(_list())
    if as_json:
        print_json(result.to_dict())
    elif not result.items:
        print_warning("No tenants registered")
    else:
        print_tenants(result)


@tenants_app.command("show")
def tenants_show(
    ctx: typer.Context,
    slug: str = typer.Argument(..., help="Tenant slug."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
) -> None:
    """Show a tenant with its usage counts."""

    async def _show():
        async with open_backend(ctx.obj) as backend:
            tenant = await backend.registry.get_by_slug(slug)
            if tenant is None:
                raise TenantNotFoundError(f"Tenant with slug '{slug}' not found")
            context = TenantContext(tenant_id=tenant.id, tenant_slug=tenant.slug)
            async with backend.accessor(context) as data:
                return tenant, await collect_usage(data)

    tenant, stats = _run(_show())
    if as_json:
        print_json({"tenant": tenant.to_dict(), "stats": stats})
    else:
        print_tenant(tenant, stats)


@tenants_app.command("update")
def tenants_update(
    ctx: typer.Context,
    tenant_id: str = typer.Argument(..., help="Tenant id."),
    name: Optional[str] = typer.Option(None, "--name"),
    domain: Optional[str] = typer.Option(None, "--domain", help="New domain; '' clears it."),
    status: Optional[TenantStatus] = typer.Option(None, "--status"),
    plan: Optional[TenantPlan] = typer.Option(None, "--plan"),
) -> None:
    """Update a tenant's name, domain, status or plan."""
    fields = {
        key: value
        for key, value in {"name": name, "domain": domain, "status": status, "plan": plan}.items()
        if value is not None
    }
    if not fields:
        print_error("Nothing to update", hint="Pass --name, --domain, --status or --plan", exit_code=2)

    async def _update():
        async with open_backend(ctx.obj) as backend:
            return await backend.registry.update(tenant_id, **fields)

    tenant = _run(_update())
    print_success(f"Updated tenant {tenant.slug}", details=", ".join(sorted(fields)))


@tenants_app.command("delete")
def tenants_delete(
    ctx: typer.Context,
    tenant_id: str = typer.Argument(..., help="Tenant id."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete a tenant."""
    if not yes:
        typer.confirm(f"Delete tenant {tenant_id}?", abort=True)

    async def _delete():
        async with open_backend(ctx.obj) as backend:
            await backend.registry.delete(tenant_id)

    _run(_delete())
    print_success(f"Deleted tenant {tenant_id}")


@tenants_app.command("bootstrap")
def tenants_bootstrap(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Organization name."),
    slug: str = typer.Argument(..., help="Unique slug ([a-z0-9-])."),
    admin_email: str = typer.Option(..., "--admin-email", help="Admin user email."),
    admin_name: Optional[str] = typer.Option(None, "--admin-name"),
    domain: Optional[str] = typer.Option(None, "--domain"),
    plan: TenantPlan = typer.Option(TenantPlan.BASIC, "--plan", "-p"),
) -> None:
    """Register a tenant and seed its admin user and default categories."""

    async def _bootstrap():
        async with open_backend(ctx.obj) as backend:
            return await register_and_bootstrap(
                backend, name, slug, admin_email, admin_name, domain=domain, plan=plan
            )

    tenant, result = _run(_bootstrap())
    categories = ", ".join(result.categories_created) or "none"
    print_success(
        f"Bootstrapped tenant {tenant.slug}",
        details=f"admin user {result.admin_user_id}; categories: {categories}",
    )


# ---------------------------------------------------------------------------
# db
# ---------------------------------------------------------------------------


@db_app.command("check")
def db_check(ctx: typer.Context) -> None:
    """Probe the control-plane database."""
    app_settings: Settings = ctx.obj

    async def _check():
        async with open_backend(app_settings) as backend:
            return await backend.health()

    try:
        report = asyncio.run(_check())
    except TenancyError as e:
        print_status([("Database", False, e.message)])
        raise typer.Exit(1)
    print_status([("Database", report["database"] == "ok", report["database"])])


@db_app.command("init")
def db_init(ctx: typer.Context) -> None:
    """Create all tables. For development; not a migration runner."""
    app_settings: Settings = ctx.obj

    async def _init():
        engine = create_engine(app_settings.DATABASE_URL)
        try:
            await init_models(engine)
        finally:
            await engine.dispose()

    asyncio.run(_init())
    print_success("Tables created")


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to."),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to."),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload for development."),
) -> None:
    """
    Start the orgbase API server.

    The server reads its configuration from the environment; a
    ``--database-url`` given to the CLI is not forwarded.
    """
    import uvicorn

    console.print(f"Starting orgbase on [cyan]http://{host}:{port}[/cyan]")
    if reload:
        console.print("[yellow]Auto-reload enabled (development mode)[/yellow]")
    uvicorn.run("orgbase.main:app", host=host, port=port, reload=reload)
