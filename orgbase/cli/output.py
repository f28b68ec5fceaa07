"""
orgbase CLI - Rich Output Helpers

Consistent command-line output for the operator CLI using Rich.

Functions:
    print_table      - Print a formatted table
    print_tenants    - Print a page of tenants as a table
    print_tenant     - Print one tenant as a bordered panel
    print_status     - Print checks with pass/fail indicators
    print_json       - Print formatted JSON
    print_error      - Print error message (to stderr)
    print_success    - Print success message
    print_warning    - Print warning message
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from rich.console import Console
from rich.json import JSON
from rich.panel import Panel
from rich.table import Table

from orgbase.multitenancy.registry import TenantPage
from orgbase.multitenancy.tenant import TenantRecord, TenantStatus

console = Console()
err_console = Console(stderr=True)

STATUS_PASS = "[green]OK[/green]"
STATUS_FAIL = "[red]FAIL[/red]"

_STATUS_STYLES = {
    TenantStatus.ACTIVE: "green",
    TenantStatus.INACTIVE: "red",
    TenantStatus.PENDING: "yellow",
}


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[str]],
    styles: Optional[list[str]] = None,
    caption: Optional[str] = None,
) -> None:
    """
    Print a rich table.

    Args:
        title: Table title
        columns: Column headers
        rows: Table rows (list of lists); short rows are padded
        styles: Optional column styles
        caption: Optional caption under the table
    """
    table = Table(title=title, caption=caption)

    for i, col in enumerate(columns):
        style = styles[i] if styles and i < len(styles) else None
        table.add_column(col, style=style)

    for row in rows:
        padded_row = list(row) + [""] * (len(columns) - len(row))
        table.add_row(*padded_row[:len(columns)])

    console.print(table)


def format_timestamp(dt: Optional[datetime]) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S") if dt else "-"


def _status_markup(status: TenantStatus) -> str:
    style = _STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def print_tenants(page: TenantPage) -> None:
    """Print one page of tenants, newest first."""
    rows = [
        [
            tenant.slug,
            tenant.name,
            tenant.domain or "-",
            tenant.plan.value,
            _status_markup(tenant.status),
            tenant.id,
            format_timestamp(tenant.created_at),
        ]
        for tenant in page.items
    ]
    print_table(
        "Tenants",
        ["Slug", "Name", "Domain", "Plan", "Status", "ID", "Created"],
        rows,
        styles=["cyan", None, None, "magenta", None, "dim", "dim"],
        caption=f"page {page.page} of {max(page.page_count, 1)} - {page.total} total",
    )


def print_tenant(tenant: TenantRecord, stats: Optional[dict[str, int]] = None) -> None:
    """Print a tenant's details, its plan limits and optional usage counts."""
    lines = [
        f"[cyan]ID[/cyan]:      {tenant.id}",
        f"[cyan]Slug[/cyan]:    {tenant.slug}",
        f"[cyan]Domain[/cyan]:  {tenant.domain or '-'}",
        f"[cyan]Plan[/cyan]:    {tenant.plan.value}",
        f"[cyan]Status[/cyan]:  {_status_markup(tenant.status)}",
        f"[cyan]Created[/cyan]: {format_timestamp(tenant.created_at)}",
    ]
    features = tenant.settings.get("features", {})
    enabled = [name for name, on in features.items() if on]
    lines.append(f"[cyan]Features[/cyan]: {', '.join(enabled) or '-'}")
    if stats is not None:
        lines.append("")
        for name, count in stats.items():
            limit = tenant.limit(name)
            ceiling = "unlimited" if limit is None or limit < 0 else str(limit)
            lines.append(f"  {name}: {count} / {ceiling}")

    border_style = "green" if tenant.is_active else "yellow"
    console.print(Panel("\n".join(lines), title=tenant.name, border_style=border_style))


def print_status(checks: list[tuple[str, bool, str]], title: Optional[str] = None) -> None:
    """
    Print checks with pass/fail indicators.

    Args:
        checks: List of (name, passed, message) tuples
        title: Optional title for the status list
    """
    if title:
        console.print(f"[bold]{title}[/bold]")

    for name, passed, message in checks:
        icon = STATUS_PASS if passed else STATUS_FAIL
        color = "green" if passed else "red"
        console.print(f"  {icon} [cyan]{name}[/cyan]: [{color}]{message}[/{color}]")


def print_json(data: Any, indent: int = 2) -> None:
    console.print(JSON(json.dumps(data, indent=indent, default=str)))


def print_error(
    message: str,
    hint: Optional[str] = None,
    exit_code: Optional[int] = None,
) -> None:
    """
    Print error message.

    Args:
        message: Error message
        hint: Optional hint for resolving the error
        exit_code: Optional exit code (if provided, will exit)
    """
    err_console.print(f"[bold red]Error:[/bold red] {message}")

    if hint:
        err_console.print(f"[yellow]Hint:[/yellow] {hint}")

    if exit_code is not None:
        import sys
        sys.exit(exit_code)


def print_success(message: str, details: Optional[str] = None) -> None:
    console.print(f"[bold green]Success:[/bold green] {message}")

    if details:
        console.print(f"[dim]{details}[/dim]")


def print_warning(message: str) -> None:
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")
