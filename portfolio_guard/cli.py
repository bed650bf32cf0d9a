# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Command Line Interface

Usage:
    portfolio-guard serve                  # Start API server
    portfolio-guard reflinks create        # Create a reflink
    portfolio-guard blacklist reinstate    # Lift a ban
    portfolio-guard cleanup                # Run the maintenance sweep
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import TypeVar

import typer
from rich.console import Console
from rich.table import Table

from .access.models import CreateReflinkParams, RateLimitTier, UpdateReflinkParams
from .core.exceptions import GuardError
from .core.settings import get_settings
from .data.redis import build_store
from .services import Services, build_services

app = typer.Typer(
    name="portfolio-guard",
    help="Portfolio Guard - AI Access-Control & Context-Assembly Engine",
    no_args_is_help=True,
)
console = Console()

T = TypeVar("T")

CLI_ACTOR = "cli"


@asynccontextmanager
async def open_services() -> AsyncIterator[Services]:
    settings = get_settings()
    store = await build_store(settings)
    services = await build_services(settings, store)
    try:
        yield services
    finally:
        await services.close()


def run(job: Callable[[Services], Awaitable[T]]) -> T:
    """Run `job` against freshly wired services; known errors exit with code 1."""

    async def _run() -> T:
        async with open_services() as services:
            return await job(services)

    try:
        return asyncio.run(_run())
    except GuardError as e:
        console.print(f"[red]{e.message}[/]")
        raise typer.Exit(code=1) from e


def _fmt_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


# ============================================================
# SERVER COMMANDS
# ============================================================


@app.command()
def serve(
    host: str = typer.Option(None, help="Host to bind to (default from settings)"),
    port: int = typer.Option(None, help="Port to bind to (default from settings)"),
    reload: bool = typer.Option(False, help="Enable auto-reload (development)"),
):
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    host = host or settings.host
    port = port or settings.port

    console.print(f"[bold green]Starting Portfolio Guard on {host}:{port}[/]")

    uvicorn.run(
        "portfolio_guard.gateway.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def cleanup():
    """Trim old logs, deactivate expired reflinks, drop stale bans and contexts."""
    report = run(lambda services: services.run_cleanup())

    table = Table(title="Cleanup")
    table.add_column("Job", style="cyan")
    table.add_column("Removed", style="white", justify="right")
    table.add_row("Rate limit log records", str(report.expired_rate_limit_records))
    table.add_row("Expired reflinks deactivated", str(report.expired_reflinks))
    table.add_row("Old blacklist entries", str(report.old_blacklist_entries))
    table.add_row("Expired cached contexts", str(report.expired_contexts))
    console.print(table)

    for error in report.errors:
        console.print(f"[red]{error}[/]")
    if report.errors:
        raise typer.Exit(code=1)


# ============================================================
# REFLINK COMMANDS
# ============================================================

reflinks_app = typer.Typer(help="Reflink management commands")
app.add_typer(reflinks_app, name="reflinks")


@reflinks_app.command("create")
def reflinks_create(
    code: str = typer.Option(None, help="Code (generated when omitted)"),
    tier: RateLimitTier = typer.Option(RateLimitTier.STANDARD, help="Rate limit tier"),
    name: str = typer.Option(None, help="Display name"),
    recipient: str = typer.Option(None, help="Recipient name for personalisation"),
    daily_limit: int = typer.Option(None, help="Override the tier's daily limit"),
    token_limit: int = typer.Option(None, help="Total token budget"),
    spend_limit: float = typer.Option(None, help="Total spend budget in dollars"),
    prefix: str = typer.Option("ref", help="Prefix for generated codes"),
):
    """Create a new reflink."""

    async def _create(services: Services):
        params = CreateReflinkParams(
            code=code or await services.reflinks.generate_unique_code(prefix),
            tier=tier,
            name=name,
            recipient_name=recipient,
            daily_limit=daily_limit,
            token_limit=token_limit,
            spend_limit=Decimal(str(spend_limit)) if spend_limit is not None else None,
        )
        return await services.reflinks.create(params, created_by=CLI_ACTOR)

    reflink = run(_create)

    table = Table(title="Reflink Created")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    table.add_row("ID", reflink.id)
    table.add_row("Code", reflink.code)
    table.add_row("Tier", str(reflink.tier))
    table.add_row("Daily limit", str(reflink.daily_limit))
    table.add_row("Token limit", str(reflink.token_limit or "-"))
    table.add_row("Spend limit", str(reflink.spend_limit or "-"))
    console.print(table)


@reflinks_app.command("list")
def reflinks_list(
    all_: bool = typer.Option(False, "--all", help="Include inactive and expired reflinks"),
    limit: int = typer.Option(50, help="Maximum rows"),
):
    """List reflinks, newest first."""

    async def _list(services: Services):
        return await services.reflinks.list_reflinks(
            is_active=None if all_ else True, include_expired=all_, limit=limit
        )

    reflinks, total = run(_list)
    if not reflinks:
        console.print("[yellow]No reflinks found.[/]")
        console.print("Create one with: [bold]portfolio-guard reflinks create[/]")
        return

    table = Table(title=f"Reflinks ({len(reflinks)} of {total})")
    table.add_column("Code", style="cyan")
    table.add_column("Tier", style="green")
    table.add_column("Limit", justify="right")
    table.add_column("Tokens used", justify="right")
    table.add_column("Active")
    table.add_column("Expires", style="dim")
    table.add_column("ID", style="dim")
    for r in reflinks:
        table.add_row(
            r.code,
            str(r.tier),
            str(r.daily_limit),
            str(r.tokens_used),
            "yes" if r.is_active else "no",
            _fmt_time(r.expires_at),
            r.id,
        )
    console.print(table)


@reflinks_app.command("deactivate")
def reflinks_deactivate(code: str = typer.Argument(..., help="Reflink code")):
    """Deactivate a reflink by code."""

    async def _deactivate(services: Services):
        reflink = await services.reflinks.get_by_code(code)
        if reflink is None:
            return None
        return await services.reflinks.update(reflink.id, UpdateReflinkParams(is_active=False))

    reflink = run(_deactivate)
    if reflink is None:
        console.print(f"[red]Reflink '{code}' not found.[/]")
        raise typer.Exit(code=1)
    console.print(f"[green]Deactivated reflink {reflink.code}[/]")


# ============================================================
# BLACKLIST COMMANDS
# ============================================================

blacklist_app = typer.Typer(help="IP blacklist commands")
app.add_typer(blacklist_app, name="blacklist")


@blacklist_app.command("list")
def blacklist_list(
    include_reinstated: bool = typer.Option(False, help="Show reinstated entries too"),
):
    """List blacklist entries, most recent first."""
    entries, total = run(
        lambda services: services.blacklist.list_entries(include_reinstated=include_reinstated)
    )
    if not entries:
        console.print("[green]Blacklist is empty.[/]")
        return

    table = Table(title=f"Blacklist ({total})")
    table.add_column("IP", style="cyan")
    table.add_column("Status")
    table.add_column("Violations", justify="right")
    table.add_column("Reason", style="white")
    table.add_column("Blocked at", style="dim")
    for e in entries:
        table.add_row(
            e.ip_address, e.status, str(e.violation_count), e.reason, _fmt_time(e.blocked_at)
        )
    console.print(table)


@blacklist_app.command("reinstate")
def blacklist_reinstate(
    ip_address: str = typer.Argument(..., help="IP address to reinstate"),
    reason: str = typer.Option(None, help="Why the ban is lifted"),
):
    """Lift a ban; the violation history is kept."""
    entry = run(lambda services: services.blacklist.reinstate(ip_address, CLI_ACTOR, reason))
    console.print(
        f"[green]Reinstated {entry.ip_address}[/] ({entry.violation_count} violations on record)"
    )


# ============================================================
# CONTENT SOURCE COMMANDS
# ============================================================

sources_app = typer.Typer(help="Content source commands")
app.add_typer(sources_app, name="sources")


@sources_app.command("list")
def sources_list(probe: bool = typer.Option(False, help="Check availability of each source")):
    """List registered content sources, highest priority first."""
    sources = run(lambda services: services.registry.list_sources(probe=probe))
    if not sources:
        console.print("[yellow]No content sources registered.[/]")
        console.print("Set CONTEXT_PORTFOLIO_FILE or CONTEXT_PROJECTS_API_URL.")
        return

    table = Table(title=f"Content Sources ({len(sources)})")
    table.add_column("ID", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Priority", justify="right")
    table.add_column("Enabled")
    table.add_column("Available")
    for s in sources:
        available = "-" if s.available is None else ("yes" if s.available else "no")
        table.add_row(
            s.id,
            str(s.type),
            str(s.config.priority),
            "yes" if s.config.enabled else "no",
            available,
        )
    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
