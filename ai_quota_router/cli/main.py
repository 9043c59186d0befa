"""
CLI interface for AI Quota Router.

Provides command-line access to backend usage, selection and history.
"""

import logging
import sys
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from ai_quota_router.core.catalog import Backend
from ai_quota_router.core.router import QuotaRouter
from ai_quota_router.core.selection import NoBackendAvailable
from ai_quota_router.core.snapshot import Snapshot
from ai_quota_router.storage.models import Outcome
from ai_quota_router.storage.repository import LedgerError, UsageLedger, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def get_router(config: Optional[str] = None, db: Optional[str] = None) -> QuotaRouter:
    """Build a router from an optional config file and database override."""
    router = QuotaRouter.from_config(config) if config else QuotaRouter.default()
    if db:
        router = QuotaRouter(
            catalog=router.catalog,
            ledger=UsageLedger(db, timeout=router.ledger.timeout),
            policy=router.policy
        )
    return router


def _load_router(config: Optional[str], db: Optional[str]) -> QuotaRouter:
    try:
        return get_router(config, db)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


def _state(snapshot: Snapshot, cutoff: float) -> str:
    if snapshot.is_rate_limited:
        return "[red]rate limited[/]"
    if snapshot.is_error_saturated:
        return "[red]error saturated[/]"
    if snapshot.usage_percent >= cutoff:
        return "[yellow]near capacity[/]"
    if snapshot.is_minute_throttled:
        return "[yellow]minute limit[/]"
    return "[green]available[/]"


def _format_limit(limit: Optional[int]) -> str:
    return "unlimited" if limit is None else f"{limit:,}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show routing log messages")
):
    """AI Quota Router CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    if ctx.invoked_subcommand is None:
        console.print("AI Quota Router - Use --help to see available commands")


@app.command()
def init(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Router config file"),
    db: Optional[str] = typer.Option(None, "--db", help="Override database path")
):
    """Initialize the usage ledger database."""
    router = _load_router(config, db)
    try:
        initialize_schema(router.ledger.db_path)
        console.print(f"[green]✓[/] Usage ledger initialized at {router.ledger.db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Router config file"),
    db: Optional[str] = typer.Option(None, "--db", help="Override database path"),
    fast: bool = typer.Option(False, "--fast", help="Use the fast priority order")
):
    """Show today's usage for every backend."""
    router = _load_router(config, db)
    try:
        snapshots = router.get_usage_status(prefer_fast=fast)
    except LedgerError as e:
        console.print(f"[red]Error reading usage:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Backend Usage (today, UTC)")
    table.add_column("Rank", justify="right")
    table.add_column("Backend")
    table.add_column("Tokens", justify="right")
    table.add_column("Requests", justify="right")
    table.add_column("Usage", justify="right")
    table.add_column("429s", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("State")

    cutoff = router.policy.headroom_cutoff_percent
    for snapshot in snapshots:
        table.add_row(
            str(snapshot.priority_rank),
            snapshot.backend_id,
            f"{snapshot.tokens_used:,} / {_format_limit(snapshot.token_limit)}",
            f"{snapshot.requests_used:,} / {snapshot.request_limit:,}",
            f"{snapshot.usage_percent:.1f}%",
            str(snapshot.rate_limit_hits),
            str(snapshot.error_count),
            _state(snapshot, cutoff)
        )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def select(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Router config file"),
    db: Optional[str] = typer.Option(None, "--db", help="Override database path"),
    fast: bool = typer.Option(False, "--fast", help="Use the fast priority order")
):
    """Show which backend the next request would be routed to."""
    router = _load_router(config, db)
    try:
        result = router.select_backend(prefer_fast=fast)
    except NoBackendAvailable as e:
        console.print(f"[bold red]No backend available[/]\n{e}")
        sys.exit(EXIT_CODE_FAIL)
    except LedgerError as e:
        console.print(f"[red]Error reading usage:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    colour = "yellow" if result.degraded else "green"
    console.print(f"[bold {colour}]Selected:[/] {result.backend_id}")
    console.print(f"Usage: {result.usage_percent:.1f}%")
    console.print(f"Reasoning: {result.reasoning}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def capacity(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Router config file"),
    db: Optional[str] = typer.Option(None, "--db", help="Override database path")
):
    """Show fleet-wide capacity totals for today."""
    router = _load_router(config, db)
    try:
        totals = router.get_total_capacity()
    except LedgerError as e:
        console.print(f"[red]Error reading usage:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print("\n[bold]Fleet Capacity[/bold]")
    console.print("-" * 40)
    console.print(
        f"Tokens: {totals.tokens_used:,} / {totals.token_limit:,} "
        f"({totals.token_percent:.1f}%)"
    )
    console.print(
        f"Requests: {totals.requests_used:,} / {totals.request_limit:,} "
        f"({totals.request_percent:.1f}%)"
    )
    console.print(f"Backends: {totals.backend_count} ({totals.excluded_count} excluded)")
    if totals.unlimited_backends:
        names = ", ".join(b.value for b in totals.unlimited_backends)
        console.print(f"No daily token limit: {names}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Router config file"),
    db: Optional[str] = typer.Option(None, "--db", help="Override database path"),
    days: int = typer.Option(7, "--days", "-d", min=1, help="Number of days to show")
):
    """Show per-day usage for recent days."""
    router = _load_router(config, db)
    try:
        rows = router.history.get_recent_history(days=days)
    except LedgerError as e:
        console.print(f"[red]Error reading usage:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if not rows:
        console.print(f"[dim]No usage recorded in the last {days} days.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Usage History ({days} days)")
    table.add_column("Date")
    table.add_column("Backend")
    table.add_column("Tokens", justify="right")
    table.add_column("Requests", justify="right")
    table.add_column("429s", justify="right")
    table.add_column("Errors", justify="right")

    for day, records in rows.items():
        for record in records.values():
            table.add_row(
                day.isoformat(),
                record.backend.value,
                f"{record.tokens_used:,}",
                f"{record.request_count:,}",
                str(record.rate_limit_hits),
                str(record.error_count)
            )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def record(
    backend: str = typer.Argument(..., help="Backend model id"),
    tokens: int = typer.Option(..., "--tokens", "-t", min=0, help="Tokens consumed"),
    requests: int = typer.Option(1, "--requests", "-r", min=0, help="Requests to count"),
    outcome: str = typer.Option("success", "--outcome", "-o",
                                help="success, rate_limited or error"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Router config file"),
    db: Optional[str] = typer.Option(None, "--db", help="Override database path")
):
    """Record a completed call against a backend."""
    try:
        target = Backend.from_id(backend)
        result = Outcome(outcome.lower())
    except ValueError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    router = _load_router(config, db)
    try:
        updated = router.record_usage(target, tokens, request_delta=requests, outcome=result)
    except LedgerError as e:
        console.print(f"[red]Error recording usage:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(
        f"[green]✓[/] {target.value}: {updated.tokens_used:,} tokens, "
        f"{updated.request_count:,} requests today"
    )
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
