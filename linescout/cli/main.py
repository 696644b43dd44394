"""LineScout CLI: operator commands for the API server and its database.

Usage:
    linescout serve                     Run the API with uvicorn
    linescout init-db                   Create tables
    linescout wallets reconcile [--fix] Compare balances to the ledger
    linescout settings show             Print business settings
    linescout handoffs transition 12 shipped --shipper DHL --tracking-number X
"""

import logging
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from linescout.config import load_config, set_config

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="linescout",
    help="LineScout sourcing backend: server and maintenance commands",
    no_args_is_help=True,
)
config_app = typer.Typer(help="Configuration management")
wallets_app = typer.Typer(help="Wallet ledger maintenance")
settings_app = typer.Typer(help="Business settings")
handoffs_app = typer.Typer(help="Sourcing handoff operations")

app.add_typer(config_app, name="config")
app.add_typer(wallets_app, name="wallets")
app.add_typer(settings_app, name="settings")
app.add_typer(handoffs_app, name="handoffs")

console = Console()

_config_path: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to linescout.yaml config file"
    ),
):
    """LineScout CLI."""
    global _config_path
    _config_path = config


def _mask(secret: str) -> str:
    if not secret:
        return "[dim]not set[/dim]"
    return "***" + secret[-4:] if len(secret) > 4 else "***"


@app.command()
def version():
    """Show LineScout version."""
    from importlib.metadata import version as pkg_version

    try:
        v = pkg_version("linescout")
    except Exception:
        v = "unknown"
    console.print(f"[bold]LineScout[/bold] v{v}")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Run the API server."""
    import uvicorn

    cfg = load_config(config_path=_config_path)
    set_config(cfg)
    uvicorn.run(
        "linescout.api.main:app",
        host=host or cfg.server.host,
        port=port or cfg.server.port,
        log_level=cfg.server.log_level,
        workers=1,
    )


@app.command("init-db")
def init_db_command():
    """Create all tables and harden ledger indexes."""
    from linescout.db.connection import init_db

    init_db()
    console.print("[green]Database initialised.[/green]")


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration (secrets masked)."""
    try:
        cfg = load_config(config_path=_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)

    console.print("[bold]Server:[/bold]")
    console.print(f"  host: {cfg.server.host}")
    console.print(f"  port: {cfg.server.port}")
    console.print(f"  allowed_origins: {', '.join(cfg.server.allowed_origins) or '-'}")

    console.print("\n[bold]Quick human:[/bold]")
    console.print(f"  message_limit: {cfg.quick_human.message_limit}")
    console.print(f"  window_minutes: {cfg.quick_human.window_minutes}")
    console.print(f"  cooldown_hours: {cfg.quick_human.cooldown_hours}")

    console.print("\n[bold]Payments:[/bold]")
    console.print(f"  paystack secret: {_mask(cfg.paystack.secret_key)}")
    console.print(f"  paypal client: {_mask(cfg.paypal.client_id)} ({cfg.paypal.environment})")

    console.print("\n[bold]Gateway:[/bold]")
    console.print(f"  base_url: {cfg.gateway.base_url or '[dim]not set[/dim]'}")


# --- Wallet commands ---


@wallets_app.command("reconcile")
def wallets_reconcile(
    fix: bool = typer.Option(False, "--fix", help="Reset drifted balances to the ledger sum"),
):
    """Compare every wallet balance to the sum of its transactions."""
    from linescout.db.connection import get_db_context
    from linescout.services.wallet_service import WalletService

    with get_db_context() as db:
        results = WalletService(db).reconcile_all(fix=fix)
        drifted = [r for r in results if not r.is_consistent]

        table = Table(title="Wallet drift", show_lines=True)
        table.add_column("Wallet", style="cyan", no_wrap=True)
        table.add_column("Balance", justify="right")
        table.add_column("Ledger", justify="right")
        table.add_column("Drift", justify="right", style="red")
        for r in drifted:
            table.add_row(
                str(r.wallet_id), str(r.balance_minor), str(r.ledger_minor), str(r.drift_minor)
            )

    if not drifted:
        console.print(f"[green]All {len(results)} wallets match their ledger.[/green]")
        return
    console.print(table)
    if fix:
        console.print(f"[yellow]Reset {len(drifted)} wallet balance(s).[/yellow]")
    else:
        from linescout.errors import LineScoutError, format_error

        for r in drifted:
            error = LineScoutError.from_code(
                "E-5003",
                wallet_id=r.wallet_id,
                balance=r.balance_minor,
                expected=r.ledger_minor,
            )
            console.print(format_error(error), markup=False)
        raise typer.Exit(1)


# --- Settings commands ---


@settings_app.command("show")
def settings_show():
    """Print the business settings row."""
    from linescout.db.connection import get_db_context
    from linescout.services.settings_service import SettingsService

    with get_db_context() as db:
        current = SettingsService(db).load()
    console.print(f"  agent_percent: {current.agent_percent}")
    console.print(f"  min_agent_payout_minor: {current.min_agent_payout_minor}")


@settings_app.command("set-agent-percent")
def settings_set_agent_percent(
    percent: float = typer.Argument(help="Commission percent, 0-100"),
):
    """Change the default agent commission percent."""
    from linescout.db.connection import get_db_context
    from linescout.errors import ValidationError
    from linescout.services.settings_service import SettingsService

    try:
        with get_db_context() as db:
            SettingsService(db).update({"agent_percent": percent})
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)
    console.print(f"[green]agent_percent set to {percent}.[/green]")


# --- Handoff commands ---


@handoffs_app.command("transition")
def handoffs_transition(
    handoff_id: int = typer.Argument(help="Handoff ID"),
    status: str = typer.Argument(help="Target status"),
    shipper: Optional[str] = typer.Option(None, "--shipper"),
    tracking_number: Optional[str] = typer.Option(None, "--tracking-number"),
    cancel_reason: Optional[str] = typer.Option(None, "--cancel-reason"),
):
    """Move a handoff to a new status, with the same rules as the API."""
    from linescout.db.connection import get_db_context
    from linescout.errors import DomainError
    from linescout.services.handoff_service import HandoffService

    try:
        with get_db_context() as db:
            plan = HandoffService(db).update_status(
                handoff_id,
                status,
                shipper=shipper,
                tracking_number=tracking_number,
                cancel_reason=cancel_reason,
            )
    except DomainError as e:
        console.print(f"[red]Error ({e.error_code}):[/red] {e.message}")
        raise typer.Exit(1)
    if plan.is_noop:
        console.print(f"Handoff {handoff_id} is already {plan.current.value}.")
    else:
        console.print(
            f"[green]Handoff {handoff_id}: "
            f"{plan.current.value} -> {plan.target.value}[/green]"
        )


if __name__ == "__main__":
    app()
