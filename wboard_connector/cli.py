"""wboard-connector CLI - operator access to the shared secret and connection state."""

import logging

import typer
from rich.console import Console
from rich.table import Table

from wboard_connector.audit import prune_audit_logs, query_audit_logs
from wboard_connector.config import AUDIT_RETENTION_DAYS, PLUGIN_VERSION
from wboard_connector.database import SessionLocal, init_db
from wboard_connector.secret_store import get_secret_store
from wboard_connector.seed import bootstrap
from wboard_connector.transients import get_transient_store

app = typer.Typer(name="wboard-connector", help="Operator commands for the WBoard connector")
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    init_db()


@app.command("show-secret")
def show_secret():
    """Print the secret key to paste into the board."""
    secret = get_secret_store().get()
    if not secret:
        console.print("[red]No secret key configured.[/red] Run [bold]init[/bold] first.")
        raise typer.Exit(code=1)
    typer.echo(secret)


@app.command("rotate-secret")
def rotate_secret(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Generate a new secret key. The board stops working until it is given the new key."""
    if not yes:
        typer.confirm("The current key will stop working immediately. Continue?", abort=True)
    typer.echo(get_secret_store().rotate())


@app.command("init")
def init():
    """Create the secret key and install date if missing, seed user from env."""
    db = SessionLocal()
    try:
        bootstrap(db, get_secret_store())
    finally:
        db.close()
    console.print("[green]Connector initialized.[/green]")


@app.command("status")
def status():
    """Show connection status: version, install date, last verified request."""
    store = get_secret_store()
    last = store.last_request_time()
    console.print(f"Plugin version: [bold]{PLUGIN_VERSION}[/bold]")
    console.print(f"Secret key: {'configured' if store.get() else '[red]missing[/red]'}")
    console.print(f"Installed at: {store.installed_at() or '-'}")
    console.print(f"Last request: {last.isoformat() if last else 'no request received'}")


@app.command("clear-last-request")
def clear_last_request():
    """Forget the last-request marker (done when the connector is deactivated)."""
    get_secret_store().clear_last_request()
    console.print("Last-request marker cleared.")


@app.command("purge-transients")
def purge_transients():
    """Delete expired rate windows and autologin tokens."""
    removed = get_transient_store().purge_expired()
    console.print(f"Removed {removed} expired entries.")


@app.command("audit")
def audit(
    limit: int = typer.Option(20, "--limit", "-n"),
    event_type: str = typer.Option(None, "--event"),
    outcome: str = typer.Option(None, "--outcome"),
):
    """Show recent audit events."""
    db = SessionLocal()
    try:
        events = query_audit_logs(db, limit=limit, event_type=event_type, outcome=outcome)
    finally:
        db.close()
    table = Table(title="Audit log")
    for col in ("Time (UTC)", "Event", "User", "IP", "Outcome", "Reason"):
        table.add_column(col)
    for e in events:
        table.add_row(
            e["created_at"] or "",
            e["event_type"],
            str(e["user_id"]) if e["user_id"] is not None else "-",
            e["ip"] or "",
            e["outcome"],
            e["reason"] or "",
        )
    console.print(table)


@app.command("prune-audit")
def prune_audit(
    days: int = typer.Option(AUDIT_RETENTION_DAYS, "--days", "-d", help="Keep events newer than this"),
):
    """Delete audit events older than --days."""
    db = SessionLocal()
    try:
        removed = prune_audit_logs(db, max_age_days=days)
    finally:
        db.close()
    console.print(f"Removed {removed} audit events older than {days} days.")


if __name__ == "__main__":
    app()
