"""
Main CLI application using Typer.
"""

import logging
from pathlib import Path
from typing import Annotated, List, Optional

import pendulum
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import FbSyncError
from ..domain.models import UNBOUNDED, TimeRange, User
from ..adapters.graph_authenticator import GraphAuthenticator
from ..adapters.graph_client import GraphClient
from ..adapters.mock_graph_client import MockGraphClient
from ..services.reconciliation import CalendarReconciliationService

app = typer.Typer(
    name="fbsync",
    help="Reconcile free/busy data with calendar appointments via Microsoft Graph",
    add_completion=False
)

console = Console()
err_console = Console(stderr=True)

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    config_path = config_file or get_default_config_path()
    return AppConfig.load_from_yaml(config_path)


def _determine_window(
    *,
    tz: str,
    window_days: int,
    start_option: Optional[str],
    end_option: Optional[str],
) -> TimeRange:
    """
    Resolve the reconciliation window from explicit dates or the default length.

    Raises:
        ValueError: If a date cannot be parsed or the window is reversed
    """
    if start_option:
        start_date = pendulum.from_format(start_option, "YYYY-MM-DD", tz=tz).start_of("day")
    else:
        start_date = pendulum.now(tz).start_of("day")

    if end_option:
        end_date = pendulum.from_format(end_option, "YYYY-MM-DD", tz=tz).end_of("day")
    else:
        end_date = start_date.add(days=window_days).end_of("day")

    return TimeRange(start=start_date, end=end_date)


def _build_client(config: AppConfig, mock: bool):
    if mock:
        console.print("[yellow]⚠  MOCK-MODE: using test data[/yellow]\n")
        return MockGraphClient(timezone=config.timezone)

    authenticator = GraphAuthenticator(
        client_id=config.client_id,
        tenant_id=config.tenant_id,
        client_secret=config.client_secret,
        authority_url=config.get_authority_url(),
    )
    return GraphClient(
        access_token=authenticator.get_access_token(),
        endpoint=config.graph_endpoint,
        timezone=config.timezone,
        max_connections=config.max_connections,
        timeout=config.request_timeout_seconds,
    )


def _render_user(user: User) -> None:
    if user.timeline is None:
        console.print(f"[yellow]{user}: no free/busy data[/yellow]\n")
        return

    table = Table(
        title=f"{user} ({user.access_level.value})",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Busy", style="bold yellow", no_wrap=True)
    table.add_column("Appointments")

    for block in user.timeline.blocks():
        subjects = ", ".join(a.subject or "(no subject)" for a in block.appointments)
        table.add_row(str(block.time_range), subjects or "[dim]-[/dim]")

    console.print(table)

    orphans = user.timeline.orphan_appointments()
    if orphans:
        console.print(f"[dim]{len(orphans)} appointment(s) outside any busy block[/dim]")
    console.print()


@app.command()
def reconcile(
    emails: Annotated[Optional[List[str]], typer.Argument(help="User emails or display names. Defaults to all configured users.")] = None,
    config_file: ConfigOption = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End date (YYYY-MM-DD)")] = None,
    all_history: Annotated[bool, typer.Option("--all-history", help="Reconcile each user separately without a window.")] = False,
    mock: Annotated[bool, typer.Option("--mock", help="Use mock data and skip authentication.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log debug output.")] = False,
):
    """
    Reconcile free/busy time with appointments for a batch of users.

    Examples:

        fbsync reconcile

        fbsync reconcile anna@example.com "Ben Weber" --start 2024-11-25 --end 2024-11-29

        fbsync reconcile --mock --start 2024-11-25
    """
    try:
        config = _load_config(config_file)
        _configure_logging("DEBUG" if verbose else config.defaults.log_level)

        users = config.resolve_users(emails or [])
        for rejected in users.rejected:
            console.print(f"[yellow]Skipping invalid or duplicate user '{rejected}'[/yellow]")

        if not users:
            console.print("[yellow]No users to reconcile.[/yellow]")
            return

        if all_history:
            window = UNBOUNDED
        else:
            window = _determine_window(
                tz=config.timezone,
                window_days=config.defaults.window_days,
                start_option=start,
                end_option=end,
            )

        console.print(f"[bold cyan]Reconciling {len(users)} user(s)[/bold cyan] for {window}\n")

        client = _build_client(config, mock)
        service = CalendarReconciliationService(
            free_busy_client=client,
            appointment_client=client,
            max_workers=config.max_connections,
        )

        if all_history:
            for user in users.values():
                service.reconcile_one(user)
        else:
            service.reconcile_batch(users, window)

        for user in users.values():
            _render_user(user)

    except (FileNotFoundError, ValueError, FbSyncError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def list_users(config_file: ConfigOption = None):
    """
    List all configured users.
    """
    try:
        config = _load_config(config_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    if not config.users:
        console.print("[yellow]No users defined in the config file.[/yellow]")
        return

    table = Table(
        title="Configured users",
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Name", style="bold yellow")
    table.add_column("E-Mail", style="dim")

    for user in config.users:
        table.add_row(user.display_name or "-", user.email)

    console.print()
    console.print(table)
    console.print()


@app.command()
def test_auth(config_file: ConfigOption = None):
    """
    Test Microsoft Graph authentication.
    """
    try:
        config = _load_config(config_file)
        client = _build_client(config, mock=False)
        organization = client.test_connection()

        console.print(Panel.fit(
            f"[bold green]✓ Authentication successful![/bold green]\n\n"
            f"[bold]Tenant:[/bold] {organization.get('displayName', 'N/A')}\n"
            f"[bold]ID:[/bold] {organization.get('id', config.tenant_id)}",
            title="✓ Connection test"
        ))

    except (FileNotFoundError, ValueError, FbSyncError) as e:
        console.print(f"\n[bold red]✗ Error:[/bold red] {e}\n")
        raise typer.Exit(1)


@app.command()
def store_secret(config_file: ConfigOption = None):
    """
    Store the application's client secret in the OS keyring.
    """
    try:
        config = _load_config(config_file)
        secret = typer.prompt("Client secret", hide_input=True)
        GraphAuthenticator(client_id=config.client_id, tenant_id=config.tenant_id).store_secret(secret)
        console.print("[green]✓ Client secret stored.[/green]")

    except (FileNotFoundError, ValueError, FbSyncError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def clear_secret(config_file: ConfigOption = None):
    """
    Remove the application's client secret from the OS keyring.
    """
    try:
        config = _load_config(config_file)
        GraphAuthenticator(client_id=config.client_id, tenant_id=config.tenant_id).clear_secret()
        console.print("[green]✓ Client secret removed.[/green]")

    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]fbsync[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
