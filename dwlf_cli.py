#!/usr/bin/env python3
"""
DWLF CLI Application
Terminal client for the DWLF market-data and trading-signals platform.

Updates: v0.1.0 - 2026-02-02 - Initial command set (price, portfolio, signals, chart).
Updates: v0.1.1 - 2026-02-12 - Added strategies, backtests and events commands.
Updates: v0.1.2 - 2026-02-20 - Added shell completion and status commands.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import click
from click.shell_completion import get_completion_class
from rich.console import Console
from rich.panel import Panel

from api.dwlf_client import CLIENT_VERSION, DWLFApiClient
from cli import account as account_commands
from cli import backtest as backtest_commands
from cli import charts as chart_commands
from cli import market as market_commands
from cli import portfolio as portfolio_commands
from cli import signals as signal_commands
from cli import strategies as strategy_commands
from cli.common import AliasedGroup
from config import Config
from utils.helpers import health_marker
from utils.logger import setup_logging

console = Console()
logger = logging.getLogger(__name__)

COMPLETION_SHELLS = ("bash", "zsh", "fish")


def _build_client(
    ctx: click.Context,
    *,
    rate_limit: Optional[Tuple[int, float]] = None,
    require_key: bool = True,
) -> DWLFApiClient:
    """Create a client from the invocation's config, exiting when no key is set."""

    config: Config = ctx.obj["config"]
    if require_key and not config.has_credentials():
        console.print("[red]⚠️  DWLF API key not configured![/red]")
        console.print("[yellow]Run 'dwlf login' or set the DWLF_API_KEY environment variable[/yellow]")
        ctx.exit(1)

    settings = config.client_settings()
    if rate_limit:
        settings = settings.with_rate_limit(*rate_limit)
    return DWLFApiClient(settings)


@click.group(cls=AliasedGroup)
@click.version_option(CLIENT_VERSION, prog_name="dwlf")
@click.option("--debug", is_flag=True, help="Enable debug logging on the console.")
@click.pass_context
def cli(ctx: click.Context, debug: bool):
    """DWLF CLI - market data, signals and portfolio tracking from the terminal"""
    ctx.ensure_object(dict)
    config = Config()
    setup_logging(log_level="DEBUG" if debug else config.log_level, log_dir=config.log_dir)
    ctx.obj["config"] = config
    logger.debug("Using API %s (key source: %s)", config.api_url, config.api_key_source())


account_commands.register(cli, console=console, build_client=_build_client)
market_commands.register(cli, console=console, build_client=_build_client)
portfolio_commands.register(cli, console=console, build_client=_build_client)
signal_commands.register(cli, console=console, build_client=_build_client)
chart_commands.register(cli, console=console, build_client=_build_client)
strategy_commands.register(cli, console=console, build_client=_build_client)
backtest_commands.register(cli, console=console, build_client=_build_client)


@cli.command()
@click.pass_context
def status(ctx: click.Context):
    """Check platform connectivity and API key validity"""
    config: Config = ctx.obj["config"]
    client = _build_client(ctx, require_key=False)

    reachable = client.check_connectivity()
    lines = [
        f"[bold white]API URL:[/bold white] [cyan]{config.api_url}[/cyan]",
        f"[bold white]Connectivity:[/bold white] {health_marker(reachable)} "
        + ("[green]reachable[/green]" if reachable else "[red]unreachable[/red]"),
    ]

    if not config.has_credentials():
        lines.append(f"[bold white]API Key:[/bold white] {health_marker(None)} [yellow]not configured[/yellow]")
        healthy = False
    else:
        validation = client.validate_api_key()
        healthy = reachable and validation.valid
        if validation.valid:
            lines.append(f"[bold white]API Key:[/bold white] {health_marker(True)} [green]valid[/green] ({config.masked_api_key()})")
        else:
            lines.append(
                f"[bold white]API Key:[/bold white] {health_marker(False)} [red]{validation.error}[/red]"
            )

    console.print(Panel.fit("\n".join(lines), title="DWLF Status"))
    if not healthy:
        ctx.exit(1)


@cli.command()
@click.argument("shell", type=click.Choice(COMPLETION_SHELLS))
@click.pass_context
def completion(ctx: click.Context, shell: str):
    """Print the shell completion script for bash, zsh or fish"""
    completion_class = get_completion_class(shell)
    if completion_class is None:  # pragma: no cover - choices guard this
        ctx.fail(f"Unsupported shell: {shell}")
    script = completion_class(cli, {}, "dwlf", "_DWLF_COMPLETE").source()
    click.echo(script)


if __name__ == '__main__':
    cli()
