"""
Account command registration for DWLF CLI.

Provides ``login`` (interactive API key setup) and the ``config`` group for
inspecting and editing ~/.dwlf/config.json.
"""

from __future__ import annotations

import logging

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from api.dwlf_client import KeyValidation, validate_api_key
from cli.common import ClientFactory, fail
from config import SETTABLE_KEYS, Config, ConfigError, mask_api_key

logger = logging.getLogger(__name__)


def register(
    cli_group: click.Group,
    *,
    console: Console,
    build_client: ClientFactory,
) -> None:
    """Register login and config commands on the provided Click group."""

    def _display_validation(validation: KeyValidation) -> None:
        if validation.valid:
            console.print("[green]✅ API key is valid![/green]")
            status = validation.user_info.get("status")
            if status:
                console.print(f"   Status: {status}")
            if validation.user_info.get("portfolios") is not None:
                console.print(f"   Portfolios: {validation.user_info['portfolios']}")
            permissions = validation.user_info.get("permissions") or []
            if permissions:
                console.print(f"   Permissions: {', '.join(permissions)}")
        else:
            console.print("[red]❌ API key validation failed[/red]")
            console.print(f"   Error: {escape(validation.error or 'unknown error')}")

    def _display_config_status(config: Config) -> None:
        source = config.api_key_source()
        if source == "environment":
            key_line = f"[green]{mask_api_key(config.api_key)}[/green] (from DWLF_API_KEY)"
        elif source == "config":
            key_line = f"[green]{mask_api_key(config.api_key)}[/green] (from config file)"
        else:
            key_line = "[yellow]not configured[/yellow]"

        console.print(
            Panel.fit(
                f"[bold white]Config File:[/bold white] {config.config_file}\n"
                f"[bold white]API URL:[/bold white] [cyan]{config.api_url}[/cyan]\n"
                f"[bold white]API Key:[/bold white] {key_line}",
                title="DWLF Configuration",
            )
        )

    @cli_group.command()
    @click.option("--validate", "validate_only", is_flag=True, help="Validate the currently configured API key.")
    @click.option("--show-config", is_flag=True, help="Show where the API key is loaded from.")
    @click.option("--api-url", default=None, help="Override the API URL stored with the key.")
    @click.pass_context
    def login(ctx: click.Context, validate_only: bool, show_config: bool, api_url: str):
        """Configure and validate your DWLF API key"""
        config: Config = ctx.obj["config"]

        if show_config:
            _display_config_status(config)
            return

        if validate_only:
            if not config.has_credentials():
                fail(ctx, console, "No API key configured. Run 'dwlf login' first.")
            validation = validate_api_key(config.api_key, config.api_url)
            _display_validation(validation)
            if not validation.valid:
                ctx.exit(1)
            return

        console.print("[bold blue]🔐 DWLF API Key Setup[/bold blue]")
        console.print("Get your API key from https://www.dwlf.co.uk (Settings → API Keys)")

        if config.api_key_source() == "config":
            console.print(f"Existing key: {config.masked_api_key()}")
            if not click.confirm("An API key is already configured. Overwrite it?", default=False):
                console.print("[yellow]Keeping the existing API key.[/yellow]")
                return

        api_key = click.prompt("Enter your DWLF API key", type=str, hide_input=True).strip()
        target_url = (api_url or config.api_url).rstrip("/")

        validation = validate_api_key(api_key, target_url)
        _display_validation(validation)
        if not validation.valid:
            ctx.exit(1)

        try:
            config.save_api_key(api_key, api_url=target_url)
        except (ConfigError, OSError) as exc:
            fail(ctx, console, f"Failed to save API key: {exc}")

        console.print(f"[green]✅ API key saved to {config.config_file}[/green]")
        console.print("[yellow]⚠️  Keep your API key secure and never share it![/yellow]")

    @cli_group.group(name="config")
    def config_group():
        """View and edit CLI configuration"""

    @config_group.command(name="show")
    @click.pass_context
    def config_show(ctx: click.Context):
        """Show the current configuration"""
        config: Config = ctx.obj["config"]
        _display_config_status(config)

        table = Table(title="Preferences", show_header=True, header_style="bold cyan")
        table.add_column("Key", style="bold white")
        table.add_column("Value")
        table.add_row("outputFormat", config.output_format)
        table.add_row("defaultTimeframe", config.default_timeframe)
        table.add_row("defaultSymbols", ", ".join(config.default_symbols) or "-")
        table.add_row("timeout", f"{config.timeout:g}s")
        table.add_row("maxRetries", str(config.max_retries))
        console.print(table)

    @config_group.command(name="list-keys")
    def config_list_keys():
        """List settable configuration keys"""
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Key", style="bold white")
        table.add_column("Description")
        for key, description in SETTABLE_KEYS.items():
            table.add_row(key, description)
        console.print(table)

    @config_group.command(name="set")
    @click.argument("key")
    @click.argument("value")
    @click.pass_context
    def config_set(ctx: click.Context, key: str, value: str):
        """Set a configuration value"""
        config: Config = ctx.obj["config"]
        try:
            stored = config.set_value(key, value)
        except ConfigError as exc:
            fail(ctx, console, str(exc))
        except OSError as exc:
            fail(ctx, console, f"Failed to write {config.config_file}: {exc}")

        display = mask_api_key(stored) if key == "apiKey" else stored
        if isinstance(display, list):
            display = ", ".join(display)
        console.print(f"[green]✅ {key} set to {escape(str(display))}[/green]")

    @config_group.command(name="reset")
    @click.option("--confirm", "confirmed", is_flag=True, help="Skip the confirmation prompt.")
    @click.pass_context
    def config_reset(ctx: click.Context, confirmed: bool):
        """Reset preferences to defaults (the API key is kept)"""
        config: Config = ctx.obj["config"]
        if not confirmed and not click.confirm("Reset all preferences to defaults?", default=False):
            console.print("[yellow]Reset cancelled.[/yellow]")
            return
        try:
            config.reset(keep_api_key=True)
        except OSError as exc:
            fail(ctx, console, f"Failed to write {config.config_file}: {exc}")
        console.print("[green]✅ Configuration reset to defaults[/green]")
