"""
Shared helpers for DWLF command modules.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, NoReturn, Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape

from api.dwlf_client import ApiError, DWLFApiClient

logger = logging.getLogger(__name__)

# Signature of the client factory handed to ``register``.
ClientFactory = Callable[..., DWLFApiClient]


class AliasedGroup(click.Group):
    """Click group resolving short aliases (``ls``, ``pf``...) to commands."""

    def __init__(self, *args: Any, aliases: Optional[Mapping[str, str]] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.aliases: Dict[str, str] = dict(aliases or {})

    def add_alias(self, alias: str, command_name: str) -> None:
        self.aliases[alias] = command_name

    def get_command(self, ctx: click.Context, cmd_name: str) -> Optional[click.Command]:
        command = super().get_command(ctx, cmd_name)
        if command is not None:
            return command
        target = self.aliases.get(cmd_name)
        return super().get_command(ctx, target) if target else None

    def resolve_command(self, ctx: click.Context, args: List[str]) -> Tuple[Optional[str], Optional[click.Command], List[str]]:
        _, command, remaining = super().resolve_command(ctx, args)
        return (command.name if command else None), command, remaining


def fail(ctx: click.Context, console: Console, message: str) -> NoReturn:
    """Print a red error line and exit with status 1."""

    console.print(f"[red]❌ {escape(message)}[/red]")
    ctx.exit(1)


def api_failure(ctx: click.Context, console: Console, error: ApiError, action: str) -> NoReturn:
    logger.debug("%s failed: %r", action, error)
    fail(ctx, console, f"{action}: {error.message}")


def resolve_format(ctx: click.Context, output_format: Optional[str]) -> str:
    """Return the explicit ``--format`` value or the configured default."""

    if output_format:
        return output_format.lower()
    config = (ctx.obj or {}).get("config")
    return getattr(config, "output_format", "table") or "table"


def as_list(payload: Any, *keys: str) -> List[Dict[str, Any]]:
    """Extract a list of records from a payload that may wrap it under ``keys``."""

    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        for key in keys + ("data", "items", "results"):
            value = payload.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
    return []


def as_dict(payload: Any, *keys: str) -> Dict[str, Any]:
    """Unwrap a single object payload, optionally nested under ``keys``."""

    if not isinstance(payload, dict):
        return {}
    for key in keys:
        value = payload.get(key)
        if isinstance(value, dict):
            return value
    return payload


def first_present(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return default
