"""
Strategy command registration for DWLF CLI.

The ``strategies`` group lists and inspects strategies, shows their signals
and toggles them per symbol. Activation fans out one request per symbol and
reports every symbol's outcome.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from api.dwlf_client import ApiError, RequestDescriptor
from api.symbols import normalize_symbol, normalize_symbols
from cli.common import (
    AliasedGroup,
    ClientFactory,
    api_failure,
    as_dict,
    as_list,
    fail,
    first_present,
    resolve_format,
)
from utils.helpers import (
    change_style,
    format_date,
    format_percentage,
    format_pnl,
    format_signal_price,
    format_time_ago,
    safe_float_convert,
    status_style,
)
from utils.output import Column, format_option, render_records, spinner

logger = logging.getLogger(__name__)

STRATEGY_COLUMNS: Sequence[Column] = (
    Column("id", "ID", style="dim"),
    Column("name", "Name", style="bold white"),
    Column("visibility", "Visibility"),
    Column("signals", "Signals", justify="right"),
    Column("active_signals", "Active", justify="right"),
    Column("win_rate", "Win Rate", justify="right", formatter=lambda v: format_percentage(v, decimals=1)),
    Column("total_pnl", "P&L", justify="right", formatter=format_pnl,
           style_for=lambda r: change_style(r.get("total_pnl"))),
    Column("updated", "Updated"),
)

STRATEGY_SIGNAL_COLUMNS: Sequence[Column] = (
    Column("symbol", "Symbol", style="bold white"),
    Column("signal_type", "Type"),
    Column("entry", "Entry", justify="right", formatter=format_signal_price),
    Column("current", "Current", justify="right", formatter=format_signal_price),
    Column("pnl_pct", "P&L %", justify="right", formatter=lambda v: format_percentage(v, signed=True),
           style_for=lambda r: change_style(r.get("pnl_pct"))),
    Column("status", "Status", style_for=lambda r: status_style(r.get("status"))),
    Column("age", "Age", justify="right"),
)

ACTIVATION_COLUMNS: Sequence[Column] = (
    Column("symbol", "Symbol", style="bold white"),
    Column("active", "Active", formatter=lambda v: "yes" if v else "no",
           style_for=lambda r: "green" if r.get("active") else "red"),
    Column("activated", "Activated"),
    Column("deactivated", "Deactivated"),
)


def _win_rate_percent(value: Any) -> Optional[float]:
    """Win rates arrive as fractions (0.55); display them as percentages."""

    number = safe_float_convert(value, None)
    return None if number is None else number * 100


def strategy_record(strategy: Dict[str, Any]) -> Dict[str, Any]:
    performance = strategy.get("performance") if isinstance(strategy.get("performance"), dict) else {}
    return {
        "id": first_present(strategy, "strategyId", "id"),
        "name": strategy.get("name") or "Unnamed",
        "visibility": "public" if strategy.get("isPublic") else "private",
        "signals": first_present(performance, "totalSignals", default=strategy.get("totalSignals")),
        "active_signals": first_present(performance, "activeSignals", default=strategy.get("activeSignals")),
        "win_rate": _win_rate_percent(performance.get("winRate")),
        "total_pnl": safe_float_convert(performance.get("totalPnL"), None),
        "updated": format_date(first_present(strategy, "updatedAt", "createdAt")),
    }


def strategy_signal_record(signal: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": signal.get("signalId"),
        "symbol": signal.get("symbol"),
        "signal_type": str(signal.get("signalType") or "LONG").upper(),
        "entry": safe_float_convert(first_present(signal, "entryPrice", "initialPrice"), None),
        "current": safe_float_convert(signal.get("currentPrice"), None),
        "pnl_pct": safe_float_convert(first_present(signal, "pnlPct", "percentageGain"), None),
        "status": str(signal.get("status") or "ACTIVE").upper(),
        "age": format_time_ago(first_present(signal, "generatedAt", "createdAt")).replace(" ago", ""),
    }


def register(
    cli_group: click.Group,
    *,
    console: Console,
    build_client: ClientFactory,
) -> None:
    """Register the strategies group on the provided Click group."""

    @cli_group.group(cls=AliasedGroup, aliases={"ls": "list", "info": "show"})
    def strategies():
        """Browse, inspect and activate trading strategies"""

    cli_group.add_alias("strat", "strategies")

    @strategies.command(name="list")
    @click.option("--public-only", is_flag=True, help="Only public strategies.")
    @click.option("--mine-only", is_flag=True, help="Only your strategies.")
    @click.option("--limit", type=int, default=20, show_default=True)
    @format_option()
    @click.pass_context
    def strategies_list(ctx: click.Context, public_only: bool, mine_only: bool, limit: int, output_format: Optional[str]):
        """List available strategies"""
        if public_only and mine_only:
            fail(ctx, console, "--public-only and --mine-only cannot be combined.")
        fmt = resolve_format(ctx, output_format)
        params = {
            "public": "true" if public_only else None,
            "mine": "true" if mine_only else None,
            "limit": limit,
        }
        client = build_client(ctx)
        try:
            with spinner(console, "Fetching strategies", enabled=fmt == "table"):
                payload = client.get("/strategies", params)
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch strategies")

        records = [strategy_record(item) for item in as_list(payload, "strategies")]
        render_records(console, records, STRATEGY_COLUMNS, fmt, title="Strategies", raw=payload,
                       empty_message="No strategies found.")

    @strategies.command(name="show")
    @click.argument("strategy_id")
    @click.option("--signals", "signals_limit", type=int, default=10, show_default=True,
                  help="Number of recent signals to include.")
    @format_option()
    @click.pass_context
    def strategies_show(ctx: click.Context, strategy_id: str, signals_limit: int, output_format: Optional[str]):
        """Show strategy details, performance and recent signals"""
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        params = {"includeSignals": "true" if signals_limit > 0 else None, "signalsLimit": signals_limit or None}
        try:
            payload = client.get(f"/strategies/{strategy_id}", params)
        except ApiError as exc:
            api_failure(ctx, console, exc, f"Failed to fetch strategy {strategy_id}")

        strategy = as_dict(payload, "strategy")
        signal_records = [strategy_signal_record(item) for item in as_list(strategy.get("signals"))]
        if fmt != "table":
            render_records(console, signal_records, STRATEGY_SIGNAL_COLUMNS, fmt, raw=payload)
            return

        record = strategy_record(strategy)
        performance = strategy.get("performance") if isinstance(strategy.get("performance"), dict) else {}
        lines = [f"[bold white]{escape(str(record['name']))}[/bold white] [dim]({record['visibility']})[/dim]"]
        if strategy.get("description"):
            lines.append(escape(str(strategy["description"])))
        if strategy.get("author"):
            lines.append(f"Author: {escape(str(strategy['author']))}")
        if performance:
            lines.append(
                f"Signals: {record['signals'] or 0} ({record['active_signals'] or 0} active)   "
                f"Win rate: {format_percentage(record['win_rate'], decimals=1)}   "
                f"P&L: {format_pnl(record['total_pnl'])}"
            )
            lines.append(
                f"Avg return: {format_percentage(performance.get('avgReturn'), signed=True)}   "
                f"Max drawdown: {format_percentage(performance.get('maxDrawdown'))}"
                + (f"   Sharpe: {safe_float_convert(performance['sharpeRatio'], 0.0):.2f}"
                   if performance.get("sharpeRatio") is not None else "")
            )
        activated = strategy.get("activatedSymbols") or []
        if activated:
            lines.append(f"Active on: {', '.join(str(symbol) for symbol in activated)}")
        console.print(Panel.fit("\n".join(lines), title=f"Strategy {strategy_id}"))

        if signal_records:
            render_records(console, signal_records, STRATEGY_SIGNAL_COLUMNS, fmt, title="Recent Signals")

    @strategies.command(name="signals")
    @click.argument("strategy_id")
    @click.option("--symbol", default=None)
    @click.option("--status", type=click.Choice(["active", "closed"], case_sensitive=False), default=None)
    @click.option("--limit", type=int, default=20, show_default=True)
    @format_option()
    @click.pass_context
    def strategies_signals(
        ctx: click.Context,
        strategy_id: str,
        symbol: Optional[str],
        status: Optional[str],
        limit: int,
        output_format: Optional[str],
    ):
        """List signals generated by a strategy"""
        fmt = resolve_format(ctx, output_format)
        params = {
            "strategy": strategy_id,
            "symbol": normalize_symbol(symbol) if symbol else None,
            "status": status.upper() if status else None,
            "limit": limit,
        }
        client = build_client(ctx)
        try:
            payload = client.get("/signals", params)
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch strategy signals")

        records = [strategy_signal_record(item) for item in as_list(payload, "signals")]
        render_records(console, records, STRATEGY_SIGNAL_COLUMNS, fmt, title=f"Signals for {strategy_id}",
                       raw=payload, empty_message="No signals found.")

    def _toggle(ctx: click.Context, strategy_id: str, symbols: Sequence[str], action: str) -> None:
        normalized = normalize_symbols(symbols)
        if not normalized:
            fail(ctx, console, "At least one symbol is required.")
        client = build_client(ctx)

        with spinner(console, f"Updating {strategy_id} on {len(normalized)} symbol(s)"):
            results = client.request_many([
                RequestDescriptor("POST", f"/strategies/{strategy_id}/{action}", body={"symbol": symbol})
                for symbol in normalized
            ])

        failures: List[str] = []
        for symbol, result in zip(normalized, results):
            if result.ok:
                console.print(f"[green]✅ {symbol}: {action}d[/green]")
            else:
                failures.append(symbol)
                console.print(f"[red]❌ {symbol}: {escape(result.error.message)}[/red]")

        succeeded = len(normalized) - len(failures)
        console.print(f"{succeeded}/{len(normalized)} symbol(s) {action}d.")
        if failures:
            ctx.exit(1)

    @strategies.command(name="activate")
    @click.argument("strategy_id")
    @click.argument("symbols", nargs=-1, required=True)
    @click.pass_context
    def strategies_activate(ctx: click.Context, strategy_id: str, symbols: tuple[str, ...]):
        """Activate a strategy for one or more symbols"""
        _toggle(ctx, strategy_id, symbols, "activate")

    @strategies.command(name="deactivate")
    @click.argument("strategy_id")
    @click.argument("symbols", nargs=-1, required=True)
    @click.pass_context
    def strategies_deactivate(ctx: click.Context, strategy_id: str, symbols: tuple[str, ...]):
        """Deactivate a strategy for one or more symbols"""
        _toggle(ctx, strategy_id, symbols, "deactivate")

    @strategies.command(name="status")
    @click.argument("strategy_id")
    @click.option("--symbol", default=None, help="Only show one symbol.")
    @format_option()
    @click.pass_context
    def strategies_status(ctx: click.Context, strategy_id: str, symbol: Optional[str], output_format: Optional[str]):
        """Show where a strategy is activated"""
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        params = {"symbol": normalize_symbol(symbol) if symbol else None}
        try:
            payload = client.get(f"/strategies/{strategy_id}/activations", params)
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch activation status")

        records = [
            {
                "symbol": item.get("symbol"),
                "active": bool(item.get("isActive")),
                "activated": format_date(item.get("activatedAt")),
                "deactivated": format_date(item.get("deactivatedAt")),
            }
            for item in as_list(payload, "activations")
        ]
        render_records(console, records, ACTIVATION_COLUMNS, fmt, title=f"Activations for {strategy_id}",
                       raw=payload, empty_message="Strategy is not activated on any symbol.")
