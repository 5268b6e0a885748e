"""
Backtest command registration for DWLF CLI.

``backtest run`` submits a request and, unless ``--async`` is given, polls
the request until it completes, fails or the wait budget runs out before
fetching the results.
"""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn

from api.dwlf_client import ApiError, DWLFApiClient
from api.symbols import normalize_symbols
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
    format_price,
    format_timestamp,
    safe_float_convert,
)
from utils.output import Column, format_option, render_mapping, render_records, spinner, to_json

logger = logging.getLogger(__name__)

POLL_INTERVAL = 2.0
MAX_WAIT = 300.0
DEFAULT_START_DATE = "2024-01-01"
MAX_TRADE_ROWS = 20
TERMINAL_STATUSES = ("completed", "failed")

BACKTEST_STATUS_STYLES = {
    "completed": "green",
    "failed": "red",
    "running": "yellow",
    "pending": "dim",
}


def backtest_status_style(record: Dict[str, Any]) -> str:
    return BACKTEST_STATUS_STYLES.get(str(record.get("status") or "").lower(), "dim")


def format_trade_duration(hours: Any) -> str:
    """Trade durations arrive in hours; show ``Nh`` below a day and ``Nd`` above."""

    value = safe_float_convert(hours, None)
    if value is None:
        return "-"
    if value < 24:
        return f"{int(value + 0.5)}h"
    return f"{int(value / 24 + 0.5)}d"


BACKTEST_COLUMNS: Sequence[Column] = (
    Column("id", "Request ID", style="dim"),
    Column("strategy", "Strategy"),
    Column("symbols", "Symbols", style="cyan"),
    Column("period", "Period"),
    Column("status", "Status", formatter=lambda v: str(v).upper(), style_for=backtest_status_style),
    Column("created", "Created"),
)

TRADE_COLUMNS: Sequence[Column] = (
    Column("symbol", "Symbol", style="cyan"),
    Column("side", "Side", style_for=lambda r: "green" if r.get("side") == "LONG" else "red"),
    Column("entry", "Entry", justify="right", formatter=format_price),
    Column("exit", "Exit", justify="right", formatter=format_price),
    Column("duration", "Duration", justify="right", formatter=format_trade_duration),
    Column("pnl_pct", "P&L %", justify="right", formatter=lambda v: format_percentage(v, signed=True),
           style_for=lambda r: change_style(r.get("pnl_pct"))),
    Column("exit_reason", "Exit Reason", style="dim"),
)


def backtest_record(backtest: Dict[str, Any]) -> Dict[str, Any]:
    symbols = [str(symbol) for symbol in backtest.get("symbols") or []]
    shown = ", ".join(symbols[:2]) + ("..." if len(symbols) > 2 else "")
    return {
        "id": first_present(backtest, "requestId", "id"),
        "strategy": backtest.get("strategyId"),
        "symbols": shown,
        "period": f"{backtest.get('startDate') or '?'} to {backtest.get('endDate') or '?'}",
        "status": str(backtest.get("status") or "pending").lower(),
        "created": format_date(backtest.get("createdAt")),
    }


def trade_record(trade: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "symbol": trade.get("symbol"),
        "side": str(trade.get("side") or "LONG").upper(),
        "entry": safe_float_convert(trade.get("entryPrice"), None),
        "exit": safe_float_convert(trade.get("exitPrice"), None),
        "duration": safe_float_convert(trade.get("duration"), None),
        "pnl_pct": safe_float_convert(trade.get("pnlPercent"), None),
        "exit_reason": trade.get("exitReason"),
    }


def metrics_summary(metrics: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten result metrics into display order; win rate arrives as a fraction."""

    win_rate = safe_float_convert(metrics.get("winRate"), None)
    return {
        "Total Trades": metrics.get("totalTrades", 0),
        "Winning Trades": metrics.get("winningTrades", 0),
        "Losing Trades": metrics.get("losingTrades", 0),
        "Win Rate": format_percentage(None if win_rate is None else win_rate * 100, decimals=1),
        "Total Return": format_percentage(metrics.get("totalReturn")),
        "Sharpe Ratio": f"{safe_float_convert(metrics.get('sharpeRatio'), 0.0):.2f}",
        "Max Drawdown": format_percentage(metrics.get("maxDrawdown")),
        "Profit Factor": f"{safe_float_convert(metrics.get('profitFactor'), 0.0):.2f}",
        "Average Win": format_percentage(metrics.get("avgWin")),
        "Average Loss": format_percentage(metrics.get("avgLoss")),
        "Best Trade": format_percentage(metrics.get("bestTrade")),
        "Worst Trade": format_percentage(metrics.get("worstTrade")),
        "Expectancy": format_percentage(metrics.get("expectancy")),
    }


class BacktestTimeout(Exception):
    """Raised when a backtest does not finish within the wait budget."""


def wait_for_completion(
    client: DWLFApiClient,
    request_id: str,
    *,
    poll_interval: Optional[float] = None,
    max_wait: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Optional[Callable[[float], None]] = None,
    on_poll: Optional[Callable[[float], None]] = None,
) -> Dict[str, Any]:
    """Poll ``/backtests/{id}`` until it reaches a terminal status.

    Returns the final request payload. Raises :class:`BacktestTimeout` when
    ``max_wait`` seconds pass first; API errors propagate as ``ApiError``.
    """

    interval = POLL_INTERVAL if poll_interval is None else poll_interval
    budget = MAX_WAIT if max_wait is None else max_wait
    pause = sleep or time.sleep
    started = clock()

    while clock() - started < budget:
        request = as_dict(client.get(f"/backtests/{request_id}"), "backtest")
        status = str(request.get("status") or "").lower()
        if status in TERMINAL_STATUSES:
            return request
        elapsed = clock() - started
        logger.debug("Backtest %s is %s after %.0fs", request_id, status or "pending", elapsed)
        if on_poll is not None:
            on_poll(elapsed)
        pause(interval)

    raise BacktestTimeout(f"Backtest timed out after {int(budget // 60)} minutes")


def _print_results(console: Console, results: Dict[str, Any], show_trades: bool) -> None:
    request_id = str(first_present(results, "requestId", "id", default=""))
    symbols = ", ".join(str(symbol) for symbol in results.get("symbols") or [])
    config_lines = [
        f"Strategy: [dim]{escape(str(results.get('strategyId') or '-'))}[/dim]",
        f"Symbols: [cyan]{escape(symbols or '-')}[/cyan]",
        f"Period: [dim]{results.get('startDate') or '?'}[/dim] to [dim]{results.get('endDate') or '?'}[/dim]",
    ]
    console.print(Panel.fit("\n".join(config_lines), title=f"📊 Backtest Results: {escape(request_id)}"))

    metrics = results.get("metrics") if isinstance(results.get("metrics"), dict) else {}
    render_mapping(console, metrics_summary(metrics), "table", title="Performance Metrics")

    trades = as_list(results.get("trades"))
    if show_trades and trades:
        records = [trade_record(trade) for trade in trades[:MAX_TRADE_ROWS]]
        render_records(console, records, TRADE_COLUMNS, "table", title="Trade Details")
        if len(trades) > MAX_TRADE_ROWS:
            console.print(f"[dim]... and {len(trades) - MAX_TRADE_ROWS} more trades[/dim]")


def _emit_results(console: Console, results: Dict[str, Any], fmt: str, show_trades: bool) -> None:
    if fmt == "table":
        _print_results(console, results, show_trades)
        return
    if fmt == "json":
        click.echo(to_json(results))
        return
    if show_trades:
        records = [trade_record(trade) for trade in as_list(results.get("trades"))]
        render_records(console, records, TRADE_COLUMNS, fmt, empty_message="No trades recorded.")
        return
    metrics = results.get("metrics") if isinstance(results.get("metrics"), dict) else {}
    render_mapping(console, metrics_summary(metrics), fmt)


def register(
    cli_group: click.Group,
    *,
    console: Console,
    build_client: ClientFactory,
) -> None:
    """Register the backtest group on the provided Click group."""

    @cli_group.group(cls=AliasedGroup, aliases={"ls": "list", "rm": "delete"})
    def backtest():
        """Run and manage strategy backtests"""

    cli_group.add_alias("bt", "backtest")

    @backtest.command(name="run")
    @click.argument("strategy_id")
    @click.argument("symbols", nargs=-1, required=True)
    @click.option("--start", "start_date", default=DEFAULT_START_DATE, show_default=True,
                  help="Start date (YYYY-MM-DD).")
    @click.option("--end", "end_date", default=None, help="End date (YYYY-MM-DD, defaults to today).")
    @click.option("--async", "run_async", is_flag=True, help="Submit without waiting for results.")
    @click.option("--show-trades", is_flag=True, help="Show individual trades in the results.")
    @format_option()
    @click.pass_context
    def backtest_run(
        ctx: click.Context,
        strategy_id: str,
        symbols: tuple[str, ...],
        start_date: str,
        end_date: Optional[str],
        run_async: bool,
        show_trades: bool,
        output_format: Optional[str],
    ):
        """Run a backtest for a strategy over one or more symbols"""
        fmt = resolve_format(ctx, output_format)
        normalized = normalize_symbols(symbols)
        if not normalized:
            fail(ctx, console, "At least one symbol is required.")
        end_date = end_date or date.today().isoformat()
        client = build_client(ctx)

        if fmt == "table":
            console.print("[bold cyan]🔬 Starting Backtest[/bold cyan]")
            console.print(f"  Strategy: [dim]{escape(strategy_id)}[/dim]")
            console.print(f"  Symbols: [cyan]{', '.join(normalized)}[/cyan]")
            console.print(f"  Period: [dim]{start_date}[/dim] to [dim]{end_date}[/dim]")

        body = {"strategyId": strategy_id, "symbols": normalized, "startDate": start_date, "endDate": end_date}
        try:
            with spinner(console, "Submitting backtest request", enabled=fmt == "table"):
                submitted = as_dict(client.post("/backtests", body), "backtest")
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to run backtest")

        request_id = first_present(submitted, "requestId", "id")
        if not request_id:
            fail(ctx, console, "Failed to run backtest: response did not include a request ID")
        console.print(f"[green]✅ Backtest submitted: {escape(str(request_id))}[/green]")

        if run_async:
            console.print("[dim]Run `dwlf backtest status <requestId>` to check progress[/dim]")
            console.print("[dim]Run `dwlf backtest results <requestId>` to view results when complete[/dim]")
            return

        progress = Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            transient=True,
            console=console,
            disable=fmt != "table",
        )
        try:
            with progress:
                task = progress.add_task("⏳ Running backtest…", total=None)
                completed = wait_for_completion(
                    client,
                    str(request_id),
                    poll_interval=POLL_INTERVAL,
                    max_wait=MAX_WAIT,
                    on_poll=lambda elapsed: progress.update(
                        task, description=f"⏳ Running backtest... {int(elapsed)}s elapsed"
                    ),
                )
        except BacktestTimeout as exc:
            fail(ctx, console, str(exc))
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to check backtest status")

        if str(completed.get("status")).lower() == "failed":
            fail(ctx, console, f"Backtest failed: {completed.get('error') or 'Unknown error'}")

        console.print("[green]✅ Backtest completed! Fetching results...[/green]")
        try:
            results = as_dict(client.get(f"/backtests/{request_id}/results"), "results")
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch backtest results")
        _emit_results(console, results, fmt, show_trades)

    @backtest.command(name="list")
    @click.option("--limit", type=int, default=20, show_default=True, help="Maximum backtests to show.")
    @click.option("--status", type=click.Choice(["pending", "running", "completed", "failed"], case_sensitive=False),
                  default=None)
    @format_option()
    @click.pass_context
    def backtest_list(ctx: click.Context, limit: int, status: Optional[str], output_format: Optional[str]):
        """List your backtests"""
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        try:
            with spinner(console, "Fetching backtests", enabled=fmt == "table"):
                payload = client.get("/backtests", {"limit": limit, "status": status.lower() if status else None})
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch backtests")

        records = [backtest_record(item) for item in as_list(payload, "backtests")]
        render_records(console, records, BACKTEST_COLUMNS, fmt, title="🔬 Your Backtests", raw=payload,
                       empty_message="No backtests found.")

    @backtest.command(name="status")
    @click.argument("request_id")
    @format_option()
    @click.pass_context
    def backtest_status(ctx: click.Context, request_id: str, output_format: Optional[str]):
        """Check the status of a backtest"""
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        try:
            payload = client.get(f"/backtests/{request_id}")
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch backtest status")

        backtest_data = as_dict(payload, "backtest")
        if fmt != "table":
            render_records(console, [backtest_record(backtest_data)], BACKTEST_COLUMNS, fmt, raw=payload)
            return

        record = backtest_record(backtest_data)
        style = backtest_status_style(record)
        lines = [
            f"Request ID: [dim]{escape(str(record['id'] or request_id))}[/dim]",
            f"Strategy: [dim]{escape(str(record['strategy'] or '-'))}[/dim]",
            f"Symbols: [cyan]{escape(', '.join(str(s) for s in backtest_data.get('symbols') or []) or '-')}[/cyan]",
            f"Period: {record['period']}",
            f"Status: [{style}]{record['status'].upper()}[/{style}]",
            f"Created: [dim]{format_timestamp(backtest_data.get('createdAt'))}[/dim]",
        ]
        if backtest_data.get("completedAt"):
            lines.append(f"Completed: [dim]{format_timestamp(backtest_data['completedAt'])}[/dim]")
        if backtest_data.get("error"):
            lines.append(f"Error: [red]{escape(str(backtest_data['error']))}[/red]")
        console.print(Panel.fit("\n".join(lines), title="🔬 Backtest Status"))
        if record["status"] == "completed":
            console.print("[dim]Use `dwlf backtest results <requestId>` to view detailed results[/dim]")

    @backtest.command(name="results")
    @click.argument("request_id")
    @click.option("--trades", "show_trades", is_flag=True, help="Show individual trades.")
    @format_option()
    @click.pass_context
    def backtest_results(ctx: click.Context, request_id: str, show_trades: bool, output_format: Optional[str]):
        """View the results of a completed backtest"""
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        try:
            with spinner(console, "Fetching backtest results", enabled=fmt == "table"):
                results = as_dict(client.get(f"/backtests/{request_id}/results"), "results")
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch backtest results")
        _emit_results(console, results, fmt, show_trades)

    @backtest.command(name="delete")
    @click.argument("request_id")
    @click.option("--force", is_flag=True, help="Skip the confirmation prompt.")
    @click.pass_context
    def backtest_delete(ctx: click.Context, request_id: str, force: bool):
        """Delete a backtest"""
        if not force and not click.confirm(f"Delete backtest {request_id}?", default=False):
            console.print("[dim]Cancelled.[/dim]")
            return
        client = build_client(ctx)
        try:
            client.delete(f"/backtests/{request_id}")
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to delete backtest")
        console.print("[green]✅ Backtest deleted successfully[/green]")

    @backtest.command(name="summary")
    @format_option()
    @click.pass_context
    def backtest_summary(ctx: click.Context, output_format: Optional[str]):
        """Show backtest summary statistics"""
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        try:
            payload = client.get("/backtests/summary")
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch backtest summary")

        summary = as_dict(payload, "summary")
        if fmt == "json":
            click.echo(to_json(payload))
            return
        counts = {
            "Total Backtests": summary.get("totalBacktests", 0),
            "Completed": summary.get("completedBacktests", 0),
            "Running": summary.get("runningBacktests", 0),
            "Failed": summary.get("failedBacktests", 0),
        }
        render_mapping(console, counts, fmt, title="🔬 Backtest Summary")

        recent: List[Dict[str, Any]] = as_list(summary.get("recentBacktests"))
        if recent and fmt == "table":
            render_records(console, [backtest_record(item) for item in recent], BACKTEST_COLUMNS, fmt,
                           title="Recent Backtests")
