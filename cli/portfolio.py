"""
Portfolio command registration for DWLF CLI.

This module provides the ``portfolio`` group (list, overview, performance)
and the ``trades`` command, rendering holdings and trade journals with Rich
tables or the alternative output formats.

Updates: v0.1.1 - 2026-02-10 - Overview fetches portfolio and holdings concurrently.
Updates: v0.1.2 - 2026-02-18 - Performance metrics computed from snapshots.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from api.dwlf_client import ApiError, DWLFApiClient, RequestDescriptor
from api.symbols import normalize_symbol
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
    duration_between,
    format_date,
    format_percentage,
    format_pnl,
    format_price,
    format_r_multiple,
    safe_float_convert,
    status_style,
)
from utils.output import Column, format_option, render_mapping, render_records, spinner

logger = logging.getLogger(__name__)

PORTFOLIO_COLUMNS: Sequence[Column] = (
    Column("id", "ID", style="dim"),
    Column("name", "Name", style="bold white"),
    Column("total_value", "Value", justify="right", formatter=format_price),
    Column("pnl", "P&L", justify="right", formatter=format_pnl, style_for=lambda r: change_style(r.get("pnl"))),
    Column("pnl_pct", "P&L %", justify="right", formatter=lambda v: format_percentage(v, signed=True),
           style_for=lambda r: change_style(r.get("pnl_pct"))),
    Column("default", "Default", justify="center", formatter=lambda v: "★" if v else ""),
)

HOLDING_COLUMNS: Sequence[Column] = (
    Column("symbol", "Symbol", style="bold white"),
    Column("quantity", "Quantity", justify="right", formatter=lambda v: f"{v:,.4f}"),
    Column("avg_price", "Avg Price", justify="right", formatter=format_price),
    Column("current_price", "Current", justify="right", formatter=format_price),
    Column("value", "Value", justify="right", formatter=format_price),
    Column("pnl", "P&L", justify="right", formatter=format_pnl, style_for=lambda r: change_style(r.get("pnl"))),
    Column("pnl_pct", "P&L %", justify="right", formatter=lambda v: format_percentage(v, signed=True),
           style_for=lambda r: change_style(r.get("pnl_pct"))),
    Column("allocation", "Alloc", justify="right", formatter=lambda v: format_percentage(v, decimals=1)),
)

TRADE_COLUMNS: Sequence[Column] = (
    Column("symbol", "Symbol", style="bold white"),
    Column("direction", "Side", formatter=lambda v: str(v).upper()),
    Column("entry_price", "Entry", justify="right", formatter=format_price),
    Column("exit_price", "Exit", justify="right", formatter=format_price),
    Column("quantity", "Qty", justify="right", formatter=lambda v: f"{v:g}"),
    Column("pnl", "P&L", justify="right", formatter=format_pnl, style_for=lambda r: change_style(r.get("pnl"))),
    Column("r_multiple", "R", justify="right", formatter=format_r_multiple,
           style_for=lambda r: change_style(r.get("r_multiple"))),
    Column("status", "Status", formatter=lambda v: str(v).upper(), style_for=lambda r: status_style(r.get("status"))),
    Column("duration", "Duration", justify="right"),
    Column("opened", "Opened"),
)

SNAPSHOT_COLUMNS: Sequence[Column] = (
    Column("date", "Date"),
    Column("total_value", "Value", justify="right", formatter=format_price),
    Column("pnl", "P&L", justify="right", formatter=format_pnl, style_for=lambda r: change_style(r.get("pnl"))),
    Column("pnl_pct", "P&L %", justify="right", formatter=lambda v: format_percentage(v, signed=True)),
)


def portfolio_record(portfolio: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": first_present(portfolio, "portfolioId", "id"),
        "name": portfolio.get("name") or "Unnamed",
        "total_value": safe_float_convert(portfolio.get("totalValue"), None),
        "pnl": safe_float_convert(portfolio.get("pnlAbs"), None),
        "pnl_pct": safe_float_convert(portfolio.get("pnlPct"), None),
        "default": bool(portfolio.get("isDefault")),
    }


def holding_record(holding: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "symbol": holding.get("symbol"),
        "quantity": safe_float_convert(holding.get("quantity"), None),
        "avg_price": safe_float_convert(holding.get("avgPrice"), None),
        "current_price": safe_float_convert(holding.get("currentPrice"), None),
        "value": safe_float_convert(holding.get("totalValue"), None),
        "pnl": safe_float_convert(holding.get("pnlAbs"), None),
        "pnl_pct": safe_float_convert(holding.get("pnlPct"), None),
        "allocation": safe_float_convert(holding.get("allocation"), None),
    }


def trade_record(trade: Dict[str, Any]) -> Dict[str, Any]:
    entry_at = first_present(trade, "entryAt", "openedAt")
    exit_at = first_present(trade, "exitAt", "closedAt")
    return {
        "id": first_present(trade, "tradeId", "id"),
        "symbol": trade.get("symbol"),
        "direction": trade.get("direction") or trade.get("side") or "long",
        "entry_price": safe_float_convert(trade.get("entryPrice"), None),
        "exit_price": safe_float_convert(trade.get("exitPrice"), None),
        "quantity": safe_float_convert(trade.get("quantity"), None),
        "pnl": safe_float_convert(first_present(trade, "pnlAbs", "pnl"), None),
        "pnl_pct": safe_float_convert(first_present(trade, "pnlPct", "pnlPercent"), None),
        "r_multiple": safe_float_convert(trade.get("rMultiple"), None),
        "status": (trade.get("status") or "open").lower(),
        "duration": duration_between(entry_at, exit_at),
        "opened": format_date(entry_at),
        "paper": bool(trade.get("isPaperTrade")),
    }


def summarize_trades(records: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Aggregate trade counts, win rate, average R and total P&L."""

    closed = [record for record in records if record["status"] == "closed"]
    wins = [record for record in closed if (record.get("pnl") or 0) > 0]
    r_values = [record["r_multiple"] for record in closed if record.get("r_multiple") is not None]
    pnl_values = [record["pnl"] for record in records if record.get("pnl") is not None]
    return {
        "total": len(records),
        "open": sum(1 for record in records if record["status"] == "open"),
        "closed": len(closed),
        "win_rate": (len(wins) / len(closed) * 100) if closed else None,
        "avg_r_multiple": (sum(r_values) / len(r_values)) if r_values else None,
        "total_pnl": sum(pnl_values) if pnl_values else 0.0,
    }


def performance_metrics(snapshots: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    """Total return and maximum drawdown across portfolio value snapshots."""

    values = [value for value in (safe_float_convert(s.get("totalValue"), None) for s in snapshots) if value is not None]
    if len(values) < 2:
        return {"snapshots": len(values), "total_return_pct": None, "max_drawdown_pct": None}

    peak = values[0]
    max_drawdown = 0.0
    for value in values:
        peak = max(peak, value)
        if peak > 0:
            max_drawdown = max(max_drawdown, (peak - value) / peak * 100)
    total_return = (values[-1] - values[0]) / values[0] * 100 if values[0] else None
    return {
        "snapshots": len(values),
        "start_value": values[0],
        "end_value": values[-1],
        "total_return_pct": total_return,
        "max_drawdown_pct": max_drawdown,
    }


def pick_portfolio(portfolios: Sequence[Dict[str, Any]], portfolio_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Return the requested portfolio, else the default one, else the first."""

    if portfolio_id:
        for portfolio in portfolios:
            if str(first_present(portfolio, "portfolioId", "id")) == str(portfolio_id):
                return portfolio
        return {"portfolioId": portfolio_id}
    for portfolio in portfolios:
        if portfolio.get("isDefault"):
            return portfolio
    return portfolios[0] if portfolios else None


def register(
    cli_group: click.Group,
    *,
    console: Console,
    build_client: ClientFactory,
) -> None:
    """Register the portfolio group and trades command on the provided Click group."""

    def _resolve_portfolio_id(ctx: click.Context, client: DWLFApiClient, portfolio_id: Optional[str]) -> str:
        if portfolio_id:
            return portfolio_id
        try:
            portfolios = as_list(client.get("/portfolios"), "portfolios")
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch portfolios")
        selected = pick_portfolio(portfolios)
        if selected is None:
            fail(ctx, console, "No portfolios found. Create one at https://www.dwlf.co.uk")
        return str(first_present(selected, "portfolioId", "id"))

    @cli_group.group(cls=AliasedGroup, aliases={"ls": "list", "show": "overview", "perf": "performance"})
    def portfolio():
        """Portfolio holdings, performance and trades"""

    cli_group.add_alias("pf", "portfolio")

    @portfolio.command(name="list")
    @format_option()
    @click.pass_context
    def portfolio_list(ctx: click.Context, output_format: Optional[str]):
        """List your portfolios"""
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        try:
            with spinner(console, "Fetching portfolios", enabled=fmt == "table"):
                payload = client.get("/portfolios")
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch portfolios")

        records = [portfolio_record(item) for item in as_list(payload, "portfolios")]
        render_records(console, records, PORTFOLIO_COLUMNS, fmt, title="Portfolios", raw=payload,
                       empty_message="No portfolios found.")

    @portfolio.command(name="overview")
    @click.option("-p", "--portfolio-id", default=None, help="Portfolio ID (defaults to your default portfolio).")
    @format_option()
    @click.pass_context
    def portfolio_overview(ctx: click.Context, portfolio_id: Optional[str], output_format: Optional[str]):
        """Show a portfolio with its holdings"""
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        resolved_id = _resolve_portfolio_id(ctx, client, portfolio_id)

        with spinner(console, "Fetching portfolio", enabled=fmt == "table"):
            details_result, holdings_result = client.request_many([
                RequestDescriptor("GET", f"/portfolios/{resolved_id}"),
                RequestDescriptor("GET", f"/portfolios/{resolved_id}/holdings/details"),
            ])

        if not details_result.ok:
            api_failure(ctx, console, details_result.error, "Failed to fetch portfolio")

        details = as_dict(details_result.data, "portfolio")
        holdings: List[Dict[str, Any]] = []
        if holdings_result.ok:
            holdings = as_list(holdings_result.data, "holdings")
        else:
            console.print(f"[yellow]⚠️  Holdings unavailable: {escape(holdings_result.error.message)}[/yellow]")

        records = [holding_record(item) for item in holdings]
        if fmt in ("json", "csv"):
            raw = {"portfolio": details, "holdings": holdings}
            render_records(console, records, HOLDING_COLUMNS, fmt, raw=raw)
            return

        summary = portfolio_record(details)
        pnl_style = change_style(summary["pnl"])
        console.print(
            Panel.fit(
                f"[bold white]{escape(str(summary['name']))}[/bold white]"
                + (" [yellow]★ default[/yellow]" if summary["default"] else "")
                + f"\n[bold white]Value:[/bold white] {format_price(summary['total_value'])}"
                f"\n[bold white]P&L:[/bold white] [{pnl_style}]{format_pnl(summary['pnl'], summary['pnl_pct'])}[/{pnl_style}]",
                title=f"Portfolio {resolved_id}",
            )
        )
        render_records(console, records, HOLDING_COLUMNS, fmt, title="Holdings", empty_message="📊 No holdings found.")

    @portfolio.command(name="performance")
    @click.option("-p", "--portfolio-id", default=None, help="Portfolio ID (defaults to your default portfolio).")
    @format_option()
    @click.pass_context
    def portfolio_performance(ctx: click.Context, portfolio_id: Optional[str], output_format: Optional[str]):
        """Show portfolio value history and return metrics"""
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        resolved_id = _resolve_portfolio_id(ctx, client, portfolio_id)
        try:
            payload = client.get(f"/portfolios/{resolved_id}/snapshots")
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch performance")

        snapshots = as_list(payload, "snapshots")
        records = [
            {
                "date": format_date(first_present(item, "date", "timestamp", "createdAt")),
                "total_value": safe_float_convert(item.get("totalValue"), None),
                "pnl": safe_float_convert(item.get("pnlAbs"), None),
                "pnl_pct": safe_float_convert(item.get("pnlPct"), None),
            }
            for item in snapshots
        ]
        render_records(console, records, SNAPSHOT_COLUMNS, fmt, title="Snapshots", raw=payload,
                       empty_message="No performance snapshots yet.")
        if fmt == "table" and records:
            metrics = performance_metrics(snapshots)
            render_mapping(
                console,
                {
                    "Snapshots": metrics["snapshots"],
                    "Total Return": format_percentage(metrics["total_return_pct"], signed=True),
                    "Max Drawdown": format_percentage(metrics["max_drawdown_pct"]),
                },
                title="Performance",
            )

    def _show_trades(
        ctx: click.Context,
        status: Optional[str],
        symbol: Optional[str],
        limit: int,
        output_format: Optional[str],
    ) -> None:
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        params = {
            "status": status,
            "symbol": normalize_symbol(symbol) if symbol else None,
            "limit": limit,
        }
        try:
            with spinner(console, "Fetching trades", enabled=fmt == "table"):
                payload = client.get("/trades", params)
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch trades")

        records = [trade_record(item) for item in as_list(payload, "trades")][:limit]
        render_records(console, records, TRADE_COLUMNS, fmt, title="Trades", raw=payload,
                       empty_message="No trades found.")
        if fmt != "table" or not records:
            return

        summary = summarize_trades(records)
        server_summary = payload.get("summary") if isinstance(payload, dict) else None
        if isinstance(server_summary, dict):
            summary.update({
                "total": server_summary.get("total", summary["total"]),
                "open": server_summary.get("open", summary["open"]),
                "closed": server_summary.get("closed", summary["closed"]),
                "win_rate": server_summary.get("winRate", summary["win_rate"]),
                "avg_r_multiple": server_summary.get("avgRMultiple", summary["avg_r_multiple"]),
                "total_pnl": server_summary.get("totalPnl", summary["total_pnl"]),
            })
        render_mapping(
            console,
            {
                "Total Trades": summary["total"],
                "Open": summary["open"],
                "Closed": summary["closed"],
                "Win Rate": format_percentage(summary["win_rate"], decimals=1),
                "Avg R": format_r_multiple(summary["avg_r_multiple"]),
                "Total P&L": format_pnl(summary["total_pnl"]),
            },
            title="Summary",
        )

    trade_options = [
        click.option("--status", type=click.Choice(["open", "closed"]), default=None, help="Filter by trade status."),
        click.option("--symbol", default=None, help="Filter by symbol."),
        click.option("--limit", type=int, default=20, show_default=True, help="Maximum trades to show."),
        format_option(),
    ]

    def _with_trade_options(func):
        for option in reversed(trade_options):
            func = option(func)
        return func

    @cli_group.command()
    @_with_trade_options
    @click.pass_context
    def trades(ctx: click.Context, status: Optional[str], symbol: Optional[str], limit: int, output_format: Optional[str]):
        """List your trades with P&L summary"""
        _show_trades(ctx, status, symbol, limit, output_format)

    @portfolio.command(name="trades")
    @_with_trade_options
    @click.pass_context
    def portfolio_trades(ctx: click.Context, status: Optional[str], symbol: Optional[str], limit: int,
                         output_format: Optional[str]):
        """List your trades with P&L summary"""
        _show_trades(ctx, status, symbol, limit, output_format)
