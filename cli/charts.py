"""
Chart and indicator command registration for DWLF CLI.

``chart`` draws price history as a sparkline or candlestick grid and
``indicators`` renders the platform's technical analysis for a symbol.

Updates: v0.1.1 - 2026-02-11 - Trendlines and levels fetched concurrently with --all.
"""

from __future__ import annotations

import calendar
import logging
import re
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from api.dwlf_client import ApiError, ApiResult, RequestDescriptor
from api.symbols import normalize_symbol
from cli.common import ClientFactory, api_failure, as_dict, as_list, fail, resolve_format
from utils.charts import candle_stats, candlestick_grid, gauge, macd_bar, price_change, sparkline
from utils.helpers import (
    change_style,
    format_change,
    format_date,
    format_price,
    format_signal_price,
    format_volume,
    safe_float_convert,
)
from utils.output import Column, format_option, render_records, spinner, to_json

logger = logging.getLogger(__name__)

CHART_RATE_LIMIT = (5, 1.0)
INDICATORS_RATE_LIMIT = (10, 1.0)
CHART_TIMEFRAMES = ("1m", "5m", "15m", "1h", "4h", "1d", "1w")
INDICATOR_INTERVALS = ("1d", "4h", "1h")
WEB_CHART_URL = "https://www.dwlf.co.uk/markets/{symbol}?timeframe={timeframe}"
KEY_LEVEL_STRENGTH = 7

_PERIOD_PATTERN = re.compile(r"^(\d+)([dwmy])$")

CANDLE_COLUMNS: Sequence[Column] = (
    Column("timestamp", "Date"),
    Column("open", "Open", justify="right", formatter=format_price),
    Column("high", "High", justify="right", formatter=format_price),
    Column("low", "Low", justify="right", formatter=format_price),
    Column("close", "Close", justify="right", formatter=format_price),
    Column("volume", "Volume", justify="right", formatter=format_volume),
)

LEVEL_COLUMNS: Sequence[Column] = (
    Column("type", "Type", formatter=lambda v: str(v).upper(),
           style_for=lambda r: "red" if r.get("type") == "resistance" else "green"),
    Column("price", "Price", justify="right", formatter=format_signal_price),
    Column("strength", "Strength", justify="right", formatter=lambda v: f"{v:.1f}/10"),
    Column("touches", "Touches", justify="right"),
    Column("last_touch", "Last Touch"),
)

TRENDLINE_COLUMNS: Sequence[Column] = (
    Column("type", "Type", formatter=lambda v: str(v).upper()),
    Column("slope", "Slope", justify="right", formatter=lambda v: f"{v:+.4f}"),
    Column("strength", "Strength", justify="right", formatter=lambda v: f"{v:.1f}"),
    Column("touches", "Touches", justify="right"),
    Column("active", "Active", formatter=lambda v: "yes" if v else "no"),
)


def _subtract_months(day: date, months: int) -> date:
    month_index = day.month - 1 - months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return day.replace(year=year, month=month, day=min(day.day, calendar.monthrange(year, month)[1]))


def period_start(period: str, end: Optional[date] = None) -> date:
    """Resolve a look-back period like ``30d``, ``2w``, ``3m`` or ``1y``; defaults to 30 days."""

    end = end or date.today()
    match = _PERIOD_PATTERN.match(period.strip().lower())
    if not match:
        return end - timedelta(days=30)
    amount, unit = int(match.group(1)), match.group(2)
    if unit == "d":
        return end - timedelta(days=amount)
    if unit == "w":
        return end - timedelta(weeks=amount)
    if unit == "m":
        return _subtract_months(end, amount)
    return _subtract_months(end, amount * 12)


def chart_params(timeframe: str, period: str, today: Optional[date] = None) -> Dict[str, str]:
    end = today or date.today()
    return {
        "timeframe": timeframe,
        "startDate": period_start(period, end).isoformat(),
        "endDate": end.isoformat(),
    }


def _rsi_label(value: float) -> Tuple[str, str]:
    if value > 70:
        return "Overbought", "red"
    if value < 30:
        return "Oversold", "green"
    return "Neutral", "yellow"


def register(
    cli_group: click.Group,
    *,
    console: Console,
    build_client: ClientFactory,
) -> None:
    """Register chart and indicators commands on the provided Click group."""

    @cli_group.command()
    @click.argument("symbol")
    @click.option("-t", "--timeframe", type=click.Choice(CHART_TIMEFRAMES), default="1d", show_default=True)
    @click.option("-p", "--period", default="30d", show_default=True, help="Look-back period, e.g. 30d, 12w, 6m, 1y.")
    @click.option("--volume", "show_volume", is_flag=True, help="Add a volume sparkline.")
    @click.option("--stats", "show_stats", is_flag=True, help="Show high/low/volatility statistics.")
    @click.option("--candles", "show_candles", is_flag=True, help="Draw an ASCII candlestick grid.")
    @click.option("--browser", is_flag=True, help="Print the web chart URL instead of fetching data.")
    @format_option()
    @click.pass_context
    def chart(
        ctx: click.Context,
        symbol: str,
        timeframe: str,
        period: str,
        show_volume: bool,
        show_stats: bool,
        show_candles: bool,
        browser: bool,
        output_format: Optional[str],
    ):
        """Draw a price chart for a symbol"""
        normalized = normalize_symbol(symbol)
        if browser:
            click.echo(WEB_CHART_URL.format(symbol=normalized, timeframe=timeframe))
            return

        if not _PERIOD_PATTERN.match(period.strip().lower()):
            fail(ctx, console, f"Invalid period '{period}'. Use forms like 30d, 12w, 6m or 1y.")

        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx, rate_limit=CHART_RATE_LIMIT)
        try:
            with spinner(console, f"Fetching {normalized} {timeframe} data", enabled=fmt == "table"):
                payload = client.get(f"/market-data/{normalized}", chart_params(timeframe, period))
        except ApiError as exc:
            api_failure(ctx, console, exc, f"Failed to fetch market data for {normalized}")

        candles = as_list(payload, "candles")
        if fmt != "table":
            records = [dict(candle, timestamp=format_date(candle.get("timestamp"))) for candle in candles]
            render_records(console, records, CANDLE_COLUMNS, fmt, raw=payload, empty_message="No market data.")
            return
        if not candles:
            console.print(f"[yellow]No market data for {normalized} ({timeframe}, {period}).[/yellow]")
            return

        change, change_percent = price_change(candles)
        last_close = safe_float_convert(candles[-1].get("close"), None)
        style = change_style(change)
        console.print(
            f"[bold cyan]{normalized}[/bold cyan] [dim]{timeframe} · {period}[/dim]  "
            f"[bold]{format_price(last_close)}[/bold]  [{style}]{format_change(change, change_percent)}[/{style}]"
        )
        console.print(f"Price   [{style}]{sparkline([c.get('close') for c in candles], width=60)}[/{style}]")
        if show_volume:
            console.print(f"Volume  [blue]{sparkline([c.get('volume') for c in candles], width=60)}[/blue]")
        if show_candles:
            console.print()
            for row in candlestick_grid(candles):
                console.print(row, highlight=False)

        if show_stats:
            stats = candle_stats(candles) or {}
            console.print(
                Panel.fit(
                    f"High: {format_price(stats.get('high'))}   Low: {format_price(stats.get('low'))}\n"
                    f"Avg Volume: {format_volume(stats.get('avg_volume'))}   "
                    f"Volatility: {stats.get('volatility', 0.0):.2f}%\n"
                    f"Data Points: {stats.get('points', 0)}",
                    title="Statistics",
                )
            )

    def _render_indicator_sections(data: Dict[str, Any], only: Optional[str]) -> None:
        wanted = {"bollinger": "bb"}.get(only or "", only)

        rsi = data.get("rsi") if isinstance(data.get("rsi"), dict) else None
        if rsi and wanted in (None, "rsi"):
            value = safe_float_convert(rsi.get("value"), 0.0)
            label, colour = _rsi_label(value)
            console.print(
                f"[bold]RSI[/bold]   [{colour}]{gauge(value)}[/{colour}] {value:.1f} [{colour}]{label}[/{colour}]"
            )

        macd = data.get("macd") if isinstance(data.get("macd"), dict) else None
        if macd and wanted in (None, "macd"):
            histogram = safe_float_convert(macd.get("histogram"), 0.0)
            colour = change_style(histogram)
            console.print(
                f"[bold]MACD[/bold]  {safe_float_convert(macd.get('macd'), 0.0):.4f} / "
                f"signal {safe_float_convert(macd.get('signal'), 0.0):.4f}  "
                f"[{colour}]{macd_bar(histogram)}[/{colour}] {histogram:.4f}"
                + (f"  {escape(str(macd['trend']))}" if macd.get("trend") else "")
                + (f"  [bold]{escape(str(macd['crossover']))} crossover[/bold]" if macd.get("crossover") else "")
            )

        averages = data.get("movingAverages") if isinstance(data.get("movingAverages"), dict) else None
        if averages and wanted is None:
            parts = [
                f"{name.upper()} {format_signal_price(averages[name])}"
                for name in ("sma20", "sma50", "sma200", "ema21", "ema50")
                if averages.get(name) is not None
            ]
            alignment = f"  ({escape(str(averages['alignment']))})" if averages.get("alignment") else ""
            console.print(f"[bold]MAs[/bold]   {'  '.join(parts)}{alignment}")

        bands = data.get("bollingerBands") if isinstance(data.get("bollingerBands"), dict) else None
        if bands and wanted in (None, "bb"):
            console.print(
                f"[bold]BB[/bold]    upper {format_signal_price(bands.get('upper'))}  "
                f"middle {format_signal_price(bands.get('middle'))}  "
                f"lower {format_signal_price(bands.get('lower'))}"
                + (f"  position: {escape(str(bands['position']))}" if bands.get("position") else "")
                + ("  [bold yellow]⚡ squeeze[/bold yellow]" if bands.get("squeeze") else "")
            )

        stochastic = data.get("stochastic") if isinstance(data.get("stochastic"), dict) else None
        if stochastic and wanted is None:
            console.print(
                f"[bold]Stoch[/bold] %K {safe_float_convert(stochastic.get('k'), 0.0):.1f}  "
                f"%D {safe_float_convert(stochastic.get('d'), 0.0):.1f}"
                + (f"  {escape(str(stochastic['signal']))}" if stochastic.get("signal") else "")
            )

        atr = data.get("atr") if isinstance(data.get("atr"), dict) else None
        if atr and wanted is None:
            console.print(
                f"[bold]ATR[/bold]   {safe_float_convert(atr.get('value'), 0.0):.4f}"
                + (f"  volatility: {escape(str(atr['volatility']))}" if atr.get("volatility") else "")
            )

    def _level_records(payload: Any) -> List[Dict[str, Any]]:
        records = []
        for level in as_list(payload, "levels"):
            last_touch = level.get("lastTouch")
            records.append({
                "type": level.get("type"),
                "price": safe_float_convert(level.get("price"), None),
                "strength": safe_float_convert(level.get("strength"), 0.0),
                "touches": level.get("touchCount"),
                "last_touch": format_date(last_touch) if last_touch else "-",
            })
        # Resistance above support, each in descending price order.
        resistance = sorted((r for r in records if r["type"] == "resistance"), key=lambda r: r["price"] or 0)
        support = sorted((r for r in records if r["type"] != "resistance"), key=lambda r: -(r["price"] or 0))
        return resistance[::-1] + support

    def _trendline_records(payload: Any) -> List[Dict[str, Any]]:
        return [
            {
                "type": line.get("type"),
                "slope": safe_float_convert(line.get("slope"), 0.0),
                "strength": safe_float_convert(line.get("strength"), 0.0),
                "touches": len(line.get("touchPoints") or []),
                "active": bool(line.get("isActive")),
            }
            for line in as_list(payload, "trendlines")
        ]

    @cli_group.command()
    @click.argument("symbol")
    @click.option("-i", "--interval", type=click.Choice(INDICATOR_INTERVALS), default="1d", show_default=True)
    @click.option("--indicator", type=click.Choice(["rsi", "macd", "bb", "bollinger"]), default=None,
                  help="Show a single indicator.")
    @click.option("--trendlines", "show_trendlines", is_flag=True, help="Include trendlines.")
    @click.option("--levels", "show_levels", is_flag=True, help="Include support/resistance levels.")
    @click.option("--all", "show_all", is_flag=True, help="Include trendlines and levels.")
    @format_option()
    @click.pass_context
    def indicators(
        ctx: click.Context,
        symbol: str,
        interval: str,
        indicator: Optional[str],
        show_trendlines: bool,
        show_levels: bool,
        show_all: bool,
        output_format: Optional[str],
    ):
        """Show technical indicators for a symbol"""
        fmt = resolve_format(ctx, output_format)
        normalized = normalize_symbol(symbol)
        client = build_client(ctx, rate_limit=INDICATORS_RATE_LIMIT)

        descriptors = [RequestDescriptor("GET", f"/chart-indicators/{normalized}", {"interval": interval})]
        extras: List[str] = []
        if show_trendlines or show_all:
            descriptors.append(RequestDescriptor("GET", f"/trendlines/{normalized}"))
            extras.append("trendlines")
        if show_levels or show_all:
            descriptors.append(RequestDescriptor("GET", f"/support-resistance/{normalized}"))
            extras.append("levels")

        with spinner(console, f"Fetching indicators for {normalized}", enabled=fmt == "table"):
            results = client.request_many(descriptors)

        indicator_result: ApiResult = results[0]
        if not indicator_result.ok:
            api_failure(ctx, console, indicator_result.error, "Failed to fetch indicators")
        extra_results = dict(zip(extras, results[1:]))

        if fmt == "json":
            payload: Dict[str, Any] = {"symbol": normalized, "interval": interval, "indicators": indicator_result.data}
            for name, result in extra_results.items():
                payload[name] = result.data if result.ok else {"error": result.error.message}
            click.echo(to_json(payload))
            return

        console.print(f"[bold cyan]📊 {normalized}[/bold cyan] [dim]{interval} indicators[/dim]")
        _render_indicator_sections(as_dict(indicator_result.data, "indicators"), indicator)

        for name, result in extra_results.items():
            if not result.ok:
                console.print(f"[yellow]⚠️  Could not load {name}: {escape(result.error.message)}[/yellow]")
                continue
            if name == "trendlines":
                render_records(console, _trendline_records(result.data), TRENDLINE_COLUMNS, fmt,
                               title="Trendlines", empty_message="No trendlines found.")
            else:
                levels = _level_records(result.data)
                render_records(console, levels, LEVEL_COLUMNS, fmt, title="Support / Resistance",
                               empty_message="No support/resistance levels found.")
                key_levels = [level for level in levels if level["strength"] >= KEY_LEVEL_STRENGTH]
                if key_levels and fmt == "table":
                    console.print("[bold]🎯 Key levels[/bold]")
                    for level in key_levels:
                        colour = "red" if level["type"] == "resistance" else "green"
                        console.print(
                            f"   [{colour}]{str(level['type']).upper()}: {format_signal_price(level['price'])}[/{colour}]"
                            f" ({level['strength']:.1f}/10)"
                        )
