"""
Market command registration for DWLF CLI.

``price`` quotes one or more symbols from their two latest candles and
``watchlist`` manages the account's saved symbols.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import click
from rich.console import Console
from rich.markup import escape

from api.dwlf_client import ApiError, DWLFApiClient, RequestDescriptor
from api.symbols import normalize_symbol, normalize_symbols
from cli.common import AliasedGroup, ClientFactory, api_failure, as_list, fail, first_present, resolve_format
from utils.helpers import change_style, format_percentage, format_price, format_volume, safe_float_convert
from utils.output import Column, format_option, render_records, spinner

logger = logging.getLogger(__name__)

QUOTE_CANDLES = 2

PRICE_COLUMNS: Sequence[Column] = (
    Column("symbol", "Symbol", style="bold white"),
    Column("price", "Price", justify="right", formatter=format_price),
    Column("change", "Change", justify="right", formatter=lambda value: f"{value:+,.2f}",
           style_for=lambda record: change_style(record.get("change"))),
    Column("change_percent", "Change %", justify="right",
           formatter=lambda value: format_percentage(value, signed=True),
           style_for=lambda record: change_style(record.get("change_percent"))),
    Column("volume", "Volume", justify="right", formatter=format_volume),
    Column("high", "High", justify="right", formatter=format_price),
    Column("low", "Low", justify="right", formatter=format_price),
)


def quote_request(symbol: str) -> RequestDescriptor:
    """Request the latest two candles for ``symbol``."""

    return RequestDescriptor("GET", f"/market-data/{symbol}", params={"limit": QUOTE_CANDLES})


def quote_from_candles(symbol: str, payload: Any) -> Dict[str, Any]:
    """Build a price record from the two most recent candles."""

    candles = as_list(payload, "candles")
    record: Dict[str, Any] = {
        "symbol": symbol,
        "price": None,
        "change": None,
        "change_percent": None,
        "volume": None,
        "high": None,
        "low": None,
    }
    if not candles:
        return record

    latest = candles[-1]
    close = safe_float_convert(latest.get("close"), None)
    record.update(
        price=close,
        volume=safe_float_convert(latest.get("volume"), None),
        high=safe_float_convert(latest.get("high"), None),
        low=safe_float_convert(latest.get("low"), None),
    )
    if len(candles) >= 2 and close is not None:
        previous = safe_float_convert(candles[-2].get("close"), None)
        if previous:
            change = close - previous
            record["change"] = round(change, 8)
            record["change_percent"] = round(change / previous * 100, 4)
    return record


def fetch_quotes(client: DWLFApiClient, symbols: Sequence[str]) -> tuple[List[Dict[str, Any]], Dict[str, ApiError]]:
    """Fan out one market-data request per symbol; failures are returned per symbol."""

    results = client.request_many([quote_request(symbol) for symbol in symbols])
    records: List[Dict[str, Any]] = []
    failures: Dict[str, ApiError] = {}
    for symbol, result in zip(symbols, results):
        if result.ok:
            records.append(quote_from_candles(symbol, result.data))
        else:
            failures[symbol] = result.error
    return records, failures


def register(
    cli_group: click.Group,
    *,
    console: Console,
    build_client: ClientFactory,
) -> None:
    """Register price and watchlist commands on the provided Click group."""

    def _print_quotes(ctx: click.Context, symbols: List[str], output_format: Optional[str]) -> None:
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx)
        with spinner(console, f"Fetching prices for {', '.join(symbols)}", enabled=fmt in ("table", "compact")):
            records, failures = fetch_quotes(client, symbols)

        render_records(console, records, PRICE_COLUMNS, fmt, title="Prices")
        for symbol, error in failures.items():
            console.print(f"[yellow]⚠️  {symbol}: {escape(error.message)}[/yellow]")
        if failures and not records:
            ctx.exit(1)

    @cli_group.command()
    @click.argument("symbols", nargs=-1)
    @format_option()
    @click.pass_context
    def price(ctx: click.Context, symbols: tuple[str, ...], output_format: Optional[str]):
        """Show latest prices for one or more symbols"""
        normalized = normalize_symbols(symbols) or ctx.obj["config"].default_symbols
        if not normalized:
            fail(ctx, console, "No symbols given and no defaultSymbols configured.")
        _print_quotes(ctx, normalized, output_format)

    @cli_group.group(cls=AliasedGroup, invoke_without_command=True, aliases={"ls": "list", "rm": "remove"})
    @format_option()
    @click.pass_context
    def watchlist(ctx: click.Context, output_format: Optional[str]):
        """Show or manage your watchlist"""
        if ctx.invoked_subcommand is None:
            ctx.invoke(watchlist_list, output_format=output_format)

    @watchlist.command(name="list")
    @format_option()
    @click.pass_context
    def watchlist_list(ctx: click.Context, output_format: Optional[str]):
        """List watchlist symbols with prices"""
        client = build_client(ctx)
        try:
            payload = client.get("/watchlist")
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch watchlist")

        entries = as_list(payload, "watchlist", "symbols")
        if not entries and isinstance(payload, dict) and isinstance(payload.get("symbols"), list):
            entries = [{"symbol": value} for value in payload["symbols"] if isinstance(value, str)]
        symbols = [str(first_present(entry, "symbol", "ticker", default="")) for entry in entries]
        symbols = [symbol for symbol in symbols if symbol]
        if not symbols:
            console.print("[yellow]Your watchlist is empty. Add symbols with 'dwlf watchlist add SYMBOL'.[/yellow]")
            return
        _print_quotes(ctx, symbols, output_format)

    @watchlist.command(name="add")
    @click.argument("symbol")
    @click.pass_context
    def watchlist_add(ctx: click.Context, symbol: str):
        """Add a symbol to the watchlist"""
        normalized = normalize_symbol(symbol)
        client = build_client(ctx)
        try:
            client.post("/watchlist", {"symbol": normalized})
        except ApiError as exc:
            api_failure(ctx, console, exc, f"Failed to add {normalized}")
        console.print(f"[green]✅ Added {normalized} to watchlist[/green]")

    @watchlist.command(name="remove")
    @click.argument("symbol")
    @click.pass_context
    def watchlist_remove(ctx: click.Context, symbol: str):
        """Remove a symbol from the watchlist"""
        normalized = normalize_symbol(symbol)
        client = build_client(ctx)
        try:
            client.delete(f"/watchlist/{normalized}")
        except ApiError as exc:
            api_failure(ctx, console, exc, f"Failed to remove {normalized}")
        console.print(f"[green]✅ Removed {normalized} from watchlist[/green]")
