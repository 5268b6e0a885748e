"""
Signal and event command registration for DWLF CLI.

``signals`` lists trade signals generated by your strategies and ``events``
merges system market events with your custom event notifications.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import click
import pytz
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from api.dwlf_client import ApiError, RequestDescriptor
from api.symbols import normalize_symbol
from cli.common import ClientFactory, api_failure, as_dict, as_list, first_present, resolve_format
from utils.helpers import (
    change_style,
    format_percentage,
    format_signal_price,
    format_time_ago,
    format_timestamp,
    parse_datetime,
    safe_float_convert,
    status_style,
)
from utils.output import Column, format_option, render_mapping, render_records, spinner

logger = logging.getLogger(__name__)

SIGNALS_RATE_LIMIT = (10, 1.0)
EVENTS_RATE_LIMIT = (10, 1.0)
EVENT_TYPES = ("system", "custom", "all")

SIGNAL_COLUMNS: Sequence[Column] = (
    Column("symbol", "Symbol", style="bold white"),
    Column("strategy", "Strategy"),
    Column("signal_type", "Type"),
    Column("entry", "Entry", justify="right", formatter=format_signal_price),
    Column("stop_loss", "Stop", justify="right", formatter=format_signal_price),
    Column("take_profit", "Target", justify="right", formatter=format_signal_price),
    Column("current_rr", "R", justify="right", formatter=lambda v: f"{v:+.2f}R",
           style_for=lambda r: change_style(r.get("current_rr"))),
    Column("gain_pct", "Gain %", justify="right", formatter=lambda v: format_percentage(v, signed=True),
           style_for=lambda r: change_style(r.get("gain_pct"))),
    Column("status", "Status", style_for=lambda r: status_style(r.get("status"))),
    Column("age", "Age", justify="right"),
)

EVENT_COLUMNS: Sequence[Column] = (
    Column("symbol", "Symbol", style="bold white"),
    Column("name", "Event"),
    Column("source", "Source", style="dim"),
    Column("timeframe", "TF"),
    Column("price", "Price", justify="right", formatter=format_signal_price),
    Column("significance", "Sig", justify="right", formatter=lambda v: f"{v:.0f}",
           style_for=lambda r: significance_style(r.get("significance"))),
    Column("when", "When", justify="right"),
)


def transform_signal(raw: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Map a platform signal payload to a display record."""

    details = raw.get("strategyDetails") if isinstance(raw.get("strategyDetails"), dict) else {}
    active = raw.get("active")
    generated_at = first_present(raw, "createdAt", "date")
    return {
        "id": raw.get("signalId"),
        "symbol": raw.get("symbol"),
        "strategy_id": raw.get("strategy") or details.get("visualStrategyId") or "unknown",
        "strategy": raw.get("strategyDescription") or details.get("strategyName") or "Unknown Strategy",
        "signal_type": str(raw.get("signalType") or "LONG").upper(),
        "entry": safe_float_convert(raw.get("initialPrice"), 0.0),
        "current_price": safe_float_convert(raw.get("currentPrice"), None),
        "stop_loss": safe_float_convert(raw.get("stopLossLevel"), None),
        "take_profit": safe_float_convert(raw.get("target3R"), None),
        "current_rr": safe_float_convert(raw.get("currentRR"), None),
        "gain_pct": safe_float_convert(raw.get("percentageGain"), None),
        "status": "ACTIVE" if active is True or active == "true" else "CLOSED",
        "generated_at": generated_at,
        "closed_at": first_present(raw, "closedAt", "exitDate"),
        "age": format_time_ago(generated_at, now=now).replace(" ago", ""),
    }


def summarize_signals(records: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    closed = [record for record in records if record["status"] == "CLOSED"]
    winners = [record for record in closed if (record.get("gain_pct") or 0) > 0]
    gains = [record["gain_pct"] for record in records if record.get("gain_pct") is not None]
    return {
        "total": len(records),
        "active": len(records) - len(closed),
        "closed": len(closed),
        "win_rate": (len(winners) / len(closed) * 100) if closed else None,
        "total_gain_pct": sum(gains) if gains else 0.0,
    }


def significance_style(value: Any) -> Optional[str]:
    number = safe_float_convert(value, None)
    if number is None:
        return None
    if number >= 80:
        return "bold red"
    if number >= 60:
        return "yellow"
    return None


def event_record(raw: Dict[str, Any], source: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    timestamp = first_present(raw, "timestamp", "firedAt", "createdAt")
    return {
        "id": first_present(raw, "eventId", "notificationId"),
        "symbol": raw.get("symbol"),
        "name": first_present(raw, "eventName", "name", "eventType", default="event"),
        "event_type": raw.get("eventType") or ("custom_event" if source == "custom" else None),
        "source": source,
        "timeframe": raw.get("timeframe"),
        "price": safe_float_convert(raw.get("price"), None),
        "significance": safe_float_convert(raw.get("significance"), None),
        "fired": bool(raw.get("fired") or raw.get("firedAt")),
        "timestamp": timestamp,
        "when": format_time_ago(timestamp, now=now),
    }


def filter_events(
    records: Sequence[Dict[str, Any]],
    event_type: Optional[str] = None,
    timeframe: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Sort newest first, filter by event type substring and timeframe, then limit."""

    def _sort_key(record: Dict[str, Any]) -> float:
        parsed = parse_datetime(record.get("timestamp"))
        return parsed.timestamp() if parsed else float("-inf")

    selected = sorted(records, key=_sort_key, reverse=True)
    if event_type:
        needle = event_type.lower()
        selected = [
            record for record in selected
            if needle in str(record.get("event_type") or "").lower() or needle in str(record.get("name") or "").lower()
        ]
    if timeframe:
        selected = [record for record in selected if record.get("timeframe") == timeframe]
    if limit is not None:
        selected = selected[:limit]
    return selected


def summarize_events(records: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    symbols = Counter(record["symbol"] for record in records if record.get("symbol"))
    most_active = symbols.most_common(1)
    return {
        "total": len(records),
        "system": sum(1 for record in records if record["source"] == "system"),
        "custom": sum(1 for record in records if record["source"] == "custom"),
        "fired": sum(1 for record in records if record.get("fired")),
        "most_active_symbol": f"{most_active[0][0]} ({most_active[0][1]})" if most_active else "-",
    }


def register(
    cli_group: click.Group,
    *,
    console: Console,
    build_client: ClientFactory,
) -> None:
    """Register signals and events commands on the provided Click group."""

    def _show_signal_detail(ctx: click.Context, signal_id: str, fmt: str) -> None:
        client = build_client(ctx, rate_limit=SIGNALS_RATE_LIMIT)
        try:
            payload = client.get(f"/trade-signals/{signal_id}")
        except ApiError as exc:
            api_failure(ctx, console, exc, f"Failed to fetch signal {signal_id}")

        record = transform_signal(as_dict(payload, "signal"))
        if fmt in ("json", "csv", "compact"):
            render_records(console, [record], SIGNAL_COLUMNS, fmt, raw=payload)
            return
        status = record["status"]
        console.print(
            Panel.fit(
                f"[bold white]{escape(str(record['symbol']))}[/bold white] [{status_style(status)}]{status}[/{status_style(status)}]\n"
                f"Strategy: {escape(str(record['strategy']))} ({escape(str(record['strategy_id']))})\n"
                f"Entry: {format_signal_price(record['entry'])}   "
                f"Stop: {format_signal_price(record['stop_loss'])}   "
                f"Target: {format_signal_price(record['take_profit'])}\n"
                f"Current R: {record['current_rr'] if record['current_rr'] is not None else '-'}   "
                f"Gain: {format_percentage(record['gain_pct'], signed=True)}\n"
                f"Generated: {format_timestamp(record['generated_at'])} ({record['age']})"
                + (f"\nClosed: {format_timestamp(record['closed_at'])}" if record["closed_at"] else ""),
                title=f"Signal {signal_id}",
            )
        )

    @cli_group.command()
    @click.option("--strategy", default=None, help="Filter by strategy ID.")
    @click.option("--symbol", default=None, help="Filter by symbol.")
    @click.option("--status", type=click.Choice(["active", "closed"], case_sensitive=False), default=None)
    @click.option("--type", "signal_type", type=click.Choice(["long", "short"], case_sensitive=False), default=None)
    @click.option("--limit", type=int, default=20, show_default=True)
    @click.option("--page", type=int, default=1, show_default=True)
    @click.option("--offset", type=int, default=None, help="Record offset (overrides --page).")
    @click.option("--id", "signal_id", default=None, help="Show a single signal.")
    @click.option("--summary", is_flag=True, help="Show win rate and total gain.")
    @format_option()
    @click.pass_context
    def signals(
        ctx: click.Context,
        strategy: Optional[str],
        symbol: Optional[str],
        status: Optional[str],
        signal_type: Optional[str],
        limit: int,
        page: int,
        offset: Optional[int],
        signal_id: Optional[str],
        summary: bool,
        output_format: Optional[str],
    ):
        """List trade signals from your strategies"""
        fmt = resolve_format(ctx, output_format)
        if signal_id:
            _show_signal_detail(ctx, signal_id, fmt)
            return

        limit = max(1, limit)
        if offset is not None:
            page = offset // limit + 1
        params = {
            "strategy": strategy,
            "symbol": normalize_symbol(symbol) if symbol else None,
            "status": status.upper() if status else None,
            "signalType": signal_type.upper() if signal_type else None,
            "limit": limit,
            "page": max(1, page),
        }
        client = build_client(ctx, rate_limit=SIGNALS_RATE_LIMIT)
        try:
            with spinner(console, "Fetching signals", enabled=fmt == "table"):
                payload = client.get("/user/trade-signals", params)
        except ApiError as exc:
            api_failure(ctx, console, exc, "Failed to fetch signals")

        records = [transform_signal(item) for item in as_list(payload, "signals")]
        render_records(console, records, SIGNAL_COLUMNS, fmt, title="Trade Signals", raw=payload,
                       empty_message="No signals found.")
        if summary and fmt == "table" and records:
            stats = summarize_signals(records)
            render_mapping(
                console,
                {
                    "Signals": stats["total"],
                    "Active": stats["active"],
                    "Closed": stats["closed"],
                    "Win Rate": format_percentage(stats["win_rate"], decimals=1),
                    "Total Gain": format_percentage(stats["total_gain_pct"], signed=True),
                },
                title="Summary",
            )

    @cli_group.command()
    @click.option("--type", "source", type=click.Choice(EVENT_TYPES), default="all", show_default=True)
    @click.option("--symbol", default=None, help="Filter by symbol.")
    @click.option("--event-type", default=None, help="Filter by event type (substring match).")
    @click.option("--timeframe", default=None, help="Filter by timeframe.")
    @click.option("--days", type=int, default=7, show_default=True, help="Look-back window for custom events.")
    @click.option("--limit", type=int, default=20, show_default=True)
    @click.option("--notifications", is_flag=True, help="Show fired custom-event notifications instead.")
    @click.option("--summary", is_flag=True, help="Show event counts.")
    @format_option()
    @click.pass_context
    def events(
        ctx: click.Context,
        source: str,
        symbol: Optional[str],
        event_type: Optional[str],
        timeframe: Optional[str],
        days: int,
        limit: int,
        notifications: bool,
        summary: bool,
        output_format: Optional[str],
    ):
        """Show market events and custom event notifications"""
        fmt = resolve_format(ctx, output_format)
        client = build_client(ctx, rate_limit=EVENTS_RATE_LIMIT)
        normalized = normalize_symbol(symbol) if symbol else None

        if notifications:
            try:
                payload = client.get("/custom-events/notifications", {"days": days, "symbol": normalized})
            except ApiError as exc:
                api_failure(ctx, console, exc, "Failed to fetch notifications")
            records = [event_record(item, "custom") for item in as_list(payload, "notifications")]
            render_records(console, filter_events(records, limit=limit), EVENT_COLUMNS, fmt,
                           title="Notifications", raw=payload, empty_message="No notifications found.")
            return

        branches: List[tuple[str, RequestDescriptor]] = []
        if source in ("system", "all"):
            branches.append(("system", RequestDescriptor("GET", "/events", {"symbol": normalized, "limit": limit})))
        if source in ("custom", "all"):
            branches.append((
                "custom",
                RequestDescriptor(
                    "GET",
                    "/events",
                    {"type": "custom_event", "scope": "user", "symbol": normalized, "days": days},
                ),
            ))

        with spinner(console, "Fetching events", enabled=fmt == "table"):
            results = client.request_many([descriptor for _, descriptor in branches])

        now = datetime.now(tz=pytz.UTC)
        records: List[Dict[str, Any]] = []
        failed = 0
        for (name, _), result in zip(branches, results):
            if not result.ok:
                failed += 1
                console.print(f"[yellow]⚠️  Could not load {name} events: {escape(result.error.message)}[/yellow]")
                continue
            records.extend(event_record(item, name, now=now) for item in as_list(result.data, "events", "customEvents"))

        if failed == len(branches):
            ctx.exit(1)

        selected = filter_events(records, event_type=event_type, timeframe=timeframe, limit=limit)
        render_records(console, selected, EVENT_COLUMNS, fmt, title="Events", empty_message="No events found.")
        if summary and fmt == "table" and selected:
            render_mapping(console, summarize_events(selected), title="Summary")
