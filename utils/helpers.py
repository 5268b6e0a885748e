"""
Helper utilities for DWLF CLI value formatting.
"""

import math
from datetime import datetime
from typing import Any, Optional

import pytz

def safe_float_convert(value: Any, default: Optional[float] = 0.0) -> Optional[float]:
    """Safely convert value to float"""
    try:
        if isinstance(value, bool):
            return default
        if isinstance(value, (int, float)):
            result = float(value)
        elif isinstance(value, str):
            # Remove common currency symbols and spaces
            cleaned = value.replace('$', '').replace(',', '').replace(' ', '')
            if not cleaned:
                return default
            result = float(cleaned)
        else:
            return default
        return default if math.isnan(result) else result
    except (ValueError, TypeError):
        return default


def format_price(value: Any, decimals: int = 2) -> str:
    """Format a price as ``$1,234.56``."""
    price = safe_float_convert(value, None)
    if price is None:
        return "N/A"
    sign = "-" if price < 0 else ""
    return f"{sign}${abs(price):,.{decimals}f}"


def format_signal_price(value: Any) -> str:
    """Format a price with precision scaled to its magnitude."""
    price = safe_float_convert(value, None)
    if price is None:
        return "N/A"
    if abs(price) >= 1000:
        return f"${price:,.2f}"
    if abs(price) >= 1:
        return f"${price:.4f}"
    return f"${price:.6f}"


def format_change(change: Any, change_percent: Any) -> str:
    """Format an absolute and relative change as ``+$1.23 (+0.45%)``."""
    amount = safe_float_convert(change, 0.0)
    percent = safe_float_convert(change_percent, 0.0)
    sign = "+" if amount >= 0 else "-"
    percent_sign = "+" if percent >= 0 else "-"
    return f"{sign}${abs(amount):,.2f} ({percent_sign}{abs(percent):.2f}%)"


def format_pnl(pnl: Any, pnl_percent: Any = None) -> str:
    """Format profit and loss with an optional percentage."""
    amount = safe_float_convert(pnl, None)
    if amount is None:
        return "-"
    sign = "+" if amount >= 0 else "-"
    text = f"{sign}${abs(amount):,.2f}"
    percent = safe_float_convert(pnl_percent, None)
    if percent:
        text += f" ({'+' if percent >= 0 else '-'}{abs(percent):.2f}%)"
    return text


def format_percentage(value: Any, decimals: int = 2, signed: bool = False) -> str:
    """Format percentage value"""
    number = safe_float_convert(value, None)
    if number is None:
        return f"{value}%" if value not in (None, "") else "-"
    if signed:
        return f"{number:+.{decimals}f}%"
    return f"{number:.{decimals}f}%"


def format_volume(volume: Any) -> str:
    """Format trading volume with B/M/K suffixes."""
    number = safe_float_convert(volume, None)
    if number is None:
        return "-"
    magnitude = abs(number)
    if magnitude >= 1e9:
        return f"{number / 1e9:.1f}B"
    if magnitude >= 1e6:
        return f"{number / 1e6:.1f}M"
    if magnitude >= 1e3:
        return f"{number / 1e3:.1f}K"
    return f"{number:,.0f}" if number == int(number) else f"{number:,.2f}"


def format_r_multiple(value: Any) -> str:
    """Format a risk multiple as ``+1.50R``."""
    number = safe_float_convert(value, None)
    if number is None:
        return "-"
    return f"{number:+.2f}R"


def change_style(value: Any) -> str:
    """Return the Rich style for a signed numeric value."""
    number = safe_float_convert(value, 0.0)
    return "green" if number >= 0 else "red"


def status_style(status: Optional[str]) -> str:
    """Map a trade/signal status to a Rich style."""
    normalized = (status or "").lower()
    if normalized in {"open", "active"}:
        return "bold green"
    if normalized in {"closed", "triggered", "completed"}:
        return "bold blue"
    if normalized in {"cancelled", "canceled", "expired", "failed"}:
        return "bold red"
    return "bold yellow"


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO strings and epoch seconds/milliseconds into aware UTC datetimes."""
    if value in (None, ""):
        return None
    try:
        if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
            timestamp = float(value)
            if timestamp > 1e10:  # Milliseconds
                timestamp /= 1000
            return datetime.fromtimestamp(timestamp, tz=pytz.UTC)
        text = str(value).strip().replace("Z", "+00:00")
        parsed = datetime.fromisoformat(text)
    except (ValueError, OSError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = pytz.UTC.localize(parsed)
    return parsed.astimezone(pytz.UTC)


def format_timestamp(timestamp: Any, timezone: str = "UTC") -> str:
    """Format timestamp to readable date/time"""
    dt = parse_datetime(timestamp)
    if dt is None:
        return str(timestamp) if timestamp not in (None, "") else "-"
    if timezone != "UTC":
        dt = dt.astimezone(pytz.timezone(timezone))
    return dt.strftime("%Y-%m-%d %H:%M:%S %Z")


def format_date(timestamp: Any) -> str:
    dt = parse_datetime(timestamp)
    return dt.strftime("%Y-%m-%d") if dt else "-"


def format_duration(seconds: Optional[float]) -> str:
    """Render an elapsed duration as ``Xd Yh``, ``Xh Ym``, ``Xm`` or ``Xs``."""
    if seconds is None:
        return "-"
    if seconds < 0:
        return "Future"
    total = int(seconds)
    days, remainder = divmod(total, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)
    if days:
        return f"{days}d {hours}h" if hours else f"{days}d"
    if hours:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    if minutes:
        return f"{minutes}m"
    return f"{secs}s"


def duration_between(start: Any, end: Any = None, now: Optional[datetime] = None) -> str:
    """Duration from ``start`` to ``end`` (or now)."""
    start_dt = parse_datetime(start)
    if start_dt is None:
        return "-"
    end_dt = parse_datetime(end) or now or datetime.now(tz=pytz.UTC)
    return format_duration((end_dt - start_dt).total_seconds())


def format_time_ago(value: Any, now: Optional[datetime] = None) -> str:
    """Describe how long ago ``value`` happened."""
    if value in (None, ""):
        return "Unknown"
    dt = parse_datetime(value)
    if dt is None:
        return "Invalid date"
    reference = now or datetime.now(tz=pytz.UTC)
    seconds = (reference - dt).total_seconds()
    if seconds < 0:
        return "Future"
    return f"{format_duration(seconds)} ago"


def progress_bar(value: Any, maximum: float = 100.0, width: int = 20) -> str:
    """Draw a fixed-width bar using full and light blocks."""
    number = safe_float_convert(value, 0.0)
    ratio = 0.0 if maximum <= 0 else min(max(number / maximum, 0.0), 1.0)
    filled = int(round(ratio * width))
    return "█" * filled + "░" * (width - filled)


def health_marker(healthy: Optional[bool]) -> str:
    """Return ✓, ✗ or ⚠ for a tri-state health flag."""
    if healthy is None:
        return "⚠"
    return "✓" if healthy else "✗"
