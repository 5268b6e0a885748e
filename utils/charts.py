"""
Text charts for terminal output: sparklines, candlestick grid, gauges.
"""

from __future__ import annotations

from typing import Any, List, Mapping, Optional, Sequence

from utils.helpers import format_price, safe_float_convert

SPARK_LEVELS = "▁▂▃▄▅▆▇█"


def _numbers(values: Sequence[Any]) -> List[float]:
    numbers = []
    for value in values:
        number = safe_float_convert(value, None)
        if number is not None:
            numbers.append(number)
    return numbers


def _resample(values: List[float], width: int) -> List[float]:
    if width <= 0 or len(values) <= width:
        return values
    step = len(values) / width
    return [values[int(index * step)] for index in range(width - 1)] + [values[-1]]


def sparkline(values: Sequence[Any], width: int = 40) -> str:
    """Render values as a single line of block characters."""

    numbers = _resample(_numbers(values), width)
    if not numbers:
        return ""
    low, high = min(numbers), max(numbers)
    spread = high - low
    if spread == 0:
        return "─" * len(numbers)
    top = len(SPARK_LEVELS) - 1
    return "".join(SPARK_LEVELS[int(round((value - low) / spread * top))] for value in numbers)


def candlestick_grid(
    candles: Sequence[Mapping[str, Any]],
    height: int = 10,
    width: int = 60,
) -> List[str]:
    """Return Rich-markup rows drawing OHLC candles top to bottom.

    Bullish bodies are ``█``, bearish ``▓``, wicks ``│``; green for up
    candles, red for down.
    Each row ends with the price level it represents.
    """

    parsed = []
    for candle in candles:
        values = [safe_float_convert(candle.get(key), None) for key in ("open", "high", "low", "close")]
        if None not in values:
            parsed.append(values)
    if not parsed or height <= 0:
        return []

    step = max(1, len(parsed) // width) if width > 0 else 1
    sampled = parsed[::step][-width:] if width > 0 else parsed

    low = min(candle[2] for candle in sampled)
    high = max(candle[1] for candle in sampled)
    spread = high - low

    rows: List[str] = []
    for row in range(height - 1, -1, -1):
        level = low + spread * row / height if spread else low
        cells = []
        for open_, candle_high, candle_low, close in sampled:
            colour = "green" if close >= open_ else "red"
            body_top, body_bottom = max(open_, close), min(open_, close)
            char = " "
            if candle_low <= level <= candle_high:
                body = "█" if close >= open_ else "▓"
                char = body if body_bottom <= level <= body_top else "│"
            cells.append(f"[{colour}]{char}[/{colour}]" if char != " " else " ")
        rows.append("".join(cells) + f" [dim]{format_price(level)}[/dim]")
    return rows


def gauge(value: Any, low: float = 0.0, high: float = 100.0, width: int = 20) -> str:
    """Horizontal gauge showing where ``value`` sits between ``low`` and ``high``."""

    number = safe_float_convert(value, None)
    if number is None or high <= low:
        return "░" * width
    ratio = min(max((number - low) / (high - low), 0.0), 1.0)
    filled = int(round(ratio * width))
    return "█" * filled + "░" * (width - filled)


def macd_bar(histogram: Any, max_histogram: float = 5.0, width: int = 10) -> str:
    """Centred bar: ▲ grows right of centre for positive values, ▼ left for negative."""

    number = safe_float_convert(histogram, 0.0)
    normalized = max(-1.0, min(1.0, number / max_histogram)) if max_histogram else 0.0
    center = width // 2
    reach = int(round(normalized * center))
    cells = []
    for index in range(width):
        if normalized > 0 and center <= index < center + reach:
            cells.append("▲")
        elif normalized < 0 and center + reach < index <= center:
            cells.append("▼")
        else:
            cells.append("─")
    return "".join(cells)


def price_change(candles: Sequence[Mapping[str, Any]]) -> tuple[float, float]:
    """Absolute and percentage change between the first and last close."""

    closes = _numbers([candle.get("close") for candle in candles])
    if len(closes) < 2:
        return 0.0, 0.0
    first, last = closes[0], closes[-1]
    change = last - first
    percent = (change / first * 100) if first else 0.0
    return change, percent


def candle_stats(candles: Sequence[Mapping[str, Any]]) -> Optional[dict]:
    """High, low, average volume and close volatility (stdev / mean × 100)."""

    if not candles:
        return None
    highs = _numbers([candle.get("high") for candle in candles])
    lows = _numbers([candle.get("low") for candle in candles])
    volumes = _numbers([candle.get("volume") for candle in candles])
    closes = _numbers([candle.get("close") for candle in candles])
    if not closes:
        return None

    mean = sum(closes) / len(closes)
    variance = sum((close - mean) ** 2 for close in closes) / len(closes)
    volatility = (variance ** 0.5) / mean * 100 if mean else 0.0
    return {
        "high": max(highs) if highs else max(closes),
        "low": min(lows) if lows else min(closes),
        "avg_volume": sum(volumes) / len(volumes) if volumes else 0.0,
        "volatility": volatility,
        "points": len(candles),
    }
