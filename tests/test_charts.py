"""Tests for the terminal chart helpers."""

from __future__ import annotations

import pytest

from utils import charts


def _candles():
    return [
        {"open": 100, "high": 105, "low": 95, "close": 104, "volume": 1000},
        {"open": 104, "high": 110, "low": 102, "close": 108, "volume": 3000},
        {"open": 108, "high": 109, "low": 98, "close": 99, "volume": 2000},
    ]


def test_sparkline_scales_between_min_and_max() -> None:
    assert charts.sparkline(list(range(8))) == charts.SPARK_LEVELS
    assert charts.sparkline([0, 7]) == "▁█"
    assert charts.sparkline([]) == ""
    assert charts.sparkline([3, 3, 3]) == "───"
    assert charts.sparkline(["x", None]) == ""


def test_sparkline_resamples_to_width() -> None:
    line = charts.sparkline(list(range(100)), width=10)
    assert len(line) == 10
    assert line[-1] == "█"


def test_candlestick_grid_has_one_row_per_level() -> None:
    rows = charts.candlestick_grid(_candles(), height=6, width=10)
    assert len(rows) == 6
    assert any("█" in row for row in rows)
    assert any("▓" in row for row in rows)
    assert "[green]" in "".join(rows)
    assert "[red]" in "".join(rows)
    assert charts.candlestick_grid([], height=6) == []


def test_gauge_and_macd_bar() -> None:
    assert charts.gauge(50, 0, 100, width=10) == "█████░░░░░"
    assert charts.gauge(None, width=3) == "░░░"
    assert charts.macd_bar(5.0) == "─────▲▲▲▲▲"
    assert charts.macd_bar(0) == "─" * 10
    assert charts.macd_bar(-5.0) == "─▼▼▼▼▼────"


def test_price_change_and_stats() -> None:
    change, percent = charts.price_change(_candles())
    assert change == pytest.approx(-5.0)
    assert percent == pytest.approx(-4.8077, rel=1e-3)
    assert charts.price_change([{"close": 1}]) == (0.0, 0.0)

    stats = charts.candle_stats(_candles())
    assert stats["high"] == 110
    assert stats["low"] == 95
    assert stats["avg_volume"] == pytest.approx(2000)
    assert stats["points"] == 3
    assert stats["volatility"] > 0
    assert charts.candle_stats([]) is None
