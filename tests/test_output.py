"""Tests for the shared output renderers."""

from __future__ import annotations

import io
import json

from rich.console import Console

from utils.output import Column, build_table, render_mapping, render_records, spinner, to_compact, to_csv

COLUMNS = (
    Column("symbol", "Symbol"),
    Column("price", "Price", formatter=lambda v: f"${v:,.2f}"),
    Column("note", "Note"),
)

RECORDS = [
    {"symbol": "BTC-USD", "price": 65000.5, "note": None},
    {"symbol": "AAPL", "price": 190.0, "note": "stock, US"},
]


def _console() -> Console:
    return Console(file=io.StringIO(), width=120, color_system=None)


def test_to_csv_writes_header_and_raw_values() -> None:
    lines = to_csv(RECORDS, COLUMNS).splitlines()
    assert lines[0] == "Symbol,Price,Note"
    assert lines[1] == "BTC-USD,65000.5,"
    assert lines[2] == 'AAPL,190.0,"stock, US"'


def test_to_compact_uses_display_values() -> None:
    assert to_compact(RECORDS, COLUMNS) == ["BTC-USD\t$65,000.50\t-", "AAPL\t$190.00\tstock, US"]


def test_build_table_has_one_row_per_record() -> None:
    table = build_table(RECORDS, COLUMNS, title="Prices")
    assert table.row_count == 2
    assert [column.header for column in table.columns] == ["Symbol", "Price", "Note"]


def test_render_records_json_prefers_raw_payload(capsys) -> None:
    render_records(_console(), RECORDS, COLUMNS, "json", raw={"prices": []})
    assert json.loads(capsys.readouterr().out) == {"prices": []}

    render_records(_console(), RECORDS, COLUMNS, "json")
    assert json.loads(capsys.readouterr().out)[0]["symbol"] == "BTC-USD"


def test_render_records_empty_table_prints_message() -> None:
    console = _console()
    render_records(console, [], COLUMNS, "table", empty_message="Nothing here.")
    assert "Nothing here." in console.file.getvalue()


def test_render_records_table_output() -> None:
    console = _console()
    render_records(console, RECORDS, COLUMNS, "table", title="Prices")
    text = console.file.getvalue()
    assert "BTC-USD" in text
    assert "$65,000.50" in text


def test_render_mapping_compact(capsys) -> None:
    render_mapping(_console(), {"Total": 3, "Open": 1}, "compact")
    assert capsys.readouterr().out.splitlines() == ["Total\t3", "Open\t1"]


def test_spinner_disabled_is_a_no_op() -> None:
    console = _console()
    with spinner(console, "Loading", enabled=False):
        pass
    assert console.file.getvalue() == ""
