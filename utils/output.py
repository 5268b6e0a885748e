"""
Output rendering for DWLF CLI commands.

Commands build flat records and describe them with :class:`Column`; the same
records are rendered as a Rich table, compact tab-separated lines, JSON or CSV
depending on ``--format``.
"""

from __future__ import annotations

import csv
import io
import json
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

OUTPUT_FORMATS = ("table", "compact", "json", "csv")

Record = Mapping[str, Any]


@dataclass(frozen=True)
class Column:
    """Column description shared by every output mode."""

    key: str
    header: str
    justify: str = "left"
    style: Optional[str] = None
    style_for: Optional[Callable[[Record], Optional[str]]] = None
    formatter: Optional[Callable[[Any], str]] = None

    def display(self, record: Record) -> str:
        value = record.get(self.key)
        if self.formatter is not None and value is not None:
            return self.formatter(value)
        return _cell(value)


def format_option(default: Optional[str] = None) -> Callable:
    """Reusable ``--format`` option; ``None`` falls back to the configured default."""

    return click.option(
        "--format",
        "output_format",
        type=click.Choice(OUTPUT_FORMATS, case_sensitive=False),
        default=default,
        help="Output format (defaults to the configured outputFormat).",
    )


def _cell(value: Any) -> str:
    if value is None:
        return "-"
    return str(value)


def to_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=str)


def to_csv(records: Sequence[Record], columns: Sequence[Column]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([column.header for column in columns])
    for record in records:
        writer.writerow(["" if record.get(column.key) is None else record.get(column.key) for column in columns])
    return buffer.getvalue().rstrip("\n")


def to_compact(records: Sequence[Record], columns: Sequence[Column]) -> List[str]:
    return ["\t".join(column.display(record) for column in columns) for record in records]


def build_table(records: Sequence[Record], columns: Sequence[Column], title: Optional[str] = None) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    for column in columns:
        table.add_column(column.header, justify=column.justify, style=column.style)
    for record in records:
        cells = []
        for column in columns:
            style = column.style_for(record) if column.style_for else None
            cells.append(Text(column.display(record), style=style or ""))
        table.add_row(*cells)
    return table


def render_records(
    console: Console,
    records: Sequence[Record],
    columns: Sequence[Column],
    output_format: str = "table",
    *,
    title: Optional[str] = None,
    raw: Any = None,
    empty_message: str = "No results found.",
) -> None:
    """Render ``records`` in the requested output mode.

    ``raw`` overrides the JSON payload so ``--format json`` can emit the
    original API response instead of the display records.
    """

    fmt = (output_format or "table").lower()
    if fmt == "json":
        click.echo(to_json(raw if raw is not None else list(records)))
        return
    if fmt == "csv":
        click.echo(to_csv(records, columns))
        return
    if not records:
        console.print(f"[yellow]{escape(empty_message)}[/yellow]")
        return
    if fmt == "compact":
        for line in to_compact(records, columns):
            click.echo(line)
        return
    console.print(build_table(records, columns, title=title))


def render_mapping(
    console: Console,
    values: Mapping[str, Any],
    output_format: str = "table",
    *,
    title: Optional[str] = None,
) -> None:
    """Render a single key/value summary."""

    records: List[Dict[str, Any]] = [{"field": key, "value": value} for key, value in values.items()]
    columns = [Column("field", "Field", style="bold white"), Column("value", "Value")]
    render_records(console, records, columns, output_format, title=title, raw=dict(values))


@contextmanager
def spinner(console: Console, label: str, enabled: bool = True) -> Iterator[None]:
    """Show a transient Rich spinner while the wrapped block runs."""

    if not enabled:
        yield
        return

    progress = Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        transient=True,
        console=console,
    )
    with progress:
        progress.add_task(f"{label}…", total=None)
        yield
