#!/usr/bin/env python3
"""
ReportQL Report Runner

Validate, run and export a report configuration from the command line.

    python scripts/run_report.py report.json
    python scripts/run_report.py report.json --execute --export csv
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from reportql.services.report_query import ReportQueryService

console = Console()

MAX_DISPLAY_ROWS = 50


# -----------------------------
# Display Functions
# -----------------------------


def show_header():
    """Display the application header."""
    header = Text()
    header.append("ReportQL", style="bold bright_cyan")
    header.append(" - Report Runner", style="dim")

    console.print()
    console.print(Panel(header, box=box.DOUBLE, border_style="bright_blue", padding=(0, 2)))
    console.print()


def show_validation(validation: dict):
    """Display validation errors, warnings and the complexity summary."""
    for error in validation["errors"]:
        console.print(f"[red]✗[/red] {error}")
    for warning in validation["warnings"]:
        console.print(f"[yellow]![/yellow] {warning}")

    summary = validation.get("summary") or {}
    if summary:
        table = Table(title="[bold cyan]Summary[/bold cyan]", box=box.ROUNDED, show_header=False)
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        for key, value in summary.items():
            table.add_row(key, str(value))
        console.print(table)

    if validation["valid"]:
        console.print("[green]✓[/green] Configuration is valid")
    console.print()


def show_sql(sql_text: str, bindings: list):
    """Display the generated SQL and its bound values."""
    formatted_sql = sql_text
    for keyword in (" FROM ", " LEFT OUTER JOIN ", " JOIN ", " WHERE ", " GROUP BY ", " ORDER BY ", " LIMIT "):
        formatted_sql = formatted_sql.replace(keyword, "\n" + keyword.strip() + " ")

    syntax = Syntax(formatted_sql, "sql", theme="monokai", line_numbers=False)
    console.print(Panel(syntax, title="[bold yellow]Generated SQL[/bold yellow]", border_style="yellow"))
    if bindings:
        console.print(f"[dim]Bindings: {bindings}[/dim]")
    console.print()


def show_results(rows: list[dict], columns: list[dict]):
    """Display report rows in a table."""
    if not rows:
        console.print("[dim]No results found.[/dim]")
        return

    table = Table(
        title=f"[bold cyan]Results ({len(rows)} rows)[/bold cyan]",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold magenta",
    )
    for column in columns:
        table.add_column(column["label"], style="cyan")

    for row in rows[:MAX_DISPLAY_ROWS]:
        table.add_row(*[_display(row.get(column["name"])) for column in columns])

    if len(rows) > MAX_DISPLAY_ROWS:
        console.print(f"[dim](Showing first {MAX_DISPLAY_ROWS} of {len(rows)} rows)[/dim]")

    console.print(table)


def show_error(response: dict):
    """Display a sanitized error response."""
    error = response["error"]
    lines = [f"[red]{error['message']}[/red]"]
    for detail in error["details"].get("validation_errors", []):
        lines.append(f"  • {detail}")
    for suggestion in error["suggestions"]:
        lines.append(f"[dim]→ {suggestion}[/dim]")
    lines.append(f"[dim]Error ID: {error['error_id']}[/dim]")
    console.print(Panel("\n".join(lines), title=f"[bold red]{error['code']}[/bold red]", border_style="red"))


def _display(value) -> str:
    return "NULL" if value is None else str(value)


# -----------------------------
# Main Processing
# -----------------------------


def load_config(path: Path) -> dict:
    with path.open(encoding="utf-8") as handle:
        return json.load(handle)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Validate, run and export a ReportQL report")
    parser.add_argument("config", type=Path, help="Path to a JSON report configuration")
    parser.add_argument("--execute", action="store_true", help="Execute the report")
    parser.add_argument("--export", metavar="FORMAT", help="Export the rows (csv, excel, json, xml, pdf)")
    parser.add_argument("--seed", type=int, default=0, metavar="ORDERS", help="Seed demo data first")
    parser.add_argument("--tenant", help="Tenant to scope tenant-scoped tables to")
    parser.add_argument("--verbose", action="store_true", help="Show debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    show_header()

    try:
        config = load_config(args.config)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Could not read configuration: {e}[/red]")
        sys.exit(1)

    if args.seed:
        from reportql.db.seed import seed

        with console.status("[bold cyan]Seeding demo data...[/bold cyan]", spinner="dots"):
            seed(orders=args.seed)
        console.print(f"[green]✓[/green] Seeded {args.seed} orders")

    service = ReportQueryService()

    validation = service.validate(config)
    show_validation(validation)
    if not validation["valid"]:
        sys.exit(1)

    if args.execute or args.export:
        with console.status("[bold cyan]Executing report...[/bold cyan]", spinner="dots"):
            response = service.execute(config, tenant=args.tenant)
        if not response["success"]:
            show_error(response)
            sys.exit(1)

        meta = response["meta"]
        show_sql(meta["query_sql"], meta["query_bindings"])
        show_results(response["data"], response["columns"])
        console.print(f"[dim]{meta['row_count']} rows in {meta['execution_time_ms']} ms[/dim]")
        console.print()

    if args.export:
        with console.status("[bold cyan]Exporting...[/bold cyan]", spinner="dots"):
            exported = service.export(config, args.export, tenant=args.tenant)
        if not exported["success"]:
            show_error(exported)
            sys.exit(1)
        console.print(f"[green]✓[/green] Exported {exported['rows']} rows to {exported['filepath']}")


if __name__ == "__main__":
    main()
