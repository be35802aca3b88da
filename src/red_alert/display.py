"""Rich-based display functions for Red Alert."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .models import AlertRecord, Category, ExtractedAlert, ProcessedMessageRecord, RawMessage
from .query import build_query

console = Console()
log_console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> None:
    """Route stdlib logging through Rich on stderr, keeping stdout for output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=log_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # googleapiclient logs every discovery fetch at INFO
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)


def _fmt(value) -> str:
    if value is None:
        return ""
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d %H:%M")
    return str(value)


def display_categories(categories: list[Category]) -> None:
    """Display categories with their generated Gmail query."""
    table = Table(title="Categories")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Name")
    table.add_column("Active")
    table.add_column("Query")

    for category in categories:
        active = "[green]yes[/green]" if category.is_active else "[dim]no[/dim]"
        table.add_row(str(category.id), category.name, active, build_query(category))

    console.print(table)


def display_processed(records: list[ProcessedMessageRecord]) -> None:
    table = Table(title="Processed Emails")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Received")
    table.add_column("From")
    table.add_column("Subject")
    table.add_column("Category")
    table.add_column("Processed")

    for r in records:
        table.add_row(
            str(r.id),
            _fmt(r.received_at),
            r.sender,
            r.subject or "",
            r.category_name or "",
            _fmt(r.processed_at),
        )

    console.print(table)
    console.print(Panel(f"Total processed emails: {len(records)}", title="Summary"))


def display_alert_history(alerts: list[AlertRecord]) -> None:
    table = Table(title="Alert History")
    table.add_column("ID", justify="right", style="dim")
    table.add_column("When")
    table.add_column("Title")
    table.add_column("Urgent")
    table.add_column("URL")

    for a in alerts:
        color = "red" if a.is_urgent else "white"
        table.add_row(
            str(a.id),
            _fmt(a.alert_date),
            f"[{color}]{escape(a.title)}[/{color}]",
            f"[{color}]{'yes' if a.is_urgent else 'no'}[/{color}]",
            a.url or "",
        )

    console.print(table)


def display_alert(alert: ExtractedAlert) -> None:
    """Render a published alert; urgent alerts are shown in red."""
    color = "red" if alert.is_urgent else "blue"
    lines = [
        f"[bold]When:[/bold] {_fmt(alert.date)}",
    ]
    if alert.url:
        lines.append(f"[bold]URL:[/bold] {alert.url}")
    if alert.calendar_link:
        lines.append(f"[bold]Calendar:[/bold] {alert.calendar_link}")
    if alert.description:
        lines.append("")
        lines.append(escape(alert.description))

    title = f"[bold {color}]{'URGENT: ' if alert.is_urgent else ''}{escape(alert.title)}[/bold {color}]"
    console.print(Panel("\n".join(lines), title=title, border_style=color))


def display_poll_outcome(outcome: dict) -> None:
    """Display the summary returned by a manual poll trigger."""
    result = outcome.get("result") or {}
    if not outcome.get("success"):
        console.print(f"[red]Polling failed: {escape(str(outcome.get('error')))}[/red] [dim]({outcome['timestamp']})[/dim]")
    else:
        console.print(f"[green]{outcome.get('message')}[/green] [dim]({outcome['timestamp']})[/dim]")

    if result:
        console.print(
            Panel(
                f"Categories: {result['categories_polled']}  |  "
                f"Found: {result['messages_found']}  |  "
                f"Analyzed: {result['analyzed']}  |  "
                f"Matched: {result['matched']}  |  "
                f"Skipped: {result['skipped']}  |  "
                f"Deferred: {result['deferred']}",
                title="Cycle",
            )
        )
        for error in result.get("errors", []):
            console.print(f"[yellow]  - {escape(error)}[/yellow]")


def display_messages(messages: list[RawMessage]) -> None:
    """Display mailbox search results."""
    table = Table(title="Emails")
    table.add_column("ID", style="dim")
    table.add_column("Date")
    table.add_column("From")
    table.add_column("Subject")
    table.add_column("Snippet")

    for m in messages:
        table.add_row(m.message_id, m.date, escape(m.sender), escape(m.subject or ""), escape(m.snippet or ""))

    console.print(table)
