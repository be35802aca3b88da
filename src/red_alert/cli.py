"""CLI entry point for Red Alert."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta

import click
from googleapiclient.errors import HttpError
from rich.markup import escape

from .auth import check_auth, get_services
from .calendar_client import GoogleCalendar
from .config import Settings, load_settings
from .constants import DEFAULT_HISTORY_LIMIT
from .display import (
    console,
    display_alert,
    display_alert_history,
    display_categories,
    display_messages,
    display_poll_outcome,
    display_processed,
    setup_logging,
)
from .errors import RedAlertError
from .extractor import create_extractor
from .gmail_client import GmailMailbox
from .models import Category
from .notifier import AlertBroadcaster
from .poller import AlertPoller
from .query import build_query, build_search_query
from .simulate import simulate_from_processed, simulate_test_alert
from .store import AlertStore


@contextmanager
def _cli_errors():
    try:
        yield
    except (RedAlertError, FileNotFoundError, ValueError, HttpError) as e:
        raise click.ClickException(str(e)) from e


def _settings() -> Settings:
    with _cli_errors():
        return load_settings()


def _build_notifier() -> AlertBroadcaster:
    notifier = AlertBroadcaster()
    notifier.subscribe(display_alert)
    return notifier


def _open_mailbox() -> GmailMailbox:
    gmail, _ = get_services()
    return GmailMailbox(gmail)


def _build_poller(settings: Settings, store: AlertStore) -> AlertPoller:
    gmail, calendar = get_services()
    notifier = _build_notifier()
    return AlertPoller(
        mailbox=GmailMailbox(gmail),
        calendar=GoogleCalendar(calendar, settings.calendar_id),
        extractor=create_extractor(settings),
        notifier=notifier,
        store=store,
        settings=settings,
    )


@click.group()
@click.version_option(version="0.1.0", prog_name="red-alert")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Red Alert - turn class and meeting emails into calendar events and alerts."""
    setup_logging(verbose)


# --- pipeline ---


@cli.command()
@click.option("--max-messages", default=None, type=int, help="Messages analyzed this cycle.")
@click.option("--no-delay", is_flag=True, help="Skip the pause between AI calls.")
def poll(max_messages: int | None, no_delay: bool) -> None:
    """Run one polling cycle now."""
    settings = _settings().override(
        max_messages_per_cycle=max_messages,
        ai_delay_seconds=0.0 if no_delay else None,
    )
    with AlertStore(settings.db_path) as store, _cli_errors():
        poller = _build_poller(settings, store)
        outcome = poller.trigger_poll()

    display_poll_outcome(outcome)
    if not outcome["success"]:
        raise click.exceptions.Exit(1)


@cli.command()
@click.option("-i", "--interval", default=None, type=float, help="Seconds between polling cycles.")
def run(interval: float | None) -> None:
    """Poll continuously on a fixed interval (Ctrl+C to stop)."""
    settings = _settings().override(poll_interval=interval)
    with AlertStore(settings.db_path) as store, _cli_errors():
        poller = _build_poller(settings, store)
        try:
            poller.run_forever()
        except KeyboardInterrupt:
            console.print("[dim]Stopped.[/dim]")


@cli.command()
def auth() -> None:
    """Test Gmail and Calendar authentication."""
    ok, message = check_auth()
    if not ok:
        raise click.ClickException(message)
    console.print(f"[green]{message}[/green]")


# --- categories ---


@cli.group(name="category")
def category_group() -> None:
    """Manage email categories."""


@category_group.command(name="list")
def category_list() -> None:
    """List all categories."""
    settings = _settings()
    with AlertStore(settings.db_path) as store:
        categories = store.list_categories()

    if not categories:
        console.print("[dim]No categories configured.[/dim]")
        return
    display_categories(categories)


@category_group.command(name="add")
@click.argument("name")
@click.option("--from", "from_filter", default=None, help="Sender filter (address or domain).")
@click.option("--subject", default=None, help="Comma-separated subject keywords.")
@click.option("--body", default=None, help="Comma-separated body keywords.")
@click.option("--description", default=None, help="Free-form description.")
@click.option("--inactive", is_flag=True, help="Create the category disabled.")
def category_add(
    name: str,
    from_filter: str | None,
    subject: str | None,
    body: str | None,
    description: str | None,
    inactive: bool,
) -> None:
    """Create a category."""
    category = Category(
        name=name,
        from_filter=from_filter,
        subject_keywords=subject,
        body_keywords=body,
        description=description,
        is_active=not inactive,
    )
    settings = _settings()
    with AlertStore(settings.db_path) as store, _cli_errors():
        created = store.create_category(category)

    console.print(f"[green]Created category {created.id}:[/green] {build_query(created)}")


@category_group.command(name="update")
@click.argument("category_id", type=int)
@click.option("--name", default=None)
@click.option("--from", "from_filter", default=None)
@click.option("--subject", default=None)
@click.option("--body", default=None)
@click.option("--description", default=None)
def category_update(
    category_id: int,
    name: str | None,
    from_filter: str | None,
    subject: str | None,
    body: str | None,
    description: str | None,
) -> None:
    """Change selected fields of a category (pass "" to clear one)."""
    settings = _settings()
    with AlertStore(settings.db_path) as store, _cli_errors():
        existing = store.get_category(category_id)
        updated = Category(
            name=name if name is not None else existing.name,
            from_filter=from_filter if from_filter is not None else existing.from_filter,
            subject_keywords=subject if subject is not None else existing.subject_keywords,
            body_keywords=body if body is not None else existing.body_keywords,
            description=description if description is not None else existing.description,
            is_active=existing.is_active,
        )
        saved = store.update_category(category_id, updated)

    console.print(f"[green]Updated category {saved.id}:[/green] {build_query(saved)}")


@category_group.command(name="toggle")
@click.argument("category_id", type=int)
def category_toggle(category_id: int) -> None:
    """Enable or disable a category."""
    settings = _settings()
    with AlertStore(settings.db_path) as store, _cli_errors():
        category = store.toggle_category(category_id)

    state = "active" if category.is_active else "inactive"
    console.print(f"Category '{category.name}' is now [bold]{state}[/bold].")


@category_group.command(name="delete")
@click.argument("category_id", type=int)
def category_delete(category_id: int) -> None:
    """Delete a category."""
    settings = _settings()
    with AlertStore(settings.db_path) as store, _cli_errors():
        store.delete_category(category_id)

    console.print(f"[green]Deleted category {category_id}.[/green]")


@category_group.command(name="query")
@click.argument("category_id", type=int)
def category_query(category_id: int) -> None:
    """Print the Gmail query a category polls with."""
    settings = _settings()
    with AlertStore(settings.db_path) as store, _cli_errors():
        category = store.get_category(category_id)

    click.echo(build_query(category))


# --- processed-email ledger ---


@cli.group(name="processed")
def processed_group() -> None:
    """Inspect the processed-email ledger."""


@processed_group.command(name="list")
@click.option("--category", "category_id", default=None, type=int, help="Only this category.")
def processed_list(category_id: int | None) -> None:
    """List processed emails, newest first."""
    settings = _settings()
    with AlertStore(settings.db_path) as store:
        records = store.list_processed(category_id)

    if not records:
        console.print("[dim]No processed emails.[/dim]")
        return
    display_processed(records)


@processed_group.command(name="count")
def processed_count() -> None:
    """Show how many emails have been processed."""
    settings = _settings()
    with AlertStore(settings.db_path) as store:
        count = store.count_processed()
    console.print(f"[bold]Processed emails:[/bold] {count}")


@processed_group.command(name="delete")
@click.argument("record_id", type=int)
def processed_delete(record_id: int) -> None:
    """Remove one ledger entry so its email can be processed again."""
    settings = _settings()
    with AlertStore(settings.db_path) as store, _cli_errors():
        store.delete_processed(record_id)
    console.print(f"[green]Deleted processed email {record_id}.[/green]")


@processed_group.command(name="clear")
@click.confirmation_option(prompt="Delete every processed-email record?")
def processed_clear() -> None:
    """Delete every ledger entry."""
    settings = _settings()
    with AlertStore(settings.db_path) as store:
        deleted = store.delete_all_processed()
    console.print(f"[green]Deleted {deleted} processed emails.[/green]")


# --- ad-hoc mailbox search ---


@cli.group(name="emails")
def emails_group() -> None:
    """Search the mailbox."""


@emails_group.command(name="search")
@click.option("--from", "from_filter", default=None, help="Sender filter.")
@click.option("--subject", default=None, help="Subject filter.")
@click.option("--body", default=None, help="Raw Gmail terms matched against the body.")
@click.option("--unread-only/--all", default=True, show_default=True, help="Only unread messages.")
@click.option("-n", "--max-results", default=10, type=click.IntRange(min=1), help="Maximum messages to show.")
def emails_search(
    from_filter: str | None,
    subject: str | None,
    body: str | None,
    unread_only: bool,
    max_results: int,
) -> None:
    """Search Gmail and show matching messages without processing them."""
    query = build_search_query(from_filter, subject, body, unread_only)
    console.print(f"[dim]Query: {escape(query)}[/dim]")
    with _cli_errors():
        mailbox = _open_mailbox()
        messages = [mailbox.fetch_full(mid) for mid in mailbox.search(query, max_results)]

    if not messages:
        console.print("[dim]No emails found.[/dim]")
        return
    display_messages(messages)


# --- alert history ---


@cli.group(name="alerts")
def alerts_group() -> None:
    """Inspect alert history and publish simulated alerts."""


@alerts_group.command(name="list")
@click.option("--limit", default=DEFAULT_HISTORY_LIMIT, type=int, help="Number of alerts to show.")
@click.option("--urgent", is_flag=True, help="Only urgent alerts.")
def alerts_list(limit: int, urgent: bool) -> None:
    """Show recent alerts."""
    settings = _settings()
    with AlertStore(settings.db_path) as store:
        alerts = store.recent_alerts(limit=limit, urgent_only=urgent)
        total = store.count_alerts(urgent_only=urgent)

    if not alerts:
        console.print("[dim]No alerts yet.[/dim]")
        return
    display_alert_history(alerts)
    console.print(f"[dim]Showing {len(alerts)} of {total}.[/dim]")


@alerts_group.command(name="simulate")
@click.argument("record_id", type=int)
def alerts_simulate(record_id: int) -> None:
    """Publish an urgent alert built from processed email RECORD_ID."""
    settings = _settings()
    with AlertStore(settings.db_path) as store, _cli_errors():
        saved = simulate_from_processed(store, _build_notifier(), record_id)
    console.print(f"[green]Simulated alert {saved.id} saved.[/green]")


@alerts_group.command(name="test")
@click.option("--title", default=None, help="Alert title.")
@click.option("--description", default=None, help="Alert description.")
@click.option("--url", default=None, help="Link shown with the alert.")
def alerts_test(title: str | None, description: str | None, url: str | None) -> None:
    """Publish an urgent test alert."""
    settings = _settings()
    with AlertStore(settings.db_path) as store, _cli_errors():
        saved = simulate_test_alert(store, _build_notifier(), title, description, url)
    console.print(f"[green]Test alert {saved.id} saved.[/green]")


@alerts_group.command(name="clear")
@click.confirmation_option(prompt="Delete the whole alert history?")
def alerts_clear() -> None:
    """Delete all alerts."""
    settings = _settings()
    with AlertStore(settings.db_path) as store:
        deleted = store.clear_alerts()
    console.print(f"[green]Cleared {deleted} alerts.[/green]")


@alerts_group.command(name="prune")
@click.option("--days", required=True, type=click.IntRange(min=0), help="Keep alerts newer than this.")
def alerts_prune(days: int) -> None:
    """Delete alerts older than N days."""
    settings = _settings()
    with AlertStore(settings.db_path) as store:
        deleted = store.delete_alerts_older_than(datetime.now() - timedelta(days=days))
    console.print(f"[green]Deleted {deleted} alerts older than {days} days.[/green]")


# --- calendar maintenance ---


@cli.group(name="calendar")
def calendar_group() -> None:
    """Calendar maintenance."""


@calendar_group.command(name="clear-day")
@click.argument("day", type=click.DateTime(formats=["%Y-%m-%d"]))
@click.confirmation_option(prompt="Delete every event on that day?")
def calendar_clear_day(day: datetime) -> None:
    """Delete all events on DAY (YYYY-MM-DD)."""
    settings = _settings()
    with _cli_errors():
        _, calendar_service = get_services()
        deleted = GoogleCalendar(calendar_service, settings.calendar_id).clear_day(day.date())
    console.print(f"[green]Deleted {deleted} events on {day.date().isoformat()}.[/green]")
