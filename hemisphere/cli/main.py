"""
Hemisphere operator CLI.

Inspect and drain the persisted response outbox of this machine.

Commands:
- hemisphere outbox status : List undelivered responses
- hemisphere outbox flush  : Deliver them through the HTTP transport
- hemisphere outbox clear  : Delete the persisted outbox
"""
from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from datetime import datetime

import typer
from loguru import logger
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config import Settings, get_settings
from hemisphere.errors import StorageError
from hemisphere.integrations.transport import HttpResponseTransport
from hemisphere.runtime.context import create_runtime
from hemisphere.runtime.models import DeadLetterEntry, OutboxStatus
from hemisphere.runtime.outbox import ResponseTransport, load_persisted_queue
from hemisphere.runtime.scheduler import AsyncioScheduler
from hemisphere.runtime.storage import FileStorage

console = Console()

app = typer.Typer(
    name="hemisphere",
    help="Hemisphere session runtime tools",
    no_args_is_help=True,
)

outbox_app = typer.Typer(
    name="outbox",
    help="Inspect and drain the persisted response outbox",
    no_args_is_help=True,
)
app.add_typer(outbox_app, name="outbox")


@dataclass
class FlushReport:
    """What a CLI flush achieved."""

    restored: int = 0
    delivered: dict[str, str] = field(default_factory=dict)
    dead_letters: list[DeadLetterEntry] = field(default_factory=list)
    still_pending: int = 0


def _storage(settings: Settings) -> FileStorage:
    return FileStorage(settings.storage_dir)


def _format_ms(timestamp: int | None) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")


async def drain_outbox(
    settings: Settings,
    transport: ResponseTransport,
    timeout_seconds: float,
    poll_seconds: float = 0.1,
) -> FlushReport:
    """Rehydrate the persisted outbox and deliver until settled or timed out."""
    scheduler = AsyncioScheduler()
    runtime = create_runtime(settings, transport=transport, scheduler=scheduler)
    outbox = runtime.outbox
    report = FlushReport(restored=len(outbox.outbox_queue))

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_seconds
    while outbox.get_pending_count() and loop.time() < deadline:
        await scheduler.wait_idle()
        if outbox.get_pending_count():
            await asyncio.sleep(poll_seconds)

    report.delivered = dict(outbox.confirmed_ids)
    report.dead_letters = list(outbox.dead_letter_queue)
    report.still_pending = outbox.get_pending_count()
    outbox.close()
    return report


def _configure_logging(settings: Settings, verbose: bool) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="5 MB", retention=3)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    _configure_logging(get_settings(), verbose)


@outbox_app.command("status")
def outbox_status():
    """
    Show responses waiting for delivery.

    Examples:
        hemisphere outbox status
    """
    settings = get_settings()
    entries = load_persisted_queue(_storage(settings), settings.outbox_storage_key)

    if not entries:
        console.print("[green]Outbox is empty - all responses delivered.[/green]")
        return

    table = Table(title=f"Outbox ({len(entries)} pending)", box=box.ROUNDED)
    table.add_column("Client ID", style="cyan")
    table.add_column("Item")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Enqueued")
    table.add_column("Last Error", style="red")

    for entry in entries:
        status = (
            "[yellow]retrying[/yellow]"
            if entry.status is OutboxStatus.RETRYING
            else "[blue]pending[/blue]"
        )
        table.add_row(
            entry.client_id,
            entry.response.item_id,
            entry.response.stage.value,
            status,
            str(entry.attempts),
            _format_ms(entry.enqueued_at),
            entry.last_error or "",
        )

    console.print(table)


@outbox_app.command("flush")
def outbox_flush(
    timeout: float = typer.Option(
        30.0,
        "--timeout", "-t",
        help="Seconds to keep retrying before giving up",
    ),
):
    """
    Deliver persisted responses to the API.

    Retries follow the normal backoff schedule. Responses that exhaust their
    attempts are reported and dropped from the persisted outbox.

    Examples:
        hemisphere outbox flush
        hemisphere outbox flush --timeout 60
    """
    settings = get_settings()
    if not load_persisted_queue(_storage(settings), settings.outbox_storage_key):
        console.print("[green]Nothing to flush.[/green]")
        return

    async def _run() -> FlushReport:
        async with HttpResponseTransport.from_settings(settings) as transport:
            return await drain_outbox(settings, transport, timeout)

    report = asyncio.run(_run())

    console.print(Panel(
        f"Restored: {report.restored}\n"
        f"Delivered: [green]{len(report.delivered)}[/green]\n"
        f"Failed: [red]{len(report.dead_letters)}[/red]\n"
        f"Still pending: [yellow]{report.still_pending}[/yellow]",
        title="Outbox flush",
        border_style="cyan",
    ))

    if report.dead_letters:
        table = Table(title="Undeliverable responses", box=box.SIMPLE)
        table.add_column("Client ID", style="cyan")
        table.add_column("Item")
        table.add_column("Attempts", justify="right")
        table.add_column("Last Error", style="red")
        for dead in report.dead_letters:
            table.add_row(dead.client_id, dead.response.item_id, str(dead.attempts), dead.last_error or "")
        console.print(table)

    if report.dead_letters or report.still_pending:
        raise typer.Exit(1)


@outbox_app.command("clear")
def outbox_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """
    Delete the persisted outbox without delivering it.

    Examples:
        hemisphere outbox clear --yes
    """
    settings = get_settings()
    storage = _storage(settings)
    entries = load_persisted_queue(storage, settings.outbox_storage_key)

    if not yes and entries:
        typer.confirm(f"Discard {len(entries)} undelivered responses?", abort=True)

    try:
        storage.remove_item(settings.outbox_storage_key)
    except StorageError as exc:
        console.print(f"[red]Could not clear outbox: {exc}[/red]")
        raise typer.Exit(1)
    console.print(f"[yellow]Cleared {len(entries)} outbox entries.[/yellow]")


def run() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    run()
