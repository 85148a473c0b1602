import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from eventrelay import VERSION
from eventrelay.constants import (
    EXIT_CODE_FAILURE,
    EXIT_CODE_INVALID_INPUT,
    EXIT_CODE_OK,
    KEEPALIVE_PAYLOAD_LIMIT,
)
from eventrelay.errors import RelayError
from eventrelay.models import EventRecord
from eventrelay.streaming import EventQueue, QueueConfig, partition
from eventrelay.utils import byte_length, serialize

LOG = logging.getLogger(__name__)

console = Console()
cli = typer.Typer(
    rich_markup_mode="rich",
    name="eventrelay",
    help="Batch, deduplicate and deliver telemetry events.",
    no_args_is_help=True,
)


def configure_logger(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.CRITICAL
    logging.basicConfig(format="%(asctime)s %(name)s => %(message)s", level=level)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"eventrelay {VERSION}")
        raise typer.Exit()


@cli.callback()
def main(
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the version and exit.",
    ),
) -> None:
    configure_logger(debug)


def load_events(path: Path) -> List[EventRecord]:
    """
    Read one JSON event record per line. Blank lines are skipped.

    Raises:
        typer.Exit: A line is not valid JSON or not a valid event record.
    """
    events = []

    with open(path, encoding="utf-8") as fp:
        for number, line in enumerate(fp, start=1):
            if not line.strip():
                continue
            try:
                events.append(EventRecord.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                console.print(f"[red]Line {number}: invalid event record[/red]\n{escape(str(e))}")
                raise typer.Exit(code=EXIT_CODE_INVALID_INPUT)

    LOG.debug("Loaded %d events from %s", len(events), path)
    return events


async def deliver(events: List[EventRecord], config: QueueConfig) -> dict:
    async with EventQueue(config) as queue:
        for event in events:
            queue.enqueue(event)
        await queue.drain()
        return queue.stats


@cli.command()
def send(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON lines file of event records."),
    write_key: Optional[str] = typer.Option(None, "--write-key", envvar="EVENTRELAY_WRITE_KEY", help="Project write key."),
    api_host: Optional[str] = typer.Option(None, "--api-host", help="Collection endpoint URL."),
    flush_at: Optional[int] = typer.Option(None, "--flush-at", help="Events per request batch (1-20)."),
    retry_count: Optional[int] = typer.Option(None, "--retry-count", help="Retries for transient failures (1-5)."),
) -> None:
    """
    Deliver the events in FILE to the collection endpoint.
    """
    events = load_events(file)

    try:
        config = QueueConfig.from_settings(
            write_key=write_key,
            api_host=api_host,
            flush_at=flush_at,
            retry_count=retry_count,
        )
    except RelayError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=e.get_exit_code())

    stats = asyncio.run(deliver(events, config))

    table = Table(title=f"Delivery to {config.api_host}")
    table.add_column("Read", justify="right")
    table.add_column("Duplicates", justify="right")
    table.add_column("Sent", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_row(
        str(len(events)),
        str(stats["duplicates"]),
        str(stats["events_sent"]),
        str(stats["events_failed"]),
    )
    console.print(table)

    raise typer.Exit(code=EXIT_CODE_FAILURE if stats["events_failed"] else EXIT_CODE_OK)


@cli.command()
def split(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON lines file of event records."),
    limit: int = typer.Option(KEEPALIVE_PAYLOAD_LIMIT, "--limit", min=1, help="Keepalive body limit in bytes."),
) -> None:
    """
    Show how FILE would be split into requests, without sending anything.
    """
    payloads = [event.to_payload() for event in load_events(file)]
    chunks = partition(payloads, limit=limit)

    table = Table(title=f"{len(payloads)} events, {len(chunks)} request(s)")
    table.add_column("#", justify="right")
    table.add_column("Events", justify="right")
    table.add_column("Bytes", justify="right")
    table.add_column("Keepalive")

    for index, chunk in enumerate(chunks, start=1):
        table.add_row(
            str(index),
            str(len(chunk)),
            str(byte_length(serialize(chunk.events))),
            "yes" if chunk.keepalive else "[yellow]no[/yellow]",
        )

    console.print(table)
