"""
Interventions CLI

Command-line interface for running and administering the intervention engine.

Commands:
- worker: Run the engine until SIGINT/SIGTERM
- publish: Publish an event to the queue
- queue-status: Show queue and archive sizes
- add-user: Add a user
- list-users: List users
- delete-user: Delete a user

Handler modules listed in HANDLER_MODULES are imported and their
``register(engine)`` function is called before the worker starts and before
an event is published.
"""

import asyncio
import importlib
import json
import logging
import signal
from datetime import datetime
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from basecore.logging import setup_logging
from basecore.settings import get_settings
from interventions_core.contracts.event import utcnow
from interventions_core.contracts.types import ARCHIVED_EVENTS, EVENT_QUEUE
from interventions_core.contracts.user import NewUserRecord
from interventions_core.engine import InterventionEngine

app = typer.Typer(
    name="interventions",
    help="Intervention engine CLI",
)

console = Console()
logger = logging.getLogger(__name__)


def load_handler_modules(engine: InterventionEngine, modules: list[str]) -> None:
    """Import each module and call its register(engine) hook."""
    for name in modules:
        module = importlib.import_module(name)
        register = getattr(module, "register", None)
        if register is None:
            raise typer.BadParameter(f"Handler module '{name}' has no register(engine) function")
        register(engine)
        logger.info(f"Loaded handler module {name}")


def parse_json_option(value: Optional[str], option: str) -> dict:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        rprint(f"[red]Invalid JSON for {option}: {e}[/red]")
        raise typer.Exit(1)
    if not isinstance(parsed, dict):
        rprint(f"[red]{option} must be a JSON object[/red]")
        raise typer.Exit(1)
    return parsed


def build_engine(load_handlers: bool = False) -> InterventionEngine:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    engine = InterventionEngine(settings=settings)
    if load_handlers:
        load_handler_modules(engine, settings.handler_modules)
    return engine


async def _run_worker(engine: InterventionEngine) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def request_shutdown(signum: int) -> None:
        logger.info(f"Received signal {signum}, requesting shutdown...")
        stop.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, request_shutdown, signum)

    await engine.init()
    try:
        await engine.start_engine()
        logger.info(
            f"Worker running (backend={engine.settings.STORE_BACKEND}, "
            f"events={engine.registry.get_registered_events()})"
        )
        await stop.wait()
    finally:
        await engine.shutdown()
        logger.info("Worker shut down gracefully")


@app.command()
def worker():
    """
    Run the engine: drain the event queue and react to new events.

    Runs until SIGINT or SIGTERM, then shuts down gracefully.
    """
    engine = build_engine(load_handlers=True)
    if not engine.registry.get_registered_events():
        rprint("[yellow]Warning: no event handlers registered (check HANDLER_MODULES)[/yellow]")
    asyncio.run(_run_worker(engine))


@app.command()
def publish(
    event_type: str = typer.Argument(..., help="Event type to publish"),
    details: Optional[str] = typer.Option(None, help="Event details as a JSON object"),
    timestamp: Optional[datetime] = typer.Option(None, help="Generated timestamp (defaults to now)"),
):
    """
    Publish an event to the queue.

    The event is only written when handlers are bound to its type.
    """
    event_details = parse_json_option(details, "--details")
    engine = build_engine(load_handlers=True)

    async def _publish():
        await engine.store.init()
        try:
            return await engine.publish_event(event_type, timestamp or utcnow(), event_details)
        finally:
            await engine.store.close()

    event = asyncio.run(_publish())
    if event is None:
        rprint(f"[yellow]No handlers bound to '{event_type}'; nothing published[/yellow]")
        raise typer.Exit(1)

    rprint("[green]Event published:[/green]")
    rprint(f"  ID: {event.id}")
    rprint(f"  Type: {event.event_type}")
    rprint(f"  Details: {json.dumps(event.event_details)}")


@app.command()
def queue_status():
    """Show how many events are queued and archived."""
    engine = build_engine()

    async def _status():
        await engine.store.init()
        try:
            queued = await engine.store.get_all_in_collection(EVENT_QUEUE)
            archived = await engine.store.get_all_in_collection(ARCHIVED_EVENTS)
            return queued, archived
        finally:
            await engine.store.close()

    queued, archived = asyncio.run(_status())

    table = Table(title="Event Queue")
    table.add_column("Collection", style="cyan")
    table.add_column("Events", justify="right")
    table.add_row(EVENT_QUEUE, str(len(queued)))
    table.add_row(ARCHIVED_EVENTS, str(len(archived)))
    console.print(table)

    if queued:
        pending = Table(title="Pending Events")
        pending.add_column("ID", style="dim")
        pending.add_column("Type", style="cyan")
        pending.add_column("Published")
        for doc in queued:
            pending.add_row(doc["id"], doc["event_type"], str(doc.get("published_timestamp") or ""))
        console.print(pending)


async def _with_users(engine: InterventionEngine, action):
    await engine.users.init()
    try:
        return await action()
    finally:
        await engine.users.shutdown()
        await engine.store.close()


@app.command()
def add_user(
    unique_identifier: str = typer.Argument(..., help="Unique identifier for the user"),
    attributes: Optional[str] = typer.Option(None, help="Initial attributes as a JSON object"),
):
    """Add a user."""
    initial_attributes = parse_json_option(attributes, "--attributes")
    engine = build_engine()

    async def _add():
        return await engine.add_user(NewUserRecord(unique_identifier, initial_attributes))

    user = asyncio.run(_with_users(engine, _add))
    if user is None:
        rprint(f"[yellow]User '{unique_identifier}' was not added (already exists?)[/yellow]")
        raise typer.Exit(1)

    rprint("[green]User added:[/green]")
    rprint(f"  ID: {user.id}")
    rprint(f"  Identifier: {user.unique_identifier}")
    rprint(f"  Attributes: {json.dumps(user.attributes)}")


@app.command()
def list_users():
    """List users."""
    engine = build_engine()

    async def _list():
        return engine.get_all_users()

    users = asyncio.run(_with_users(engine, _list))
    if not users:
        rprint("[yellow]No users found[/yellow]")
        return

    table = Table(title="Users")
    table.add_column("ID", style="dim")
    table.add_column("Identifier", style="cyan")
    table.add_column("Attributes")
    for user in users:
        table.add_row(user.id, user.unique_identifier, json.dumps(user.attributes))
    console.print(table)


@app.command()
def delete_user(
    unique_identifier: str = typer.Argument(..., help="Unique identifier of the user to delete"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Delete a user and their protected attributes."""
    if not force:
        confirm = typer.confirm(f"Delete user {unique_identifier}?")
        if not confirm:
            rprint("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)

    engine = build_engine()

    async def _delete():
        if engine.get_user(unique_identifier) is None:
            return None
        return await engine.delete_user(unique_identifier)

    deleted = asyncio.run(_with_users(engine, _delete))
    if deleted is None:
        rprint(f"[red]No user found with identifier: {unique_identifier}[/red]")
        raise typer.Exit(1)
    if not deleted:
        rprint(f"[red]Failed to delete user: {unique_identifier}[/red]")
        raise typer.Exit(1)

    rprint("[green]User deleted successfully[/green]")


def main():
    app()


if __name__ == "__main__":
    main()
