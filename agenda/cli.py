from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
from pathlib import Path

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from agenda import services
from agenda.config import get_settings
from agenda.controller import QueueController
from agenda.db import current_db_path, init_db, session_scope
from agenda.ranking import RankedItem, generate_vendor_agenda
from agenda.store import AgendaStore

app = typer.Typer(help="Ranked vendor meeting agendas and an interactive escalation queue")
console = Console()

QUIT = "quit"

QUEUE_HELP = """\
Commands (N is the rank shown in the table):
  up N | down N          escalate / de-escalate
  resolve N | delete N   drop from the queue (resolve keeps the record)
  add TITLE [| CONTEXT [| ASK]]
  edit N FIELD=VALUE ... fields: title, context, ask, priority
  refresh | export | show | help | quit"""

_SEVERITY_STYLE = {"critical": "bold red", "high": "dark_orange", "new": "blue", "normal": "dim"}


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    db: str | None = typer.Option(None, "--db", help="SQLite database file (overrides AGENDA_DB)."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if db:
        os.environ["AGENDA_DB"] = str(Path(db).expanduser().resolve())
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _render_items(title: str, items: list[RankedItem]) -> None:
    table = Table(title=title, show_header=True, header_style="bold cyan", box=ROUNDED)
    for column in ("#", "Type", "Severity", "Priority", "Topic", "Owner", "Age", "Esc", "Score"):
        table.add_column(column, justify="right" if column in ("#", "Age", "Esc", "Score") else "left")
    for item in items:
        table.add_row(
            str(item.rank),
            item.entity_type.replace("_", " "),
            f"[{_SEVERITY_STYLE.get(item.severity, 'dim')}]{item.severity.upper()}[/]",
            item.priority,
            item.title,
            item.owner_name or "-",
            f"{item.age_days or 0}d",
            str(item.escalation_count),
            f"{item.score:.0f}",
        )
    if not items:
        console.print(f"[dim]{title}: no open items.[/dim]")
        return
    console.print(table)


def _resolve_vendor(ref: str) -> tuple[int, str]:
    with session_scope() as session:
        vendor = services.find_vendor(session, ref)
        if vendor is None:
            console.print(f"[red]Vendor {ref!r} not found[/red]")
            raise typer.Exit(code=1)
        return vendor.id, vendor.name


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db_command(ctx: typer.Context) -> None:
    """Create the database tables if they do not exist."""
    init_db()
    path = str(current_db_path())
    if _wants_json(ctx):
        typer.echo(json.dumps({"database": path}))
    else:
        console.print(f"Database ready at [bold]{path}[/bold]")


@app.command("vendors")
def vendors_command(ctx: typer.Context) -> None:
    """List vendors."""
    init_db()
    with session_scope() as session:
        rows = [services.vendor_summary(v) for v in services.list_vendors(session)]
    if _wants_json(ctx):
        typer.echo(json.dumps(rows, indent=2, ensure_ascii=False))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Slug")
    for row in rows:
        table.add_row(str(row["id"]), row["name"], row["slug"])
    console.print(table)


@app.command("show")
def show_command(
    ctx: typer.Context,
    vendor: str = typer.Argument(..., help="Vendor id or slug"),
    limit: int | None = typer.Option(None, "--limit", "-n", min=1, help="Maximum items"),
) -> None:
    """Print the ranked agenda for a vendor."""
    init_db()
    with session_scope() as session:
        found = services.find_vendor(session, vendor)
        if found is None:
            console.print(f"[red]Vendor {vendor!r} not found[/red]")
            raise typer.Exit(code=1)
        items = generate_vendor_agenda(session, found.id, limit or get_settings().default_limit)
        payload = services.agenda_payload(found, items)
        name = found.name
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
        return
    _render_items(f"{name} Meeting Agenda", items)


@app.command("export")
def export_command(
    vendor: str = typer.Argument(..., help="Vendor id or slug"),
    limit: int | None = typer.Option(None, "--limit", "-n", min=1, help="Maximum items"),
) -> None:
    """Print the agenda as a copy-out text table."""
    init_db()
    vendor_id, _ = _resolve_vendor(vendor)
    queue = QueueController(AgendaStore(), vendor_id, limit or get_settings().default_limit)
    asyncio.run(queue.load())
    typer.echo(queue.export_snapshot())


# ---------------------------------------------------------------------------
# Interactive queue
# ---------------------------------------------------------------------------


def _item_at(queue: QueueController, token: str) -> RankedItem | None:
    try:
        rank = int(token.lstrip("#"))
    except ValueError:
        return None
    if 1 <= rank <= len(queue.items):
        return queue.items[rank - 1]
    return None


async def execute_command(queue: QueueController, line: str) -> str:
    """Apply one queue command; returns a status message or :data:`QUIT`."""
    line = line.strip()
    if not line:
        return ""
    verb, _, rest = line.partition(" ")
    verb = verb.lower()

    if verb in ("quit", "exit", "q"):
        return QUIT
    if verb in ("help", "?"):
        return QUEUE_HELP
    if verb in ("show", "ls"):
        return "show"
    if verb == "refresh":
        await queue.refresh()
        return f"Reloaded {len(queue.items)} items"
    if verb == "export":
        return queue.export_snapshot()
    if verb == "add":
        parts = [p.strip() for p in rest.split("|")]
        parts += [""] * (3 - len(parts))
        topic_id = await queue.add_item(parts[0], parts[1] or None, parts[2] or None)
        return "Title is required" if topic_id is None else f"Added discussion topic {topic_id}"

    args = rest.split()
    if not args:
        return f"Usage: {verb} N"
    item = _item_at(queue, args[0])
    if item is None:
        return f"No item #{args[0]}"

    if verb in ("up", "escalate"):
        return f"Escalated {item.title!r}" if queue.escalate(item) else "Already at the top"
    if verb in ("down", "deescalate"):
        return f"De-escalated {item.title!r}" if queue.deescalate(item) else "Already at the bottom"
    if verb == "resolve":
        queue.resolve(item)
        return f"Resolved {item.title!r}"
    if verb == "delete":
        queue.delete(item)
        return f"Deleted {item.title!r}"
    if verb == "edit":
        try:
            pairs = shlex.split(rest)[1:]
        except ValueError as exc:
            return f"Could not parse edit: {exc}"
        fields: dict[str, str] = {}
        for pair in pairs:
            name, sep, value = pair.partition("=")
            if not sep:
                return f"Expected FIELD=VALUE, got {pair!r}"
            fields[name.strip().lower()] = value
        if not fields:
            return "Nothing to edit"
        try:
            changed = queue.edit_item(item, fields)
        except ValueError as exc:
            return str(exc)
        return f"Updated {item.title!r}" if changed else "No applicable fields for this item"
    return f"Unknown command {verb!r}; type help"


async def _interactive(queue: QueueController, title: str) -> None:
    await queue.load()
    _render_items(title, queue.items)
    console.print(QUEUE_HELP, style="dim")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "agenda> ")
            except EOFError:
                break
            message = await execute_command(queue, line)
            if message == QUIT:
                break
            if message == "show" or message.startswith(("Escalated", "De-escalated", "Resolved",
                                                         "Deleted", "Added", "Reloaded", "Updated")):
                if message != "show":
                    console.print(message, style="green")
                _render_items(title, queue.items)
            elif message:
                console.print(message, markup=False)
    finally:
        await queue.drain()
        if queue.failed_writes:
            console.print(f"[yellow]{len(queue.failed_writes)} background write(s) failed; "
                          "run refresh to see the stored order.[/yellow]")


@app.command("queue")
def queue_command(
    vendor: str = typer.Argument(..., help="Vendor id or slug"),
    limit: int | None = typer.Option(None, "--limit", "-n", min=1, help="Maximum items"),
) -> None:
    """Open an interactive escalation queue for a vendor."""
    init_db()
    vendor_id, name = _resolve_vendor(vendor)
    queue = QueueController(AgendaStore(), vendor_id, limit or get_settings().default_limit)
    asyncio.run(_interactive(queue, f"{name} Meeting Agenda"))


@app.command("serve")
def serve_command() -> None:
    """Run the HTTP API."""
    from agenda.app import main as serve
    serve()


def main() -> None:
    app()


if __name__ == "__main__":
    main()
