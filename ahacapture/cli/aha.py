#!/usr/bin/env python3
"""
Command line front end for ahacapture.

Usage:
    aha capture "text" --note N -g GROUP -c CAT     - Start a new thread
    aha capture "text" --reply-to ID -g G -c C      - Reply to a thread
    aha list                                        - Open threads by group/category
    aha thread ID                                   - Show a thread
    aha done|reopen|trash|restore ID                - Lifecycle changes
    aha sync                                        - Merge the remote store
    aha daemon start                                - Serve the HTTP API
"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Tuple

import click
import httpx
from loguru import logger
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from ..engine.config import Config
from ..engine.context import EngineContext
from ..engine.errors import AhaError
from ..engine.handoff import CaptureTrigger, CONTEXT_MENU_MODE
from ..engine.main import setup_logging
from ..engine.models import CaptureDraft, Entry, EntryStatus, Source
from ..engine.threads import GroupedView, SortOrder

console = Console()


def prompt_credentials() -> Tuple[str, str]:
    """Interactive sign-in used when the remote store needs a session."""
    email = click.prompt("Email")
    password = click.prompt("Password", hide_input=True)
    return email, password


async def report_failure(event) -> None:
    console.print(f"[yellow]Warning:[/yellow] {event.data.get('message')}")


def run_engine(ctx: click.Context, action: Callable[[EngineContext], Awaitable[Any]]) -> Any:
    """Open the engine, run one action, close it. Engine errors exit with status 1."""
    config: Config = ctx.obj["config"]

    async def runner():
        engine = EngineContext(config)
        engine.prompt = prompt_credentials
        engine.bus.subscribe("*.failed", report_failure)
        async with engine:
            return await action(engine)

    try:
        return asyncio.run(runner())
    except AhaError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def age(timestamp: int) -> str:
    delta = datetime.now() - datetime.fromtimestamp(timestamp / 1000)
    seconds = int(delta.total_seconds())
    if seconds < 3600:
        return f"{max(seconds // 60, 0)}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def summary(entry: Entry, width: int = 60) -> str:
    text = entry.note or entry.content
    text = " ".join(text.split())
    return text if len(text) <= width else text[:width - 3] + "..."


STATUS_STYLE = {
    EntryStatus.ACTIVE: "green",
    EntryStatus.DONE: "blue",
    EntryStatus.TRASH: "red",
    EntryStatus.UNKNOWN: "magenta",
}


def entry_label(entry: Entry) -> str:
    style = STATUS_STYLE[entry.status]
    local = " [dim](local)[/dim]" if entry.is_local else ""
    return f"[cyan]{entry.id}[/cyan] [{style}]{entry.status_value}[/{style}] {summary(entry)} [dim]{age(entry.timestamp)}[/dim]{local}"


def display_grouped(view: GroupedView, title: str) -> None:
    if not len(view):
        console.print("[yellow]Nothing here[/yellow]")
        return

    tree = Tree(f"[bold]{title}[/bold] ({len(view)})")
    for group_name, categories in view.groups.items():
        group_node = tree.add(f"[bold magenta]{group_name}[/bold magenta]")
        for category, items in categories.items():
            cat_node = group_node.add(f"[magenta]{category or '-'}[/magenta]")
            for entry in items:
                cat_node.add(entry_label(entry))
    if view.unsorted:
        unsorted = tree.add("[dim]Unsorted[/dim]")
        for entry in view.unsorted:
            unsorted.add(entry_label(entry))
    console.print(tree)


def display_thread(view: dict) -> None:
    root: Entry = view["root"]
    console.print(f"[bold]{root.note or summary(root)}[/bold]  [dim]{root.id}[/dim]")
    if root.group:
        console.print(f"[magenta]{root.group} / {root.category or '-'}[/magenta]")
    if root.source:
        console.print(f"[dim]{root.source.display}[/dim]")
    console.print(root.content)
    console.print()

    replies = view["replies"]
    if not replies:
        console.print("[dim]No replies[/dim]")
        return

    table = Table(title=f"Replies ({len(replies)}, {view['order'].value})")
    table.add_column("ID", style="cyan")
    table.add_column("Content", no_wrap=False)
    table.add_column("Note")
    table.add_column("Status")
    table.add_column("Age", justify="right")
    for entry in replies:
        style = STATUS_STYLE[entry.status]
        table.add_row(
            entry.id,
            entry.content,
            entry.note or "",
            f"[{style}]{entry.status_value}[/{style}]",
            age(entry.timestamp)
        )
    console.print(table)


@click.group()
@click.option("--config", "-C", "config_path", type=click.Path(exists=True, dir_okay=False),
              help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_path: Optional[str], verbose: bool):
    """ahacapture - capture notes into threads, synced across devices."""
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        ctx.obj["config"] = Config.load(Path(config_path) if config_path else None)
    setup_logging(level="DEBUG" if verbose else "WARNING")


@cli.command()
@click.argument("text", required=False)
@click.option("--note", "-n", help="Short label; required for a new thread")
@click.option("--group", "-g", help="Group")
@click.option("--category", "-c", help="Category")
@click.option("--reply-to", "-r", help="Entry id or thread key to reply to")
@click.option("--url", "-u", help="Page the text came from")
@click.option("--full-url", is_flag=True, help="Keep the full URL instead of the site root")
@click.option("--source", "source_label", help="Custom source label")
@click.option("--pending", is_flag=True, help="Use the pending capture handed off by the browser")
@click.pass_context
def capture(ctx, text: Optional[str], note: Optional[str], group: Optional[str],
            category: Optional[str], reply_to: Optional[str], url: Optional[str],
            full_url: bool, source_label: Optional[str], pending: bool):
    """Capture a note, starting a thread or replying to one."""

    async def action(engine: EngineContext) -> Entry:
        trigger = await engine.pending.take() if pending else None
        if trigger is None:
            trigger = CaptureTrigger(text=text or "", url=url)
        source = Source.custom(source_label) if source_label else None
        draft = trigger.draft(
            content=text,
            group=group,
            category=category,
            note=note,
            source=source,
            full_url=full_url
        )
        return await engine.capture(draft, reply_to=reply_to)

    entry = run_engine(ctx, action)
    where = "locally" if entry.is_local else "and synced"
    console.print(f"[green]✓[/green] Captured {where}: [cyan]{entry.id}[/cyan]")


@cli.command(name="list")
@click.option("--status", "-s", "statuses", multiple=True,
              type=click.Choice(["active", "done", "trash"]), help="Statuses to show (default active)")
@click.option("--query", "-q", help="Filter by content")
@click.option("--asc", is_flag=True, help="Oldest first")
@click.pass_context
def list_entries(ctx, statuses: Tuple[str, ...], query: Optional[str], asc: bool):
    """Show thread anchors grouped by group and category."""
    wanted = [EntryStatus(s) for s in statuses] or [EntryStatus.ACTIVE]
    order = SortOrder.ASC if asc else SortOrder.DESC
    view = run_engine(ctx, lambda engine: engine.context_list(statuses=wanted, query=query, order=order))
    display_grouped(view, " + ".join(s.value for s in wanted).title())


@cli.command()
@click.argument("reference")
@click.option("--query", "-q", help="Filter replies by content")
@click.option("--desc", is_flag=True, help="Newest replies first")
@click.pass_context
def thread(ctx, reference: str, query: Optional[str], desc: bool):
    """Show a thread and its replies."""
    order = SortOrder.DESC if desc else SortOrder.ASC
    view = run_engine(ctx, lambda engine: engine.thread(reference, query=query, order=order))
    display_thread(view)


def _status_command(name: str, method: str, verb: str):
    @cli.command(name=name)
    @click.argument("entry_id")
    @click.pass_context
    def command(ctx, entry_id: str):
        entry = run_engine(ctx, lambda engine: getattr(engine.lifecycle, method)(entry_id))
        console.print(f"[green]✓[/green] {verb} [cyan]{entry.id}[/cyan] ({entry.status_value})")
    command.__doc__ = f"{verb} an entry."
    return command


_status_command("done", "mark_done", "Completed")
_status_command("reopen", "reopen", "Reopened")
_status_command("trash", "trash", "Trashed")
_status_command("restore", "restore", "Restored")


@cli.command()
@click.argument("entry_id")
@click.option("--content", help="New content")
@click.option("--note", help="New note")
@click.option("--clear-note", is_flag=True, help="Remove the note")
@click.pass_context
def edit(ctx, entry_id: str, content: Optional[str], note: Optional[str], clear_note: bool):
    """Edit the content or note of an entry."""
    kwargs: dict = {}
    if content is not None:
        kwargs["content"] = content
    if clear_note:
        kwargs["note"] = None
    elif note is not None:
        kwargs["note"] = note
    entry = run_engine(ctx, lambda engine: engine.lifecycle.edit(entry_id, **kwargs))
    console.print(f"[green]✓[/green] Updated [cyan]{entry.id}[/cyan]")


@cli.command()
@click.argument("entry_id")
@click.confirmation_option(prompt="Delete permanently from every device?")
@click.pass_context
def delete(ctx, entry_id: str):
    """Permanently delete an entry locally and remotely."""
    entry = run_engine(ctx, lambda engine: engine.lifecycle.delete_permanently(entry_id))
    console.print(f"[green]✓[/green] Deleted [cyan]{entry.id}[/cyan]")


@cli.command(name="empty-trash")
@click.confirmation_option(prompt="Permanently delete everything in the trash?")
@click.pass_context
def empty_trash(ctx):
    """Permanently delete every trashed entry."""
    removed = run_engine(ctx, lambda engine: engine.lifecycle.empty_trash())
    console.print(f"[green]✓[/green] Deleted {len(removed)} entries")


@cli.command()
@click.pass_context
def sync(ctx):
    """Merge open entries from the remote store into the local cache."""
    result = run_engine(ctx, lambda engine: engine.sync.merge())
    if result.ok:
        console.print(
            f"[green]✓ Synced[/green]: {result.fetched} fetched, "
            f"{result.added} new, {result.updated} updated"
        )
    else:
        console.print(f"[red]Sync failed:[/red] {result.error}")
        sys.exit(1)


@cli.command()
@click.option("--remove-group", help="Forget a group suggestion")
@click.option("--remove-category", help="Forget a category suggestion")
@click.pass_context
def suggestions(ctx, remove_group: Optional[str], remove_category: Optional[str]):
    """Show or prune the group and category suggestions."""

    async def action(engine: EngineContext) -> dict:
        if remove_group:
            await engine.store.remove_suggestion("group", remove_group)
        if remove_category:
            await engine.store.remove_suggestion("category", remove_category)
        return await engine.store.suggestions()

    data = run_engine(ctx, action)
    console.print(f"[bold]Groups:[/bold] {', '.join(data['groups']) or '-'}")
    console.print(f"[bold]Categories:[/bold] {', '.join(data['categories']) or '-'}")


@cli.command()
@click.argument("thread_key")
@click.option("--on/--off", "enabled", default=True, help="Fetch this thread automatically")
@click.pass_context
def autofetch(ctx, thread_key: str, enabled: bool):
    """Set the auto-fetch preference of a thread."""
    run_engine(ctx, lambda engine: engine.store.set_thread_autofetch(thread_key, enabled))
    console.print(f"Auto-fetch for [cyan]{thread_key}[/cyan]: {'on' if enabled else 'off'}")


@cli.command(name="display-mode")
@click.argument("mode", required=False, type=click.Choice(["popup", "window"]))
@click.pass_context
def display_mode(ctx, mode: Optional[str]):
    """Show or set how the capture form opens."""

    async def action(engine: EngineContext) -> str:
        if mode:
            await engine.store.set_display_mode(mode)
        return await engine.store.display_mode()

    console.print(f"Display mode: [cyan]{run_engine(ctx, action)}[/cyan]")


@cli.command()
@click.confirmation_option(prompt="Clear the local cache, suggestions and preferences?")
@click.pass_context
def reset(ctx):
    """Clear all local data. Remote entries come back on the next sync."""
    run_engine(ctx, lambda engine: engine.store.clear())
    console.print("[green]✓[/green] Local data cleared")


@cli.command()
@click.pass_context
def pending(ctx):
    """Show and consume the pending capture, if any."""
    trigger = run_engine(ctx, lambda engine: engine.pending.take())
    if trigger is None:
        console.print("[dim]No pending capture[/dim]")
        return
    console.print(f"[bold]{trigger.mode}[/bold] {trigger.url or ''}")
    console.print(trigger.text)


@cli.command()
@click.argument("text")
@click.option("--url", "-u", help="Page the selection came from")
@click.pass_context
def push(ctx, text: str, url: Optional[str]):
    """Hand a page selection to the running daemon for capture."""
    config: Config = ctx.obj["config"]
    daemon_url = f"http://{config.api.host}:{config.api.port}"
    try:
        response = httpx.post(
            f"{daemon_url}/pending-capture",
            json={"text": text, "url": url, "mode": CONTEXT_MENU_MODE},
            timeout=5.0
        )
    except httpx.ConnectError:
        console.print("[red]Cannot connect to daemon. Is it running?[/red]")
        console.print("Start with: [cyan]aha daemon start[/cyan]")
        sys.exit(1)

    if response.status_code == 202:
        console.print("[green]✓[/green] Selection handed off")
    else:
        console.print(f"[red]Failed to hand off[/red]: {response.text}")
        sys.exit(1)


@cli.group()
def daemon():
    """Manage the capture daemon."""


@daemon.command()
@click.pass_context
def start(ctx):
    """Run the daemon in the foreground."""
    from ..engine.main import CaptureDaemon

    config: Config = ctx.obj["config"]
    setup_logging(config.log_dir, level="INFO")
    console.print("[cyan]Starting capture daemon...[/cyan]")

    async def serve():
        server = CaptureDaemon(config)
        await server.start()
        try:
            await server.wait()
        finally:
            await server.stop()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        console.print("\n[yellow]Daemon stopped by user[/yellow]")


@daemon.command()
@click.pass_context
def status(ctx):
    """Check whether the daemon is running."""
    config: Config = ctx.obj["config"]
    try:
        response = httpx.get(f"http://{config.api.host}:{config.api.port}/status", timeout=2.0)
    except httpx.ConnectError:
        console.print("[red]✗ Daemon is not running[/red]")
        console.print("Start with: [cyan]aha daemon start[/cyan]")
        return

    data = response.json()
    console.print("[green]✓ Daemon is running[/green]")
    console.print(f"\nUptime: {data.get('uptime', 'unknown')}")
    console.print(f"Mode: {data.get('store_mode')}")
    console.print(f"Entries: {data.get('entries', 0)}")
    if data.get("degraded"):
        console.print(f"[yellow]{data['degraded']}[/yellow]")


@cli.command(name="init-config")
@click.argument("path", type=click.Path(dir_okay=False), default="ahacapture.yaml")
@click.option("--local", is_flag=True, help="Local-only store, no remote")
def init_config(path: str, local: bool):
    """Write a starter config file."""
    config = Config(store_mode="local" if local else "remote")
    config.save(Path(path))
    console.print(f"[green]✓[/green] Wrote {path}")
    logger.debug(f"Config written to {path}")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
