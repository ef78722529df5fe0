"""CLI commands for reading, refreshing and favoriting mirrored items."""

import asyncio
import functools
import json
from decimal import Decimal
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich import box

from ..core.cli_base import ContextAwareCommand
from ..core.context import get_current_context
from ..core.logging import capture_exception
from ..data.errors import SyncError
from ..data.models import Item
from ..data.service import build_sync_engine

console = Console()


def async_command(f):
    """Decorator to make Click commands async-compatible."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def _fail(ctx: click.Context, message: str, error: Exception) -> None:
    """Report a failed operation and exit with status 1."""
    app_ctx = get_current_context()

    console.print(f"[red]{message}: {error}[/red]")
    capture_exception(error, {"command": ctx.info_name})
    if app_ctx.debug and getattr(error, 'cause', None) is not None:
        console.print(f"[dim]Caused by {type(error.cause).__name__}: {error.cause}[/dim]")

    ctx.exit(1)


def _currency() -> str:
    return str(get_current_context().config.get('remote', {}).get('currency', 'usd')).upper()


def _format_money(value: Optional[Decimal]) -> str:
    if value is None:
        return "N/A"
    if abs(value) < 1:
        return f"${value:,.6f}"
    return f"${value:,.2f}"


def _format_change(value: Optional[Decimal]) -> str:
    if value is None:
        return "N/A"
    color = "green" if value >= 0 else "red"
    sign = "+" if value >= 0 else "-"
    return f"[{color}]{sign}{_format_money(abs(value))}[/{color}]"


def _display_items_table(items: List[Item], title: str) -> None:
    """Display items in a rich table."""
    table = Table(title=f"{title} ({_currency()})", box=box.ROUNDED)
    table.add_column("#", style="dim", justify="right")
    table.add_column("★", style="yellow")
    table.add_column("Symbol", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Price", style="green", justify="right")
    table.add_column("24h Change", justify="right")
    table.add_column("Market Cap", style="blue", justify="right")

    for item in items:
        table.add_row(
            str(item.rank) if item.rank is not None else "-",
            "★" if item.is_favorite else "",
            item.symbol.upper(),
            item.name,
            _format_money(item.current_price),
            _format_change(item.price_change_24h),
            _format_money(item.market_cap),
        )

    console.print(table)


def _display_items_json(items: List[Item]) -> None:
    """Display items as JSON."""
    click.echo(json.dumps([item.to_dict() for item in items], indent=2, default=str))


def _display_item_detail(item: Item) -> None:
    """Display every stored field of one item."""
    table = Table(title=f"{item.name} ({item.symbol.upper()})", box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")

    for key, value in item.to_dict().items():
        table.add_row(key, "N/A" if value is None else str(value))

    console.print(table)


@click.command(name='list', cls=ContextAwareCommand)
@click.option('--refresh', 'force_refresh', is_flag=True, help='Fetch a fresh snapshot first')
@click.option('--search', '-s', 'search_text', help='Filter by symbol or name')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
              default='table', help='Output format')
@click.pass_context
@async_command
async def list_items(ctx, force_refresh: bool, search_text: Optional[str], output_format: str):
    """List mirrored items, reading the local store first.

    Examples:
        market-mirror list
        market-mirror list --refresh
        market-mirror list --search btc --format json
    """
    app_ctx = get_current_context()

    if force_refresh and app_ctx.dry_run:
        console.print("[yellow]DRY RUN: Would fetch a fresh snapshot before listing[/yellow]")
        return

    try:
        async with build_sync_engine(app_ctx.config) as engine:
            items = await engine.load(force_refresh=force_refresh)
            if search_text:
                items = engine.search(search_text)
    except SyncError as e:
        _fail(ctx, "Error loading items", e)
        return

    if not items:
        console.print("[yellow]No items found[/yellow]")
        return

    if output_format == 'json':
        _display_items_json(items)
    else:
        _display_items_table(items, "Market Items")


@click.command(cls=ContextAwareCommand)
@click.pass_context
@async_command
async def refresh(ctx):
    """Fetch a snapshot from the remote source and reconcile it locally."""
    app_ctx = get_current_context()

    if app_ctx.dry_run:
        limit = app_ctx.config.get('sync', {}).get('snapshot_limit', 20)
        console.print(f"[yellow]DRY RUN: Would fetch the top {limit} items and update the local store[/yellow]")
        return

    try:
        async with build_sync_engine(app_ctx.config) as engine:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console
            ) as progress:
                task = progress.add_task(f"Fetching snapshot from {engine.remote.name}...", total=None)
                items = await engine.refresh()
                progress.update(task, completed=True)
    except SyncError as e:
        _fail(ctx, "Refresh failed", e)
        return

    console.print(f"[green]✓ Refreshed {len(items)} items[/green]")


@click.command(cls=ContextAwareCommand)
@click.argument('item_id')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
              default='table', help='Output format')
@click.pass_context
@async_command
async def show(ctx, item_id: str, output_format: str):
    """Show one stored item, including items no longer in the snapshot."""
    app_ctx = get_current_context()

    try:
        async with build_sync_engine(app_ctx.config) as engine:
            item = await engine.item(item_id)
    except SyncError as e:
        _fail(ctx, "Error reading item", e)
        return

    if item is None:
        console.print(f"[red]No stored item with id '{item_id}'[/red]")
        ctx.exit(1)
        return

    if output_format == 'json':
        click.echo(json.dumps(item.to_dict(), indent=2, default=str))
    else:
        _display_item_detail(item)


@click.command(cls=ContextAwareCommand)
@click.argument('item_id')
@click.pass_context
@async_command
async def favorite(ctx, item_id: str):
    """Toggle the favorite mark of ITEM_ID."""
    app_ctx = get_current_context()

    if app_ctx.dry_run:
        console.print(f"[yellow]DRY RUN: Would toggle favorite for {item_id}[/yellow]")
        return

    try:
        async with build_sync_engine(app_ctx.config) as engine:
            is_favorite = await engine.toggle_favorite(item_id)
    except SyncError as e:
        _fail(ctx, "Error updating favorite", e)
        return

    if is_favorite:
        console.print(f"[green]★ {item_id} added to favorites[/green]")
    else:
        console.print(f"[yellow]☆ {item_id} removed from favorites[/yellow]")


@click.command(cls=ContextAwareCommand)
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
              default='table', help='Output format')
@click.pass_context
@async_command
async def favorites(ctx, output_format: str):
    """List favorited items, most recently marked first."""
    app_ctx = get_current_context()

    try:
        async with build_sync_engine(app_ctx.config) as engine:
            items = await engine.favorite_items()
    except SyncError as e:
        _fail(ctx, "Error loading favorites", e)
        return

    if not items:
        console.print("[yellow]No favorites yet[/yellow]")
        return

    if output_format == 'json':
        _display_items_json(items)
    else:
        _display_items_table(items, "Favorites")


@click.command(cls=ContextAwareCommand)
@click.confirmation_option(prompt='Delete all cached items? Favorites are kept.')
@click.pass_context
@async_command
async def invalidate(ctx):
    """Delete the cached items so the next list fetches again."""
    app_ctx = get_current_context()

    if app_ctx.dry_run:
        console.print("[yellow]DRY RUN: Would delete all cached items[/yellow]")
        return

    try:
        async with build_sync_engine(app_ctx.config) as engine:
            deleted = await engine.invalidate_cache()
    except SyncError as e:
        _fail(ctx, "Error invalidating cache", e)
        return

    console.print(f"[green]✓ Removed {deleted} cached items[/green]")


@click.command(cls=ContextAwareCommand)
@click.pass_context
@async_command
async def status(ctx):
    """Show local store contents and remote source health."""
    app_ctx = get_current_context()

    try:
        async with build_sync_engine(app_ctx.config) as engine:
            stored = await engine.store.count_items()
            in_snapshot = len(await engine.store.snapshot_item_ids())
            favorite_count = len(await engine.registry.favorite_ids())
            remote_healthy = await engine.remote.health_check()
            remote_name = engine.remote.name
            sync_config = engine.config
    except SyncError as e:
        _fail(ctx, "Error reading status", e)
        return

    table = Table(title="Market Mirror Status", box=box.ROUNDED)
    table.add_column("Component", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Stored items", str(stored))
    table.add_row("Items in latest snapshot", str(in_snapshot))
    table.add_row("Favorites", str(favorite_count))
    table.add_row("Snapshot limit", str(sync_config.snapshot_limit))
    table.add_row("Stale items", sync_config.stale_items.value)
    table.add_row("Empty snapshots", sync_config.empty_snapshot.value)

    remote_style = "green" if remote_healthy else "red"
    remote_status = "Healthy" if remote_healthy else "Unreachable"
    table.add_row(f"Remote ({remote_name})", f"[{remote_style}]{remote_status}[/{remote_style}]")

    console.print(table)


MARKET_COMMANDS = [list_items, refresh, show, favorite, favorites, invalidate, status]
