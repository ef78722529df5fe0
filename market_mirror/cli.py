"""
Main CLI module for Market Mirror.

This module provides the ``market-mirror`` entry point: global flags, the
layered configuration load and logging setup that every command relies on,
and registration of the market commands.
"""

import logging
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from market_mirror.core.context import get_current_context
from market_mirror.core.config import ConfigManager, ConfigError
from market_mirror.core.logging import setup_logging as setup_structured_logging
from market_mirror.core.cli_base import ContextAwareGroup, ContextAwareCommand

# Global instances
console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False, verbose: bool = False) -> None:
    """Set up console logging used until the configuration is loaded."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True)],
        force=True
    )

    logging.getLogger("market_mirror").setLevel(level)


def load_configuration(config_file: Optional[str], debug: bool, verbose: bool) -> Dict[str, Any]:
    """Load layered configuration and apply the verbosity flags to it.

    Args:
        config_file: Explicit configuration file from ``--config``
        debug: ``--debug`` flag
        verbose: ``--verbose`` flag

    Returns:
        Merged configuration dictionary
    """
    config_manager = ConfigManager(config_file=config_file)
    config_manager.initialize()

    if debug or verbose:
        level = 'DEBUG' if debug else 'INFO'
        config_manager.set('logging.level', level)
        config_manager.set('logging.handlers.console.level', level)

    return config_manager.get_all()


@click.group(cls=ContextAwareGroup, invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config', '-c', type=click.Path(exists=True, dir_okay=False), help='Configuration file path')
@click.option('--dry-run', is_flag=True, help='Show what would be done without executing')
@click.pass_context
def main(ctx: click.Context, debug: bool, verbose: bool, config: Optional[str], dry_run: bool) -> None:
    """
    Market Mirror - keep a local, offline-capable copy of market listings.

    Items are served from the local store when it has data and fetched from
    the remote market-data service when it is empty or a refresh is asked
    for. Favorites are kept locally and survive every refresh.
    """
    setup_logging(debug, verbose)

    app_ctx = get_current_context()
    app_ctx.debug = debug
    app_ctx.verbose = verbose
    app_ctx.dry_run = dry_run

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    try:
        app_ctx.config = load_configuration(config, debug, verbose)
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        raise click.ClickException(f"Configuration failed: {e}")

    setup_structured_logging(app_ctx.config)
    logger.debug("Application initialized")


@main.command(cls=ContextAwareCommand)
def version() -> None:
    """Show version information."""
    from market_mirror import __version__

    app_ctx = get_current_context()

    console.print(f"[bold]Market Mirror[/bold] v{__version__}")

    if app_ctx.verbose:
        storage = app_ctx.config.get('storage', {})
        remote = app_ctx.config.get('remote', {})
        console.print(f"Storage: {storage.get('backend', 'sqlite')} ({storage.get('path', '-')})")
        console.print(f"Remote: {remote.get('base_url', '-')}")


def register_commands():
    """Register all market commands with the main CLI."""
    from market_mirror.commands.market import MARKET_COMMANDS

    for command in MARKET_COMMANDS:
        main.add_command(command)


register_commands()


if __name__ == '__main__':
    main()
