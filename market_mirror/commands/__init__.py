"""
Command modules for the Market Mirror CLI.

Commands are registered on the main group by ``market_mirror.cli``.
"""

from market_mirror.commands.market import MARKET_COMMANDS

__all__ = [
    "MARKET_COMMANDS",
]
