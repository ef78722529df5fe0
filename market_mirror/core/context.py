"""
Application context shared by CLI commands through a ContextVar.

The context carries the loaded configuration, the CLI flags and the command
stack; services such as the sync engine are built per command from it.
"""

from contextvars import ContextVar
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """State shared down the CLI command hierarchy."""

    config: Dict[str, Any] = field(default_factory=dict)
    debug: bool = False
    verbose: bool = False
    dry_run: bool = False
    command_stack: List[str] = field(default_factory=list)

    def push_command(self, command_name: str) -> None:
        """Push a command onto the command stack."""
        self.command_stack.append(command_name)
        logger.debug(f"Command stack: {' -> '.join(self.command_stack)}")

    def pop_command(self) -> Optional[str]:
        """Pop the last command from the stack."""
        if self.command_stack:
            return self.command_stack.pop()
        return None


_app_context: ContextVar[Optional[AppContext]] = ContextVar('app_context', default=None)


def get_current_context() -> AppContext:
    """Get the current application context, creating an empty one if unset."""
    context = _app_context.get()
    if context is None:
        context = AppContext()
        _app_context.set(context)
    return context


def set_context(context: AppContext) -> None:
    """Set the application context."""
    _app_context.set(context)
