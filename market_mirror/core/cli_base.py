"""Click base classes that track the running command on the app context."""

import click
from typing import Any

from .context import get_current_context


class ContextAwareGroup(click.Group):
    """
    Click Group that records itself on the command stack.

    Log records emitted while the group runs carry the stack through
    ``ContextFilter``.
    """

    def invoke(self, ctx: click.Context) -> Any:
        app_ctx = get_current_context()
        app_ctx.push_command(ctx.info_name)

        try:
            return super().invoke(ctx)
        finally:
            app_ctx.pop_command()


class ContextAwareCommand(click.Command):
    """Click Command that records itself on the command stack."""

    def invoke(self, ctx: click.Context) -> Any:
        app_ctx = get_current_context()
        app_ctx.push_command(ctx.info_name)

        try:
            return super().invoke(ctx)
        finally:
            app_ctx.pop_command()
