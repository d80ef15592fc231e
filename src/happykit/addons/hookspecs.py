"""Pluggy hook specifications for happykit lifecycle notifications.

Addons (and any other registered plugin) may implement these with
``@hookimpl`` to observe the application lifecycle. Notifications carry
no return value and cannot influence control flow.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from happykit.session import Session

PROJECT_NAME = "happykit"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)
hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class HappykitHookSpec:
    """Hook specifications for the happykit addon system."""

    @hookspec
    def happykit_addon_loaded(
        self,
        session: Session,
        slug: str,
        version: str,
        configured: bool,
    ) -> None:
        """Called after an addon's defaults were applied."""

    @hookspec
    def happykit_command_resolved(self, session: Session, command_path: list[str]) -> None:
        """Called once the current command has been resolved."""

    @hookspec
    def happykit_exit(self, session: Session, code: int) -> None:
        """Called when the application finalizes its exit code."""
