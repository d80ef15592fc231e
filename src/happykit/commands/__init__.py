"""Built-in commands applications can add to their command tree."""

from __future__ import annotations

from happykit.commands.info import info

__all__ = ["info"]
