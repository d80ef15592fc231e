"""Addon layer — extensions contributing settings, commands and services.

Lifecycle notifications are dispatched via pluggy.
INVARIANT: Notification failures are warnings, never errors.
"""

from happykit.addons.base import Addon
from happykit.addons.hookspecs import hookimpl
from happykit.addons.manager import AddonManager

__all__ = ["Addon", "AddonManager", "hookimpl"]
