"""happykit — lifecycle orchestration for command-line applications."""

from __future__ import annotations

from happykit.addons import Addon, AddonManager, hookimpl
from happykit.app import Application
from happykit.command import Command, Phase
from happykit.config import Setting, SettingSpec
from happykit.flags import Flag
from happykit.services import Service
from happykit.session import Session

__version__ = "0.1.0"

__all__ = [
    "Addon",
    "AddonManager",
    "Application",
    "Command",
    "Flag",
    "Phase",
    "Service",
    "Session",
    "Setting",
    "SettingSpec",
    "__version__",
    "hookimpl",
]
