"""Addon registration, loading, and lifecycle notification.

Addons are processed strictly in registration order: each addon's
defaults are layered under values that are already set (by the user, the
application, or an earlier addon), then — when the addon reports itself
configured — its commands and services are contributed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import pluggy

from happykit.addons.base import Addon
from happykit.addons.hookspecs import PROJECT_NAME, HappykitHookSpec
from happykit.config.profile import valid_setting_key
from happykit.errors import AddonError, InvalidSettingsKeyError

if TYPE_CHECKING:
    from happykit.command import Command
    from happykit.services.manager import ServiceManager
    from happykit.session import Session

logger = logging.getLogger(__name__)


class AddonManager:
    """Ordered addon registry backed by a pluggy plugin manager."""

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(HappykitHookSpec)
        self._addons: list[Addon] = []

    def __len__(self) -> int:
        return len(self._addons)

    def addons(self) -> list[Addon]:
        """Registered addons in registration order."""
        return list(self._addons)

    def register(self, addon: Addon) -> None:
        """Register *addon*; its ``@hookimpl`` methods receive notifications."""
        if not isinstance(addon, Addon):
            msg = f"not an addon: {addon!r}"
            raise AddonError(msg)
        if any(a.slug == addon.slug for a in self._addons):
            msg = f"addon {addon.slug!r} already registered"
            raise AddonError(msg)
        try:
            self._pm.register(addon, name=f"addon.{addon.slug}")
        except (ValueError, pluggy.PluginValidationError) as exc:
            raise AddonError(f"addon {addon.slug!r}: {exc}") from exc
        self._addons.append(addon)
        logger.debug("Registered addon: %s %s", addon.slug, addon.version)

    def register_plugin(self, plugin: object, name: str | None = None) -> None:
        """Register a plain pluggy plugin that only observes notifications."""
        resolved_name = name or plugin.__class__.__name__
        self._pm.register(plugin, name=resolved_name)
        logger.debug("Registered plugin: %s", resolved_name)

    @property
    def hook(self) -> pluggy.HookRelay:
        return self._pm.hook

    def load(
        self,
        session: Session,
        add_command: Callable[[Command], None],
        services: ServiceManager,
    ) -> None:
        """Apply every addon, in registration order.

        Raises:
            InvalidSettingsKeyError: a namespaced default key is malformed.
            AddonError: an addon failed to produce its contributions.
            ServiceError: contributed services could not be registered.
        """
        for addon in self._addons:
            logger.debug("Loading addon %s %s", addon.slug, addon.version)
            self._apply_defaults(session, addon)

            try:
                configured = addon.configured(session)
            except Exception as exc:
                raise AddonError(f"addon {addon.slug!r}: {exc}") from exc
            if configured:
                try:
                    commands = addon.commands()
                    contributed = addon.services()
                except Exception as exc:
                    raise AddonError(f"addon {addon.slug!r}: {exc}") from exc
                for command in commands:
                    add_command(command)
                services.register(*contributed)
            else:
                logger.info("Addon %s is not configured", addon.slug)

            self.notify(
                "happykit_addon_loaded",
                session=session,
                slug=addon.slug,
                version=addon.version,
                configured=configured,
            )

    def notify(self, hook_name: str, **payload: Any) -> None:
        """Dispatch a lifecycle notification.

        INVARIANT: Notification failures are warnings, never errors.
        """
        hook_fn = getattr(self._pm.hook, hook_name, None)
        if hook_fn is None:
            return
        try:
            hook_fn(**payload)
        except Exception:
            logger.warning("Addon hook %s failed", hook_name, exc_info=True)

    @staticmethod
    def _apply_defaults(session: Session, addon: Addon) -> None:
        try:
            specs = addon.default_settings(session)
        except Exception as exc:
            raise AddonError(f"addon {addon.slug!r}: {exc}") from exc
        for spec in specs:
            key = addon.setting_key(spec.key)
            if not valid_setting_key(key):
                raise InvalidSettingsKeyError(key)
            if session.profile.set_default(key, spec.default, source="addon"):
                logger.debug("Setting default for %s", key)
