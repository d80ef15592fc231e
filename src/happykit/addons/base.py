"""Addon — a registrable extension.

An addon contributes default settings (stored under
``addon.<slug>.<key>``), and, when :meth:`Addon.configured` holds,
commands and services. Subclass and override, or pass the pieces to the
constructor::

    addon = Addon(
        "metrics",
        "1.2.0",
        settings=[SettingSpec(key="interval", default=10)],
        commands=[metrics_cmd],
        configured=lambda session: session.profile.has("addon.metrics.endpoint"),
    )
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from happykit.config.profile import SettingSpec
from happykit.errors import AddonError

if TYPE_CHECKING:
    from happykit.command import Command
    from happykit.services.base import Service
    from happykit.session import Session

_ADDON_SLUG = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class Addon:
    """Identity (slug, version) plus settings, commands and services."""

    def __init__(
        self,
        slug: str,
        version: str = "0.1.0",
        *,
        description: str = "",
        settings: Iterable[SettingSpec] = (),
        commands: Iterable[Command] = (),
        services: Iterable[Service] = (),
        configured: Callable[[Session], bool] | None = None,
    ) -> None:
        if not _ADDON_SLUG.match(slug):
            msg = f"invalid addon slug {slug!r}"
            raise AddonError(msg)
        self._slug = slug
        self._version = version
        self.description = description
        self._settings = list(settings)
        self._commands = list(commands)
        self._services = list(services)
        self._configured = configured

    def __repr__(self) -> str:
        return f"Addon({self._slug!r}, {self._version!r})"

    @property
    def slug(self) -> str:
        return self._slug

    @property
    def version(self) -> str:
        return self._version

    def setting_key(self, key: str) -> str:
        """Namespaced profile key for an addon-relative *key*."""
        return ".".join(("addon", self.slug, key))

    def default_settings(self, session: Session) -> list[SettingSpec]:
        return list(self._settings)

    def configured(self, session: Session) -> bool:
        if self._configured is None:
            return True
        return bool(self._configured(session))

    def commands(self) -> list[Command]:
        return list(self._commands)

    def services(self) -> list[Service]:
        return list(self._services)
