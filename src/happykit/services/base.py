"""Service — a long-running background unit owned by the ServiceManager.

Behaviour is attached with ``on_initialize`` / ``on_start`` / ``on_stop``;
each accepts a callable ``fn(session)`` and returns it, so they also work
as decorators::

    cache = Service("cache")

    @cache.on_start
    def warm(session):
        ...
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from happykit.errors import ServiceError

if TYPE_CHECKING:
    from happykit.session import Session

ServiceHook = Callable[["Session"], Any]

_SERVICE_SLUG = re.compile(r"^[a-z0-9][a-z0-9_.-]*$")


class Service:
    """Identity plus initialization / start / stop contract."""

    def __init__(self, slug: str, *, description: str = "") -> None:
        if not _SERVICE_SLUG.match(slug):
            msg = f"invalid service slug {slug!r}"
            raise ServiceError(msg)
        self._slug = slug
        self.description = description
        self._on_initialize: ServiceHook | None = None
        self._on_start: ServiceHook | None = None
        self._on_stop: ServiceHook | None = None
        self.running = False

    def __repr__(self) -> str:
        return f"Service({self._slug!r})"

    @property
    def slug(self) -> str:
        return self._slug

    def on_initialize(self, fn: ServiceHook) -> ServiceHook:
        self._on_initialize = fn
        return fn

    def on_start(self, fn: ServiceHook) -> ServiceHook:
        self._on_start = fn
        return fn

    def on_stop(self, fn: ServiceHook) -> ServiceHook:
        self._on_stop = fn
        return fn

    def initialize(self, session: Session) -> None:
        if self._on_initialize is not None:
            self._on_initialize(session)

    def start(self, session: Session) -> None:
        if self._on_start is not None:
            self._on_start(session)
        self.running = True

    def stop(self, session: Session) -> None:
        try:
            if self._on_stop is not None:
                self._on_stop(session)
        finally:
            self.running = False
