"""Session — per-run state shared by every hook.

Created once per process invocation before command resolution and
discarded at exit. Carries runtime values, the settings profile, the
recorded-error surface, a structured logger, and the lifecycle signals
(ready, user-closed, done) that hooks can wait on.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import structlog

from happykit.errors import SessionError

if TYPE_CHECKING:
    from happykit.config.profile import Profile
    from happykit.config.settings import AppSettings
    from happykit.flags import Flags
    from happykit.services.loader import BackgroundLoader
    from happykit.services.manager import ServiceManager


class Session:
    """Mutable, single-owner state of one application run.

    Runtime values (``app.*``) live in a flat map reachable via
    :meth:`get` / :meth:`set`; configured values live in :attr:`profile`.
    """

    def __init__(
        self,
        settings: AppSettings,
        profile: Profile,
        *,
        services: ServiceManager | None = None,
    ) -> None:
        self.settings = settings
        self.profile = profile
        self.log = structlog.get_logger(f"happykit.app.{settings.slug}").bind(app=settings.slug)
        self._services = services
        self._values: dict[str, Any] = {}
        self._errors: list[Exception] = []
        self._errors_lock = threading.Lock()
        self._loaders: dict[tuple[str, ...], BackgroundLoader] = {}
        self._loaders_lock = threading.Lock()

        self.command: str | None = None
        self.args: tuple[str, ...] = ()
        self.flags: Flags | None = None

        self._ready = threading.Event()
        self._user_closed = threading.Event()
        self._done = threading.Event()

    # ------------------------------------------------------------------
    # Runtime values
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def has(self, key: str) -> bool:
        return key in self._values

    def values(self) -> dict[str, Any]:
        return dict(self._values)

    # ------------------------------------------------------------------
    # Error surface
    # ------------------------------------------------------------------

    def add_error(self, error: Exception | None) -> None:
        if error is None:
            return
        with self._errors_lock:
            self._errors.append(error)

    @property
    def errors(self) -> list[Exception]:
        with self._errors_lock:
            return list(self._errors)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._ready.is_set()

    def start(self, command: str, args: Sequence[str], flags: Flags) -> None:
        """Mark the session ready for the resolved *command*."""
        if self._ready.is_set():
            msg = "session already started"
            raise SessionError(msg)
        if self._done.is_set():
            msg = "session already stopped"
            raise SessionError(msg)
        self.command = command
        self.args = tuple(args)
        self.flags = flags
        self.set("app.command", command)
        self._ready.set()

    def ready(self) -> threading.Event:
        return self._ready

    def user_closed(self) -> threading.Event:
        """Set when the user asks the application to stop (signal, :meth:`close`)."""
        return self._user_closed

    def done(self) -> threading.Event:
        """Set once the session has been stopped."""
        return self._done

    def close(self) -> None:
        """Signal that the user closed the application."""
        self._user_closed.set()

    def stop(self) -> None:
        """Release waiters; the session is unusable afterwards."""
        self._user_closed.set()
        self._done.set()

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    def service_loader(self, *names: str) -> BackgroundLoader:
        """Return the background loader for the named service group.

        While a load for the same group is outstanding the same loader is
        returned, so at most one load per group runs at a time.
        """
        from happykit.services.loader import BackgroundLoader

        if self._services is None:
            msg = "session has no service manager"
            raise SessionError(msg)
        key = tuple(names)
        with self._loaders_lock:
            loader = self._loaders.get(key)
            if loader is None or loader.completed:
                loader = BackgroundLoader(self, self._services, names)
                self._loaders[key] = loader
            return loader
