"""BackgroundLoader — one-shot concurrent start of a named service group.

Usage from a hook::

    loader = session.service_loader("background")
    loader.load().wait()
    if loader.err() is not None:
        raise loader.err()

``load()`` returns a completion event that fires once every member has
finished, whether it succeeded or not. ``err()`` is only valid after the
event fired.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING

from happykit.errors import ServiceError

if TYPE_CHECKING:
    from happykit.services.manager import ServiceManager
    from happykit.session import Session

logger = logging.getLogger(__name__)


class BackgroundLoader:
    """Start the services in *names* concurrently, exactly once."""

    def __init__(self, session: Session, manager: ServiceManager, names: Sequence[str]) -> None:
        self.names = tuple(names)
        self._session = session
        self._manager = manager
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._started = False
        self._error: ServiceError | None = None

    @property
    def name(self) -> str:
        return ",".join(self.names)

    @property
    def completed(self) -> bool:
        return self._done.is_set()

    def load(self) -> threading.Event:
        """Start the group and return its completion event.

        Repeat calls return the same event without restarting anything.
        """
        with self._lock:
            if self._started:
                return self._done
            self._started = True

        if not self.names:
            self._done.set()
            return self._done

        logger.debug("Loading services: %s", self.name)
        executor = ThreadPoolExecutor(
            max_workers=len(self.names),
            thread_name_prefix="happykit-loader",
        )
        futures: list[tuple[str, Future[None]]] = [
            (name, executor.submit(self._manager.start, self._session, name)) for name in self.names
        ]
        executor.shutdown(wait=False)
        threading.Thread(
            target=self._collect,
            args=(futures,),
            name=f"happykit-loader-{self.name}",
            daemon=True,
        ).start()
        return self._done

    def wait(self, timeout: float | None = None) -> ServiceError | None:
        """Load (if needed), block until complete, and return :meth:`err`."""
        if not self.load().wait(timeout):
            msg = f"loader {self.name!r} did not complete within {timeout}s"
            raise ServiceError(msg)
        return self.err()

    def err(self) -> ServiceError | None:
        """Aggregated member error, or None when every service started.

        Raises:
            ServiceError: when called before the completion event fired.
        """
        if not self._done.is_set():
            msg = f"loader {self.name!r} has not completed"
            raise ServiceError(msg)
        return self._error

    def _collect(self, futures: list[tuple[str, Future[None]]]) -> None:
        errors: list[Exception] = []
        for name, future in futures:
            exc = future.exception()
            if exc is not None:
                logger.debug("Service %s failed to start: %s", name, exc)
                errors.append(exc if isinstance(exc, Exception) else ServiceError(str(exc)))
        if errors:
            self._error = ServiceError(f"failed to load services ({self.name})", errors)
        self._done.set()
