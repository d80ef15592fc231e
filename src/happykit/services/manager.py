"""ServiceManager — sole owner of the registered background services.

Initialization runs every service's ``initialize`` concurrently on a
ThreadPoolExecutor and returns once all have reported, or once the
caller's abort event fires or the timeout expires. A manager initializes
at most once.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Literal

from happykit.errors import ServiceError
from happykit.services.base import Service

if TYPE_CHECKING:
    from happykit.session import Session

logger = logging.getLogger(__name__)

InitMode = Literal["concurrent", "stub"]

# Interval at which the coordinating wait re-checks the abort condition.
_POLL_INTERVAL = 0.05


class ServiceManager:
    """Holds zero or more services and coordinates their lifecycle.

    Parameters:
        mode: ``"concurrent"`` initializes all services in parallel;
            ``"stub"`` logs that multi-service initialization is not
            implemented and proceeds without initializing anything.
    """

    def __init__(self, *, mode: InitMode = "concurrent") -> None:
        self.mode: InitMode = mode
        self._services: dict[str, Service] = {}
        self._started: list[Service] = []
        self._lock = threading.Lock()
        self._init_lock = threading.Lock()
        self._initialized = False
        self.keep_alive = False

    def __len__(self) -> int:
        return len(self._services)

    @property
    def initialized(self) -> bool:
        return self._initialized

    def services(self) -> list[Service]:
        return list(self._services.values())

    def get(self, slug: str) -> Service | None:
        return self._services.get(slug)

    def register(self, *services: Service) -> None:
        """Register *services*; all-or-nothing.

        Raises:
            ServiceError: for non-Service values, duplicate slugs, or
                registration after initialization.
        """
        with self._lock:
            if self._initialized:
                msg = "cannot register services after initialization"
                raise ServiceError(msg)
            pending: dict[str, Service] = {}
            for svc in services:
                if not isinstance(svc, Service):
                    msg = f"not a service: {svc!r}"
                    raise ServiceError(msg)
                if svc.slug in self._services or svc.slug in pending:
                    msg = f"service {svc.slug!r} already registered"
                    raise ServiceError(msg)
                pending[svc.slug] = svc
            self._services.update(pending)
        for slug in pending:
            logger.debug("Registered service: %s", slug)

    def initialize(
        self,
        session: Session,
        keep_alive: bool = False,
        *,
        abort: threading.Event | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize every registered service.

        Raises:
            ServiceError: when called twice, when any service fails
                (member errors in ``errors``), or when aborted.
        """
        if not self._init_lock.acquire(blocking=False):
            msg = "service manager is already initializing"
            raise ServiceError(msg)
        try:
            if self._initialized:
                msg = "service manager already initialized"
                raise ServiceError(msg)
            self.keep_alive = keep_alive
            services = self.services()
            if services and self.mode == "stub":
                logger.warning(
                    "Service manager initialization not implemented for %d services",
                    len(services),
                )
            elif services:
                self._initialize_all(session, services, abort=abort, timeout=timeout)
            else:
                logger.debug("Initialize 0 services")
            self._initialized = True
        finally:
            self._init_lock.release()

    def start(self, session: Session, slug: str) -> None:
        """Start the service registered as *slug*."""
        svc = self._services.get(slug)
        if svc is None:
            msg = f"service {slug!r} is not registered"
            raise ServiceError(msg)
        svc.start(session)
        with self._lock:
            self._started.append(svc)
        logger.debug("Started service: %s", slug)

    def stop(self, session: Session) -> None:
        """Stop started services in reverse start order. Failures are logged."""
        with self._lock:
            started, self._started = self._started, []
        for svc in reversed(started):
            try:
                svc.stop(session)
            except Exception:
                logger.warning("Failed to stop service %s", svc.slug, exc_info=True)
            else:
                logger.debug("Stopped service: %s", svc.slug)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _initialize_all(
        self,
        session: Session,
        services: list[Service],
        *,
        abort: threading.Event | None,
        timeout: float | None,
    ) -> None:
        logger.debug("Initialize %d services", len(services))
        executor = ThreadPoolExecutor(
            max_workers=len(services),
            thread_name_prefix="happykit-service-init",
        )
        futures: dict[Future[None], Service] = {
            executor.submit(svc.initialize, session): svc for svc in services
        }
        try:
            errors = _await_all(futures, abort=abort, timeout=timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        if errors:
            msg = "failed to initialize services"
            raise ServiceError(msg, errors)


def _await_all(
    futures: dict[Future[None], Service],
    *,
    abort: threading.Event | None,
    timeout: float | None,
) -> list[Exception]:
    """Wait for every future; return member errors in completion order."""
    deadline = None if timeout is None else time.monotonic() + timeout
    pending: Iterable[Future[None]] = set(futures)
    errors: list[Exception] = []
    while pending:
        if abort is not None and abort.is_set():
            msg = "service initialization aborted"
            raise ServiceError(msg, errors)
        if deadline is not None and time.monotonic() >= deadline:
            waiting = ", ".join(sorted(futures[f].slug for f in pending))
            msg = f"service initialization timed out waiting for {waiting}"
            raise ServiceError(msg, errors)
        done, pending = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
        for future in done:
            exc = future.exception()
            if exc is not None:
                svc = futures[future]
                logger.debug("Service %s failed to initialize: %s", svc.slug, exc)
                errors.append(ServiceError(f"service {svc.slug!r}: {exc}"))
    return errors
