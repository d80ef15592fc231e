"""Exit coordination — finalize the exit code exactly once, then terminate.

The main process may request an exit from any thread. The first request
wins: it logs the fatal error (if any) and every recorded session error,
runs the shutdown callbacks, and releases :meth:`ExitCoordinator.wait`.
Process termination happens on the waiting thread via :meth:`apply`.
"""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, NoReturn

if TYPE_CHECKING:
    from happykit.session import Session

logger = logging.getLogger(__name__)

ShutdownCallback = Callable[[int], None]

# Interval at which wait() wakes up so signal handlers run on the main thread.
_WAIT_INTERVAL = 0.1


class ExitCoordinator:
    """Map the run outcome to a process exit code.

    Parameters:
        terminate: Called by :meth:`apply` with the final code.
    """

    def __init__(self, *, terminate: Callable[[int], object] = sys.exit) -> None:
        self._terminate = terminate
        self._session: Session | None = None
        self._callbacks: list[ShutdownCallback] = []
        self._lock = threading.Lock()
        self._exited = threading.Event()
        self._code: int | None = None
        self.error: BaseException | None = None

    def bind(self, session: Session) -> None:
        self._session = session

    def on_exit(self, callback: ShutdownCallback) -> None:
        """Run *callback(code)* while finalizing. Failures are logged."""
        self._callbacks.append(callback)

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    @property
    def code(self) -> int | None:
        return self._code

    def exit(self, code: int, err: BaseException | None = None) -> int:
        """Finalize with *code*. Later calls are ignored and return the first code."""
        with self._lock:
            if self._code is not None:
                logger.debug("Exit(%d) ignored, already exiting with %d", code, self._code)
                return self._code
            self._code = code
            self.error = err

        if err is not None:
            logger.error("%s", err)
        if self._session is not None:
            for recorded in self._session.errors:
                logger.error("%s", recorded)

        for callback in self._callbacks:
            try:
                callback(code)
            except Exception:
                logger.warning("Shutdown callback failed", exc_info=True)

        if self._session is not None:
            self._session.stop()
        logger.debug("Exiting with code %d", code)
        self._exited.set()
        return code

    def wait(self, timeout: float | None = None) -> int | None:
        """Block until an exit was finalized; return the code (None on timeout)."""
        if timeout is not None:
            self._exited.wait(timeout)
            return self._code
        while not self._exited.wait(_WAIT_INTERVAL):
            pass
        return self._code

    def apply(self) -> NoReturn:
        """Terminate the process with the finalized code."""
        code = self._code if self._code is not None else 0
        self._terminate(code)
        raise SystemExit(code)
