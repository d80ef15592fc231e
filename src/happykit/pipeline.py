"""Hook pipeline — the fixed lifecycle sequence around a command's Do action.

State machine::

    IDLE -> SETTING_UP -> RESOLVED -> EXECUTING -> FINALIZING -> EXITED

Any state may jump straight to EXITED (fatal-immediate conditions).

Error policy per phase:

===========================  ==========================================
global before-always         fatal, exit 1
root Before (current!=root)  fatal, exit 1
current Before               fatal, exit 1
current Do                   recorded, working code 2
current AfterFailure         recorded, working code 1
root AfterFailure            recorded, code unchanged
current AfterSuccess         recorded, working code 1
root AfterSuccess            recorded, code unchanged
current AfterAlways          logged, working code 1 if it was 0
root AfterAlways             fatal, exit 1
===========================  ==========================================
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from happykit.command import Phase, PhaseResult
from happykit.errors import CommandError, FatalExit

if TYPE_CHECKING:
    from happykit.command import Command, Hook
    from happykit.session import Session

logger = logging.getLogger(__name__)

KEEP_ALIVE_FLAG = "services-keep-alive"

KeepAliveHandler = Callable[["Session"], Any]


class PipelineState(str, Enum):
    IDLE = "idle"
    SETTING_UP = "setting_up"
    RESOLVED = "resolved"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    EXITED = "exited"


_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    PipelineState.IDLE: {PipelineState.SETTING_UP},
    PipelineState.SETTING_UP: {PipelineState.RESOLVED},
    PipelineState.RESOLVED: {PipelineState.EXECUTING},
    PipelineState.EXECUTING: {PipelineState.FINALIZING},
    PipelineState.FINALIZING: set(),
    PipelineState.EXITED: set(),
}


class ExitCode:
    """Working exit code that is only ever upgraded in severity.

    Severity order: 0 (success) < 2 (Do failure) < 1 (hook failure).
    """

    _SEVERITY = {0: 0, 2: 1, 1: 2}

    def __init__(self, value: int = 0) -> None:
        self._value = value

    @property
    def value(self) -> int:
        return self._value

    def upgrade(self, code: int) -> None:
        if self._SEVERITY.get(code, len(self._SEVERITY)) > self._SEVERITY.get(self._value, 0):
            self._value = code

    def __int__(self) -> int:
        return self._value

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ExitCode):
            return self._value == other._value
        if isinstance(other, int):
            return self._value == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __repr__(self) -> str:
        return f"ExitCode({self._value})"


def log_keep_alive(session: Session) -> None:
    """Default keep-alive handler; resumed service serving is not implemented."""
    logger.warning("Services keep-alive is not implemented; exiting")


class HookPipeline:
    """Run lifecycle hooks for the current command against the root command.

    Parameters:
        session: Session passed to every hook.
        root: Application root command, or None.
        before_always: Global hook ``fn(session, flags)`` that runs for
            every invocation before any command-scoped hook.
        keep_alive: Handler invoked when the keep-alive directive is
            active and the run succeeded.
    """

    def __init__(
        self,
        session: Session,
        *,
        root: Command | None = None,
        before_always: Hook | None = None,
        keep_alive: KeepAliveHandler | None = None,
    ) -> None:
        self.session = session
        self.root = root
        self.before_always = before_always
        self.keep_alive = keep_alive or log_keep_alive
        self.current: Command | None = None
        self.result: PhaseResult | None = None
        self._state = PipelineState.IDLE

    @property
    def state(self) -> PipelineState:
        return self._state

    def _transition(self, target: PipelineState) -> None:
        if target not in _TRANSITIONS[self._state]:
            msg = f"invalid pipeline transition {self._state.value} -> {target.value}"
            raise RuntimeError(msg)
        logger.debug("Pipeline %s -> %s", self._state.value, target.value)
        self._state = target

    def begin_setup(self) -> None:
        self._transition(PipelineState.SETTING_UP)

    def resolve(self, current: Command | None, *, required: bool = False) -> None:
        """Fix the current command for this run.

        Raises:
            FatalExit: when a command is *required* and none resolved.
        """
        if current is None and required:
            raise FatalExit(1, CommandError("no command, see (--help) for available commands"))
        self.current = current
        self._transition(PipelineState.RESOLVED)

    def close(self) -> None:
        """Enter the terminal state. Valid exactly once."""
        if self._state is PipelineState.EXITED:
            msg = "pipeline already exited"
            raise RuntimeError(msg)
        self._state = PipelineState.EXITED

    def execute(self) -> int:
        """Run the hook sequence and return the final exit code.

        Raises:
            FatalExit: on fatal-immediate hook failures.
        """
        self._transition(PipelineState.EXECUTING)
        session = self.session
        current = self.current
        root = self.root
        run_root = root is not None and current is not None and current is not root

        if self.before_always is not None:
            try:
                self.before_always(session, session.flags)
            except Exception as exc:
                raise FatalExit(1, exc) from exc

        if current is None:
            self.result = PhaseResult(Phase.DO)
        else:
            if run_root:
                self._fatal_on_error(root.execute(Phase.BEFORE, session, args=session.args))
            self._fatal_on_error(current.execute(Phase.BEFORE, session, args=session.args))
            self.result = current.execute(Phase.DO, session, args=session.args)

        code = ExitCode()
        do_error = self.result.error
        if do_error is not None:
            self._record(do_error)
            code.upgrade(2)
            if current is not None:
                if self._record(current.execute(Phase.AFTER_FAILURE, session, err=do_error).error):
                    code.upgrade(1)
            if run_root:
                self._record(root.execute(Phase.AFTER_FAILURE, session, err=do_error).error)
        else:
            if current is not None:
                if self._record(current.execute(Phase.AFTER_SUCCESS, session).error):
                    code.upgrade(1)
            if run_root:
                self._record(root.execute(Phase.AFTER_SUCCESS, session).error)

        self._transition(PipelineState.FINALIZING)
        return self._finalize(code, do_error)

    def _finalize(self, code: ExitCode, do_error: Exception | None) -> int:
        session = self.session
        current = self.current
        root = self.root

        if current is not None:
            res = current.execute(Phase.AFTER_ALWAYS, session, err=do_error)
            if res.error is not None:
                logger.error("after always (%s) failed: %s", current.name, res.error)
                if code == 0:
                    code.upgrade(1)

        if root is not None and current is not None and current is not root:
            self._fatal_on_error(root.execute(Phase.AFTER_ALWAYS, session, err=do_error))

        flags = session.flags
        if flags is not None and flags.present(KEEP_ALIVE_FLAG) and code == 0:
            flags.unset(KEEP_ALIVE_FLAG)
            logger.debug("Exited with code 0 in keep-alive mode, continuing")
            self.keep_alive(session)

        return int(code)

    def _record(self, error: Exception | None) -> bool:
        """Record a non-fatal hook error on the session. Returns whether one was recorded."""
        if error is None:
            return False
        self.session.add_error(error)
        return True

    @staticmethod
    def _fatal_on_error(result: PhaseResult) -> None:
        if result.error is not None:
            raise FatalExit(1, result.error) from result.error
