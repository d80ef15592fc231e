"""Commands: named tree nodes with lifecycle hook slots.

A command exposes five optional hook slots dispatched through one
uniform phase invocation (:meth:`Command.execute`). An absent hook is an
automatic success.

Hook signatures::

    before(session, args)           do(session, args) -> Any
    after_success(session)          after_failure(session, err)
    after_always(session, err)      # err is the Do error or None
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from happykit.errors import CommandError, FlagError
from happykit.flags import BUILTIN_FLAG_NAMES, Flag, FlagSet

if TYPE_CHECKING:
    from happykit.session import Session

Hook = Callable[..., Any]

_COMMAND_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class Phase(str, Enum):
    """Hook slots of a command."""

    BEFORE = "before"
    DO = "do"
    AFTER_SUCCESS = "after_success"
    AFTER_FAILURE = "after_failure"
    AFTER_ALWAYS = "after_always"


@dataclass(frozen=True)
class PhaseResult:
    """Outcome of one phase invocation.

    Attributes:
        phase: The phase that ran.
        ran: False when the slot was empty.
        value: Return value of the hook (meaningful for Do).
        error: Exception raised by the hook, if any.
    """

    phase: Phase
    ran: bool = False
    value: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Command:
    """A named, tree-positioned unit exposing lifecycle hooks.

    The name is fixed at construction. Subcommands and flags may be added
    during application setup; the tree is treated as immutable once the
    application starts executing. Registration problems (a hook slot set
    twice, duplicate subcommand names, conflicting flags) are recorded and
    reported by :meth:`verify` instead of raising at registration time.
    """

    def __init__(
        self,
        name: str,
        *,
        description: str = "",
        usage: str = "",
        flags: Iterable[Flag] = (),
    ) -> None:
        self._name = name
        self.description = description
        self.usage = usage
        self._flag_set = FlagSet(name, description=description)
        self._subcommands: dict[str, Command] = {}
        self._hooks: dict[Phase, Hook] = {}
        self._errors: list[CommandError] = []
        for flag in flags:
            self.add_flag(flag)

    def __repr__(self) -> str:
        return f"Command({self._name!r})"

    def __str__(self) -> str:
        return self._name

    @property
    def name(self) -> str:
        return self._name

    @property
    def flag_set(self) -> FlagSet:
        return self._flag_set

    @property
    def subcommands(self) -> Mapping[str, Command]:
        return MappingProxyType(self._subcommands)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_flag(self, flag: Flag) -> None:
        try:
            self._flag_set.add(flag)
        except FlagError as exc:
            self._errors.append(CommandError(f"command ({self._name}): {exc}"))

    def add_subcommand(self, command: Command) -> None:
        if command.name in self._subcommands:
            self._errors.append(
                CommandError(f"command ({self._name}): duplicate subcommand ({command.name})")
            )
            return
        self._subcommands[command.name] = command
        self._flag_set.add_set(command.flag_set)

    def get_subcommand(self, name: str) -> Command | None:
        return self._subcommands.get(name)

    def before(self, fn: Hook) -> Hook:
        return self._set_hook(Phase.BEFORE, fn)

    def do(self, fn: Hook) -> Hook:
        return self._set_hook(Phase.DO, fn)

    def after_success(self, fn: Hook) -> Hook:
        return self._set_hook(Phase.AFTER_SUCCESS, fn)

    def after_failure(self, fn: Hook) -> Hook:
        return self._set_hook(Phase.AFTER_FAILURE, fn)

    def after_always(self, fn: Hook) -> Hook:
        return self._set_hook(Phase.AFTER_ALWAYS, fn)

    def has(self, phase: Phase) -> bool:
        return phase in self._hooks

    def _set_hook(self, phase: Phase, fn: Hook) -> Hook:
        if phase in self._hooks:
            self._errors.append(
                CommandError(f"command ({self._name}): attempt to override {phase.value} action")
            )
            return fn
        self._hooks[phase] = fn
        return fn

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(self, *, reserved: Iterable[str] = (), require_action: bool = True) -> None:
        """Check structural validity of this command and its subtree.

        Args:
            reserved: Flag names claimed by the global flag set.
            require_action: Require a Do action or at least one subcommand.

        Raises:
            CommandError: listing every problem found.
        """
        problems = self._problems(set(reserved) | BUILTIN_FLAG_NAMES, require_action)
        if problems:
            raise CommandError("; ".join(problems))

    def _problems(self, reserved: set[str], require_action: bool) -> list[str]:
        problems = [str(e) for e in self._errors]
        if not _COMMAND_NAME.match(self._name):
            problems.append(f"invalid command name ({self._name!r})")
        if require_action and Phase.DO not in self._hooks and not self._subcommands:
            problems.append(
                f"command ({self._name}) must have a do action or at least one subcommand"
            )
        shadowed = sorted(self._flag_set.names() & reserved)
        if shadowed:
            problems.append(
                f"command ({self._name}) flags shadow global flags: {', '.join(shadowed)}"
            )
        for sub in self._subcommands.values():
            problems.extend(sub._problems(reserved, require_action=True))
        return problems

    # ------------------------------------------------------------------
    # Phase invocation
    # ------------------------------------------------------------------

    def execute(
        self,
        phase: Phase,
        session: Session,
        *,
        args: Sequence[str] = (),
        err: BaseException | None = None,
    ) -> PhaseResult:
        """Run the hook in *phase*. Exceptions become ``PhaseResult.error``."""
        fn = self._hooks.get(phase)
        if fn is None:
            return PhaseResult(phase)
        return invoke(phase, fn, session, args=args, err=err)


def invoke(
    phase: Phase,
    fn: Hook,
    session: Session,
    *,
    args: Sequence[str] = (),
    err: BaseException | None = None,
) -> PhaseResult:
    """Call *fn* with the arguments its phase defines."""
    try:
        if phase in (Phase.BEFORE, Phase.DO):
            value = fn(session, list(args))
        elif phase is Phase.AFTER_SUCCESS:
            value = fn(session)
        else:
            value = fn(session, err)
    except Exception as exc:
        return PhaseResult(phase, ran=True, error=exc)
    return PhaseResult(phase, ran=True, value=value)
