"""Command tree verification and resolution.

Both passes collect their errors into a :class:`SetupResult` instead of
raising; the application merges the result into the session and checks it
at a single control point.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from happykit.errors import CommandError, FlagError
from happykit.flags import ROOT, FlagSet

if TYPE_CHECKING:
    from happykit.command import Command
    from happykit.session import Session

logger = logging.getLogger(__name__)


@dataclass
class SetupResult:
    """Errors and the resolved command of one setup phase.

    Attributes:
        errors: Ordered errors collected by the phase.
        current: Deepest resolved command, or None.
    """

    errors: list[Exception] = field(default_factory=list)
    current: Command | None = None

    @property
    def ok(self) -> bool:
        return not self.errors

    def add(self, error: Exception) -> None:
        self.errors.append(error)

    def extend(self, other: SetupResult) -> None:
        """Append *other*'s errors; adopt its command when it resolved one."""
        self.errors.extend(other.errors)
        if other.current is not None:
            self.current = other.current

    def merge_into(self, session: Session) -> None:
        for error in self.errors:
            session.add_error(error)


def verify_commands(
    commands: Mapping[str, Command],
    global_set: FlagSet,
    *,
    root: Command | None = None,
    reserved: Iterable[str] = (),
) -> SetupResult:
    """Verify every top-level command and attach its flags to *global_set*.

    Each failing command adds one error; the pass always completes. The
    *root* command's flags join the global set itself, every other
    command's flag set becomes a child set.
    """
    result = SetupResult()
    reserved = set(reserved)
    for name, command in commands.items():
        is_root = command is root
        try:
            command.verify(reserved=reserved, require_action=not is_root)
            if is_root:
                for flag in command.flag_set.flags:
                    global_set.add(flag)
            else:
                global_set.add_set(command.flag_set)
        except (CommandError, FlagError) as exc:
            logger.debug("Command %s failed verification: %s", name, exc)
            result.add(exc if isinstance(exc, CommandError) else CommandError(str(exc)))
    return result


def resolve_command(
    path: Sequence[str],
    commands: Mapping[str, Command],
    slug: str,
) -> SetupResult:
    """Resolve the activation *path* against the command tree.

    A bare root path looks up the command keyed by the application *slug*;
    its absence is not an error. Otherwise segments are walked in order and
    the first unknown segment records one error and stops the walk.
    """
    result = SetupResult()
    segments = [s for s in path if s != ROOT]

    if not segments:
        result.current = commands.get(slug)
        return result

    command: Command | None = None
    for segment in segments:
        if command is None:
            found = commands.get(segment)
            if found is None:
                result.add(CommandError(f"unknown command ({segment})"))
                return result
        else:
            found = command.get_subcommand(segment)
            if found is None:
                result.add(CommandError(f"unknown subcommand ({segment}) for {command.name}"))
                return result
        command = found
        result.current = command
    return result
