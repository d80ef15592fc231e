"""Flags, flag sets, and the click-backed argument parser.

Every command owns a :class:`FlagSet`; subcommand sets nest inside their
parent's set, and verified top-level commands are attached to the global
set whose name is the root marker ``"/"``. Parsing walks that tree and
reports the *activation path* — the names of the sets matched from the
root down, e.g. ``("/", "serve", "http")``.

Parsing is delegated to click one level at a time. At a level that owns
child sets, the first positional token names the next path segment; an
unknown segment is still appended to the path and parsing stops there, so
command resolution can report it. Flags of the root set are global: every
level accepts them, so ``app serve --verbose`` equals ``app --verbose serve``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Literal

import click
from click.core import ParameterSource
from pydantic import BaseModel, field_validator

from happykit.errors import FlagAlreadyParsedError, FlagError

ROOT = "/"

FlagType = Literal["str", "int", "float", "bool"]

_CLICK_TYPES: dict[str, click.ParamType] = {
    "str": click.STRING,
    "int": click.INT,
    "float": click.FLOAT,
    "bool": click.BOOL,
}

_FLAG_NAME = re.compile(r"^[a-z0-9][a-z0-9-]*$")

# Positional remainder collected at every level.
_REST = "happykit_rest"

# Handled by click itself, never declared as flags.
BUILTIN_FLAG_NAMES = frozenset({"help", "h", "version"})


class Flag(BaseModel):
    """Declaration of one command-line flag.

    Bool flags without ``multiple`` are switches (``--verbose``); all
    others take a value (``--port 8080``).
    """

    model_config = {"frozen": True}

    name: str
    short: str | None = None
    help: str = ""
    default: Any = None
    type: FlagType = "str"
    multiple: bool = False

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _FLAG_NAME.match(value):
            msg = f"invalid flag name {value!r}"
            raise ValueError(msg)
        return value

    @field_validator("short")
    @classmethod
    def _check_short(cls, value: str | None) -> str | None:
        if value is not None and (len(value) != 1 or not value.isalnum()):
            msg = f"invalid short flag {value!r}"
            raise ValueError(msg)
        return value

    @property
    def param_name(self) -> str:
        return self.name.replace("-", "_")

    @property
    def is_switch(self) -> bool:
        return self.type == "bool" and not self.multiple

    def names(self) -> set[str]:
        """Long and short names claimed by this flag."""
        return {self.name} if self.short is None else {self.name, self.short}

    def to_click(self) -> click.Option:
        decls = [self.param_name, f"--{self.name}"]
        if self.short:
            decls.append(f"-{self.short}")
        if self.is_switch:
            return click.Option(decls, is_flag=True, default=bool(self.default), help=self.help)
        return click.Option(
            decls,
            type=_CLICK_TYPES[self.type],
            default=self.default,
            multiple=self.multiple,
            show_default=self.default is not None,
            help=self.help,
        )


class FlagSet:
    """Named set of flags with nested child sets (one per subcommand)."""

    def __init__(self, name: str, *, description: str = "", flags: Iterable[Flag] = ()) -> None:
        self.name = name
        self.description = description
        self._flags: list[Flag] = []
        self._sets: dict[str, FlagSet] = {}
        for flag in flags:
            self.add(flag)

    @property
    def flags(self) -> tuple[Flag, ...]:
        return tuple(self._flags)

    @property
    def sets(self) -> Mapping[str, FlagSet]:
        return MappingProxyType(self._sets)

    def add(self, flag: Flag) -> None:
        """Add *flag*. Re-adding an equal flag is a no-op."""
        for existing in self._flags:
            if existing == flag:
                return
            if existing.names() & flag.names():
                msg = f"flag {flag.name!r} conflicts with {existing.name!r} in set {self.name!r}"
                raise FlagError(msg)
        self._flags.append(flag)

    def add_set(self, flagset: FlagSet) -> None:
        """Attach a child set. Re-attaching the same set is a no-op."""
        existing = self._sets.get(flagset.name)
        if existing is flagset:
            return
        if existing is not None:
            msg = f"flag set {flagset.name!r} already exists in {self.name!r}"
            raise FlagError(msg)
        self._sets[flagset.name] = flagset

    def names(self) -> set[str]:
        """All long and short names claimed by flags of this set."""
        claimed: set[str] = set()
        for flag in self._flags:
            claimed |= flag.names()
        return claimed


class Flags:
    """Parsed flag values.

    A flag is *present* when its value came from the command line or the
    environment rather than its default.
    """

    def __init__(self, values: Mapping[str, Any] | None = None, present: Iterable[str] = ()) -> None:
        self._values: dict[str, Any] = dict(values or {})
        self._present: set[str] = set(present)

    def get(self, name: str, default: Any = None) -> Any:
        return self._values.get(name, default)

    def present(self, name: str) -> bool:
        return name in self._present

    def unset(self, name: str) -> None:
        """Clear the presence of *name* (the value reverts to "not given")."""
        self._present.discard(name)

    def as_dict(self) -> dict[str, Any]:
        return dict(self._values)

    def __contains__(self, name: object) -> bool:
        return name in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)


@dataclass(frozen=True)
class ParseResult:
    """Outcome of parsing raw process arguments."""

    path: tuple[str, ...]
    flags: Flags
    args: tuple[str, ...] = ()

    @property
    def command_path(self) -> str:
        """Space-joined path without the root marker (``"serve http"``)."""
        return " ".join(self.path[1:])


class _FlagSetCommand(click.Command):
    """Click command for one level of the flag-set tree.

    Global flags accepted below the root get their own help section, and
    child sets are listed under ``Commands`` the way click groups do.
    """

    def __init__(self, flagset: FlagSet, *, inherited: Iterable[Flag] = (), **kwargs: Any) -> None:
        super().__init__(flagset.name, **kwargs)
        self.flagset = flagset
        self.inherited = frozenset(flag.param_name for flag in inherited)

    def format_options(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        own: list[tuple[str, str]] = []
        shared: list[tuple[str, str]] = []
        for param in self.get_params(ctx):
            record = param.get_help_record(ctx)
            if record is None:
                continue
            (shared if param.name in self.inherited else own).append(record)
        if own:
            with formatter.section("Options"):
                formatter.write_dl(own)
        if shared:
            with formatter.section("Global Options"):
                formatter.write_dl(shared)
        rows = [(name, child.description) for name, child in sorted(self.flagset.sets.items())]
        if rows:
            with formatter.section("Commands"):
                formatter.write_dl(rows)


def _version_option(prog_name: str, version: str) -> click.Option:
    """Eager ``--version`` flag that prints the version and exits."""

    def show_version(ctx: click.Context, _param: click.Parameter, value: bool) -> None:
        if not value or ctx.resilient_parsing:
            return
        click.echo(f"{prog_name}, version {version}")
        ctx.exit(0)

    return click.Option(
        ["--version"],
        is_flag=True,
        expose_value=False,
        is_eager=True,
        callback=show_version,
        help="Show the version and exit.",
    )


class ArgumentParser:
    """Parse process arguments against a flag-set tree.

    ``parse`` may run once; later calls raise :class:`FlagAlreadyParsedError`
    and :attr:`result` keeps the first outcome.
    """

    def __init__(self, root: FlagSet, prog_name: str, *, version: str | None = None) -> None:
        self.root = root
        self.prog_name = prog_name
        self.version = version
        self._result: ParseResult | None = None

    @property
    def result(self) -> ParseResult | None:
        return self._result

    def parse_globals(self, argv: Sequence[str]) -> Flags:
        """Leniently read global flags anywhere before ``--``.

        Unknown options and usage errors are ignored; eager flags such as
        ``--help`` do not fire. A value that follows an unknown option is
        taken as positional.
        """
        command = self._build_command(self.root, root=True, lenient=True)
        ctx = command.make_context(self.prog_name, list(argv), resilient_parsing=True)
        values: dict[str, Any] = {}
        present: set[str] = set()
        self._collect(ctx, self.root.flags, values, present)
        return Flags(values, present)

    def parse(self, argv: Sequence[str]) -> ParseResult:
        """Walk the flag-set tree and return the activation path.

        Raises:
            FlagAlreadyParsedError: when called a second time.
            click.exceptions.Exit: after ``--help`` or ``--version`` output.
            click.ClickException: for usage errors.
        """
        if self._result is not None:
            raise FlagAlreadyParsedError()

        values: dict[str, Any] = {}
        present: set[str] = set()
        path = [self.root.name]
        flagset = self.root
        args = list(argv)
        info_name = self.prog_name

        while True:
            is_root = flagset is self.root
            command = self._build_command(flagset, root=is_root)
            ctx = command.make_context(info_name, args)
            rest = list(ctx.params.get(_REST, ()))
            self._collect(ctx, flagset.flags, values, present)
            if not is_root:
                self._collect(ctx, self._inherited(flagset), values, present, only_present=True)

            if flagset.sets and rest:
                segment = rest[0]
                path.append(segment)
                child = flagset.sets.get(segment)
                if child is None:
                    positional = rest[1:]
                    break
                flagset, args, info_name = child, rest[1:], f"{info_name} {segment}"
                continue

            positional = rest
            break

        self._result = ParseResult(
            path=tuple(path),
            flags=Flags(values, present),
            args=tuple(positional),
        )
        return self._result

    def help(self, path: Sequence[str] = (ROOT,)) -> str:
        """Render help text for the deepest known set along *path*."""
        flagset = self.root
        info_name = self.prog_name
        for segment in path[1:]:
            child = flagset.sets.get(segment)
            if child is None:
                break
            flagset = child
            info_name = f"{info_name} {segment}"
        command = self._build_command(flagset, root=flagset is self.root)
        ctx = command.make_context(info_name, [], resilient_parsing=True)
        return ctx.get_help()

    def _inherited(self, flagset: FlagSet) -> list[Flag]:
        """Global flags accepted at *flagset*'s level; its own flags win on a name clash."""
        claimed = flagset.names()
        return [flag for flag in self.root.flags if not flag.names() & claimed]

    def _build_command(self, flagset: FlagSet, *, root: bool, lenient: bool = False) -> click.Command:
        params: list[click.Parameter] = [flag.to_click() for flag in flagset.flags]
        inherited = [] if root else self._inherited(flagset)
        params.extend(flag.to_click() for flag in inherited)
        if root and self.version is not None and not lenient:
            params.append(_version_option(self.prog_name, self.version))

        has_children = bool(flagset.sets)
        params.append(
            click.Argument(
                [_REST],
                nargs=-1,
                required=False,
                metavar="COMMAND [ARGS]..." if has_children else "[ARGS]...",
            )
        )

        context_settings: dict[str, Any] = {"allow_interspersed_args": not has_children}
        if lenient:
            context_settings.update(
                allow_interspersed_args=True,
                ignore_unknown_options=True,
                allow_extra_args=True,
            )
        else:
            context_settings["help_option_names"] = ["-h", "--help"]

        return _FlagSetCommand(
            flagset,
            inherited=inherited,
            params=params,
            help=flagset.description or None,
            context_settings=context_settings,
            add_help_option=not lenient,
        )

    @staticmethod
    def _collect(
        ctx: click.Context,
        flags: Iterable[Flag],
        values: dict[str, Any],
        present: set[str],
        *,
        only_present: bool = False,
    ) -> None:
        for flag in flags:
            pname = flag.param_name
            if pname not in ctx.params:
                continue
            given = ctx.get_parameter_source(pname) in (
                ParameterSource.COMMANDLINE,
                ParameterSource.ENVIRONMENT,
            )
            if only_present and not given:
                continue
            values[flag.name] = ctx.params[pname]
            if given:
                present.add(flag.name)
