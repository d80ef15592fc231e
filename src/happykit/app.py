"""Application — wires commands, addons, services and the hook pipeline.

Control flow of :meth:`Application.run`::

    pre-parse global flags -> settings + logging -> session
      -> (--show-bash-completion short-circuit)
      -> addons: defaults, commands, services
      -> verify top-level commands -> parse arguments -> resolve command
      -> main process (worker thread): services, env dump, hook pipeline
      -> exit coordinator

Setup runs on the calling thread; the main process runs on a worker
thread while the caller waits for the exit coordinator, so a Do action
may block until the session is closed.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, NoReturn

import click

from happykit.addons.manager import AddonManager
from happykit.command import Command
from happykit.config.logging import configure_logging
from happykit.config.profile import Profile, flatten
from happykit.config.settings import AppSettings
from happykit.errors import (
    AddonError,
    ConfigError,
    FatalExit,
    FlagAlreadyParsedError,
    HappyError,
    InvalidSettingsKeyError,
    PrepareCommandError,
    ServiceError,
)
from happykit.exit import ExitCoordinator
from happykit.flags import ROOT, ArgumentParser, Flag, Flags, FlagSet, ParseResult
from happykit.output.completion import bash_completion
from happykit.output.env import render_env
from happykit.pipeline import KEEP_ALIVE_FLAG, HookPipeline, KeepAliveHandler
from happykit.resolution import resolve_command, verify_commands
from happykit.services.manager import ServiceManager
from happykit.session import Session

if TYPE_CHECKING:
    from happykit.addons.base import Addon
    from happykit.command import Hook
    from happykit.services.base import Service

logger = logging.getLogger(__name__)

GLOBAL_FLAGS: tuple[Flag, ...] = (
    Flag(name="verbose", short="v", type="bool", help="Detailed output with debug info."),
    Flag(name="quiet", short="q", type="bool", help="Minimal output."),
    Flag(name="json", type="bool", help="Structured JSON output."),
    Flag(name="log-json", type="bool", help="Structured JSON log output to stderr."),
    Flag(name="config", short="c", help="Override config file path."),
    Flag(name=KEEP_ALIVE_FLAG, type="bool", help="Keep services running after the command."),
    Flag(name="show-bash-completion", type="bool", help="Print bash completion script."),
)

# Global flags that become settings overrides when given.
_FLAG_SETTINGS = {
    "verbose": "verbose",
    "quiet": "quiet",
    "json": "json_output",
    "log-json": "log_json",
}


def _system_exit_code(exc: SystemExit) -> int:
    """Process exit status for *exc*, following the interpreter's rules."""
    if exc.code is None:
        return 0
    if isinstance(exc.code, int):
        return exc.code
    click.echo(str(exc.code), err=True)
    return 1


class Application:
    """A command-line application built from commands, addons and hooks.

    The root-command hooks (``before``, ``do``, ...) create the root
    command on first use; it is registered under the application slug.
    """

    def __init__(
        self,
        slug: str = "happy",
        *,
        name: str | None = None,
        version: str = "0.1.0",
        description: str = "",
        copyright_by: str = "",
        copyright_since: int | None = None,
        license: str = "",
        profile: Mapping[str, Any] | None = None,
        require_command: bool = False,
        terminate: Callable[[int], object] = sys.exit,
    ) -> None:
        self.slug = slug
        self._identity: dict[str, Any] = {
            "name": name or slug,
            "version": version,
            "description": description,
            "copyright_by": copyright_by,
            "copyright_since": copyright_since,
            "license": license,
        }
        self._profile_defaults = dict(profile or {})
        self._require_command = require_command

        self._commands: dict[str, Command] = {}
        self._root: Command | None = None
        self._before_always: Hook | None = None
        self._keep_alive: KeepAliveHandler | None = None
        self._addons = AddonManager()
        self._services = ServiceManager()
        self._global_set = FlagSet(ROOT, description=description, flags=GLOBAL_FLAGS)
        self._parser = ArgumentParser(self._global_set, slug, version=version)
        self._coordinator = ExitCoordinator(terminate=terminate)
        self._pipeline: HookPipeline | None = None
        self._started = False

        self.session: Session | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @property
    def commands(self) -> Mapping[str, Command]:
        return dict(self._commands)

    @property
    def root(self) -> Command | None:
        return self._root

    @property
    def addons(self) -> AddonManager:
        return self._addons

    @property
    def services(self) -> ServiceManager:
        return self._services

    @property
    def coordinator(self) -> ExitCoordinator:
        return self._coordinator

    @property
    def pipeline(self) -> HookPipeline | None:
        return self._pipeline

    def _root_command(self) -> Command:
        if self._root is None:
            self._root = Command(self.slug, description=self._identity["description"])
            self._commands[self.slug] = self._root
        return self._root

    def before_always(self, fn: Hook) -> Hook:
        """Global hook ``fn(session, flags)`` run for every invocation."""
        if self._before_always is not None:
            logger.warning("Replacing before_always hook of %s", self.slug)
        self._before_always = fn
        return fn

    def before(self, fn: Hook) -> Hook:
        return self._root_command().before(fn)

    def do(self, fn: Hook) -> Hook:
        return self._root_command().do(fn)

    def after_success(self, fn: Hook) -> Hook:
        return self._root_command().after_success(fn)

    def after_failure(self, fn: Hook) -> Hook:
        return self._root_command().after_failure(fn)

    def after_always(self, fn: Hook) -> Hook:
        return self._root_command().after_always(fn)

    def add_flag(self, flag: Flag) -> None:
        """Add a flag to the root command."""
        self._root_command().add_flag(flag)

    def add_command(self, command: Command) -> None:
        """Register a top-level command; a later command with the same name wins."""
        if command.name in self._commands:
            logger.debug("Command %s replaced", command.name)
        self._commands[command.name] = command

    def add_addon(self, addon: Addon) -> None:
        self._addons.register(addon)

    def add_service(self, *services: Service) -> None:
        self._services.register(*services)

    def on_keep_alive(self, fn: KeepAliveHandler) -> KeepAliveHandler:
        """Handler run instead of exiting when the keep-alive directive is active."""
        self._keep_alive = fn
        return fn

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def main(self, argv: Sequence[str] | None = None) -> NoReturn:
        """Run the application and terminate the process with its exit code."""
        self._install_signal_handlers()
        self.run(argv)
        self._coordinator.apply()

    def run(self, argv: Sequence[str] | None = None) -> int:
        """Run the application and return the exit code without terminating."""
        if self._started:
            msg = "application is already running"
            raise HappyError(msg)
        self._started = True
        started_at = time.perf_counter()
        args = list(sys.argv[1:] if argv is None else argv)

        try:
            self._setup(args)
        except FatalExit as exc:
            return self._exit(exc.code, exc.error)

        if self._coordinator.exited:
            return self._coordinator.code or 0

        logger.debug("Application startup took %.3fs", time.perf_counter() - started_at)
        worker = threading.Thread(target=self._execute, name=f"{self.slug}-main", daemon=True)
        worker.start()
        code = self._coordinator.wait()
        worker.join(timeout=1.0)
        return code if code is not None else 0

    def _setup(self, argv: list[str]) -> None:
        """Prepare the session and resolve the current command.

        Raises:
            FatalExit: for every condition that stops the run before the
                main process starts.
        """
        global_flags = self._parser.parse_globals(argv)
        overrides = {
            field: True for flag, field in _FLAG_SETTINGS.items() if global_flags.present(flag)
        }
        configure_logging(
            verbose=bool(overrides.get("verbose")),
            quiet=bool(overrides.get("quiet")),
            log_json=bool(overrides.get("log_json")),
        )

        try:
            settings = AppSettings.load(
                self.slug,
                config_path=global_flags.get("config"),
                require_command=self._require_command,
                **self._identity,
                **overrides,
            )
        except (ConfigError, ValueError) as exc:
            raise FatalExit(1, exc) from exc
        configure_logging(verbose=settings.verbose, quiet=settings.quiet, log_json=settings.log_json)

        self._services.mode = settings.services_init
        session = self._create_session(settings)
        self._pipeline = HookPipeline(
            session,
            root=self._root,
            before_always=self._before_always,
            keep_alive=self._keep_alive,
        )
        self._pipeline.begin_setup()
        self._coordinator.on_exit(self._shutdown)

        if global_flags.present("show-bash-completion"):
            click.echo(bash_completion(self.slug, self._completion_tree()), nl=False)
            self._exit(0)
            return

        try:
            self._addons.load(session, self.add_command, self._services)
        except (InvalidSettingsKeyError, AddonError, ServiceError) as exc:
            raise FatalExit(1, exc) from exc

        setup = verify_commands(
            self._commands,
            self._global_set,
            root=self._root,
            reserved={name for flag in GLOBAL_FLAGS for name in flag.names()},
        )

        parsed = self._parse(argv)
        setup.extend(resolve_command(parsed.path, self._commands, self.slug))
        setup.merge_into(session)
        if not setup.ok:
            raise FatalExit(1, PrepareCommandError())

        current = setup.current
        if current is None:
            click.echo(self._parser.help(parsed.path))
        self._pipeline.resolve(current, required=settings.require_command)

        self._addons.notify(
            "happykit_command_resolved",
            session=session,
            command_path=list(parsed.path[1:]),
        )
        session.start(parsed.command_path or self.slug, parsed.args, parsed.flags)

    def _parse(self, argv: list[str]) -> ParseResult:
        try:
            return self._parser.parse(argv)
        except FlagAlreadyParsedError:
            logger.debug("Flags already parsed, reusing first result")
            return self._parser.result
        except click.exceptions.Exit as exc:
            raise FatalExit(exc.exit_code) from None
        except click.ClickException as exc:
            exc.show()
            raise FatalExit(1) from exc

    def _create_session(self, settings: AppSettings) -> Session:
        profile = Profile()
        try:
            for key, value in flatten(self._profile_defaults).items():
                profile.set(key, value, source="app")
            for key, value in flatten(settings.profile).items():
                profile.set(key, value, source="config")
        except InvalidSettingsKeyError as exc:
            raise FatalExit(1, exc) from exc

        session = Session(settings, profile, services=self._services)
        session.set("app.slug", settings.slug)
        session.set("app.name", settings.name)
        session.set("app.version", settings.version)
        session.set("app.pid", os.getpid())
        session.set("app.fs.path.pwd", os.getcwd())
        if settings.config_path is not None:
            session.set("app.config", str(settings.config_path))
        self.session = session
        self._coordinator.bind(session)
        return session

    def _execute(self) -> None:
        """Main process: services, environment dump, hook pipeline."""
        session = self.session
        pipeline = self._pipeline
        assert session is not None and pipeline is not None
        try:
            flags = session.flags or Flags()
            try:
                self._services.initialize(
                    session,
                    flags.present(KEEP_ALIVE_FLAG),
                    abort=session.done(),
                    timeout=session.settings.services_init_timeout,
                )
            except ServiceError as exc:
                raise FatalExit(1, exc) from exc

            if session.settings.verbose and not session.settings.json_output:
                click.echo(render_env(session))

            code = pipeline.execute()
        except FatalExit as exc:
            self._exit(exc.code, exc.error)
        except Exception as exc:
            logger.exception("Main process failed")
            self._exit(1, exc)
        except SystemExit as exc:
            logger.debug("Hook requested exit: %r", exc.code)
            self._exit(_system_exit_code(exc))
        except BaseException as exc:
            self._exit(1, exc)
            raise
        else:
            self._exit(code)

    def _exit(self, code: int, err: BaseException | None = None) -> int:
        if self._pipeline is not None and not self._coordinator.exited:
            try:
                self._pipeline.close()
            except RuntimeError:
                logger.debug("Pipeline already closed")
        return self._coordinator.exit(code, err)

    def _shutdown(self, code: int) -> None:
        session = self.session
        if session is None:
            return
        self._services.stop(session)
        self._addons.notify("happykit_exit", session=session, code=code)

    def _completion_tree(self) -> FlagSet:
        tree = FlagSet(ROOT, flags=GLOBAL_FLAGS)
        for command in self._commands.values():
            if command is self._root:
                continue
            tree.add_set(command.flag_set)
        return tree

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return

        def handle(signum: int, _frame: object) -> None:
            logger.debug("Received signal %d, closing session", signum)
            if self.session is not None:
                self.session.close()

        signal.signal(signal.SIGINT, handle)
        signal.signal(signal.SIGTERM, handle)
