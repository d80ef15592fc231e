"""Integration tests for Application.run — setup, pipeline, exit handling."""

from __future__ import annotations

import signal
import sys
import threading
from collections.abc import Generator
from pathlib import Path

import pytest

from happykit.addons import Addon, hookimpl
from happykit.app import Application
from happykit.command import Command
from happykit.config.profile import SettingSpec
from happykit.errors import HappyError, InvalidSettingsKeyError, PrepareCommandError
from happykit.flags import Flag, Flags
from happykit.pipeline import PipelineState
from happykit.services.base import Service
from happykit.session import Session
from tests.conftest import Recorder, make_app


def _command(rec: Recorder, name: str, fail: set[str] | None = None) -> Command:
    fail = fail or set()
    cmd = Command(name, description=f"The {name} command.")
    cmd.before(rec.hook(f"{name}.before", fail="before" in fail))
    cmd.do(rec.hook(f"{name}.do", fail="do" in fail))
    cmd.after_success(rec.hook(f"{name}.after_success", fail="after_success" in fail))
    cmd.after_failure(rec.hook(f"{name}.after_failure", fail="after_failure" in fail))
    cmd.after_always(rec.hook(f"{name}.after_always", fail="after_always" in fail))
    return cmd


@pytest.fixture
def _restore_signals() -> Generator[None]:
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)


class TestNoCommand:
    def test_scenario_a_prints_help_and_succeeds(self, capsys: pytest.CaptureFixture[str]) -> None:
        rec = Recorder()
        app = make_app()
        app.add_command(_command(rec, "serve"))
        app.before_always(rec.hook("always"))
        assert app.run([]) == 0
        assert rec.calls == ["always"]
        assert "Usage: testapp" in capsys.readouterr().out

    def test_required_command_missing(self, capsys: pytest.CaptureFixture[str]) -> None:
        rec = Recorder()
        app = make_app(require_command=True)
        app.add_command(_command(rec, "serve"))
        assert app.run([]) == 1
        assert rec.calls == []
        assert "no command, see (--help)" in str(app.coordinator.error)


class TestRootCommand:
    def test_root_do_receives_args(self) -> None:
        seen: list[list[str]] = []
        app = make_app()
        app.do(lambda session, args: seen.append(args))
        assert app.run(["a", "b"]) == 0
        assert seen == [["a", "b"]]

    def test_root_flag(self) -> None:
        seen: list[object] = []
        app = make_app()
        app.add_flag(Flag(name="greeting", default="hello"))
        app.do(lambda session, args: seen.append(session.flags.get("greeting")))
        assert app.run(["--greeting", "hi"]) == 0
        assert seen == ["hi"]

    def test_root_hooks_run_once_when_current(self) -> None:
        rec = Recorder()
        app = make_app()
        app.before(rec.hook("root.before"))
        app.do(rec.hook("root.do"))
        app.after_success(rec.hook("root.after_success"))
        app.after_always(rec.hook("root.after_always"))
        assert app.run([]) == 0
        assert rec.calls == ["root.before", "root.do", "root.after_success", "root.after_always"]

    def test_do_blocks_until_user_closed(self) -> None:
        events: list[str] = []
        app = make_app()

        @app.before
        def _before(session: Session, args: list[str]) -> None:
            threading.Timer(0.05, session.close).start()

        @app.do
        def _do(session: Session, args: list[str]) -> None:
            assert session.user_closed().wait(5)
            events.append("closed")

        assert app.run([]) == 0
        assert events == ["closed"]

    def test_hook_override_fails_setup(self) -> None:
        app = make_app()
        app.do(lambda session, args: None)
        app.do(lambda session, args: None)
        assert app.run([]) == 1
        assert isinstance(app.coordinator.error, PrepareCommandError)


class TestSubcommands:
    def test_root_and_current_hooks(self) -> None:
        rec = Recorder()
        app = make_app()
        app.before_always(rec.hook("always"))
        app.before(rec.hook("root.before"))
        app.after_success(rec.hook("root.after_success"))
        app.after_always(rec.hook("root.after_always"))
        serve = _command(rec, "serve")
        app.add_command(serve)
        assert app.run(["serve"]) == 0
        assert rec.calls == [
            "always",
            "root.before",
            "serve.before",
            "serve.do",
            "serve.after_success",
            "root.after_success",
            "serve.after_always",
            "root.after_always",
        ]
        assert app.session is not None
        assert app.session.command == "serve"

    def test_nested_subcommand_args_and_flags(self) -> None:
        seen: list[object] = []
        serve = Command("serve")
        http = Command("http", flags=[Flag(name="port", type="int", default=80)])
        http.do(lambda session, args: seen.append((args, session.flags.get("port"))))
        serve.add_subcommand(http)
        app = make_app()
        app.add_command(serve)
        assert app.run(["serve", "http", "--port", "8080", "x"]) == 0
        assert seen == [(["x"], 8080)]
        assert app.session.get("app.command") == "serve http"

    def test_scenario_b_before_fails(self) -> None:
        rec = Recorder()
        app = make_app()
        app.before(rec.hook("root.before"))
        app.add_command(_command(rec, "serve", fail={"before"}))
        assert app.run(["serve"]) == 1
        assert rec.calls == ["root.before", "serve.before"]

    def test_scenario_c_errors_logged(self, capsys: pytest.CaptureFixture[str]) -> None:
        rec = Recorder()
        app = make_app()
        app.after_failure(rec.hook("root.after_failure", fail=True))
        app.add_command(_command(rec, "serve", fail={"do"}))
        assert app.run(["serve"]) == 2
        err = capsys.readouterr().err
        assert "serve.do failed" in err
        assert "root.after_failure failed" in err

    def test_scenario_d_after_success_fails(self) -> None:
        app = make_app()
        app.add_command(_command(Recorder(), "serve", fail={"after_success"}))
        assert app.run(["serve"]) == 1

    def test_scenario_e_after_always_fails(self) -> None:
        app = make_app()
        app.add_command(_command(Recorder(), "serve", fail={"after_always"}))
        assert app.run(["serve"]) == 1

    def test_root_after_always_fails(self) -> None:
        app = make_app()
        app.after_always(Recorder().hook("root.after_always", fail=True))
        app.add_command(_command(Recorder(), "serve"))
        assert app.run(["serve"]) == 1

    def test_before_always_fails(self) -> None:
        rec = Recorder()
        app = make_app()
        app.before_always(rec.hook("always", fail=True))
        app.add_command(_command(rec, "serve"))
        assert app.run(["serve"]) == 1
        assert rec.calls == ["always"]

    def test_later_command_wins(self) -> None:
        first, second = Recorder(), Recorder()
        app = make_app()
        app.add_command(_command(first, "serve"))
        app.add_command(_command(second, "serve"))
        assert app.run(["serve"]) == 0
        assert first.calls == []
        assert "serve.do" in second.calls


class TestSetupFailures:
    def test_unknown_command(self) -> None:
        app = make_app()
        app.add_command(_command(Recorder(), "serve"))
        assert app.run(["nope"]) == 1
        assert isinstance(app.coordinator.error, PrepareCommandError)
        assert [str(e) for e in app.session.errors] == ["unknown command (nope)"]

    def test_unknown_subcommand(self) -> None:
        serve = Command("serve")
        serve.add_subcommand(_command(Recorder(), "http"))
        app = make_app()
        app.add_command(serve)
        assert app.run(["serve", "grpc"]) == 1
        assert [str(e) for e in app.session.errors] == ["unknown subcommand (grpc) for serve"]

    def test_verification_failure(self) -> None:
        rec = Recorder()
        app = make_app()
        app.add_command(Command("broken"))
        app.add_command(_command(rec, "serve"))
        assert app.run(["serve"]) == 1
        assert rec.calls == []
        assert len(app.session.errors) == 1

    def test_flag_shadowing_global(self) -> None:
        app = make_app()
        app.add_command(_command(Recorder(), "serve"))
        app.add_command(Command("loud", flags=[Flag(name="quiet", type="bool")]))
        assert app.run(["serve"]) == 1

    def test_usage_error(self, capsys: pytest.CaptureFixture[str]) -> None:
        app = make_app()
        app.add_command(_command(Recorder(), "serve"))
        assert app.run(["serve", "--bogus"]) == 1
        assert "No such option" in capsys.readouterr().err

    def test_invalid_config_file(self, tmp_path: Path) -> None:
        (tmp_path / "testapp.toml").write_text("verbose = [broken\n")
        rec = Recorder()
        app = make_app()
        app.do(rec.hook("root.do"))
        assert app.run([]) == 1
        assert rec.calls == []
        assert app.session is None

    def test_run_twice(self) -> None:
        app = make_app()
        app.run([])
        with pytest.raises(HappyError, match="already running"):
            app.run([])


class TestBuiltinFlags:
    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        app = make_app(version="3.1.4")
        assert app.run(["--version"]) == 0
        assert "testapp, version 3.1.4" in capsys.readouterr().out

    def test_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        rec = Recorder()
        app = make_app(description="Test application.")
        app.add_command(_command(rec, "serve"))
        assert app.run(["--help"]) == 0
        out = capsys.readouterr().out
        assert "Test application." in out
        assert "The serve command." in out
        assert rec.calls == []

    def test_bash_completion_short_circuits(self, capsys: pytest.CaptureFixture[str]) -> None:
        checked: list[str] = []
        rec = Recorder()
        app = make_app()
        app.before_always(rec.hook("always"))
        app.add_command(_command(rec, "serve"))
        app.add_addon(Addon("metrics", configured=lambda s: bool(checked.append("metrics"))))
        assert app.run(["--show-bash-completion"]) == 0
        out = capsys.readouterr().out
        assert "complete -F _testapp_completions testapp" in out
        assert "serve" in out
        assert checked == []
        assert rec.calls == []

    def test_verbose_prints_environment(self, capsys: pytest.CaptureFixture[str]) -> None:
        app = make_app()
        app.do(lambda session, args: None)
        assert app.run(["--verbose"]) == 0
        out = capsys.readouterr().out
        assert "SESSION" in out
        assert "app.fs.path.pwd" in out

    def test_json_suppresses_environment(self, capsys: pytest.CaptureFixture[str]) -> None:
        app = make_app()
        app.do(lambda session, args: None)
        assert app.run(["--verbose", "--json"]) == 0
        assert "SESSION" not in capsys.readouterr().out

    def test_global_flags_reach_settings(self) -> None:
        app = make_app()
        app.do(lambda session, args: None)
        app.run(["-q", "--json"])
        assert app.session.settings.quiet is True
        assert app.session.settings.json_output is True

    def test_global_flags_after_subcommand(self) -> None:
        seen: list[Session] = []
        app = make_app()
        app.add_command(_command(Recorder(), "serve"))
        app.on_keep_alive(seen.append)
        assert app.run(["serve", "-q", "--json", "--services-keep-alive"]) == 0
        assert app.session.settings.quiet is True
        assert app.session.settings.json_output is True
        assert seen == [app.session]

    def test_config_flag(self, tmp_path: Path) -> None:
        custom = tmp_path / "custom.toml"
        custom.write_text('[profile]\ngreeting = "from-file"\n')
        app = make_app()
        app.do(lambda session, args: None)
        assert app.run(["--config", str(custom)]) == 0
        assert app.session.profile.get("greeting") == "from-file"
        assert app.session.get("app.config") == str(custom)


class TestProfileLayering:
    def test_app_config_and_addon_sources(self, tmp_path: Path) -> None:
        (tmp_path / "testapp.toml").write_text(
            '[profile]\ntheme = "dark"\n\n[profile.addon.metrics]\ninterval = 30\n'
        )
        app = make_app(profile={"theme": "light", "region": "eu"})
        app.add_addon(
            Addon(
                "metrics",
                settings=[
                    SettingSpec(key="interval", default=10),
                    SettingSpec(key="endpoint", default="http://localhost"),
                ],
            )
        )
        app.do(lambda session, args: None)
        assert app.run([]) == 0
        profile = app.session.profile
        assert profile.setting("region").source == "app"
        assert profile.get("theme") == "dark"
        assert profile.setting("theme").source == "config"
        assert profile.get("addon.metrics.interval") == 30
        assert profile.setting("addon.metrics.endpoint").source == "addon"

    def test_invalid_app_profile_key(self) -> None:
        app = make_app(profile={"Bad Key": 1})
        assert app.run([]) == 1
        assert isinstance(app.coordinator.error, InvalidSettingsKeyError)

    def test_session_values(self) -> None:
        app = make_app(version="1.2.3")
        app.do(lambda session, args: None)
        app.run([])
        values = app.session.values()
        assert values["app.slug"] == "testapp"
        assert values["app.version"] == "1.2.3"
        assert values["app.command"] == "testapp"
        assert isinstance(values["app.pid"], int)


class TestAddons:
    def test_scenario_f_invalid_addon_key(self) -> None:
        class Raw(Addon):
            def setting_key(self, key: str) -> str:
                return key

        rec = Recorder()
        app = make_app()
        app.before_always(rec.hook("always"))
        app.do(rec.hook("root.do"))
        app.add_addon(Raw("raw", settings=[SettingSpec(key="addon..bad key", default=1)]))
        assert app.run([]) == 1
        assert rec.calls == []
        error = app.coordinator.error
        assert isinstance(error, InvalidSettingsKeyError)
        assert error.key == "addon..bad key"

    def test_addon_command_is_runnable(self) -> None:
        rec = Recorder()
        app = make_app()
        app.add_addon(Addon("metrics", commands=[_command(rec, "metrics")]))
        assert app.run(["metrics"]) == 0
        assert "metrics.do" in rec.calls

    def test_unconfigured_addon_command_is_unknown(self) -> None:
        app = make_app()
        app.add_command(_command(Recorder(), "serve"))
        app.add_addon(
            Addon(
                "metrics",
                commands=[_command(Recorder(), "metrics")],
                configured=lambda s: False,
            )
        )
        assert app.run(["metrics"]) == 1

    def test_configured_failure_is_fatal(self) -> None:
        def broken(session: Session) -> bool:
            msg = "predicate exploded"
            raise RuntimeError(msg)

        rec = Recorder()
        app = make_app()
        app.add_command(_command(rec, "serve"))
        app.add_addon(Addon("metrics", configured=broken))
        assert app.run(["serve"]) == 1
        assert rec.calls == []
        assert "predicate exploded" in str(app.coordinator.error)
        assert app.session is not None
        assert app.session.done().is_set()

    def test_lifecycle_notifications(self) -> None:
        events: list[object] = []

        class Tracing(Addon):
            @hookimpl
            def happykit_command_resolved(self, session: Session, command_path: list[str]) -> None:
                events.append(("resolved", command_path))

            @hookimpl
            def happykit_exit(self, session: Session, code: int) -> None:
                events.append(("exit", code))

        app = make_app()
        app.add_command(_command(Recorder(), "serve", fail={"do"}))
        app.add_addon(Tracing("tracing"))
        assert app.run(["serve"]) == 2
        assert events == [("resolved", ["serve"]), ("exit", 2)]


class TestServices:
    def test_services_initialized_before_hooks(self) -> None:
        order: list[str] = []
        svc = Service("cache")
        svc.on_initialize(lambda session: order.append("init"))
        app = make_app()
        app.add_service(svc)
        app.before_always(lambda session, flags: order.append("always"))
        app.do(lambda session, args: None)
        assert app.run([]) == 0
        assert order == ["init", "always"]

    def test_initialization_failure_is_fatal(self) -> None:
        rec = Recorder()
        svc = Service("cache")
        svc.on_initialize(Recorder().hook("cache.init", fail=True))
        app = make_app()
        app.add_service(svc)
        app.do(rec.hook("root.do"))
        assert app.run([]) == 1
        assert rec.calls == []

    def test_stub_mode_from_config(self, tmp_path: Path) -> None:
        (tmp_path / "testapp.toml").write_text('services_init = "stub"\n')
        calls: list[str] = []
        svc = Service("cache")
        svc.on_initialize(lambda session: calls.append("init"))
        app = make_app()
        app.add_service(svc)
        app.do(lambda session, args: None)
        assert app.run([]) == 0
        assert calls == []

    def test_loader_failure_in_before_always(self) -> None:
        svc = Service("background")
        svc.on_start(Recorder().hook("background.start", fail=True))
        rec = Recorder()
        app = make_app()
        app.add_service(svc)

        @app.before_always
        def _load(session: Session, flags: Flags) -> None:
            err = session.service_loader("background").wait(timeout=5)
            if err is not None:
                raise err

        app.do(rec.hook("root.do"))
        assert app.run([]) == 1
        assert rec.calls == []

    def test_started_services_stopped_on_exit(self) -> None:
        stopped: list[str] = []
        svc = Service("background")
        svc.on_stop(lambda session: stopped.append("background"))
        app = make_app()
        app.add_service(svc)
        app.before_always(
            lambda session, flags: session.service_loader("background").wait(timeout=5)
        )
        app.do(lambda session, args: None)
        assert app.run([]) == 0
        assert stopped == ["background"]
        assert not svc.running

    def test_keep_alive_handler(self) -> None:
        seen: list[Session] = []
        app = make_app()
        app.do(lambda session, args: None)
        app.on_keep_alive(seen.append)
        assert app.run(["--services-keep-alive"]) == 0
        assert seen == [app.session]
        assert app.services.keep_alive


class TestSystemExitInHooks:
    @staticmethod
    def _run_in_thread(app: Application, argv: list[str]) -> list[int]:
        codes: list[int] = []
        runner = threading.Thread(target=lambda: codes.append(app.run(argv)), daemon=True)
        runner.start()
        runner.join(timeout=5)
        assert not runner.is_alive(), "run() did not return after sys.exit"
        return codes

    def test_do_exit_code_is_used(self) -> None:
        app = make_app()
        app.do(lambda session, args: sys.exit(3))
        assert self._run_in_thread(app, []) == [3]
        assert app.pipeline is not None
        assert app.pipeline.state is PipelineState.EXITED

    def test_before_exit_without_code(self) -> None:
        rec = Recorder()
        app = make_app()
        cmd = Command("serve")
        cmd.before(lambda session, args: sys.exit())
        cmd.do(rec.hook("serve.do"))
        cmd.after_always(rec.hook("serve.after_always"))
        app.add_command(cmd)
        assert self._run_in_thread(app, ["serve"]) == [0]
        assert rec.calls == []

    def test_after_always_exit_message(self, capsys: pytest.CaptureFixture[str]) -> None:
        app = make_app()
        app.do(lambda session, args: None)
        app.after_always(lambda session, err: sys.exit("shutting down"))
        assert self._run_in_thread(app, []) == [1]
        assert "shutting down" in capsys.readouterr().err


@pytest.mark.usefixtures("_restore_signals")
class TestMain:
    def test_terminates_with_code(self) -> None:
        codes: list[int] = []
        app = make_app(terminate=codes.append)
        app.add_command(_command(Recorder(), "serve", fail={"do"}))
        with pytest.raises(SystemExit) as exc_info:
            app.main(["serve"])
        assert codes == [2]
        assert exc_info.value.code == 2

    def test_sigint_closes_session(self) -> None:
        app = make_app()

        @app.before
        def _before(session: Session, args: list[str]) -> None:
            handler = signal.getsignal(signal.SIGINT)
            assert callable(handler)
            handler(signal.SIGINT, None)

        app.do(lambda session, args: session.user_closed().wait(5))
        with pytest.raises(SystemExit) as exc_info:
            app.main([])
        assert exc_info.value.code == 0
