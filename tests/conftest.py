"""Shared pytest fixtures and test helpers for happykit tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from happykit.app import Application
from happykit.config.profile import Profile
from happykit.config.settings import AppSettings
from happykit.flags import Flags
from happykit.services.manager import ServiceManager
from happykit.session import Session


@pytest.fixture(autouse=True)
def _restore_logging() -> Generator[None]:
    """Restore root logger state after each test.

    Application runs reconfigure logging; without this, handlers bound to
    one test's captured stderr leak into the next.
    """
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    happy = logging.getLogger("happykit")
    happy_level = happy.level
    yield
    root.handlers = original_handlers
    root.setLevel(original_level)
    happy.setLevel(happy_level)


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every test from an empty directory so no stray config is discovered."""
    monkeypatch.chdir(tmp_path)
    for var in ("HAPPY_CONFIG", "TESTAPP_CONFIG", "HAP_CONFIG"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings.load("testapp", start=Path.cwd())


@pytest.fixture
def session(settings: AppSettings) -> Session:
    """A started session with an empty profile and its own service manager."""
    sess = Session(settings, Profile(), services=ServiceManager())
    sess.start("testapp", [], Flags())
    return sess


# ---------------------------------------------------------------------------
# Shared test helpers
# ---------------------------------------------------------------------------


class Recorder:
    """Collects hook invocations in order."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def hook(self, label: str, *, fail: bool = False) -> Any:
        def fn(*_args: Any) -> None:
            self.calls.append(label)
            if fail:
                msg = f"{label} failed"
                raise RuntimeError(msg)

        return fn


def make_app(**kwargs: Any) -> Application:
    """Application that never terminates the test process."""
    kwargs.setdefault("terminate", lambda code: None)
    return Application("testapp", **kwargs)
